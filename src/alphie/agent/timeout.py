"""
Soft per-agent timeouts.

A timer never cancels anything by itself. When it expires a TimeoutEvent is
delivered on the agent's channel and the caller decides what to do through
handle_timeout(). Timers are scheduled on the running event loop.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from ..models import Tier

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUTS: dict[Tier, float] = {
	Tier.QUICK: 5 * 60,
	Tier.SCOUT: 5 * 60,
	Tier.BUILDER: 15 * 60,
	Tier.ARCHITECT: 30 * 60,
}


class TimeoutAction(str, Enum):
	"""The caller's answer to an expired timer."""
	KILL = "kill"
	EXTEND = "extend"
	CONTINUE = "continue"


@dataclass(frozen=True)
class TimeoutEvent:
	agent_id: str
	elapsed: float
	timeout: float


class TimeoutChannel:
	"""
	Single-slot event channel.

	A new expiry replaces an unread one, so the reader always sees the most
	recent event. get() returns None once the channel is closed and drained.
	"""

	def __init__(self):
		self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	def deliver(self, event: TimeoutEvent) -> None:
		if self._closed:
			return
		if self._queue.full():
			self._queue.get_nowait()
		self._queue.put_nowait(event)

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		if self._queue.empty():
			self._queue.put_nowait(None)

	async def get(self) -> Optional[TimeoutEvent]:
		if self._closed and self._queue.empty():
			return None
		return await self._queue.get()

	def get_nowait(self) -> Optional[TimeoutEvent]:
		try:
			return self._queue.get_nowait()
		except asyncio.QueueEmpty:
			return None


@dataclass
class _TimerEntry:
	handle: asyncio.TimerHandle
	tier: Optional[Tier]
	start_time: float
	channel: TimeoutChannel


class TimeoutHandler:
	"""Keeps one soft-deadline timer per agent id."""

	def __init__(self, timeouts: Optional[dict[Tier, float]] = None):
		self._timeouts: dict[Tier, float] = dict(DEFAULT_TIMEOUTS)
		if timeouts:
			self._timeouts.update(timeouts)
		self._timers: dict[str, _TimerEntry] = {}
		self._on_kill: Optional[Callable[[str], None]] = None
		self._lock = threading.Lock()

	def set_on_kill(self, fn: Optional[Callable[[str], None]]) -> None:
		with self._lock:
			self._on_kill = fn

	def get_timeout(self, tier: Optional[Tier]) -> float:
		with self._lock:
			return self._timeout_for(tier)

	def _timeout_for(self, tier: Optional[Tier]) -> float:
		return self._timeouts.get(tier or Tier.BUILDER, self._timeouts[Tier.BUILDER])

	def set_timeout(self, tier: Tier, seconds: float) -> None:
		with self._lock:
			self._timeouts[tier] = seconds

	def _schedule(self, agent_id: str, delay: float, timeout: float) -> asyncio.TimerHandle:
		loop = asyncio.get_running_loop()
		return loop.call_later(delay, self._fire, agent_id, timeout)

	def _fire(self, agent_id: str, timeout: float) -> None:
		with self._lock:
			entry = self._timers.get(agent_id)
			if entry is None:
				return
			event = TimeoutEvent(
				agent_id=agent_id,
				elapsed=time.monotonic() - entry.start_time,
				timeout=timeout,
			)
			channel = entry.channel
		logger.info(f"Agent {agent_id} exceeded its {timeout:.0f}s soft timeout")
		channel.deliver(event)

	def start_timer(self, agent_id: str, tier: Optional[Tier] = None) -> TimeoutChannel:
		"""Start (or replace) the agent's timer and return its event channel."""
		with self._lock:
			existing = self._timers.pop(agent_id, None)
			if existing is not None:
				existing.handle.cancel()
				existing.channel.close()

			timeout = self._timeout_for(tier)
			channel = TimeoutChannel()
			self._timers[agent_id] = _TimerEntry(
				handle=self._schedule(agent_id, timeout, timeout),
				tier=tier,
				start_time=time.monotonic(),
				channel=channel,
			)
		return channel

	def stop_timer(self, agent_id: str) -> None:
		with self._lock:
			entry = self._timers.pop(agent_id, None)
		if entry is not None:
			entry.handle.cancel()
			entry.channel.close()

	def stop_all(self) -> None:
		with self._lock:
			entries = list(self._timers.values())
			self._timers.clear()
		for entry in entries:
			entry.handle.cancel()
			entry.channel.close()

	def extend_timer(self, agent_id: str, extension: float) -> None:
		"""Fire again `extension` seconds from now, reporting base + extension as the timeout."""
		with self._lock:
			entry = self._timers.get(agent_id)
			if entry is None:
				return
			entry.handle.cancel()
			timeout = self._timeout_for(entry.tier) + extension
			entry.handle = self._schedule(agent_id, extension, timeout)

	def handle_timeout(self, agent_id: str, action: TimeoutAction) -> None:
		with self._lock:
			entry = self._timers.get(agent_id)
			if entry is None:
				return

			if action == TimeoutAction.KILL:
				del self._timers[agent_id]
				entry.handle.cancel()
				entry.channel.close()
				on_kill = self._on_kill
			elif action == TimeoutAction.EXTEND:
				on_kill = None
				extension = self._timeout_for(entry.tier) / 2
			else:
				# Continue keeps the channel the caller is already reading
				on_kill = None
				entry.handle.cancel()
				timeout = self._timeout_for(entry.tier)
				entry.start_time = time.monotonic()
				entry.handle = self._schedule(agent_id, timeout, timeout)

		if action == TimeoutAction.KILL:
			logger.info(f"Killing agent {agent_id} after timeout")
			if on_kill is not None:
				on_kill(agent_id)
		elif action == TimeoutAction.EXTEND:
			self.extend_timer(agent_id, extension)

	def is_timer_active(self, agent_id: str) -> bool:
		with self._lock:
			return agent_id in self._timers

	def get_elapsed(self, agent_id: str) -> float:
		with self._lock:
			entry = self._timers.get(agent_id)
			if entry is None:
				return 0.0
			return time.monotonic() - entry.start_time

	def active_timers(self) -> int:
		with self._lock:
			return len(self._timers)
