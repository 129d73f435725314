"""
Agent lifecycle manager.

A thread-safe registry of agents with a strict state machine. Observers are
notified after each transition commits; the handler list is copied under the
lock and invoked outside it so handlers may call back into the manager.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ..models import Agent, AgentStatus, RubricScore

logger = logging.getLogger(__name__)


class LifecycleError(Exception):
	"""Base exception for lifecycle errors."""
	pass


class AgentNotFoundError(LifecycleError):
	def __init__(self, agent_id: str = ""):
		super().__init__(f"agent not found: {agent_id}" if agent_id else "agent not found")
		self.agent_id = agent_id


class AgentAlreadyExistsError(LifecycleError):
	def __init__(self, agent_id: str = ""):
		super().__init__(f"agent already exists: {agent_id}" if agent_id else "agent already exists")
		self.agent_id = agent_id


class InvalidTransitionError(LifecycleError):
	def __init__(self, from_status: AgentStatus, to_status: AgentStatus):
		super().__init__(
			f"invalid state transition: cannot transition from {from_status.value} to {to_status.value}"
		)
		self.from_status = from_status
		self.to_status = to_status


VALID_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
	AgentStatus.PENDING: frozenset({AgentStatus.RUNNING, AgentStatus.FAILED}),
	AgentStatus.RUNNING: frozenset({
		AgentStatus.PAUSED,
		AgentStatus.WAITING_APPROVAL,
		AgentStatus.DONE,
		AgentStatus.FAILED,
	}),
	AgentStatus.PAUSED: frozenset({AgentStatus.RUNNING, AgentStatus.FAILED}),
	AgentStatus.WAITING_APPROVAL: frozenset({AgentStatus.RUNNING, AgentStatus.FAILED}),
	AgentStatus.DONE: frozenset(),
	AgentStatus.FAILED: frozenset(),
}


def can_transition(from_status: AgentStatus, to_status: AgentStatus) -> bool:
	return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


class EventType(str, Enum):
	"""Kinds of lifecycle events."""
	CREATED = "created"
	STARTED = "started"
	PAUSED = "paused"
	RESUMED = "resumed"
	WAITING_APPROVAL = "waiting_approval"
	COMPLETED = "completed"
	FAILED = "failed"


@dataclass(frozen=True)
class LifecycleEvent:
	"""Immutable record of a committed state change."""
	type: EventType
	agent_id: str
	task_id: str
	from_status: Optional[AgentStatus]
	to_status: AgentStatus
	timestamp: datetime = field(default_factory=datetime.now)
	error: str = ""


EventHandler = Callable[[LifecycleEvent], None]


class LifecycleManager:
	"""Registry mapping agent id to Agent with enforced transitions."""

	def __init__(self):
		self._agents: dict[str, Agent] = {}
		self._handlers: list[EventHandler] = []
		self._lock = threading.RLock()

	def on_event(self, handler: EventHandler) -> None:
		"""Register an observer for lifecycle events."""
		with self._lock:
			self._handlers.append(handler)

	def _emit(self, event: LifecycleEvent) -> None:
		with self._lock:
			handlers = list(self._handlers)
		for handler in handlers:
			handler(event)

	# -------------------------------------------------------------------------
	# Creation
	# -------------------------------------------------------------------------

	def create(self, task_id: str, worktree_path: str = "") -> Agent:
		"""Create a pending agent with a fresh id."""
		return self.create_with_id("", task_id, worktree_path)

	def create_with_id(self, agent_id: str, task_id: str, worktree_path: str = "") -> Agent:
		"""Create a pending agent; a fresh id is generated when agent_id is empty."""
		agent_id = agent_id or str(uuid.uuid4())
		with self._lock:
			if agent_id in self._agents:
				raise AgentAlreadyExistsError(agent_id)
			agent = Agent(
				id=agent_id,
				task_id=task_id,
				status=AgentStatus.PENDING,
				worktree_path=worktree_path,
			)
			self._agents[agent_id] = agent
			snapshot = agent.copy()

		logger.debug(f"Created agent {agent_id} for task {task_id}")
		self._emit(LifecycleEvent(
			type=EventType.CREATED,
			agent_id=agent_id,
			task_id=task_id,
			from_status=None,
			to_status=AgentStatus.PENDING,
		))
		return snapshot

	def load(self, agent: Agent) -> None:
		"""Insert an existing record (recovery path). Emits nothing."""
		with self._lock:
			if agent.id in self._agents:
				raise AgentAlreadyExistsError(agent.id)
			self._agents[agent.id] = agent.copy()

	def remove(self, agent_id: str) -> None:
		"""Drop an agent record."""
		with self._lock:
			if agent_id not in self._agents:
				raise AgentNotFoundError(agent_id)
			del self._agents[agent_id]

	# -------------------------------------------------------------------------
	# Transitions
	# -------------------------------------------------------------------------

	def _transition(
		self,
		agent_id: str,
		to_status: AgentStatus,
		event_type: EventType,
		pid: Optional[int] = None,
		error: str = "",
	) -> None:
		with self._lock:
			agent = self._agents.get(agent_id)
			if agent is None:
				raise AgentNotFoundError(agent_id)
			from_status = agent.status
			if not can_transition(from_status, to_status):
				raise InvalidTransitionError(from_status, to_status)

			agent.status = to_status
			if to_status == AgentStatus.RUNNING:
				agent.pid = pid or 0
			elif from_status == AgentStatus.RUNNING or to_status.is_terminal:
				agent.pid = 0
			if error:
				agent.error = error
			task_id = agent.task_id

		self._emit(LifecycleEvent(
			type=event_type,
			agent_id=agent_id,
			task_id=task_id,
			from_status=from_status,
			to_status=to_status,
			error=error,
		))

	def start(self, agent_id: str, pid: int) -> None:
		self._transition(agent_id, AgentStatus.RUNNING, EventType.STARTED, pid=pid)

	def pause(self, agent_id: str) -> None:
		self._transition(agent_id, AgentStatus.PAUSED, EventType.PAUSED)

	def resume(self, agent_id: str, pid: int) -> None:
		self._transition(agent_id, AgentStatus.RUNNING, EventType.RESUMED, pid=pid)

	def wait_approval(self, agent_id: str) -> None:
		self._transition(agent_id, AgentStatus.WAITING_APPROVAL, EventType.WAITING_APPROVAL)

	def complete(self, agent_id: str) -> None:
		self._transition(agent_id, AgentStatus.DONE, EventType.COMPLETED)

	def fail(self, agent_id: str, reason: str) -> None:
		self._transition(agent_id, AgentStatus.FAILED, EventType.FAILED, error=reason)

	# -------------------------------------------------------------------------
	# Counters
	# -------------------------------------------------------------------------

	def update_usage(self, agent_id: str, tokens: int, cost: float) -> None:
		"""Record cumulative tokens and cost. Does not emit an event."""
		with self._lock:
			agent = self._agents.get(agent_id)
			if agent is None:
				raise AgentNotFoundError(agent_id)
			agent.tokens_used = tokens
			agent.cost = cost

	def update_ralph(self, agent_id: str, iteration: int, score: Optional[RubricScore]) -> None:
		"""Record the critique iteration and latest score. Does not emit an event."""
		with self._lock:
			agent = self._agents.get(agent_id)
			if agent is None:
				raise AgentNotFoundError(agent_id)
			agent.ralph_iteration = iteration
			agent.ralph_score = score

	# -------------------------------------------------------------------------
	# Reads (always copies)
	# -------------------------------------------------------------------------

	def get(self, agent_id: str) -> Agent:
		with self._lock:
			agent = self._agents.get(agent_id)
			if agent is None:
				raise AgentNotFoundError(agent_id)
			return agent.copy()

	def get_status(self, agent_id: str) -> AgentStatus:
		with self._lock:
			agent = self._agents.get(agent_id)
			if agent is None:
				raise AgentNotFoundError(agent_id)
			return agent.status

	def list_agents(self) -> list[Agent]:
		with self._lock:
			return [a.copy() for a in self._agents.values()]

	def list_by_task(self, task_id: str) -> list[Agent]:
		with self._lock:
			return [a.copy() for a in self._agents.values() if a.task_id == task_id]

	def list_by_status(self, status: AgentStatus) -> list[Agent]:
		with self._lock:
			return [a.copy() for a in self._agents.values() if a.status == status]

	def count(self) -> int:
		with self._lock:
			return len(self._agents)
