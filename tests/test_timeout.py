"""Tests for the soft timeout handler."""

import asyncio

import pytest

from alphie.agent.timeout import (
	DEFAULT_TIMEOUTS,
	TimeoutAction,
	TimeoutChannel,
	TimeoutEvent,
	TimeoutHandler,
)
from alphie.models import Tier


def _handler(seconds: float = 0.05) -> TimeoutHandler:
	return TimeoutHandler({tier: seconds for tier in Tier})


class TestTimeoutChannel:
	"""Single-slot semantics."""

	@pytest.mark.asyncio
	async def test_newer_event_replaces_unread(self):
		channel = TimeoutChannel()
		channel.deliver(TimeoutEvent("a", 1.0, 1.0))
		channel.deliver(TimeoutEvent("a", 2.0, 1.0))
		event = await channel.get()
		assert event.elapsed == 2.0
		assert channel.get_nowait() is None

	@pytest.mark.asyncio
	async def test_close_after_unread_event(self):
		channel = TimeoutChannel()
		channel.deliver(TimeoutEvent("a", 1.0, 1.0))
		channel.close()
		assert (await channel.get()).agent_id == "a"
		assert await channel.get() is None

	@pytest.mark.asyncio
	async def test_deliver_after_close_ignored(self):
		channel = TimeoutChannel()
		channel.close()
		channel.deliver(TimeoutEvent("a", 1.0, 1.0))
		assert await channel.get() is None


class TestTimeoutHandler:

	def test_defaults(self):
		handler = TimeoutHandler()
		assert handler.get_timeout(Tier.ARCHITECT) == DEFAULT_TIMEOUTS[Tier.ARCHITECT]
		assert handler.get_timeout(None) == DEFAULT_TIMEOUTS[Tier.BUILDER]

	def test_set_timeout(self):
		handler = TimeoutHandler()
		handler.set_timeout(Tier.QUICK, 10)
		assert handler.get_timeout(Tier.QUICK) == 10

	@pytest.mark.asyncio
	async def test_timer_fires_event(self):
		handler = _handler()
		channel = handler.start_timer("agent-1", Tier.SCOUT)
		assert handler.is_timer_active("agent-1")

		event = await asyncio.wait_for(channel.get(), timeout=2)
		assert event.agent_id == "agent-1"
		assert event.timeout == pytest.approx(0.05)
		assert event.elapsed >= 0.04
		# Soft: the timer is still registered after expiry
		assert handler.is_timer_active("agent-1")
		handler.stop_all()

	@pytest.mark.asyncio
	async def test_stop_timer_closes_channel(self):
		handler = _handler(10)
		channel = handler.start_timer("agent-1")
		handler.stop_timer("agent-1")
		handler.stop_timer("agent-1")
		assert not handler.is_timer_active("agent-1")
		assert await channel.get() is None

	@pytest.mark.asyncio
	async def test_restart_replaces_timer(self):
		handler = _handler(10)
		first = handler.start_timer("agent-1")
		second = handler.start_timer("agent-1")
		assert first.closed
		assert not second.closed
		assert handler.active_timers() == 1
		handler.stop_all()
		assert handler.active_timers() == 0

	@pytest.mark.asyncio
	async def test_kill_action_calls_back(self):
		handler = _handler(10)
		killed = []
		handler.set_on_kill(killed.append)
		channel = handler.start_timer("agent-1")

		handler.handle_timeout("agent-1", TimeoutAction.KILL)

		assert killed == ["agent-1"]
		assert not handler.is_timer_active("agent-1")
		assert channel.closed

	@pytest.mark.asyncio
	async def test_extend_reports_base_plus_extension(self):
		handler = _handler(0.05)
		channel = handler.start_timer("agent-1")
		await asyncio.wait_for(channel.get(), timeout=2)

		handler.handle_timeout("agent-1", TimeoutAction.EXTEND)
		event = await asyncio.wait_for(channel.get(), timeout=2)
		assert event.timeout == pytest.approx(0.075)
		handler.stop_all()

	@pytest.mark.asyncio
	async def test_continue_resets_elapsed(self):
		handler = _handler(0.05)
		channel = handler.start_timer("agent-1")
		await asyncio.wait_for(channel.get(), timeout=2)

		handler.handle_timeout("agent-1", TimeoutAction.CONTINUE)
		assert handler.get_elapsed("agent-1") < 0.05
		event = await asyncio.wait_for(channel.get(), timeout=2)
		assert event.timeout == pytest.approx(0.05)
		handler.stop_all()

	@pytest.mark.asyncio
	async def test_unknown_agent_is_noop(self):
		handler = _handler()
		handler.handle_timeout("ghost", TimeoutAction.KILL)
		handler.extend_timer("ghost", 5)
		assert handler.get_elapsed("ghost") == 0.0
