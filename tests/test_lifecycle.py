"""Tests for the agent lifecycle manager."""

import threading

import pytest

from alphie.agent.lifecycle import (
	AgentAlreadyExistsError,
	AgentNotFoundError,
	EventType,
	InvalidTransitionError,
	LifecycleManager,
	can_transition,
)
from alphie.models import AgentStatus, RubricScore


@pytest.fixture
def manager() -> LifecycleManager:
	return LifecycleManager()


class TestCreate:
	"""Agent creation."""

	def test_create_generates_id(self, manager):
		agent = manager.create("task-1", "/tmp/wt")
		assert agent.id
		assert agent.status == AgentStatus.PENDING
		assert agent.worktree_path == "/tmp/wt"
		assert manager.count() == 1

	def test_create_with_id(self, manager):
		agent = manager.create_with_id("agent-x", "task-1")
		assert agent.id == "agent-x"

	def test_duplicate_id_rejected(self, manager):
		manager.create_with_id("agent-x", "task-1")
		with pytest.raises(AgentAlreadyExistsError, match="agent already exists"):
			manager.create_with_id("agent-x", "task-2")

	def test_returned_record_is_a_copy(self, manager):
		agent = manager.create_with_id("a1", "t1")
		agent.status = AgentStatus.DONE
		assert manager.get_status("a1") == AgentStatus.PENDING

	def test_load_and_remove(self, manager):
		agent = manager.create_with_id("a1", "t1")
		manager.remove("a1")
		assert manager.count() == 0
		manager.load(agent)
		assert manager.get("a1").task_id == "t1"
		with pytest.raises(AgentAlreadyExistsError):
			manager.load(agent)
		manager.remove("a1")
		with pytest.raises(AgentNotFoundError):
			manager.remove("a1")


class TestTransitions:
	"""The state machine."""

	def test_happy_path(self, manager):
		manager.create_with_id("a1", "t1")
		manager.start("a1", 1234)
		assert manager.get("a1").pid == 1234
		manager.pause("a1")
		assert manager.get("a1").pid == 0
		manager.resume("a1", 5678)
		manager.wait_approval("a1")
		manager.resume("a1", 5678)
		manager.complete("a1")
		agent = manager.get("a1")
		assert agent.status == AgentStatus.DONE
		assert agent.pid == 0

	def test_pending_can_fail(self, manager):
		manager.create_with_id("a1", "t1")
		manager.fail("a1", "could not start")
		agent = manager.get("a1")
		assert agent.status == AgentStatus.FAILED
		assert agent.error == "could not start"

	def test_terminal_states_are_final(self, manager):
		manager.create_with_id("a1", "t1")
		manager.start("a1", 1)
		manager.complete("a1")
		with pytest.raises(InvalidTransitionError, match="cannot transition from done to failed"):
			manager.fail("a1", "late failure")

	def test_pending_cannot_complete(self, manager):
		manager.create_with_id("a1", "t1")
		with pytest.raises(InvalidTransitionError) as exc:
			manager.complete("a1")
		assert exc.value.from_status == AgentStatus.PENDING
		assert exc.value.to_status == AgentStatus.DONE

	def test_unknown_agent(self, manager):
		with pytest.raises(AgentNotFoundError, match="agent not found"):
			manager.start("missing", 1)

	def test_can_transition_table(self):
		assert can_transition(AgentStatus.RUNNING, AgentStatus.WAITING_APPROVAL)
		assert not can_transition(AgentStatus.PAUSED, AgentStatus.DONE)
		assert not can_transition(AgentStatus.FAILED, AgentStatus.RUNNING)


class TestEvents:
	"""Observer notifications."""

	def test_events_in_order(self, manager):
		events = []
		manager.on_event(events.append)
		manager.create_with_id("a1", "t1")
		manager.start("a1", 1)
		manager.fail("a1", "boom")

		assert [e.type for e in events] == [EventType.CREATED, EventType.STARTED, EventType.FAILED]
		assert events[0].from_status is None
		assert events[2].from_status == AgentStatus.RUNNING
		assert events[2].error == "boom"

	def test_rejected_transition_emits_nothing(self, manager):
		manager.create_with_id("a1", "t1")
		events = []
		manager.on_event(events.append)
		with pytest.raises(InvalidTransitionError):
			manager.pause("a1")
		assert events == []

	def test_handler_may_call_back(self, manager):
		seen = []
		manager.on_event(lambda e: seen.append(manager.get_status(e.agent_id)))
		manager.create_with_id("a1", "t1")
		manager.start("a1", 1)
		assert seen == [AgentStatus.PENDING, AgentStatus.RUNNING]

	def test_counters_do_not_emit(self, manager):
		manager.create_with_id("a1", "t1")
		events = []
		manager.on_event(events.append)
		manager.update_usage("a1", 1500, 0.12)
		manager.update_ralph("a1", 2, RubricScore(3, 2, 2))
		agent = manager.get("a1")
		assert agent.tokens_used == 1500
		assert agent.cost == 0.12
		assert agent.ralph_iteration == 2
		assert agent.ralph_score.total() == 7
		assert events == []


class TestQueries:

	def test_list_filters(self, manager):
		manager.create_with_id("a1", "t1")
		manager.create_with_id("a2", "t1")
		manager.create_with_id("a3", "t2")
		manager.start("a2", 1)

		assert len(manager.list_agents()) == 3
		assert {a.id for a in manager.list_by_task("t1")} == {"a1", "a2"}
		assert [a.id for a in manager.list_by_status(AgentStatus.RUNNING)] == ["a2"]


def test_concurrent_transitions_apply_once():
	"""Only one of many racing completions can succeed."""
	manager = LifecycleManager()
	manager.create_with_id("a1", "t1")
	manager.start("a1", 1)

	successes = []
	failures = []

	def finish():
		try:
			manager.complete("a1")
			successes.append(1)
		except InvalidTransitionError:
			failures.append(1)

	threads = [threading.Thread(target=finish) for _ in range(8)]
	for t in threads:
		t.start()
	for t in threads:
		t.join()

	assert len(successes) == 1
	assert len(failures) == 7
