"""Tests for the rich terminal views."""

from pathlib import Path

import pytest
from rich.console import Console

from alphie.agent.executor import ExecutionResult
from alphie.agent.worktree import Worktree
from alphie.learning import SuggestedLearning
from alphie.ralph.gates import GateOutput, GateResult
from alphie.views import (
	first_line,
	format_duration,
	optional_status,
	render_execution_result,
	render_gates,
	render_worktrees,
)


@pytest.fixture
def console():
	return Console(record=True, width=200)


class TestFormatting:

	@pytest.mark.parametrize("seconds,expected", [
		(0.0, "<1ms"),
		(0.045, "45ms"),
		(1.23, "1.2s"),
		(123.0, "2m 3s"),
	])
	def test_format_duration(self, seconds, expected):
		assert format_duration(seconds) == expected

	def test_optional_status(self):
		assert optional_status(None) == "[dim]-[/dim]"
		assert optional_status(True) == "[green]OK[/green]"
		assert optional_status(False) == "[red]FAIL[/red]"

	def test_first_line(self):
		assert first_line("\n\n  error: boom  \nmore") == "error: boom"
		assert first_line("") == ""
		assert first_line("x" * 100, max_len=10) == "xxxxxxx..."


class TestRenderers:

	def test_worktrees(self, console):
		render_worktrees([
			Worktree(path=Path("/wt/agent-a1"), branch_name="agent-a1", agent_id="a1"),
			Worktree(path=Path("/repo"), branch_name="main"),
		], console)
		text = console.export_text()
		assert "/wt/agent-a1" in text
		assert "yes" in text

	def test_no_worktrees(self, console):
		render_worktrees([], console)
		assert "No worktrees found." in console.export_text()

	def test_gates(self, console):
		render_gates([
			GateOutput(gate="test", result=GateResult.FAIL, output="\nFAILED tests/test_a.py::test_x\n", duration=1.5),
			GateOutput(gate="lint", result=GateResult.SKIP, output="No Python linter found"),
		], console)
		text = console.export_text()
		assert "FAIL" in text
		assert "FAILED tests/test_a.py::test_x" in text
		assert "1.5s" in text
		assert "SKIP" in text

	def test_execution_result(self, console):
		result = ExecutionResult(
			success=False,
			error="verification contract failed",
			agent_id="a1",
			model="claude-sonnet-4-20250514",
			tokens_used=1234,
			cost=0.5,
			loop_iterations=2,
			loop_exit_reason="max_iterations_reached: 2",
			verify_passed=False,
			verify_summary="Commands: 0 passed, 1 failed",
			gate_results=[GateOutput(gate="build", result=GateResult.PASS)],
			suggested_learnings=[SuggestedLearning(
				condition="tests fail", action="run them first", outcome="green build", confidence=0.7, source="test_failure",
			)],
		)
		render_execution_result(result, console)
		text = console.export_text()
		assert "Task Result" in text
		assert "FAILED" in text
		assert "1,234" in text
		assert "2 iteration(s), max_iterations_reached: 2" in text
		assert "Commands: 0 passed, 1 failed" in text
		assert "verification contract failed" in text
		assert "Quality Gates" in text
		assert "WHEN tests fail DO run them first" in text
