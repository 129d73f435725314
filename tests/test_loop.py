"""Tests for the Ralph self-critique loop."""

import asyncio

import pytest

from alphie.models import Tier
from alphie.ralph.baseline import Baseline
from alphie.ralph.gates import GateOutput, GateResult
from alphie.ralph.loop import RalphLoop, RalphLoopError, evaluate_gates, inject_verification_context
from alphie.verification.contract import (
	CommandResult,
	FileResult,
	VerificationCommand,
	VerificationContract,
	VerificationResult,
)

from .helpers import FakeRunner, FakeRunnerFactory, assistant, error


def critique(correctness: int, readability: int, edge_cases: int, done: bool = False) -> str:
	total = correctness + readability + edge_cases
	text = (
		f"CORRECTNESS: {correctness}\n"
		f"READABILITY: {readability}\n"
		f"EDGE CASES: {edge_cases}\n"
		f"Total: {total}/9\n"
	)
	return text + ("DONE" if done else "- add a test for the empty input")


def critic(text: str):
	return lambda: FakeRunner([assistant(text)])


# ---------------------------------------------------------------------------
# Exit conditions
# ---------------------------------------------------------------------------

class TestRalphLoopExits:

	@pytest.mark.asyncio
	async def test_threshold_met(self, tmp_path):
		factory = FakeRunnerFactory(critic(critique(3, 3, 2)))
		loop = RalphLoop(tmp_path, Tier.BUILDER, factory)
		result = await loop.run_critique_loop("implemented the feature")

		assert result.exit_reason == "verification_passed_and_threshold_met"
		assert result.iterations == 1
		assert result.final_score.total() == 8
		assert result.gates_pass
		assert result.gate_results == []
		prompt = factory.prompts[0]
		assert prompt.startswith("implemented the feature")
		assert "Score each criterion 1-3" in prompt
		assert "(7/9)" in prompt

	@pytest.mark.asyncio
	async def test_score_one_below_threshold_is_acceptable(self, tmp_path):
		factory = FakeRunnerFactory(critic(critique(2, 2, 2)))
		result = await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out")
		assert result.exit_reason == "verification_passed_score_acceptable"

	@pytest.mark.asyncio
	async def test_agent_done_with_low_score(self, tmp_path):
		factory = FakeRunnerFactory(critic(critique(2, 2, 1, done=True)))
		result = await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out")
		assert result.exit_reason == "agent_done_verified"
		assert result.final_score.total() == 5

	@pytest.mark.asyncio
	async def test_max_iterations(self, tmp_path):
		factory = FakeRunnerFactory(*[critic(critique(1, 1, 1))] * 3)
		loop = RalphLoop(tmp_path, Tier.SCOUT, factory)
		result = await loop.run_critique_loop("out")

		assert result.exit_reason == "max_iterations_reached: 3"
		assert result.iterations == 3
		assert len(factory.created) == 3
		# Each critique becomes the next round's input
		assert factory.prompts[1].startswith(critique(1, 1, 1))

	@pytest.mark.asyncio
	async def test_quick_tier_skips_loop(self, tmp_path):
		factory = FakeRunnerFactory()
		result = await RalphLoop(tmp_path, Tier.QUICK, factory).run_critique_loop("out")
		assert result.exit_reason == "loop skipped: no iterations for tier"
		assert result.iterations == 0
		assert result.output == "out"
		assert factory.created == []

	@pytest.mark.asyncio
	async def test_cancelled(self, tmp_path):
		cancel = asyncio.Event()
		cancel.set()
		factory = FakeRunnerFactory()
		result = await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out", cancel)
		assert result.exit_reason == "context cancelled"
		assert factory.created == []

	@pytest.mark.asyncio
	async def test_unparsable_critiques_are_skipped(self, tmp_path):
		bad = "CORRECTNESS: 1\nREADABILITY: 1\nEDGE CASES: 1\nTotal: 9/9"
		factory = FakeRunnerFactory(*[critic(bad)] * 3)
		result = await RalphLoop(tmp_path, Tier.SCOUT, factory).run_critique_loop("out")
		assert result.final_score is None
		assert result.iterations == 3
		assert result.exit_reason == "max_iterations_reached: 3"


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class TestRalphLoopVerification:

	@pytest.mark.asyncio
	async def test_failed_verification_blocks_exit(self, tmp_path):
		factory = FakeRunnerFactory(*[critic(critique(3, 3, 3, done=True))] * 3)
		loop = RalphLoop(tmp_path, Tier.SCOUT, factory)
		loop.set_verification_contract(VerificationContract(
			commands=[VerificationCommand(cmd="exit 1", required=True)],
		))
		result = await loop.run_critique_loop("out")

		assert result.exit_reason == "max_iterations_reached: 3"
		assert not result.verification_passed
		assert not result.verification_result.all_passed
		assert "## Verification Failures" in factory.prompts[1]
		assert "- **Command**: `exit 1`" in factory.prompts[1]

	@pytest.mark.asyncio
	async def test_passing_verification(self, tmp_path):
		(tmp_path / "app.py").write_text("")
		factory = FakeRunnerFactory(critic(critique(3, 3, 3)))
		loop = RalphLoop(tmp_path, Tier.BUILDER, factory)
		loop.set_verification_contract(VerificationContract(
			commands=[VerificationCommand(cmd="test -f app.py", required=True)],
		))
		result = await loop.run_critique_loop("out")
		assert result.verification_passed
		assert result.exit_reason == "verification_passed_and_threshold_met"


# ---------------------------------------------------------------------------
# Runner failures
# ---------------------------------------------------------------------------

class TestRalphLoopRunnerErrors:

	@pytest.mark.asyncio
	async def test_requires_factory(self, tmp_path):
		with pytest.raises(RalphLoopError, match="runner factory is required"):
			await RalphLoop(tmp_path, Tier.BUILDER).run_critique_loop("out")

	@pytest.mark.asyncio
	async def test_start_failure(self, tmp_path):
		factory = FakeRunnerFactory(lambda: FakeRunner([], start_error="no binary"))
		with pytest.raises(RalphLoopError, match=r"start critique process \(iteration 1\): no binary"):
			await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out")

	@pytest.mark.asyncio
	async def test_stream_error_kills_runner(self, tmp_path):
		factory = FakeRunnerFactory(lambda: FakeRunner([error("api error")]))
		with pytest.raises(RalphLoopError, match="stream error: api error"):
			await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out")
		assert factory.created[0].killed

	@pytest.mark.asyncio
	async def test_unclean_wait_is_tolerated(self, tmp_path):
		factory = FakeRunnerFactory(lambda: FakeRunner([assistant(critique(3, 3, 3))], wait_error="exit 1"))
		result = await RalphLoop(tmp_path, Tier.BUILDER, factory).run_critique_loop("out")
		assert result.final_score.total() == 9


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestInjectVerificationContext:

	def test_lists_failures_only(self):
		vr = VerificationResult(
			all_passed=False,
			command_results=[
				CommandResult(cmd="pytest", passed=False, exit_code=1, output="x" * 600),
				CommandResult(cmd="ruff check .", passed=True),
			],
			file_results=[FileResult(path="a.py", constraint="must_exist", message="file does not exist")],
		)
		text = inject_verification_context("critique", vr)
		assert text.startswith("critique\n\n## Verification Failures")
		assert "`pytest`" in text
		assert "ruff" not in text
		assert "x" * 500 + "... (truncated)" in text
		assert "- **File constraint** `must_exist` on `a.py`: file does not exist" in text

	def test_no_result_leaves_output(self):
		assert inject_verification_context("critique", None) == "critique"


class TestEvaluateGates:

	def test_without_baseline(self):
		assert evaluate_gates([GateOutput(gate="lint", result=GateResult.SKIP)], None)
		assert not evaluate_gates([GateOutput(gate="lint", result=GateResult.ERROR)], None)

	def test_baseline_tolerates_known_failures(self):
		baseline = Baseline(lint_errors=["app.py: E501 line too long"])
		outputs = [GateOutput(gate="lint", result=GateResult.FAIL, output="app.py:1:1: E501 line too long\n")]
		assert evaluate_gates(outputs, baseline)
