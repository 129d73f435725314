"""
The Ralph self-critique loop.

After the initial implementation the agent is repeatedly asked to score its
own work. Verification runs before each critique, and its outcome gates
every exit: a DONE from the agent is only honored once verification passes.
Whatever the exit, the loop finishes by running the quality gates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ..agent.runner import RunnerError, RunnerFactory
from ..agent.stream import StreamEventType
from ..models import RubricScore, Tier
from ..verification.contract import ContractRunner, VerificationContract, VerificationResult
from .baseline import Baseline, compare_to_baseline, extract_gate_results
from .critique import CritiquePrompt, RubricError, parse_critique_response
from .gates import GateOutput, GateResult, QualityGates
from .iteration import IterationController, get_tier_config
from .testselect import FocusedTestSelector

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_LIMIT = 500


class RalphLoopError(Exception):
	"""Raised when the loop cannot drive a critique runner."""
	pass


class StreamError(RalphLoopError):
	def __init__(self, message: str):
		super().__init__(f"stream error: {message}")


@dataclass
class RalphLoopResult:
	final_score: Optional[RubricScore] = None
	iterations: int = 0
	gates_pass: bool = False
	output: str = ""
	exit_reason: str = ""
	gate_results: list[GateOutput] = field(default_factory=list)
	verification_result: Optional[VerificationResult] = None
	verification_passed: bool = True


async def collect_output(runner) -> str:
	"""
	Concatenate assistant and result text until the runner's channel closes.

	Raises StreamError on the first error event from the event stream.
	Lines relayed from stderr are diagnostics and do not end collection.
	"""
	parts = []
	async for event in runner.output():
		if event.type in (StreamEventType.ASSISTANT, StreamEventType.RESULT):
			parts.append(event.message)
		elif event.type == StreamEventType.ERROR and event.error and not event.is_stderr:
			raise StreamError(event.error)
	return "".join(parts)


def inject_verification_context(output: str, vr: Optional[VerificationResult]) -> str:
	"""Append a Verification Failures section listing every failed check."""
	if vr is None:
		return output

	lines = [output, "", "## Verification Failures", "The following verification checks failed:", ""]
	for cr in vr.command_results:
		if cr.passed:
			continue
		lines.append(f"- **Command**: `{cr.command}`")
		lines.append(f"  - Exit code: {cr.exit_code}")
		if cr.output:
			preview = cr.output
			if len(preview) > OUTPUT_PREVIEW_LIMIT:
				preview = preview[:OUTPUT_PREVIEW_LIMIT] + "... (truncated)"
			lines.append(f"  - Output: {preview}")
		if cr.error:
			lines.append(f"  - Error: {cr.error}")
	for fr in vr.file_results:
		if not fr.passed:
			lines.append(f"- **File constraint** `{fr.constraint}` on `{fr.path}`: {fr.message}")
	lines.extend(["", "Please fix these issues before continuing.", ""])
	return "\n".join(lines)


def evaluate_gates(outputs: list[GateOutput], baseline: Optional[Baseline]) -> bool:
	"""
	Without a baseline every gate must pass or skip. With one, only new
	failures count: pre-existing ones are tolerated.
	"""
	if baseline is None:
		return all(o.result not in (GateResult.FAIL, GateResult.ERROR) for o in outputs)
	return not compare_to_baseline(extract_gate_results(outputs), baseline).is_regression


class RalphLoop:
	"""Drives critique iterations for one agent's working copy."""

	def __init__(
		self,
		work_dir: str | Path,
		tier: Optional[Tier] = None,
		runner_factory: Optional[RunnerFactory] = None,
	):
		self.work_dir = Path(work_dir)
		self.tier = tier
		self.critique = CritiquePrompt(get_tier_config(tier).threshold)
		self.controller = IterationController(tier)
		self.gates = QualityGates(self.work_dir)
		self.test_selector = FocusedTestSelector(self.work_dir)
		self.runner_factory = runner_factory
		self.baseline: Optional[Baseline] = None
		self.contract: Optional[VerificationContract] = None
		self.contract_runner: Optional[ContractRunner] = None

	# -------------------------------------------------------------------------
	# Configuration
	# -------------------------------------------------------------------------

	def set_baseline(self, baseline: Optional[Baseline]) -> None:
		self.baseline = baseline

	def set_runner_factory(self, factory: RunnerFactory) -> None:
		self.runner_factory = factory

	def set_verification_contract(self, contract: VerificationContract) -> None:
		self.contract = contract
		self.contract_runner = ContractRunner(self.work_dir)

	def enable_gate(self, gate: str) -> None:
		self.gates.enable(gate)

	def enable_all_gates(self) -> None:
		for gate in ("test", "build", "lint", "typecheck"):
			self.gates.enable(gate)

	def set_changed_files(self, files: list[str]) -> list[str]:
		"""Narrow the test gate to tests relevant to files; returns the selection."""
		selected = self.test_selector.select_tests(files) if files else []
		if selected:
			self.gates.set_test_targets(selected)
			logger.info(f"Test gate narrowed to {len(selected)} test file(s)")
		return selected

	@property
	def threshold(self) -> int:
		return self.critique.threshold

	@property
	def max_iterations(self) -> int:
		return self.controller.get_max_iterations()

	@property
	def current_iteration(self) -> int:
		return self.controller.get_iteration()

	# -------------------------------------------------------------------------
	# Loop
	# -------------------------------------------------------------------------

	async def run_verification(self) -> tuple[Optional[VerificationResult], bool]:
		"""(result, passed); no contract passes by default."""
		if self.contract is None or self.contract_runner is None:
			return None, True
		result = await self.contract_runner.run(self.contract)
		return result, result.all_passed

	async def _critique(self, prompt: str, iteration: int) -> str:
		if self.runner_factory is None:
			raise RalphLoopError("RalphLoop: a runner factory is required before running")

		runner = self.runner_factory.new_runner()
		try:
			await runner.start(prompt, str(self.work_dir))
		except RunnerError as e:
			raise RalphLoopError(f"start critique process (iteration {iteration}): {e}") from e

		try:
			output = await collect_output(runner)
		except StreamError as e:
			await runner.kill()
			raise RalphLoopError(f"collect critique output (iteration {iteration}): {e}") from e

		try:
			await runner.wait()
		except RunnerError as e:
			# The critique text may still be complete
			logger.warning(f"Critique runner exited uncleanly (iteration {iteration}): {e}")
		return output

	async def run_critique_loop(
		self,
		initial_output: str,
		cancel: Optional[asyncio.Event] = None,
	) -> RalphLoopResult:
		"""
		Critique and improve until an exit condition holds, then run gates.

		Exit reasons: verification_passed_and_threshold_met,
		verification_passed_score_acceptable, agent_done_verified,
		max_iterations_reached: N, context cancelled, or the
		fallbacks when the controller stops the loop.
		"""
		result = RalphLoopResult(output=initial_output)

		if self.controller.get_max_iterations() == 0:
			result.exit_reason = "loop skipped: no iterations for tier"
			return await self._finalize(result)

		threshold = self.critique.threshold
		while self.controller.should_continue(result.final_score):
			self.controller.increment()
			result.iterations = self.controller.get_iteration()

			if cancel is not None and cancel.is_set():
				result.exit_reason = "context cancelled"
				return await self._finalize(result)

			verify_result, verify_passed = await self.run_verification()
			result.verification_result = verify_result
			result.verification_passed = verify_passed

			critique_output = await self._critique(self.critique.inject(result.output), result.iterations)

			try:
				critique = parse_critique_response(critique_output)
			except RubricError as e:
				logger.warning(f"Unparsable critique (iteration {result.iterations}): {e}")
				continue

			result.final_score = critique.score
			total = critique.total()
			logger.info(
				f"Critique iteration {result.iterations}: score {total}/9 "
				f"(threshold {threshold}), verification {'passed' if verify_passed else 'failed'}"
			)

			if verify_passed and total >= threshold:
				result.exit_reason = "verification_passed_and_threshold_met"
				return await self._finalize(result)
			if verify_passed and total >= threshold - 1:
				result.exit_reason = "verification_passed_score_acceptable"
				return await self._finalize(result)
			if critique.is_done and verify_passed:
				result.exit_reason = "agent_done_verified"
				return await self._finalize(result)
			if self.controller.is_at_max():
				result.exit_reason = f"max_iterations_reached: {self.controller.get_max_iterations()}"
				return await self._finalize(result)

			if not verify_passed and verify_result is not None:
				result.output = inject_verification_context(critique_output, verify_result)
			else:
				result.output = critique_output

		if not result.exit_reason:
			if self.controller.is_at_max():
				result.exit_reason = f"max_iterations_reached: {self.controller.get_max_iterations()}"
			elif result.final_score is not None and result.final_score.total() >= threshold:
				result.exit_reason = f"threshold_met: {result.final_score.total()}/{threshold}"
			else:
				result.exit_reason = "loop_completed"
		return await self._finalize(result)

	async def _finalize(self, result: RalphLoopResult) -> RalphLoopResult:
		result.gate_results = await self.gates.run_gates()
		result.gates_pass = evaluate_gates(result.gate_results, self.baseline)
		logger.info(
			f"Ralph loop finished after {result.iterations} iteration(s): {result.exit_reason}, "
			f"gates {'passed' if result.gates_pass else 'failed'}"
		)
		return result
