"""
Task execution engine.

Runs one task end to end: a fresh worktree, an agent record, a runner
streaming into the token meter, optional self-critique with verification,
quality gates, an auto-commit, and a plain-text log under .alphie/logs/.
The worktree is always removed afterwards.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from ..config import Config, get_config
from ..learning import FailureAnalyzer, Learning, SuggestedLearning
from ..models import Task, Tier
from ..ralph.baseline import Baseline
from ..ralph.gates import TIER_GATES, GateOutput, QualityGates
from ..ralph.loop import RalphLoop, RalphLoopError, evaluate_gates
from ..structure import StructureAnalyzer
from ..verification.contract import VerificationContract
from ..verification.generator import ContractGenerator, RefinementRejectedError
from ..verification.project_context import get_project_context
from ..verification.prompt_runner import ClaudePromptRunner, PromptRunnerError
from ..verification.storage import ContractStorage
from .lifecycle import LifecycleManager
from .model_selector import select_model
from .prompts import build_prompt
from .runner import Runner, RunnerError, RunnerFactory, StartOptions
from .stream import StreamEvent, StreamEventType
from .tokens import AggregateTracker, TokenTracker
from .worktree import WorktreeError, WorktreeManager, run_git

logger = logging.getLogger(__name__)

TICK_INTERVAL = 0.1

ZERO_TOKEN_DIAGNOSTIC_AFTER = 60.0

ZERO_TOKEN_DIAGNOSTIC = (
	" [diagnostic: process ran for {elapsed:.0f}s but used 0 tokens - "
	"likely hung during startup or authentication. Check Claude CLI access and credentials.]"
)


@dataclass
class ProgressUpdate:
	agent_id: str
	task_id: str
	tokens_used: int
	cost: float
	duration: float
	current_action: str = ""


ProgressCallback = Callable[[ProgressUpdate], None]


@dataclass
class ExecuteOptions:
	"""Per-call switches for Executor.execute()."""
	learnings: list[Learning] = field(default_factory=list)
	on_progress: Optional[ProgressCallback] = None
	enable_ralph_loop: bool = False
	enable_quality_gates: bool = False
	baseline: Optional[Baseline] = None
	agent_id: str = ""


@dataclass
class ExecutionResult:
	"""Outcome of one task. gates_passed and verify_passed stay None when not evaluated."""
	success: bool = False
	output: str = ""
	error: str = ""
	tokens_used: int = 0
	cost: float = 0.0
	duration: float = 0.0
	agent_id: str = ""
	worktree_path: str = ""
	model: str = ""
	suggested_learnings: list[SuggestedLearning] = field(default_factory=list)
	log_file: str = ""
	loop_iterations: int = 0
	loop_exit_reason: str = ""
	gates_passed: Optional[bool] = None
	gate_results: list[GateOutput] = field(default_factory=list)
	verify_passed: Optional[bool] = None
	verify_summary: str = ""

	def gates_ok(self) -> bool:
		return self.gates_passed is None or self.gates_passed

	def is_verified(self) -> bool:
		return self.verify_passed is None or self.verify_passed


class StartupTimeoutError(RunnerError):
	def __init__(self, timeout: float):
		super().__init__(f"runner produced no output within {timeout:g}s (startup timeout)")


def log_file_name(task_id: str, started_at: datetime) -> str:
	return f"task-{task_id[:8]}-{started_at.strftime('%H%M%S')}.log"


def render_log(task: Task, tier: Optional[Tier], result: ExecutionResult, started_at: datetime) -> str:
	lines = [
		f"Task: {task.title}",
		f"Task ID: {task.id}",
		f"Tier: {tier.value if tier else ''}",
		f"Model: {result.model}",
		f"Started: {started_at.isoformat(timespec='seconds')}",
		f"Duration: {result.duration:.1f}s",
		f"Tokens: {result.tokens_used}",
		f"Cost: ${result.cost:.4f}",
		f"Success: {result.success}",
	]
	if result.error:
		lines.append(f"Error: {result.error}")
	lines.extend(["", "--- Output ---", result.output, ""])
	return "\n".join(lines)


def append_event_output(event: StreamEvent, parts: list[str]) -> None:
	if event.type == StreamEventType.ASSISTANT and event.message:
		parts.append(event.message + "\n")
	elif event.type == StreamEventType.RESULT and event.message:
		parts.append(f"\n--- Result ---\n{event.message}\n")
	elif event.type == StreamEventType.ERROR and event.error:
		parts.append(f"\n--- Error ---\n{event.error}\n")


async def auto_commit(work_dir: str | Path, title: str) -> None:
	"""Stage and commit everything in work_dir. Raises WorktreeError when there is nothing to commit."""
	cwd = Path(work_dir)
	stdout, stderr, rc = await run_git(["status", "--porcelain"], cwd)
	if rc != 0:
		raise WorktreeError(f"check git status: {stderr.strip()}")
	if not stdout.strip():
		raise WorktreeError("no changes to commit")

	_, stderr, rc = await run_git(["add", "-A"], cwd)
	if rc != 0:
		raise WorktreeError(f"git add: {stderr.strip()}")
	_, stderr, rc = await run_git(["commit", "-m", f"Agent: {title}"], cwd)
	if rc != 0:
		raise WorktreeError(f"git commit: {stderr.strip()}")


async def get_modified_files(work_dir: str | Path, base: str = "") -> list[str]:
	"""Files changed since base (tracked and untracked), or since HEAD~1 without a base."""
	cwd = Path(work_dir)
	stdout, _, rc = await run_git(["diff", "--name-only", base or "HEAD~1"], cwd)
	if rc != 0:
		stdout, _, rc = await run_git(["diff", "--name-only", "--cached"], cwd)
		if rc != 0:
			return []
	files = [line.strip() for line in stdout.splitlines() if line.strip()]

	untracked, _, rc = await run_git(["ls-files", "--others", "--exclude-standard"], cwd)
	if rc == 0:
		for line in untracked.splitlines():
			line = line.strip()
			if line and line not in files:
				files.append(line)
	return files


@dataclass
class _TaskRun:
	"""Mutable state of one execute() call."""
	task: Task
	tier: Optional[Tier]
	opts: ExecuteOptions
	result: ExecutionResult
	work_dir: Path
	start: float
	tracker: Optional[TokenTracker] = None
	runner: Optional[Runner] = None
	output: list[str] = field(default_factory=list)
	current_action: str = ""
	proc_error: Optional[Exception] = None
	stderr: str = ""
	base_commit: str = ""
	draft_contract: Optional[VerificationContract] = None
	notes: list[str] = field(default_factory=list)


class Executor:
	"""Executes tasks in isolated worktrees."""

	def __init__(
		self,
		repo_path: str | Path,
		runner_factory: RunnerFactory,
		config: Optional[Config] = None,
		worktree_manager: Optional[WorktreeManager] = None,
		lifecycle: Optional[LifecycleManager] = None,
		failure_analyzer: Optional[FailureAnalyzer] = None,
	):
		self.config = config or get_config()
		self.repo_path = Path(repo_path).expanduser().resolve()
		self.runner_factory = runner_factory
		self.worktrees = worktree_manager or WorktreeManager(self.config.worktree_base_dir, self.repo_path)
		self.lifecycle = lifecycle or LifecycleManager()
		self.tokens = AggregateTracker()
		self.failure_analyzer = failure_analyzer or FailureAnalyzer()

	@property
	def log_dir(self) -> Path:
		return self.repo_path / ".alphie" / "logs"

	async def execute(
		self,
		task: Task,
		tier: Optional[Tier] = None,
		opts: Optional[ExecuteOptions] = None,
	) -> ExecutionResult:
		"""
		Run a task to completion.

		Raises WorktreeError when no worktree can be created and the
		lifecycle errors for a duplicate agent id. Every later failure is
		reported through the returned result.
		"""
		opts = opts or ExecuteOptions()
		started_at = datetime.now()
		result = ExecutionResult()

		self.log_dir.mkdir(parents=True, exist_ok=True)
		result.log_file = str(self.log_dir / log_file_name(task.id, started_at))

		agent_id = opts.agent_id or str(uuid.uuid4())
		worktree = await self.worktrees.create(agent_id)
		result.worktree_path = str(worktree.path)

		run = _TaskRun(
			task=task,
			tier=tier,
			opts=opts,
			result=result,
			work_dir=worktree.path,
			start=time.monotonic(),
		)
		try:
			agent = self.lifecycle.create_with_id(agent_id, task.id, str(worktree.path))
			result.agent_id = agent.id
			await self._execute(run, started_at)
		finally:
			self.tokens.remove(agent_id)
			try:
				await self.worktrees.remove(worktree.path, force=True)
			except WorktreeError as e:
				logger.warning(f"Could not remove worktree {worktree.path}: {e}")
		return result

	async def _execute(self, run: _TaskRun, started_at: datetime) -> None:
		result = run.result
		timed_out = False
		try:
			async with asyncio.timeout(self.config.task_timeout):
				await self._run_pipeline(run)
		except TimeoutError:
			timed_out = True
			if run.runner is not None:
				await run.runner.kill()
			logger.warning(f"Task {run.task.id} timed out after {self.config.task_timeout:g}s")

		result.output = "".join(run.output) + "".join(run.notes)
		result.duration = time.monotonic() - run.start
		self._record_usage(run)

		if timed_out:
			result.success = False
			result.error = f"task timed out after {self.config.task_timeout:g}s"
		elif run.proc_error is not None:
			result.success = False
			result.error = str(run.proc_error)
			if run.stderr and "stderr:" not in result.error:
				result.error += "; stderr: " + run.stderr
		else:
			result.success = True
			if not result.gates_ok():
				result.success = False
				result.error = "quality gates failed (regression detected or new failures)"
			elif not result.is_verified():
				result.success = False
				result.error = "verification contract failed"

		if not result.success:
			if result.tokens_used == 0 and result.duration > ZERO_TOKEN_DIAGNOSTIC_AFTER:
				result.error += ZERO_TOKEN_DIAGNOSTIC.format(elapsed=result.duration)
			self.lifecycle.fail(result.agent_id, result.error)
			result.suggested_learnings = self.failure_analyzer.analyze_failure(result.output, result.error)
		else:
			self.lifecycle.complete(result.agent_id)

		logger.info(
			f"Task {run.task.id} {'succeeded' if result.success else 'failed'} in {result.duration:.1f}s "
			f"({result.tokens_used} tokens, ${result.cost:.4f})"
		)
		self._write_log(run, started_at)

	def _record_usage(self, run: _TaskRun) -> None:
		if run.tracker is None:
			return
		usage = run.tracker.get_usage()
		run.result.tokens_used = usage.total_tokens
		run.result.cost = run.tracker.get_cost()
		self.lifecycle.update_usage(run.result.agent_id, usage.total_tokens, run.result.cost)

	# -------------------------------------------------------------------------
	# Pipeline
	# -------------------------------------------------------------------------

	async def _run_pipeline(self, run: _TaskRun) -> None:
		task, tier, result = run.task, run.tier, run.result

		result.model = select_model(task, tier, self.config.default_model)
		run.tracker = TokenTracker(result.model)
		self.tokens.add(result.agent_id, run.tracker)

		structure_rules = []
		if task.file_boundaries:
			structure_rules = StructureAnalyzer(self.repo_path).analyze_repository().rules_for_paths(task.file_boundaries)
		prompt = build_prompt(task, tier, run.opts.learnings, structure_rules)

		stdout, _, rc = await run_git(["rev-parse", "HEAD"], run.work_dir)
		run.base_commit = stdout.strip() if rc == 0 else ""

		if task.verification_intent:
			await self._draft_contract(run)

		await self._run_with_startup_retry(run, prompt)
		if run.proc_error is not None:
			return

		self._record_usage(run)
		if run.opts.enable_ralph_loop:
			await self._run_ralph_loop(run)

		try:
			await auto_commit(run.work_dir, task.title)
		except WorktreeError as e:
			run.notes.append(f"\n[Auto-commit: {e}]")

		if run.opts.enable_quality_gates:
			gates = QualityGates.for_tier(run.work_dir, tier, self.config.gate_timeout)
			result.gate_results = await gates.run_gates()
			result.gates_passed = evaluate_gates(result.gate_results, run.opts.baseline)

	async def _run_with_startup_retry(self, run: _TaskRun, prompt: str) -> None:
		attempts = max(1, self.config.max_startup_attempts)
		for attempt in range(1, attempts + 1):
			if attempt > 1:
				message = f"Retry attempt {attempt - 1}/{attempts - 1} after startup timeout"
				logger.warning(f"Task {run.task.id}: {message}")
				# Notes lead the output, oldest first
				run.output.insert(attempt - 2, f"[{message}]\n")
				await asyncio.sleep(self.config.startup_backoff)

			run.proc_error = None
			run.runner = self.runner_factory.new_runner()
			try:
				await run.runner.start(prompt, str(run.work_dir), StartOptions(model=run.result.model))
			except RunnerError as e:
				run.proc_error = RunnerError(f"start claude process: {e}")
				return

			if attempt == 1:
				self.lifecycle.start(run.result.agent_id, run.runner.pid())

			try:
				await self._stream(run)
			except StartupTimeoutError as e:
				await run.runner.kill()
				run.proc_error = e
				continue

			try:
				await run.runner.wait()
			except RunnerError as e:
				run.proc_error = e
			run.stderr = run.runner.stderr()
			return

	async def _stream(self, run: _TaskRun) -> None:
		"""Drain the runner's events, ticking so a silent startup can be detected."""
		channel = run.runner.output()
		attempt_start = time.monotonic()
		last_progress = attempt_start
		got_event = False

		while True:
			try:
				event = await asyncio.wait_for(channel.get(), timeout=TICK_INTERVAL)
			except asyncio.TimeoutError:
				if not got_event and time.monotonic() - attempt_start >= self.config.startup_timeout:
					raise StartupTimeoutError(self.config.startup_timeout)
				continue

			if event is None:
				return
			got_event = True
			append_event_output(event, run.output)
			input_tokens, output_tokens = event.usage()
			if input_tokens or output_tokens:
				run.tracker.update(input_tokens, output_tokens)
			if event.tool_action:
				run.current_action = event.tool_action

			now = time.monotonic()
			if run.opts.on_progress is not None and now - last_progress >= self.config.progress_interval:
				run.opts.on_progress(ProgressUpdate(
					agent_id=run.result.agent_id,
					task_id=run.task.id,
					tokens_used=run.tracker.get_usage().total_tokens,
					cost=run.tracker.get_cost(),
					duration=now - run.start,
					current_action=run.current_action,
				))
				last_progress = now

	# -------------------------------------------------------------------------
	# Verification and self-critique
	# -------------------------------------------------------------------------

	def _generator(self, work_dir: Path) -> ContractGenerator:
		return ContractGenerator(work_dir, ClaudePromptRunner(self.runner_factory))

	async def _draft_contract(self, run: _TaskRun) -> None:
		task = run.task
		generator = self._generator(run.work_dir)
		run.draft_contract = await generator.draft_contract(
			task.verification_intent,
			task.file_boundaries,
			get_project_context(run.work_dir),
		)
		try:
			ContractStorage(self.repo_path).save_draft(task.id, run.draft_contract)
		except OSError as e:
			logger.warning(f"Could not store draft contract for {task.id}: {e}")
			run.notes.append(f"[Contract storage warning: {e}]\n")

	async def _final_contract(self, run: _TaskRun, modified_files: list[str]) -> Optional[VerificationContract]:
		task = run.task
		generator = self._generator(run.work_dir)
		project_context = get_project_context(run.work_dir)

		if run.draft_contract is None:
			try:
				return await generator.generate(task.verification_intent, modified_files, project_context)
			except PromptRunnerError as e:
				run.notes.append(f"[Verification generation warning: {e}]\n")
				return None

		try:
			final = await generator.refine_contract(run.draft_contract, modified_files, project_context)
		except RefinementRejectedError as e:
			run.notes.append(f"\n[Contract refinement rejected: {e} - using draft]\n")
			final = run.draft_contract

		storage = ContractStorage(self.repo_path)
		try:
			draft = storage.load_draft(task.id) if storage.draft_exists(task.id) else None
			storage.save_final(task.id, final, draft)
		except (OSError, ValueError) as e:
			logger.warning(f"Could not store final contract for {task.id}: {e}")
			run.notes.append(f"[Contract save warning: {e}]\n")
		return final

	async def _run_ralph_loop(self, run: _TaskRun) -> None:
		result = run.result
		loop = RalphLoop(run.work_dir, run.tier, self.runner_factory)
		loop.gates.set_timeout(self.config.gate_timeout)
		for gate in TIER_GATES.get(run.tier or Tier.BUILDER, TIER_GATES[Tier.BUILDER]):
			loop.enable_gate(gate)
		loop.set_baseline(run.opts.baseline)

		modified_files = await get_modified_files(run.work_dir, run.base_commit)
		loop.set_changed_files(modified_files)

		if run.task.verification_intent:
			contract = await self._final_contract(run, modified_files)
			if contract is not None:
				loop.set_verification_contract(contract)

		try:
			loop_result = await loop.run_critique_loop("".join(run.output))
		except RalphLoopError as e:
			logger.warning(f"Ralph loop failed for task {run.task.id}: {e}")
			run.notes.append(f"\n[Ralph-loop error: {e}]\n")
			return

		self.lifecycle.update_ralph(result.agent_id, loop_result.iterations, loop_result.final_score)
		result.loop_iterations = loop_result.iterations
		result.loop_exit_reason = loop_result.exit_reason
		result.verify_passed = loop_result.verification_passed
		if loop_result.verification_result is not None:
			result.verify_summary = loop_result.verification_result.summary
		if loop_result.output:
			run.output = [loop_result.output]

	# -------------------------------------------------------------------------
	# Log
	# -------------------------------------------------------------------------

	def _write_log(self, run: _TaskRun, started_at: datetime) -> None:
		try:
			Path(run.result.log_file).write_text(render_log(run.task, run.tier, run.result, started_at))
		except OSError as e:
			logger.warning(f"Could not write task log {run.result.log_file}: {e}")
