"""
Session baselines.

A baseline records the test, lint and type failures that already exist when
a session starts. Later gate runs are compared against it so pre-existing
failures are tolerated while new ones count as regressions.
"""

import json
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .gates import GateOutput, GateResult, command_exists, detect_project_type, run_command

logger = logging.getLogger(__name__)

BASELINE_TIMEOUT = 10 * 60

_PYTEST_FAILURE_RE = re.compile(r"^(?:FAILED|ERROR)\s+(\S+)")
_RUFF_LINE_RE = re.compile(r"^(.+?):\d+:\d+: (.+)$")
_MYPY_ERROR_RE = re.compile(r"^(.+?):\d+(?::\d+)?: error: (.+)$")


class GateResults(BaseModel):
	"""Failures observed in one gate run."""
	failing_tests: list[str] = Field(default_factory=list)
	lint_errors: list[str] = Field(default_factory=list)
	type_errors: list[str] = Field(default_factory=list)


class Baseline(GateResults):
	"""Failures that existed when the session started."""
	captured_at: datetime = Field(default_factory=datetime.now)

	def save(self, path: str | Path) -> None:
		path = Path(path)
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_text(self.model_dump_json(indent=2))

	@classmethod
	def load(cls, path: str | Path) -> "Baseline":
		return cls.model_validate_json(Path(path).read_text())


class Comparison(BaseModel):
	new_failures: list[str] = Field(default_factory=list)
	improved: list[str] = Field(default_factory=list)
	worse_lints: int = 0
	is_regression: bool = False


def _all_failures(results: GateResults) -> set[str]:
	return set(results.failing_tests) | set(results.lint_errors) | set(results.type_errors)


def compare_to_baseline(current: Optional[GateResults], baseline: Optional[GateResults]) -> Comparison:
	"""
	Compare a gate run with the baseline.

	A missing baseline makes any current result a regression; a missing
	current result is never one.
	"""
	if current is None or baseline is None:
		return Comparison(is_regression=current is not None and baseline is None)

	now = _all_failures(current)
	before = _all_failures(baseline)
	new_failures = sorted(now - before)
	worse_lints = len(current.lint_errors) - len(baseline.lint_errors)
	return Comparison(
		new_failures=new_failures,
		improved=sorted(before - now),
		worse_lints=worse_lints,
		is_regression=bool(new_failures) or worse_lints > 0,
	)


# ---------------------------------------------------------------------------
# Output parsers
# ---------------------------------------------------------------------------

def _lines(output: str) -> list[str]:
	return [line.strip() for line in output.splitlines() if line.strip()]


def parse_go_test_json(output: str) -> list[str]:
	"""package/Test for each failing test event in `go test -json` output."""
	failures = []
	for line in _lines(output):
		try:
			event = json.loads(line)
		except ValueError:
			continue
		if not isinstance(event, dict):
			continue
		if event.get("Action") == "fail" and event.get("Test"):
			key = f"{event.get('Package', '')}/{event['Test']}"
			if key not in failures:
				failures.append(key)
	return failures


def parse_go_test_plain(output: str) -> list[str]:
	failures = []
	for line in _lines(output):
		if line.startswith("--- FAIL:"):
			parts = line.split()
			if len(parts) >= 3:
				failures.append(parts[2])
	return failures


def parse_golangci_lint_json(output: str) -> list[str]:
	"""filename:linter: text per issue; each non-JSON line when the output is not JSON."""
	try:
		data = json.loads(output)
	except ValueError:
		return [line for line in _lines(output) if not line.startswith("{")]

	if not isinstance(data, dict):
		return []
	errors = []
	for issue in data.get("Issues") or []:
		if not isinstance(issue, dict):
			continue
		filename = (issue.get("Pos") or {}).get("Filename", "")
		linter = (issue.get("FromLinter") or "").strip()
		text = (issue.get("Text") or "").strip()
		errors.append(f"{filename}:{linter}: {text}")
	return errors


def parse_go_vet_output(output: str) -> list[str]:
	return [line for line in _lines(output) if not line.startswith("#")]


parse_go_build_output = parse_go_vet_output


def parse_pytest_failures(output: str) -> list[str]:
	"""Node ids from pytest's short summary (FAILED/ERROR lines)."""
	failures = []
	for line in _lines(output):
		match = _PYTEST_FAILURE_RE.match(line)
		if match and match.group(1) not in failures:
			failures.append(match.group(1))
	return failures


def parse_ruff_output(output: str) -> list[str]:
	"""path: CODE message, without line numbers so edits elsewhere do not shift identities."""
	errors = []
	for line in _lines(output):
		match = _RUFF_LINE_RE.match(line)
		if match:
			errors.append(f"{match.group(1)}: {match.group(2)}")
	return errors


def parse_mypy_output(output: str) -> list[str]:
	errors = []
	for line in _lines(output):
		match = _MYPY_ERROR_RE.match(line)
		if match:
			errors.append(f"{match.group(1)}: {match.group(2)}")
	return errors


def parse_gate_output_for_failures(gate: str, output: str) -> list[str]:
	"""Failure identities from a quality gate's combined output."""
	if gate == "test":
		failures = parse_pytest_failures(output)
		if failures:
			return failures
		return [line for line in _lines(output) if "FAIL" in line]
	if gate == "lint":
		errors = parse_ruff_output(output)
		if errors:
			return errors
		return [line for line in _lines(output) if not line.startswith("level=") and len(line) > 10]
	if gate in ("typecheck", "build"):
		errors = parse_mypy_output(output)
		if errors:
			return errors
		return [line for line in _lines(output) if ".go:" in line or ".py:" in line]
	return []


def extract_gate_results(outputs: Iterable[GateOutput]) -> GateResults:
	"""Fold gate outputs into a GateResults for baseline comparison."""
	results = GateResults()
	for out in outputs:
		if out.result not in (GateResult.FAIL, GateResult.ERROR):
			continue
		failures = parse_gate_output_for_failures(out.gate, out.output)
		if out.gate == "test":
			results.failing_tests.extend(failures)
		elif out.gate == "lint":
			results.lint_errors.extend(failures)
		elif out.gate in ("typecheck", "build"):
			results.type_errors.extend(failures)
	return results


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

async def _capture_go(repo: Path, baseline: Baseline) -> None:
	result = await run_command(["go", "test", "./...", "-json"], repo, BASELINE_TIMEOUT)
	baseline.failing_tests = parse_go_test_json(result.stdout)
	if not baseline.failing_tests and result.returncode != 0:
		baseline.failing_tests = parse_go_test_plain(result.stderr)

	lint_errors: list[str] = []
	if command_exists("golangci-lint"):
		result = await run_command(["golangci-lint", "run", "--out-format=json", "./..."], repo, BASELINE_TIMEOUT)
		if result.stdout:
			lint_errors = parse_golangci_lint_json(result.stdout)
	if not lint_errors:
		result = await run_command(["go", "vet", "./..."], repo, BASELINE_TIMEOUT)
		if result.returncode != 0:
			lint_errors = parse_go_vet_output(result.combined)
	baseline.lint_errors = lint_errors

	result = await run_command(["go", "build", "-o", "/dev/null", "./..."], repo, BASELINE_TIMEOUT)
	if result.returncode != 0:
		baseline.type_errors = parse_go_build_output(result.combined)


async def _capture_python(repo: Path, baseline: Baseline) -> None:
	result = await run_command(["python", "-m", "pytest", "-q", "-rfE"], repo, BASELINE_TIMEOUT)
	baseline.failing_tests = parse_pytest_failures(result.stdout)

	if command_exists("ruff"):
		result = await run_command(["ruff", "check", "--output-format=concise", "."], repo, BASELINE_TIMEOUT)
		baseline.lint_errors = parse_ruff_output(result.stdout)

	if command_exists("mypy"):
		result = await run_command(["mypy", "."], repo, BASELINE_TIMEOUT)
		baseline.type_errors = parse_mypy_output(result.stdout)


async def capture_baseline(repo_path: str | Path) -> Baseline:
	"""
	Run the test, lint and type tools once and record what fails.

	Tool errors are not fatal; whatever could be observed is recorded.
	"""
	repo = Path(repo_path)
	baseline = Baseline()
	project = detect_project_type(repo)
	if project == "go":
		await _capture_go(repo, baseline)
	elif project == "python":
		await _capture_python(repo, baseline)
	else:
		logger.info(f"No baseline tooling for {project} project at {repo}")

	logger.info(
		f"Captured baseline: {len(baseline.failing_tests)} failing test(s), "
		f"{len(baseline.lint_errors)} lint error(s), {len(baseline.type_errors)} type error(s)"
	)
	return baseline
