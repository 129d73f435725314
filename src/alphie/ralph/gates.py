"""
Quality gates: test, build, lint and typecheck.

Each gate picks its command from the detected project type. A gate that
does not apply to the project is skipped rather than failed.
"""

import asyncio
import json
import logging
import os
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from ..models import Tier

logger = logging.getLogger(__name__)

DEFAULT_GATE_TIMEOUT = 5 * 60

GATE_NAMES = ("test", "build", "lint", "typecheck")

TIER_GATES: dict[Tier, frozenset[str]] = {
	Tier.QUICK: frozenset({"build", "lint"}),
	Tier.SCOUT: frozenset({"build", "lint"}),
	Tier.BUILDER: frozenset({"build", "lint", "test"}),
	Tier.ARCHITECT: frozenset(GATE_NAMES),
}


class GateResult(str, Enum):
	PASS = "pass"
	FAIL = "fail"
	SKIP = "skip"
	ERROR = "error"


@dataclass
class GateOutput:
	"""Outcome of one gate."""
	gate: str
	result: GateResult = GateResult.SKIP
	output: str = ""
	duration: float = 0.0


@dataclass
class CommandResult:
	stdout: str = ""
	stderr: str = ""
	returncode: int = 0
	duration: float = 0.0
	timed_out: bool = False
	error: str = ""

	@property
	def combined(self) -> str:
		if self.stdout and self.stderr:
			return f"{self.stdout}\n{self.stderr}"
		return self.stdout or self.stderr


async def run_command(cmd: list[str], cwd: str | Path, timeout: float = DEFAULT_GATE_TIMEOUT) -> CommandResult:
	"""Run a command, capturing stdout and stderr separately."""
	start = time.monotonic()
	try:
		proc = await asyncio.create_subprocess_exec(
			*cmd,
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.PIPE,
			cwd=str(cwd),
		)
	except OSError as e:
		return CommandResult(returncode=-1, error=str(e), duration=time.monotonic() - start)

	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		proc.kill()
		await proc.wait()
		return CommandResult(returncode=-1, timed_out=True, duration=time.monotonic() - start)

	return CommandResult(
		stdout=stdout.decode("utf-8", errors="replace"),
		stderr=stderr.decode("utf-8", errors="replace"),
		returncode=proc.returncode or 0,
		duration=time.monotonic() - start,
	)


def command_exists(name: str) -> bool:
	return shutil.which(name) is not None


def detect_project_type(work_dir: str | Path) -> str:
	"""First marker file wins: go.mod, package.json, then the Python markers."""
	root = Path(work_dir)
	if (root / "go.mod").exists():
		return "go"
	if (root / "package.json").exists():
		return "node"
	for marker in ("setup.py", "pyproject.toml", "requirements.txt"):
		if (root / marker).exists():
			return "python"
	return "unknown"


def has_go_test_files(work_dir: str | Path) -> bool:
	for root, dirs, files in os.walk(work_dir):
		dirs[:] = [d for d in dirs if d != "vendor" and not d.startswith(".")]
		if any(f.endswith("_test.go") for f in files):
			return True
	return False


def has_node_script(work_dir: str | Path, script: str) -> bool:
	"""True when package.json declares ``script`` under "scripts"."""
	try:
		data = json.loads((Path(work_dir) / "package.json").read_text())
	except (OSError, ValueError):
		return False
	if not isinstance(data, dict):
		return False
	scripts = data.get("scripts")
	return isinstance(scripts, dict) and script in scripts


def has_python_tests(work_dir: str | Path) -> bool:
	root = Path(work_dir)
	if (root / "tests").exists():
		return True
	try:
		return any(
			p.is_file() and p.name.startswith("test_") and p.suffix == ".py"
			for p in root.iterdir()
		)
	except OSError:
		return False


def gates_passed(outputs: Iterable[GateOutput]) -> bool:
	"""True when every gate passed or was skipped."""
	return all(o.result in (GateResult.PASS, GateResult.SKIP) for o in outputs)


class QualityGates:
	"""Runs the enabled gates in a working directory. All gates start disabled."""

	def __init__(self, work_dir: str | Path, timeout: float = DEFAULT_GATE_TIMEOUT):
		self.work_dir = Path(work_dir)
		self.timeout = timeout
		self.enabled: set[str] = set()
		self.test_targets: list[str] = []

	@classmethod
	def for_tier(cls, work_dir: str | Path, tier: Optional[Tier], timeout: float = DEFAULT_GATE_TIMEOUT) -> "QualityGates":
		gates = cls(work_dir, timeout)
		gates.enabled = set(TIER_GATES.get(tier or Tier.BUILDER, TIER_GATES[Tier.BUILDER]))
		return gates

	def enable(self, gate: str, enabled: bool = True) -> None:
		if gate not in GATE_NAMES:
			raise ValueError(f"unknown gate: {gate}")
		if enabled:
			self.enabled.add(gate)
		else:
			self.enabled.discard(gate)

	def enable_test(self, enabled: bool = True) -> None:
		self.enable("test", enabled)

	def enable_build(self, enabled: bool = True) -> None:
		self.enable("build", enabled)

	def enable_lint(self, enabled: bool = True) -> None:
		self.enable("lint", enabled)

	def enable_typecheck(self, enabled: bool = True) -> None:
		self.enable("typecheck", enabled)

	def set_timeout(self, seconds: float) -> None:
		self.timeout = seconds

	def set_test_targets(self, targets: Iterable[str]) -> None:
		"""Restrict the Python test gate to these test files."""
		self.test_targets = list(targets)

	async def run_gates(self) -> list[GateOutput]:
		"""Run enabled gates in a fixed order: test, build, lint, typecheck."""
		runners = {
			"test": self._run_tests,
			"build": self._run_build,
			"lint": self._run_lint,
			"typecheck": self._run_typecheck,
		}
		results = []
		for name in GATE_NAMES:
			if name not in self.enabled:
				continue
			start = time.monotonic()
			output = await runners[name]()
			output.duration = time.monotonic() - start
			logger.info(f"Gate {name}: {output.result.value} ({output.duration:.1f}s)")
			results.append(output)
		return results

	def _skip(self, gate: str, reason: str) -> GateOutput:
		return GateOutput(gate=gate, result=GateResult.SKIP, output=reason)

	async def _run_tests(self) -> GateOutput:
		project = detect_project_type(self.work_dir)
		if project == "go":
			if not has_go_test_files(self.work_dir):
				return self._skip("test", "No Go test files found")
			return await self._run("test", ["go", "test", "./..."])
		if project == "node":
			if not has_node_script(self.work_dir, "test"):
				return self._skip("test", "No test script in package.json")
			return await self._run("test", ["npm", "test"])
		if project == "python":
			if not has_python_tests(self.work_dir):
				return self._skip("test", "No Python test files found")
			return await self._run("test", ["python", "-m", "pytest", *self.test_targets])
		return self._skip("test", "Unknown project type, cannot run tests")

	async def _run_build(self) -> GateOutput:
		project = detect_project_type(self.work_dir)
		if project == "go":
			return await self._run("build", ["go", "build", "./..."])
		if project == "node":
			if not has_node_script(self.work_dir, "build"):
				return self._skip("build", "No build script in package.json")
			return await self._run("build", ["npm", "run", "build"])
		if project == "python":
			return self._skip("build", "Python projects typically don't require building")
		return self._skip("build", "Unknown project type, cannot run build")

	async def _run_lint(self) -> GateOutput:
		project = detect_project_type(self.work_dir)
		if project == "go":
			if command_exists("golangci-lint"):
				return await self._run("lint", ["golangci-lint", "run", "./..."])
			return await self._run("lint", ["go", "vet", "./..."])
		if project == "node":
			if not has_node_script(self.work_dir, "lint"):
				return self._skip("lint", "No lint script in package.json")
			return await self._run("lint", ["npm", "run", "lint"])
		if project == "python":
			if command_exists("ruff"):
				return await self._run("lint", ["ruff", "check", "--output-format=concise", "."])
			if command_exists("flake8"):
				return await self._run("lint", ["flake8", "."])
			return self._skip("lint", "No Python linter (ruff, flake8) found")
		return self._skip("lint", "Unknown project type, cannot run lint")

	async def _run_typecheck(self) -> GateOutput:
		project = detect_project_type(self.work_dir)
		if project == "go":
			return self._skip("typecheck", "Go type checking is handled by build gate")
		if project == "node":
			if not (self.work_dir / "tsconfig.json").exists():
				return self._skip("typecheck", "Not a TypeScript project")
			return await self._run("typecheck", ["npx", "tsc", "--noEmit"])
		if project == "python":
			if command_exists("mypy"):
				return await self._run("typecheck", ["mypy", "."])
			return self._skip("typecheck", "mypy not found")
		return self._skip("typecheck", "Unknown project type, cannot run typecheck")

	async def _run(self, gate: str, cmd: list[str]) -> GateOutput:
		result = await run_command(cmd, self.work_dir, self.timeout)
		if result.timed_out:
			return GateOutput(gate=gate, result=GateResult.ERROR, output="Command timed out: " + result.combined)
		if result.error:
			return GateOutput(
				gate=gate,
				result=GateResult.ERROR,
				output=f"Error running command: {result.error}\n{result.combined}",
			)
		if result.returncode != 0:
			return GateOutput(gate=gate, result=GateResult.FAIL, output=result.combined)
		return GateOutput(gate=gate, result=GateResult.PASS, output=result.combined)
