"""
Verification contracts and the runner that checks them.

A contract is a list of shell commands with an expectation each, plus file
constraints. Commands run through the shell in the working copy; output is
stdout and stderr combined.
"""

import asyncio
import glob
import logging
import os
import re
import time
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 60.0

_EXIT_EXPECT_RE = re.compile(r"^exit\s+(-?\d+)")
_OUTPUT_CONTAINS = "output contains "


class VerificationCommand(BaseModel):
	"""A shell command and what its run must look like."""
	model_config = ConfigDict(populate_by_name=True)

	command: str = Field(alias="cmd")
	expect: str = Field(default="exit 0", description='"exit N", "output contains X", or anything else for exit 0')
	description: str = Field(default="")
	required: bool = Field(default=False)
	timeout: float = Field(default=0.0, description="Seconds; 0 uses the runner default")


class FileConstraints(BaseModel):
	must_exist: list[str] = Field(default_factory=list)
	must_not_exist: list[str] = Field(default_factory=list, description="Paths or glob patterns")
	# Recorded and carried through refinement but not checked
	must_not_change: list[str] = Field(default_factory=list)

	def is_empty(self) -> bool:
		return not (self.must_exist or self.must_not_exist or self.must_not_change)


class VerificationContract(BaseModel):
	"""Mechanically checkable post-conditions derived from a task's intent."""
	intent: str = Field(default="")
	commands: list[VerificationCommand] = Field(default_factory=list)
	file_constraints: FileConstraints = Field(default_factory=FileConstraints)

	def to_json(self) -> str:
		return self.model_dump_json(indent=2, by_alias=True)

	@classmethod
	def from_json(cls, data: str | bytes) -> "VerificationContract":
		return cls.model_validate_json(data)

	def has_command(self, cmd: str) -> bool:
		"""True when cmd is one of the commands or contained in one."""
		return any(c.command == cmd or cmd in c.command for c in self.commands)

	def copy_contract(self) -> "VerificationContract":
		return self.model_copy(deep=True)


class CommandResult(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	command: str = Field(alias="cmd")
	passed: bool = False
	output: str = ""
	exit_code: int = 0
	error: str = ""
	duration: float = 0.0


class FileResult(BaseModel):
	path: str
	constraint: str
	passed: bool = False
	message: str = ""


class VerificationResult(BaseModel):
	all_passed: bool = True
	command_results: list[CommandResult] = Field(default_factory=list)
	file_results: list[FileResult] = Field(default_factory=list)
	summary: str = ""

	def failed_commands(self) -> list[CommandResult]:
		return [r for r in self.command_results if not r.passed]

	def failed_files(self) -> list[FileResult]:
		return [r for r in self.file_results if not r.passed]


def check_expectation(exit_code: int, output: str, expect: str) -> bool:
	expect = expect.strip()
	match = _EXIT_EXPECT_RE.match(expect)
	if match:
		return exit_code == int(match.group(1))
	if expect.startswith(_OUTPUT_CONTAINS):
		return expect[len(_OUTPUT_CONTAINS):] in output
	return exit_code == 0


def summarize(result: VerificationResult) -> str:
	parts = []
	if result.command_results:
		passed = sum(1 for r in result.command_results if r.passed)
		parts.append(f"Commands: {passed} passed, {len(result.command_results) - passed} failed")
	if result.file_results:
		passed = sum(1 for r in result.file_results if r.passed)
		parts.append(f"Files: {passed} passed, {len(result.file_results) - passed} failed")
	if not parts:
		return "No verifications configured"
	return "; ".join(parts)


class ContractRunner:
	"""Runs a contract's commands and file checks inside a working directory."""

	def __init__(self, work_dir: str | Path, default_timeout: float = DEFAULT_COMMAND_TIMEOUT):
		self.work_dir = Path(work_dir)
		self.default_timeout = default_timeout

	async def run(self, contract: VerificationContract) -> VerificationResult:
		"""
		Run every command, then the file constraints.

		A failing optional command is reported but does not clear all_passed;
		any failing file constraint does.
		"""
		result = VerificationResult()

		for vc in contract.commands:
			cmd_result = await self.run_command(vc)
			result.command_results.append(cmd_result)
			if not cmd_result.passed and vc.required:
				result.all_passed = False

		result.file_results = self.check_file_constraints(contract.file_constraints)
		if any(not fr.passed for fr in result.file_results):
			result.all_passed = False

		result.summary = summarize(result)
		logger.info(f"Verification in {self.work_dir}: {result.summary} (all passed: {result.all_passed})")
		return result

	async def run_command(self, vc: VerificationCommand) -> CommandResult:
		result = CommandResult(command=vc.command)
		timeout = vc.timeout or self.default_timeout
		start = time.monotonic()

		try:
			proc = await asyncio.create_subprocess_shell(
				vc.command,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.STDOUT,
				cwd=str(self.work_dir),
			)
		except OSError as e:
			result.exit_code = -1
			result.error = str(e)
			result.duration = time.monotonic() - start
			return result

		try:
			stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			result.exit_code = -1
			result.error = f"command timed out after {timeout:g}s"
			result.duration = time.monotonic() - start
			return result

		result.duration = time.monotonic() - start
		result.output = stdout.decode("utf-8", errors="replace")
		result.exit_code = proc.returncode if proc.returncode is not None else -1
		result.passed = check_expectation(result.exit_code, result.output, vc.expect)
		return result

	def check_file_constraints(self, fc: FileConstraints) -> list[FileResult]:
		results = []
		for path in fc.must_exist:
			exists = (self.work_dir / path).exists()
			results.append(FileResult(
				path=path,
				constraint="must_exist",
				passed=exists,
				message="file exists" if exists else "file does not exist",
			))

		for pattern in fc.must_not_exist:
			results.append(self._check_must_not_exist(pattern))
		return results

	def _check_must_not_exist(self, pattern: str) -> FileResult:
		result = FileResult(path=pattern, constraint="must_not_exist")
		if any(c in pattern for c in "*?"):
			matches = sorted(glob.glob(str(self.work_dir / pattern)))
			if matches:
				found = ", ".join(os.path.relpath(m, self.work_dir) for m in matches)
				result.message = f"Files created outside boundaries (found: {found})"
			else:
				result.passed = True
				result.message = "no files match pattern (as expected)"
			return result

		if (self.work_dir / pattern).exists():
			result.message = "file exists but should not"
		else:
			result.passed = True
			result.message = "file does not exist (as expected)"
		return result


def parse_contract_json(data: str | bytes) -> VerificationContract:
	"""Parse a contract, raising ValueError on malformed JSON."""
	return VerificationContract.from_json(data)

