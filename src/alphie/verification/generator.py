"""
Verification contract generation.

Contracts are drafted before implementation from the task's intent and
expected files, then refined afterwards with the files actually modified.
Refinement may only add or tighten checks; a refinement that drops or
weakens a draft check is rejected.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .contract import FileConstraints, VerificationCommand, VerificationContract
from .patterns import apply_patterns, detect_patterns
from .project_context import detect_project_context, enhance_contract, get_project_context
from .prompt_runner import PromptRunner, PromptRunnerError
from .storage import RefinementError, validate_refinement

logger = logging.getLogger(__name__)

# Braces are doubled: the shape is spliced into str.format templates
_CONTRACT_SHAPE = """{{
  "commands": [
    {{
      "cmd": "command to run",
      "expect": "exit 0",
      "description": "What this verifies",
      "required": true
    }}
  ],
  "file_constraints": {{
    "must_exist": ["path/to/expected_file.py"],
    "must_not_exist": [],
    "must_not_change": []
  }}
}}"""

DRAFT_CONTRACT_PROMPT = """Generate a verification contract for a task BEFORE implementation.

## Task Intent
{intent}

## Expected File Changes
{files}

## Project Context
{context}

Based on the task intent, generate verification commands that will prove the task was completed correctly.
This contract is generated BEFORE implementation: focus on what SHOULD happen, not what DID happen.

Return ONLY a JSON object with this exact structure (no other text):
""" + _CONTRACT_SHAPE + """

Guidelines for pre-implementation contracts:
- Verify INTENT, not implementation details
- Include tests that verify the BEHAVIOR described in the intent
- Use general test commands ("pytest", "go test ./...") rather than specific test names, which do not exist yet
- For "add X", include must_exist for the expected file
- For "modify X", include targeted tests for that area
- Mark critical verifications as required=true
- Prefer fewer, stronger checks over many weak ones
"""

REFINE_CONTRACT_PROMPT = """Refine a verification contract after implementation.

## Task Intent
{intent}

## Original Draft Contract (MUST NOT WEAKEN)
{draft}

## Files Actually Modified
{files}

## Project Context
{context}

The task has been implemented. Refine the verification contract with more specific checks.

CRITICAL RULES:
1. You CANNOT remove any commands from the draft
2. You CANNOT remove any file constraints from the draft
3. You CAN add new commands and constraints
4. You CAN make expectations more specific (e.g. "exit 0" -> "output contains success")
5. You CANNOT downgrade required=true to required=false

Return ONLY a JSON object with the refined contract (same structure as the draft):
""" + _CONTRACT_SHAPE + """

The refined contract must be a SUPERSET of the draft: only additions are allowed.
"""

GENERATE_CONTRACT_PROMPT = """Generate concrete verification commands for a completed task.

## Task Intent
{intent}

## Files Created/Modified
{files}

## Project Context
{context}

Based on the task intent and files modified, generate specific commands that verify the task was completed correctly.

Return ONLY a JSON object with this exact structure (no other text):
""" + _CONTRACT_SHAPE + """

Guidelines:
- Generate 1-5 verification commands based on task complexity
- Use "exit 0" for commands that should succeed
- Use "output contains X" for commands whose output must be checked
- Prefer existing test commands (pytest, npm test, go test) when tests were modified
- For file operations, check that expected files exist
- Mark required=false for nice-to-have checks that should not fail the task
- Only include must_not_change for files explicitly mentioned as off-limits
"""


class RefinementRejectedError(Exception):
	"""The refined contract would have weakened the draft."""

	def __init__(self, reason: str):
		super().__init__(f"refinement violated monotonic strengthening: {reason}")
		self.reason = reason


def _files_block(files: list[str], empty: str) -> str:
	return "\n".join(f for f in files if f) or empty


def parse_response(response: str, intent: str) -> VerificationContract:
	"""
	Parse the JSON object embedded in a model response.

	Text around the object is ignored. A response without a parsable object
	yields an empty contract carrying only the intent.
	"""
	start = response.find("{")
	end = response.rfind("}")
	if start == -1 or end <= start:
		return VerificationContract(intent=intent)

	try:
		data = json.loads(response[start:end + 1])
	except ValueError:
		logger.warning("Contract response is not valid JSON, using an empty contract")
		return VerificationContract(intent=intent)
	if not isinstance(data, dict):
		return VerificationContract(intent=intent)

	try:
		commands = [VerificationCommand.model_validate(c) for c in data.get("commands") or []]
		constraints = FileConstraints.model_validate(data.get("file_constraints") or {})
	except ValidationError as e:
		logger.warning(f"Contract response has an unexpected shape, using an empty contract: {e}")
		return VerificationContract(intent=intent)

	return VerificationContract(intent=intent, commands=commands, file_constraints=constraints)


class ContractGenerator:
	"""Builds contracts for tasks in one working directory."""

	def __init__(self, work_dir: str | Path, prompt_runner: Optional[PromptRunner] = None):
		self.work_dir = Path(work_dir)
		self.prompt_runner = prompt_runner

	def generate_minimal(self, intent: str, files: list[str]) -> VerificationContract:
		"""A contract requiring only that the given files exist."""
		return VerificationContract(
			intent=intent,
			file_constraints=FileConstraints(must_exist=[f for f in files if f]),
		)

	def _enhance(self, contract: VerificationContract, files: list[str]) -> None:
		apply_patterns(contract, detect_patterns(contract.intent, files))
		enhance_contract(contract, detect_project_context(self.work_dir))

	async def _run(self, prompt: str) -> str:
		return await self.prompt_runner.run_prompt(prompt, str(self.work_dir))

	async def draft_contract(
		self,
		intent: str,
		expected_files: list[str],
		project_context: str = "",
	) -> VerificationContract:
		"""
		Draft a contract before implementation.

		Never raises for generator trouble: without a prompt runner, or when
		the prompt fails, the minimal contract over the expected files is
		returned instead.
		"""
		if self.prompt_runner is None:
			return self.generate_minimal(intent, expected_files)

		prompt = DRAFT_CONTRACT_PROMPT.format(
			intent=intent,
			files=_files_block(expected_files, "(no specific files expected)"),
			context=project_context or get_project_context(self.work_dir),
		)
		try:
			response = await self._run(prompt)
		except PromptRunnerError as e:
			logger.warning(f"Contract draft prompt failed, using minimal contract: {e}")
			return self.generate_minimal(intent, expected_files)

		contract = parse_response(response, intent)
		self._enhance(contract, expected_files)
		return contract

	async def refine_contract(
		self,
		draft: VerificationContract,
		modified_files: list[str],
		project_context: str = "",
	) -> VerificationContract:
		"""
		Refine a draft after implementation.

		Raises RefinementRejectedError when the refinement drops or weakens
		any draft check. A failed prompt returns the draft unchanged.
		"""
		if self.prompt_runner is None:
			refined = draft.model_copy(deep=True)
			for f in modified_files:
				if f and f not in refined.file_constraints.must_exist:
					refined.file_constraints.must_exist.append(f)
			return refined

		prompt = REFINE_CONTRACT_PROMPT.format(
			intent=draft.intent,
			draft=draft.to_json(),
			files=_files_block(modified_files, "(no files modified)"),
			context=project_context or get_project_context(self.work_dir),
		)
		try:
			response = await self._run(prompt)
		except PromptRunnerError as e:
			logger.warning(f"Contract refinement prompt failed, keeping draft: {e}")
			return draft.model_copy(deep=True)

		refined = parse_response(response, draft.intent)
		self._enhance(refined, modified_files)

		try:
			validate_refinement(draft, refined)
		except RefinementError as e:
			logger.warning(f"Rejected contract refinement: {e}")
			raise RefinementRejectedError(str(e)) from e
		return refined

	async def generate(
		self,
		intent: str,
		modified_files: list[str],
		project_context: str = "",
	) -> VerificationContract:
		"""Generate a contract directly after implementation, for tasks with no draft."""
		if self.prompt_runner is None:
			return self.generate_minimal(intent, modified_files)

		prompt = GENERATE_CONTRACT_PROMPT.format(
			intent=intent,
			files=_files_block(modified_files, "(no files tracked)"),
			context=project_context or "(unknown project type)",
		)
		try:
			response = await self._run(prompt)
		except PromptRunnerError as e:
			raise PromptRunnerError(f"run verification prompt: {e}") from e
		return parse_response(response, intent)
