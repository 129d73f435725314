"""
Draft and final contract storage.

Contracts live under <repo>/.alphie/contracts/ as <task>-draft.json and
<task>.json, each carrying the history of how it got there.
"""

import logging
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .contract import VerificationContract

logger = logging.getLogger(__name__)

CONTRACTS_DIR = Path(".alphie") / "contracts"


class ContractPhase(str, Enum):
	DRAFT = "draft"
	FINAL = "final"


class ContractDelta(BaseModel):
	"""One entry in a contract's audit trail."""
	timestamp: datetime = Field(default_factory=datetime.now)
	action: str
	before: str = ""
	after: str = ""


class StoredContract(BaseModel):
	contract: VerificationContract
	task_id: str
	phase: ContractPhase
	created_at: datetime = Field(default_factory=datetime.now)
	updated_at: datetime = Field(default_factory=datetime.now)
	history: list[ContractDelta] = Field(default_factory=list)


class RefinementError(ValueError):
	"""A refined contract dropped or weakened a check from its draft."""
	pass


def count_file_constraints(contract: VerificationContract) -> int:
	fc = contract.file_constraints
	return len(fc.must_exist) + len(fc.must_not_exist) + len(fc.must_not_change)


def describe_contract(contract: VerificationContract) -> str:
	return f"{len(contract.commands)} commands, {count_file_constraints(contract)} file constraints"


def validate_refinement(draft: VerificationContract, refined: VerificationContract) -> None:
	"""
	Raise RefinementError unless refined keeps every check in draft.

	Every draft command must still be present, every file constraint kept,
	and no required command may become optional.
	"""
	refined_cmds = {c.command: c for c in refined.commands}
	for cmd in draft.commands:
		if cmd.command not in refined_cmds:
			kind = "required command" if cmd.required else "command"
			raise RefinementError(f"refinement removed {kind}: {cmd.command}")

	for name in ("must_exist", "must_not_exist", "must_not_change"):
		kept = set(getattr(refined.file_constraints, name))
		for path in getattr(draft.file_constraints, name):
			if path not in kept:
				raise RefinementError(f"refinement removed {name} constraint: {path}")

	for cmd in draft.commands:
		if cmd.required and not refined_cmds[cmd.command].required:
			raise RefinementError(f"refinement downgraded required command to non-required: {cmd.command}")


class ContractStorage:
	"""Reads and writes contracts for one repository."""

	def __init__(self, repo_path: str | Path):
		self.base_dir = Path(repo_path) / CONTRACTS_DIR

	def draft_path(self, task_id: str) -> Path:
		return self.base_dir / f"{task_id}-draft.json"

	def final_path(self, task_id: str) -> Path:
		return self.base_dir / f"{task_id}.json"

	def save_draft(self, task_id: str, contract: VerificationContract) -> StoredContract:
		stored = StoredContract(
			contract=contract,
			task_id=task_id,
			phase=ContractPhase.DRAFT,
			history=[ContractDelta(action="draft_created", after=describe_contract(contract))],
		)
		self._write(self.draft_path(task_id), stored)
		return stored

	def save_final(
		self,
		task_id: str,
		contract: VerificationContract,
		draft: Optional[StoredContract] = None,
		action: str = "refined_to_final",
	) -> StoredContract:
		"""Write the final contract, extending the draft's history when there is one."""
		history = list(draft.history) if draft else []
		history.append(ContractDelta(
			action=action,
			before=describe_contract(draft.contract) if draft else "",
			after=describe_contract(contract),
		))
		stored = StoredContract(
			contract=contract,
			task_id=task_id,
			phase=ContractPhase.FINAL,
			created_at=draft.created_at if draft else datetime.now(),
			history=history,
		)
		self._write(self.final_path(task_id), stored)
		return stored

	def load_draft(self, task_id: str) -> StoredContract:
		return self._read(self.draft_path(task_id))

	def load_final(self, task_id: str) -> StoredContract:
		return self._read(self.final_path(task_id))

	def draft_exists(self, task_id: str) -> bool:
		return self.draft_path(task_id).exists()

	def final_exists(self, task_id: str) -> bool:
		return self.final_path(task_id).exists()

	def validate_refinement(self, draft: VerificationContract, refined: VerificationContract) -> None:
		validate_refinement(draft, refined)

	def _write(self, path: Path, stored: StoredContract) -> None:
		self.base_dir.mkdir(parents=True, exist_ok=True)
		path.write_text(stored.model_dump_json(indent=2, by_alias=True))
		logger.debug(f"Wrote {stored.phase.value} contract for {stored.task_id} to {path}")

	def _read(self, path: Path) -> StoredContract:
		return StoredContract.model_validate_json(path.read_text())
