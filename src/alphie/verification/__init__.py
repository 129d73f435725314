"""Verification module - Contracts, their generation, storage and execution."""

from .contract import (
	CommandResult,
	ContractRunner,
	FileConstraints,
	FileResult,
	VerificationCommand,
	VerificationContract,
	VerificationResult,
)
from .generator import ContractGenerator, RefinementRejectedError
from .prompt_runner import ClaudePromptRunner, PromptRunner, PromptRunnerError
from .storage import ContractStorage, StoredContract

__all__ = [
	"VerificationContract",
	"VerificationCommand",
	"FileConstraints",
	"VerificationResult",
	"CommandResult",
	"FileResult",
	"ContractRunner",
	"ContractGenerator",
	"RefinementRejectedError",
	"ContractStorage",
	"StoredContract",
	"PromptRunner",
	"ClaudePromptRunner",
	"PromptRunnerError",
]
