"""
Learnings: WHEN/DO/RESULT records retrieved on failure, and the failure
analyzer that suggests new ones from agent output.

Suggestions are never stored automatically; the caller confirms them first.
"""

import json
import logging
import re
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Learning(BaseModel):
	"""A confirmed WHEN/DO/RESULT learning."""
	id: str = Field(default_factory=lambda: str(uuid.uuid4()))
	condition: str = Field(description="WHEN - the context that triggers this learning")
	action: str = Field(description="DO - what to do about it")
	outcome: str = Field(description="RESULT - the expected outcome")
	trigger_count: int = Field(default=0)
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())


class SuggestedLearning(BaseModel):
	"""A learning extracted from failure output, pending confirmation."""
	condition: str
	action: str
	outcome: str
	confidence: float = Field(ge=0.0, le=1.0)
	source: str = Field(description="Name of the pattern that produced it")
	raw_context: str = Field(default="")


class LearningStore(Protocol):
	"""What the retry handler and executor need from a learnings backend."""

	def on_failure(self, error: str) -> list[Learning]: ...


# ---------------------------------------------------------------------------
# JSON-lines store
# ---------------------------------------------------------------------------

_WORD_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]{2,}")
_STOPWORDS = frozenset({
	"the", "and", "for", "with", "was", "not", "are", "but", "from", "this",
	"that", "has", "have", "had", "when", "error", "failed", "fails",
})


def _keywords(text: str) -> set[str]:
	return {w.lower() for w in _WORD_RE.findall(text)} - _STOPWORDS


class JsonlLearningStore:
	"""Append-only learnings file, one JSON object per line."""

	def __init__(self, path: str | Path):
		self.path = Path(path)
		self._lock = threading.Lock()

	def add(self, condition: str, action: str, outcome: str) -> Learning:
		learning = Learning(condition=condition, action=action, outcome=outcome)
		with self._lock:
			self.path.parent.mkdir(parents=True, exist_ok=True)
			with open(self.path, "a") as f:
				f.write(learning.model_dump_json() + "\n")
		logger.info(f"Stored learning {learning.id}: WHEN {condition}")
		return learning

	def all(self) -> list[Learning]:
		with self._lock:
			if not self.path.exists():
				return []
			lines = self.path.read_text().splitlines()

		learnings = []
		for lineno, line in enumerate(lines, start=1):
			if not line.strip():
				continue
			try:
				learnings.append(Learning.model_validate_json(line))
			except ValueError as e:
				logger.warning(f"Skipping malformed learning at {self.path}:{lineno}: {e}")
		return learnings

	def search(self, text: str, limit: int = 5) -> list[Learning]:
		"""Learnings whose condition shares keywords with text, best first."""
		wanted = _keywords(text)
		if not wanted:
			return []
		scored = []
		for learning in self.all():
			overlap = len(wanted & _keywords(learning.condition))
			if overlap:
				scored.append((overlap, learning.trigger_count, learning))
		scored.sort(key=lambda s: (s[0], s[1]), reverse=True)
		return [learning for _, _, learning in scored[:limit]]

	def on_failure(self, error: str) -> list[Learning]:
		return self.search(error)


# ---------------------------------------------------------------------------
# Failure analysis
# ---------------------------------------------------------------------------

@dataclass
class FailurePattern:
	name: str
	pattern: re.Pattern
	confidence: float
	# match -> (condition, action, outcome), or None to skip
	extract: Callable[[re.Match], Optional[tuple[str, str, str]]]


def _default_patterns() -> list[FailurePattern]:
	return [
		FailurePattern(
			"go_undefined", re.compile(r"undefined:\s+(\w+)"), 0.7,
			lambda m: (
				f"Go compilation fails with 'undefined: {m.group(1)}'",
				f"Check imports and ensure {m.group(1)} is defined or imported correctly",
				"Compilation succeeds",
			),
		),
		FailurePattern(
			"go_type_mismatch", re.compile(r"cannot use (.+?) \(type (.+?)\) as type (.+?) in"), 0.6,
			lambda m: (
				f"Go type error: cannot use type {m.group(2)} as {m.group(3)}",
				"Convert the value or use the correct type",
				"Type check passes",
			),
		),
		FailurePattern(
			"go_import_cycle", re.compile(r"import cycle not allowed"), 0.8,
			lambda m: (
				"Go import cycle detected",
				"Restructure packages to break the import cycle, possibly by introducing an interface package",
				"Imports resolve without cycles",
			),
		),
		FailurePattern(
			"go_test_fail", re.compile(r"--- FAIL: (\w+)"), 0.5,
			lambda m: (
				f"Test {m.group(1)} fails",
				"Review test expectations and implementation",
				"Test passes",
			),
		),
		FailurePattern(
			"python_import_error", re.compile(r"No module named '([^']+)'"), 0.7,
			lambda m: (
				f"Python import fails with 'No module named {m.group(1)}'",
				f"Check the package layout and dependencies so that {m.group(1)} is importable",
				"Import succeeds",
			),
		),
		FailurePattern(
			"pytest_failure", re.compile(r"FAILED\s+(\S+)"), 0.5,
			lambda m: (
				f"Test {m.group(1)[:60]} fails",
				"Fix failing tests before committing",
				"Test passes",
			),
		),
		FailurePattern(
			"ruff_violation", re.compile(r"(?m)^\S+:\d+:\d+: ([A-Z]+\d{3,4}) "), 0.6,
			lambda m: (
				f"Linting fails with ruff {m.group(1)} violations",
				f"Fix {m.group(1)} violations before committing",
				"ruff check passes",
			),
		),
		FailurePattern(
			"permission_denied", re.compile(r"(?i)permission denied"), 0.7,
			lambda m: (
				"Operation fails with permission denied",
				"Check file permissions or run with appropriate privileges",
				"Operation succeeds",
			),
		),
		FailurePattern(
			"file_not_found", re.compile(r"(?i)no such file or directory:\s*(.+)"), 0.7,
			lambda m: (
				f"File or directory not found: {m.group(1).strip()}",
				"Verify the path exists or create the required file/directory",
				"File access succeeds",
			),
		),
		FailurePattern(
			"git_conflict", re.compile(r"CONFLICT \(content\):\s*Merge conflict in (.+)"), 0.8,
			lambda m: (
				f"Git merge conflict in {m.group(1).strip()}",
				"Resolve conflicts manually by editing the file and choosing correct changes",
				"Merge completes successfully",
			),
		),
		FailurePattern(
			"timeout", re.compile(r"(context deadline exceeded|timeout|timed out)"), 0.6,
			lambda m: (
				"Operation times out",
				"Increase timeout duration or optimize the slow operation",
				"Operation completes within time limit",
			),
		),
	]


class FailureAnalyzer:
	"""Extracts candidate learnings from failure output using a pattern table."""

	def __init__(self, patterns: Optional[list[FailurePattern]] = None):
		self.patterns = patterns if patterns is not None else _default_patterns()

	def analyze_failure(self, output: str, error: str) -> list[SuggestedLearning]:
		combined = f"{output}\n{error}"
		suggestions = []
		for p in self.patterns:
			match = p.pattern.search(combined)
			if match is None:
				continue
			cao = p.extract(match)
			if cao is None:
				continue
			condition, action, outcome = cao
			suggestions.append(SuggestedLearning(
				condition=condition,
				action=action,
				outcome=outcome,
				confidence=p.confidence,
				source=p.name,
				raw_context=combined,
			))
		return suggestions


def format_for_confirmation(suggestion: Optional[SuggestedLearning]) -> str:
	if suggestion is None:
		return ""
	return (
		f"Suggested Learning ({suggestion.source}):\n"
		f"  WHEN: {suggestion.condition}\n"
		f"  DO: {suggestion.action}\n"
		f"  RESULT: {suggestion.outcome}\n"
	)
