"""
Self-critique prompt and rubric parsing.

The agent scores its own work on three criteria (1-3 each) and either lists
improvements or says DONE. parse_critique_response() is the tolerant parser
the loop uses; parse_score() is the strict variant for callers that need
all three scores.
"""

import re
from dataclasses import dataclass, field

from ..models import RubricScore

DEFAULT_THRESHOLD = 7

RUBRIC_QUESTIONS = (
	"Does it work for the happy path",
	"Does it handle edge cases",
	"Are there obvious bugs",
	"Is the code clear without comments",
	"Are names descriptive",
	"Is complexity appropriate",
	"Are errors handled",
	"Are nulls/empty states handled",
	"Are boundaries checked",
)

CRITIQUE_TEMPLATE = """Review your implementation. Score each criterion 1-3:

CORRECTNESS (1-3):
- Does it work for the happy path?
- Does it handle edge cases?
- Are there obvious bugs?

READABILITY (1-3):
- Is the code clear without comments?
- Are names descriptive?
- Is complexity appropriate?

EDGE CASES (1-3):
- Are errors handled?
- Are nulls/empty states handled?
- Are boundaries checked?

Total: X/9

If below threshold (%d/9), list specific improvements and implement them.
If at/above threshold, output DONE."""

_DONE_RE = re.compile(r"(?i)\bDONE\b")
_CORRECTNESS_RE = re.compile(r"(?i)CORRECTNESS[^:]*:\s*(\d)")
_READABILITY_RE = re.compile(r"(?i)READABILITY[^:]*:\s*(\d)")
_EDGE_CASES_RE = re.compile(r"(?i)EDGE[\s_]*CASES[^:]*:\s*(\d)")
_TOTAL_RE = re.compile(r"(?i)Total:\s*(\d+)/9")
_IMPROVEMENT_RE = re.compile(r"(?m)^\s*[-*]\s*(.+)$")

# Strict forms: "CORRECTNESS: 2", "Correctness 2/3"
_STRICT_CORRECTNESS_RE = re.compile(r"(?i)CORRECTNESS[:\s]+(\d+)(?:/3)?")
_STRICT_READABILITY_RE = re.compile(r"(?i)READABILITY[:\s]+(\d+)(?:/3)?")
_STRICT_EDGE_CASES_RE = re.compile(r"(?i)EDGE[\s_]?CASES[:\s]+(\d+)(?:/3)?")


class RubricError(ValueError):
	"""Base class for rubric parsing errors."""
	pass


class MalformedResponseError(RubricError):
	def __init__(self, detail: str = ""):
		super().__init__("malformed critique response" + (f": {detail}" if detail else ""))


class MissingScoreError(RubricError):
	def __init__(self, criterion: str = ""):
		super().__init__("missing required score" + (f": {criterion}" if criterion else ""))
		self.criterion = criterion


class ScoreOutOfRangeError(RubricError):
	def __init__(self, value: int):
		super().__init__(f"score out of range (must be 1-3): {value}")
		self.value = value


def clamp_threshold(threshold: int) -> int:
	return min(max(threshold, 1), 9)


class CritiquePrompt:
	"""The critique template bound to a score threshold."""

	def __init__(self, threshold: int = DEFAULT_THRESHOLD):
		self.threshold = clamp_threshold(threshold)

	def template(self) -> str:
		return CRITIQUE_TEMPLATE % self.threshold

	def inject(self, response: str) -> str:
		"""Append the critique request to the agent's last output."""
		return f"{response}\n\n---\n\n{self.template()}"


@dataclass
class CritiqueResult:
	score: RubricScore = field(default_factory=RubricScore)
	is_done: bool = False
	improvements: list[str] = field(default_factory=list)
	raw_output: str = ""

	def total(self) -> int:
		return self.score.total()

	def passes_threshold(self, threshold: int) -> bool:
		return self.score.passes(threshold)


def is_rubric_question(text: str) -> bool:
	lower = text.lower()
	return any(q.lower() in lower for q in RUBRIC_QUESTIONS)


def _lenient_score(pattern: re.Pattern, text: str) -> int:
	match = pattern.search(text)
	if match is None:
		return 0
	value = int(match.group(1))
	return value if 1 <= value <= 3 else 0


def parse_critique_response(response: str) -> CritiqueResult:
	"""
	Parse a critique response.

	Missing or out-of-range scores read as 0. A "Total: X/9" line is only
	used to cross-check the individual scores; when all three are present
	and disagree with it the response is rejected as malformed.
	"""
	score = RubricScore(
		correctness=_lenient_score(_CORRECTNESS_RE, response),
		readability=_lenient_score(_READABILITY_RE, response),
		edge_cases=_lenient_score(_EDGE_CASES_RE, response),
	)

	total_match = _TOTAL_RE.search(response)
	if total_match and score.valid() and score.total() != int(total_match.group(1)):
		raise MalformedResponseError(
			f"scores sum to {score.total()} but response states Total: {total_match.group(1)}/9"
		)

	improvements = []
	for match in _IMPROVEMENT_RE.finditer(response):
		item = match.group(1).strip()
		if not is_rubric_question(item):
			improvements.append(item)

	return CritiqueResult(
		score=score,
		is_done=bool(_DONE_RE.search(response)),
		improvements=improvements,
		raw_output=response,
	)


def render_score(score: RubricScore) -> str:
	"""Render a score in the format the parsers read."""
	return (
		f"CORRECTNESS: {score.correctness}\n"
		f"READABILITY: {score.readability}\n"
		f"EDGE CASES: {score.edge_cases}\n"
		f"Total: {score.total()}/9\n"
	)


def _strict_score(pattern: re.Pattern, text: str, criterion: str) -> int:
	match = pattern.search(text)
	if match is None:
		raise MissingScoreError(criterion)
	value = int(match.group(1))
	if not 1 <= value <= 3:
		raise ScoreOutOfRangeError(value)
	return value


def parse_score(response: str) -> RubricScore:
	"""Strict parse: all three scores are required and must be within 1-3."""
	if not response.strip():
		raise MalformedResponseError("empty response")

	found = {}
	for name, pattern in (
		("correctness", _STRICT_CORRECTNESS_RE),
		("readability", _STRICT_READABILITY_RE),
		("edge_cases", _STRICT_EDGE_CASES_RE),
	):
		try:
			found[name] = _strict_score(pattern, response, name)
		except MissingScoreError:
			continue

	total_match = _TOTAL_RE.search(response)
	if total_match and found and len(found) < 3:
		total = int(total_match.group(1))
		if not 3 <= total <= 9:
			raise ScoreOutOfRangeError(total)
		if sum(found.values()) != total:
			raise MalformedResponseError(f"partial scores do not sum to Total: {total}/9")

	for name in ("correctness", "readability", "edge_cases"):
		if name not in found:
			raise MissingScoreError(name)
	return RubricScore(**found)


def meets_threshold(score: "RubricScore | None", threshold: int) -> bool:
	if score is None:
		return False
	return score.passes(threshold)
