"""
Token metering.

Each agent gets a TokenTracker with two tiers of usage: hard counts reported
by the runner and soft counts estimated locally. Confidence is the share of
tokens backed by hard counts. AggregateTracker sums trackers across agents.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenUsage:
	"""Input/output token counts."""
	input_tokens: int = 0
	output_tokens: int = 0

	@property
	def total_tokens(self) -> int:
		return self.input_tokens + self.output_tokens

	def __add__(self, other: "TokenUsage") -> "TokenUsage":
		return TokenUsage(
			input_tokens=self.input_tokens + other.input_tokens,
			output_tokens=self.output_tokens + other.output_tokens,
		)


@dataclass(frozen=True)
class ModelPricing:
	"""Dollars per million tokens."""
	input_per_million: float
	output_per_million: float


MODEL_PRICING: dict[str, ModelPricing] = {
	"claude-opus-4-5-20251101": ModelPricing(15.00, 75.00),
	"claude-sonnet-4-20250514": ModelPricing(3.00, 15.00),
	"claude-3-5-sonnet-20241022": ModelPricing(3.00, 15.00),
	"claude-haiku-4-5-20251001": ModelPricing(1.00, 5.00),
	"claude-3-5-haiku-20241022": ModelPricing(0.80, 4.00),
}

# Confidence levels below which tracking is considered degraded / unreliable
CONFIDENCE_WARNING = 0.8
CONFIDENCE_CRITICAL = 0.5

# Seconds without a usage event before a running tracker is considered stale
STALE_AFTER = 30.0


@dataclass
class TrackerEvent:
	"""Debug-mode record of a usage update."""
	timestamp: float
	kind: str
	source: str
	input_tokens: int
	output_tokens: int


@dataclass
class ValidationIssue:
	severity: str  # "warning" | "critical"
	message: str


def _check_delta(input_tokens: int, output_tokens: int) -> None:
	if input_tokens < 0 or output_tokens < 0:
		raise ValueError("token deltas must be non-negative")


class TokenTracker:
	"""Per-agent token usage, cost and confidence."""

	def __init__(self, model: str, debug: bool = False):
		self.model = model
		self.debug = debug
		self._hard = TokenUsage()
		self._soft = TokenUsage()
		self._pricing: Optional[ModelPricing] = None
		self._confidence = 1.0
		self._started = time.monotonic()
		self._last_event: Optional[float] = None
		self._actual_event_count = 0
		self._expected_event_count = 0
		self._events: list[TrackerEvent] = []
		self._warnings: list[str] = []
		self._lock = threading.Lock()

	def _recalculate_confidence(self) -> None:
		combined = (self._hard + self._soft).total_tokens
		if combined == 0:
			self._confidence = 1.0
		else:
			self._confidence = self._hard.total_tokens / combined

	def update(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
		"""Add a hard (runner-reported) usage delta."""
		_check_delta(input_tokens, output_tokens)
		with self._lock:
			self._hard = self._hard + TokenUsage(input_tokens, output_tokens)
			self._last_event = time.monotonic()
			self._actual_event_count += 1
			if self.debug:
				self._events.append(TrackerEvent(
					self._last_event, "usage", "api", input_tokens, output_tokens,
				))
			self._recalculate_confidence()

	def update_soft(self, input_tokens: int = 0, output_tokens: int = 0) -> None:
		"""Add a soft (estimated) usage delta."""
		_check_delta(input_tokens, output_tokens)
		with self._lock:
			self._soft = self._soft + TokenUsage(input_tokens, output_tokens)
			if self.debug:
				self._events.append(TrackerEvent(
					time.monotonic(), "estimate", "heuristic", input_tokens, output_tokens,
				))
			self._recalculate_confidence()
			self._check_confidence_degradation()

	def _check_confidence_degradation(self) -> None:
		if self._confidence < CONFIDENCE_CRITICAL:
			msg = f"Confidence critically low ({self._confidence:.2f}) - token tracking may be unreliable"
		elif self._confidence < CONFIDENCE_WARNING:
			msg = f"Confidence degraded to {self._confidence:.2f} - falling back to soft token estimates"
		else:
			return
		if not self._warnings or self._warnings[-1] != msg:
			self._warnings.append(msg)
			logger.debug(f"[{self.model}] {msg}")

	def expect_events(self, count: int) -> None:
		"""Declare how many hard usage events the caller expects to see."""
		with self._lock:
			self._expected_event_count = max(0, count)

	def set_pricing(self, pricing: ModelPricing) -> None:
		"""Install custom pricing for this tracker."""
		with self._lock:
			self._pricing = pricing

	def get_usage(self) -> TokenUsage:
		with self._lock:
			return self._hard + self._soft

	def get_hard_usage(self) -> TokenUsage:
		with self._lock:
			return self._hard

	def get_soft_usage(self) -> TokenUsage:
		with self._lock:
			return self._soft

	def get_confidence(self) -> float:
		with self._lock:
			return self._confidence

	def get_cost(self) -> float:
		with self._lock:
			pricing = self._pricing or MODEL_PRICING.get(self.model)
			if pricing is None:
				return 0.0
			combined = self._hard + self._soft
			return (
				combined.input_tokens * pricing.input_per_million / 1_000_000
				+ combined.output_tokens * pricing.output_per_million / 1_000_000
			)

	def get_warnings(self) -> list[str]:
		with self._lock:
			return list(self._warnings)

	def get_event_log(self) -> list[TrackerEvent]:
		"""Usage events, recorded only in debug mode."""
		with self._lock:
			return list(self._events) if self.debug else []

	def validate(self) -> list[ValidationIssue]:
		"""Report staleness and confidence problems."""
		issues = []
		with self._lock:
			now = time.monotonic()
			runtime = now - self._started
			last = self._last_event if self._last_event is not None else self._started
			if runtime > STALE_AFTER and now - last > STALE_AFTER and self._expected_event_count > 0:
				issues.append(ValidationIssue(
					"critical",
					f"No usage events for {now - last:.0f}s - token stream may be stalled",
				))

			if self._confidence < CONFIDENCE_CRITICAL:
				issues.append(ValidationIssue(
					"critical", f"Token tracking confidence too low ({self._confidence:.2f})",
				))
			elif self._confidence < CONFIDENCE_WARNING:
				issues.append(ValidationIssue(
					"warning", f"Token tracking confidence degraded ({self._confidence:.2f})",
				))

			missing = self._expected_event_count - self._actual_event_count
			if missing > 0:
				issues.append(ValidationIssue(
					"warning", f"Missing {missing} expected usage event(s)",
				))
		return issues


class AggregateTracker:
	"""Token usage across many agents."""

	def __init__(self):
		self._trackers: dict[str, TokenTracker] = {}
		self._lock = threading.Lock()

	def add(self, agent_id: str, tracker: TokenTracker) -> None:
		with self._lock:
			self._trackers[agent_id] = tracker

	def remove(self, agent_id: str) -> None:
		with self._lock:
			self._trackers.pop(agent_id, None)

	def get(self, agent_id: str) -> Optional[TokenTracker]:
		with self._lock:
			return self._trackers.get(agent_id)

	def count(self) -> int:
		with self._lock:
			return len(self._trackers)

	def _snapshot(self) -> list[TokenTracker]:
		with self._lock:
			return list(self._trackers.values())

	def get_usage(self) -> TokenUsage:
		total = TokenUsage()
		for tracker in self._snapshot():
			total = total + tracker.get_usage()
		return total

	def get_hard_usage(self) -> TokenUsage:
		total = TokenUsage()
		for tracker in self._snapshot():
			total = total + tracker.get_hard_usage()
		return total

	def get_soft_usage(self) -> TokenUsage:
		total = TokenUsage()
		for tracker in self._snapshot():
			total = total + tracker.get_soft_usage()
		return total

	def get_cost(self) -> float:
		return sum(tracker.get_cost() for tracker in self._snapshot())

	def get_confidence(self) -> float:
		"""Token-weighted mean confidence; 1.0 when there is nothing to weigh."""
		weighted = 0.0
		total = 0
		for tracker in self._snapshot():
			tokens = tracker.get_usage().total_tokens
			if tokens == 0:
				continue
			weighted += tracker.get_confidence() * tokens
			total += tokens
		if total == 0:
			return 1.0
		return weighted / total
