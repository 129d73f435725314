"""
Tiered retry handling.

The first failure retries as-is, later ones consult the learnings store
for a known fix (or walk a fixed strategy progression), and the last one
escalates to a human with the full error history.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from ..config import Config
from ..learning import Learning, LearningStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5

ALTERNATIVE_STRATEGIES = (
	"retry_with_context",
	"simplify_approach",
	"decompose_task",
)


class RetryDecision(str, Enum):
	RETRY = "retry"
	ESCALATE = "escalate"
	ABORT = "abort"


@dataclass
class RetryContext:
	"""What to do for the next attempt."""
	agent_id: str
	error: str
	attempt: int
	strategy: str = ""
	suggested_fix: str = ""
	learnings: list[Learning] = field(default_factory=list)


@dataclass
class EscalationContext:
	"""Everything a human needs to pick up a failed agent."""
	agent_id: str
	attempts: int
	errors: list[str]
	escalated_at: datetime = field(default_factory=datetime.now)
	needs_learning: bool = True

	def latest_error(self) -> str:
		if not self.errors:
			return "(no error recorded)"
		return self.errors[-1]

	def summary(self) -> str:
		return (
			f"Agent {self.agent_id} failed after {self.attempts} attempts "
			f"with {len(set(self.errors))} unique errors. Latest error: {self.latest_error()}"
		)


def select_alternative_strategy(attempt: int) -> str:
	idx = min(max(attempt - 2, 0), len(ALTERNATIVE_STRATEGIES) - 1)
	return ALTERNATIVE_STRATEGIES[idx]


class RetryHandler:
	"""Per-agent attempt counters and error history."""

	def __init__(self, learnings: Optional[LearningStore] = None, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
		self.learnings = learnings
		self._max_attempts = max(1, max_attempts)
		self._attempts: dict[str, int] = {}
		self._errors: dict[str, list[str]] = {}
		self._lock = threading.Lock()

	@classmethod
	def from_config(cls, config: Config, learnings: Optional[LearningStore] = None) -> "RetryHandler":
		"""Handler whose attempt ceiling comes from ``max_retry_attempts``."""
		return cls(learnings=learnings, max_attempts=config.max_retry_attempts)

	@property
	def max_attempts(self) -> int:
		with self._lock:
			return self._max_attempts

	def set_max_attempts(self, value: int) -> None:
		with self._lock:
			self._max_attempts = max(1, value)

	def handle_failure(self, agent_id: str, error: str) -> tuple[RetryContext, RetryDecision]:
		with self._lock:
			attempt = self._attempts.get(agent_id, 0) + 1
			self._attempts[agent_id] = attempt
			self._errors.setdefault(agent_id, []).append(error)
			max_attempts = self._max_attempts

		ctx = RetryContext(agent_id=agent_id, error=error, attempt=attempt)

		if attempt == 1:
			ctx.strategy = "retry_original"
			logger.info(f"[retry] agent {agent_id}: attempt {attempt}, trying original approach again")
			return ctx, RetryDecision.RETRY

		if attempt >= max_attempts:
			ctx.strategy = "escalate_to_human"
			logger.warning(f"[retry] agent {agent_id}: max attempts ({max_attempts}) reached, escalating to human")
			return ctx, RetryDecision.ESCALATE

		if self.learnings is not None:
			try:
				matches = self.learnings.on_failure(error)
			except (OSError, ValueError) as e:
				logger.warning(f"[retry] agent {agent_id}: learning lookup failed: {e}")
				matches = []
			if matches:
				best = matches[0]
				ctx.learnings = list(matches)
				ctx.suggested_fix = best.action
				ctx.strategy = "apply_learning"
				logger.info(f"[retry] agent {agent_id}: attempt {attempt}, applying learning fix: {best.action}")
				return ctx, RetryDecision.RETRY

		ctx.strategy = select_alternative_strategy(attempt)
		logger.info(f"[retry] agent {agent_id}: attempt {attempt}, trying alternative strategy: {ctx.strategy}")
		return ctx, RetryDecision.RETRY

	def on_retry(self, agent_id: str) -> int:
		"""Log the retry about to run and return its attempt number."""
		attempt = self.get_attempts(agent_id)
		logger.info(f"[retry] agent {agent_id}: executing retry attempt {attempt}")
		return attempt

	def on_escalate(self, agent_id: str) -> EscalationContext:
		with self._lock:
			ctx = EscalationContext(
				agent_id=agent_id,
				attempts=self._attempts.get(agent_id, 0),
				errors=list(self._errors.get(agent_id, [])),
			)
		logger.warning(
			f"[retry] agent {agent_id}: escalated after {ctx.attempts} attempts "
			f"with {len(ctx.errors)} unique errors"
		)
		return ctx

	def reset(self, agent_id: str) -> None:
		with self._lock:
			self._attempts.pop(agent_id, None)
			self._errors.pop(agent_id, None)
		logger.info(f"[retry] agent {agent_id}: retry state reset")

	def get_attempts(self, agent_id: str) -> int:
		with self._lock:
			return self._attempts.get(agent_id, 0)

	def get_errors(self, agent_id: str) -> list[str]:
		with self._lock:
			return list(self._errors.get(agent_id, []))
