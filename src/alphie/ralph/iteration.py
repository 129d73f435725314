"""
Iteration limits for the self-critique loop.

The tier table is process-wide. It is installed once while configuration
loads and read by every controller afterwards.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from ..models import RubricScore, Tier


@dataclass(frozen=True)
class TierConfig:
	"""Score threshold (out of 9) and the maximum number of critique iterations."""
	threshold: int
	max_iterations: int


DEFAULT_TIER_CONFIG = TierConfig(threshold=5, max_iterations=3)

_tier_configs: dict[Tier, TierConfig] = {
	Tier.QUICK: TierConfig(threshold=5, max_iterations=0),
	Tier.SCOUT: TierConfig(threshold=5, max_iterations=3),
	Tier.BUILDER: TierConfig(threshold=7, max_iterations=5),
	Tier.ARCHITECT: TierConfig(threshold=8, max_iterations=7),
}
_tier_lock = threading.RLock()


def get_tier_configs() -> dict[Tier, TierConfig]:
	"""A copy of the tier table."""
	with _tier_lock:
		return dict(_tier_configs)


def set_tier_configs(configs: dict[Tier, TierConfig]) -> None:
	"""Replace entries in the tier table."""
	with _tier_lock:
		_tier_configs.update(configs)


def get_tier_config(tier: Optional[Tier]) -> TierConfig:
	with _tier_lock:
		if tier is None:
			return DEFAULT_TIER_CONFIG
		return _tier_configs.get(tier, DEFAULT_TIER_CONFIG)


class IterationController:
	"""Counts critique iterations for one agent and decides when to stop."""

	def __init__(self, tier: Optional[Tier] = None, config: Optional[TierConfig] = None):
		self.tier = tier
		cfg = config or get_tier_config(tier)
		self.threshold = cfg.threshold
		self.max_iterations = cfg.max_iterations
		self.iteration = 0

	def should_continue(self, score: Optional[RubricScore]) -> bool:
		if self.iteration >= self.max_iterations:
			return False
		if score is None:
			return True
		return score.total() < self.threshold

	def increment(self) -> None:
		self.iteration += 1

	def is_at_max(self) -> bool:
		return self.iteration >= self.max_iterations

	def get_iteration(self) -> int:
		return self.iteration

	def get_threshold(self) -> int:
		return self.threshold

	def get_max_iterations(self) -> int:
		return self.max_iterations
