"""Tests for the iteration controller and tier table."""

import pytest

from alphie.models import RubricScore, Tier
from alphie.ralph.iteration import (
	DEFAULT_TIER_CONFIG,
	IterationController,
	TierConfig,
	get_tier_config,
	get_tier_configs,
	set_tier_configs,
)


class TestTierTable:

	def test_defaults(self):
		assert get_tier_config(Tier.QUICK) == TierConfig(threshold=5, max_iterations=0)
		assert get_tier_config(Tier.SCOUT) == TierConfig(threshold=5, max_iterations=3)
		assert get_tier_config(Tier.BUILDER) == TierConfig(threshold=7, max_iterations=5)
		assert get_tier_config(Tier.ARCHITECT) == TierConfig(threshold=8, max_iterations=7)

	def test_no_tier_uses_default(self):
		assert get_tier_config(None) == DEFAULT_TIER_CONFIG

	def test_get_returns_copy(self):
		table = get_tier_configs()
		table[Tier.QUICK] = TierConfig(threshold=1, max_iterations=1)
		assert get_tier_config(Tier.QUICK).max_iterations == 0

	def test_set_replaces_entries(self):
		saved = get_tier_configs()
		try:
			set_tier_configs({Tier.SCOUT: TierConfig(threshold=4, max_iterations=1)})
			assert get_tier_config(Tier.SCOUT).threshold == 4
			assert get_tier_config(Tier.BUILDER).threshold == 7
		finally:
			set_tier_configs(saved)


class TestIterationController:
	"""Stopping decisions."""

	def test_continues_without_score(self):
		ctl = IterationController(Tier.SCOUT)
		assert ctl.should_continue(None)

	def test_stops_when_threshold_met(self):
		ctl = IterationController(Tier.BUILDER)
		assert not ctl.should_continue(RubricScore(3, 2, 2))
		assert ctl.should_continue(RubricScore(2, 2, 2))

	def test_stops_at_max(self):
		ctl = IterationController(config=TierConfig(threshold=9, max_iterations=2))
		ctl.increment()
		assert not ctl.is_at_max()
		ctl.increment()
		assert ctl.is_at_max()
		assert ctl.get_iteration() == 2
		assert not ctl.should_continue(None)

	def test_quick_tier_never_iterates(self):
		ctl = IterationController(Tier.QUICK)
		assert ctl.get_max_iterations() == 0
		assert not ctl.should_continue(None)

	@pytest.mark.parametrize("tier,threshold", [(Tier.SCOUT, 5), (Tier.ARCHITECT, 8), (None, 5)])
	def test_threshold_from_tier(self, tier, threshold):
		assert IterationController(tier).get_threshold() == threshold
