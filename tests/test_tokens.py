"""Tests for token metering."""

import pytest

from alphie.agent.tokens import (
	AggregateTracker,
	ModelPricing,
	TokenTracker,
	TokenUsage,
)


class TestTokenUsage:

	def test_total_and_add(self):
		usage = TokenUsage(100, 50) + TokenUsage(10, 5)
		assert usage == TokenUsage(110, 55)
		assert usage.total_tokens == 165


class TestTokenTracker:
	"""Hard/soft accounting, cost and confidence."""

	def test_hard_updates_accumulate(self):
		tracker = TokenTracker("claude-sonnet-4-20250514")
		tracker.update(1000, 200)
		tracker.update(500, 100)
		assert tracker.get_usage() == TokenUsage(1500, 300)
		assert tracker.get_hard_usage().total_tokens == 1800
		assert tracker.get_confidence() == 1.0

	def test_negative_delta_rejected(self):
		tracker = TokenTracker("claude-sonnet-4-20250514")
		with pytest.raises(ValueError):
			tracker.update(-1, 0)
		with pytest.raises(ValueError):
			tracker.update_soft(0, -5)

	def test_cost_from_pricing_table(self):
		tracker = TokenTracker("claude-sonnet-4-20250514")
		tracker.update(1_000_000, 1_000_000)
		assert tracker.get_cost() == pytest.approx(18.0)

	def test_unknown_model_costs_nothing(self):
		tracker = TokenTracker("some-local-model")
		tracker.update(1000, 1000)
		assert tracker.get_cost() == 0.0

	def test_custom_pricing(self):
		tracker = TokenTracker("some-local-model")
		tracker.set_pricing(ModelPricing(input_per_million=2.0, output_per_million=4.0))
		tracker.update(500_000, 250_000)
		assert tracker.get_cost() == pytest.approx(2.0)

	def test_soft_usage_lowers_confidence(self):
		tracker = TokenTracker("claude-sonnet-4-20250514")
		tracker.update(300, 0)
		tracker.update_soft(700, 0)
		assert tracker.get_confidence() == pytest.approx(0.3)
		assert tracker.get_usage().total_tokens == 1000
		assert tracker.get_warnings()
		assert any(issue.severity == "critical" for issue in tracker.validate())

	def test_no_tokens_is_fully_confident(self):
		assert TokenTracker("m").get_confidence() == 1.0

	def test_missing_expected_events_reported(self):
		tracker = TokenTracker("m")
		tracker.expect_events(3)
		tracker.update(1, 1)
		issues = tracker.validate()
		assert any("Missing 2 expected" in issue.message for issue in issues)

	def test_event_log_only_in_debug(self):
		quiet = TokenTracker("m")
		quiet.update(1, 1)
		assert quiet.get_event_log() == []

		debug = TokenTracker("m", debug=True)
		debug.update(1, 1)
		debug.update_soft(2, 2)
		assert [e.kind for e in debug.get_event_log()] == ["usage", "estimate"]


class TestAggregateTracker:

	def test_sums_across_agents(self):
		agg = AggregateTracker()
		a = TokenTracker("claude-sonnet-4-20250514")
		b = TokenTracker("claude-sonnet-4-20250514")
		a.update(100, 100)
		b.update(300, 0)
		agg.add("a", a)
		agg.add("b", b)

		assert agg.count() == 2
		assert agg.get_usage() == TokenUsage(400, 100)
		assert agg.get_cost() == pytest.approx(a.get_cost() + b.get_cost())
		assert agg.get("a") is a

	def test_remove(self):
		agg = AggregateTracker()
		agg.add("a", TokenTracker("m"))
		agg.remove("a")
		agg.remove("a")
		assert agg.get("a") is None
		assert agg.get_usage() == TokenUsage()

	def test_weighted_confidence(self):
		agg = AggregateTracker()
		hard = TokenTracker("m")
		hard.update(100, 0)
		mixed = TokenTracker("m")
		mixed.update(50, 0)
		mixed.update_soft(50, 0)
		agg.add("hard", hard)
		agg.add("mixed", mixed)
		# (1.0 * 100 + 0.5 * 100) / 200
		assert agg.get_confidence() == pytest.approx(0.75)

	def test_empty_confidence(self):
		assert AggregateTracker().get_confidence() == 1.0
