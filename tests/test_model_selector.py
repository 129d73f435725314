"""Tests for model selection."""

from unittest.mock import patch

import pytest

from alphie.agent.model_selector import (
	MODEL_HAIKU,
	MODEL_OPUS,
	MODEL_SONNET,
	TIER_DEFAULT_MODELS,
	select_model,
	tier_default,
)
from alphie.models import Task, Tier


def _task(title: str, description: str = "") -> Task:
	return Task(id="t1", title=title, description=description)


@pytest.mark.parametrize("tier,expected", [
	(Tier.QUICK, MODEL_HAIKU),
	(Tier.SCOUT, MODEL_HAIKU),
	(Tier.BUILDER, MODEL_SONNET),
	(Tier.ARCHITECT, MODEL_OPUS),
	(None, MODEL_SONNET),
])
def test_tier_defaults(tier, expected):
	assert select_model(_task("Add endpoint"), tier) == expected


def test_no_task_uses_tier():
	assert select_model(None, Tier.ARCHITECT) == MODEL_OPUS


def test_haiku_keyword_overrides_tier():
	assert select_model(_task("Fix typo in README"), Tier.ARCHITECT) == MODEL_HAIKU


def test_opus_keyword_in_description():
	assert select_model(_task("Auth", "Redesign the session architecture"), Tier.QUICK) == MODEL_OPUS


def test_haiku_wins_over_opus():
	assert select_model(_task("Simple refactor of imports"), Tier.BUILDER) == MODEL_HAIKU


def test_keywords_are_case_insensitive():
	assert select_model(_task("TRIVIAL change"), Tier.BUILDER) == MODEL_HAIKU


def test_default_used_without_tier():
	assert select_model(_task("Add endpoint"), None, default="claude-custom") == "claude-custom"
	assert select_model(None, None, default="claude-custom") == "claude-custom"


def test_default_does_not_override_mapped_tier_or_keywords():
	assert select_model(_task("Add endpoint"), Tier.ARCHITECT, default="claude-custom") == MODEL_OPUS
	assert select_model(_task("Fix typo"), None, default="claude-custom") == MODEL_HAIKU


def test_unmapped_tier_falls_back_to_default():
	with patch.dict(TIER_DEFAULT_MODELS, clear=True):
		assert tier_default(Tier.BUILDER, "claude-custom") == "claude-custom"
		assert tier_default(Tier.BUILDER) == MODEL_SONNET
