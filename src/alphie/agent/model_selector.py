"""Model selection from task keywords and tier."""

from typing import Optional

from ..models import Task, Tier

MODEL_HAIKU = "claude-haiku-4-5-20251001"
MODEL_SONNET = "claude-sonnet-4-20250514"
MODEL_OPUS = "claude-opus-4-5-20251101"

HAIKU_KEYWORDS = ("simple", "boilerplate", "typo", "trivial", "formatting")
OPUS_KEYWORDS = ("architecture", "design", "refactor", "redesign", "complex")

TIER_DEFAULT_MODELS: dict[Tier, str] = {
	Tier.QUICK: MODEL_HAIKU,
	Tier.SCOUT: MODEL_HAIKU,
	Tier.BUILDER: MODEL_SONNET,
	Tier.ARCHITECT: MODEL_OPUS,
}


def contains_haiku_keyword(text: str) -> bool:
	lower = text.lower()
	return any(kw in lower for kw in HAIKU_KEYWORDS)


def contains_opus_keyword(text: str) -> bool:
	lower = text.lower()
	return any(kw in lower for kw in OPUS_KEYWORDS)


def tier_default(tier: Optional[Tier], default: str = MODEL_SONNET) -> str:
	if tier is None:
		return default
	return TIER_DEFAULT_MODELS.get(tier, default)


def select_model(task: Optional[Task], tier: Optional[Tier] = None, default: str = MODEL_SONNET) -> str:
	"""
	Pick a model for a task.

	Keywords in the title or description win over the tier default, and
	haiku keywords win over opus keywords when both appear. ``default`` is
	used when there is no tier or the tier has no mapped model.
	"""
	if task is None:
		return tier_default(tier, default)

	text = f"{task.title} {task.description}"
	if contains_haiku_keyword(text):
		return MODEL_HAIKU
	if contains_opus_keyword(text):
		return MODEL_OPUS
	return tier_default(tier, default)
