"""Agent-facing prompt text."""

from typing import Optional, Sequence

from ..learning import Learning
from ..models import Task, Tier
from ..structure import StructureRule

SCOPE_GUIDANCE_PROMPT = """## Scope Guidance

Stay focused on this task. If you discover refactoring opportunities
or unrelated improvements, note them as new tasks but do not implement
them in this session.

To file a new task for discovered work, use:
  prog add "Task title" -p <parent-task-id>

Do NOT:
- Expand scope with unrelated refactoring
- Fix unrelated bugs you encounter
- Add features not specified in the task
- Improve code style in unrelated files

DO:
- Complete the assigned task
- Note discoveries for future tasks
- Stay within the task boundaries
"""

TIER_GUIDANCE: dict[Tier, str] = {
	Tier.QUICK: "You are operating as a Quick agent. Make the smallest change that completes the task.",
	Tier.SCOUT: "You are operating as a Scout agent. Focus on exploration, research, and lightweight tasks.",
	Tier.BUILDER: "You are operating as a Builder agent. Focus on implementation and standard development tasks.",
	Tier.ARCHITECT: (
		"You are operating as an Architect agent. "
		"Focus on complex design, architecture, and system-level decisions."
	),
}


def _boundaries_section(boundaries: Sequence[str]) -> str:
	lines = [
		"\n## CRITICAL: File Boundary Constraints\n\n",
		"You MUST ONLY create or modify files within these boundaries:\n\n",
	]
	lines.extend(f"- `{b}`\n" for b in boundaries)
	lines.append(
		"\n**DO NOT**:\n"
		"- Create files outside these directories\n"
		"- Create files at project root unless boundaries include it\n"
		"- Move or copy files to locations outside boundaries\n\n"
		"Violating these constraints will cause verification to fail.\n"
	)
	return "".join(lines)


def _learnings_section(learnings: Sequence[Learning]) -> str:
	parts = [
		"\n## Relevant Learnings\n",
		"The following learnings from previous experiences may be helpful:\n\n",
	]
	for i, learning in enumerate(learnings, start=1):
		parts.append(
			f"### Learning {i}\n"
			f"- **When**: {learning.condition}\n"
			f"- **Do**: {learning.action}\n"
			f"- **Result**: {learning.outcome}\n"
			"\n"
		)
	return "".join(parts)


def _structure_section(rules: Sequence[StructureRule]) -> str:
	parts = [
		"\n## Directory Structure\n\n",
		"Place new files where files of the same kind already live:\n\n",
	]
	for rule in rules:
		line = f"- `{rule.pattern}`: {rule.description}"
		if rule.examples:
			line += f" (e.g. {', '.join(rule.examples)})"
		parts.append(line + "\n")
	return "".join(parts)


def build_prompt(
	task: Task,
	tier: Optional[Tier] = None,
	learnings: Optional[Sequence[Learning]] = None,
	structure_rules: Optional[Sequence[StructureRule]] = None,
) -> str:
	"""Build the prompt the runner receives for a task."""
	parts = [
		SCOPE_GUIDANCE_PROMPT,
		"\n",
		"You are working on a task.\n\n",
		f"Task ID: {task.id}\n",
		f"Title: {task.title}\n",
	]

	if task.description:
		parts.append(f"\nDescription:\n{task.description}\n")

	if task.file_boundaries:
		parts.append(_boundaries_section(task.file_boundaries))

	if tier is not None:
		parts.append(f"\nTier: {tier.value}\n")
		parts.append(f"\n{TIER_GUIDANCE[tier]}\n")

	if learnings:
		parts.append(_learnings_section(learnings))

	if structure_rules:
		parts.append(_structure_section(structure_rules))

	parts.append("\nPlease complete this task. When finished, provide a summary of what was done.\n")
	return "".join(parts)
