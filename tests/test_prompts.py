"""Tests for the agent prompt builder."""

from alphie.agent.prompts import SCOPE_GUIDANCE_PROMPT, build_prompt
from alphie.learning import Learning
from alphie.models import Task, Tier
from alphie.structure import StructureRule


def _task(**kwargs) -> Task:
	return Task(id="task-42", title="Add rate limiting", **kwargs)


class TestBuildPrompt:
	"""Prompt sections and their order."""

	def test_minimal_prompt(self):
		prompt = build_prompt(_task())
		assert prompt.startswith(SCOPE_GUIDANCE_PROMPT)
		assert "Task ID: task-42\n" in prompt
		assert "Title: Add rate limiting\n" in prompt
		assert "Description:" not in prompt
		assert "File Boundary" not in prompt
		assert "Tier:" not in prompt
		assert prompt.endswith("When finished, provide a summary of what was done.\n")

	def test_boundaries(self):
		prompt = build_prompt(_task(file_boundaries=["internal/api/", "cmd/server/"]))
		assert "## CRITICAL: File Boundary Constraints" in prompt
		assert "- `internal/api/`\n" in prompt
		assert "- `cmd/server/`\n" in prompt
		assert "Violating these constraints will cause verification to fail." in prompt

	def test_tier_guidance(self):
		prompt = build_prompt(_task(), Tier.ARCHITECT)
		assert "\nTier: architect\n" in prompt
		assert "You are operating as an Architect agent." in prompt

	def test_learnings_numbered(self):
		learnings = [
			Learning(condition="tests hang", action="add a timeout", outcome="suite finishes"),
			Learning(condition="lint fails", action="run ruff --fix", outcome="clean lint"),
		]
		prompt = build_prompt(_task(), learnings=learnings)
		assert "## Relevant Learnings" in prompt
		assert "### Learning 1\n- **When**: tests hang\n- **Do**: add a timeout\n" in prompt
		assert "### Learning 2" in prompt

	def test_structure_rules(self):
		rules = [StructureRule(pattern="src/api/", description="Api files", examples=["users.py", "orders.py"])]
		prompt = build_prompt(_task(), structure_rules=rules)
		assert "## Directory Structure" in prompt
		assert "- `src/api/`: Api files (e.g. users.py, orders.py)" in prompt

	def test_section_order(self):
		prompt = build_prompt(
			_task(description="Limit requests per client", file_boundaries=["api/"]),
			Tier.BUILDER,
			[Learning(condition="c", action="a", outcome="o")],
		)
		order = [
			prompt.index("Description:"),
			prompt.index("File Boundary"),
			prompt.index("Tier: builder"),
			prompt.index("Relevant Learnings"),
			prompt.index("Please complete this task"),
		]
		assert order == sorted(order)
