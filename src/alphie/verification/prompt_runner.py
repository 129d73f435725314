"""One-shot prompt execution over a runner factory."""

import logging
from typing import Optional, Protocol

from ..agent.runner import RunnerError, RunnerFactory, StartOptions
from ..agent.stream import StreamEventType

logger = logging.getLogger(__name__)

PROMPT_MODEL = "claude-sonnet-4-20250514"


class PromptRunnerError(Exception):
	"""Raised when a prompt could not be run to completion."""
	pass


class PromptRunner(Protocol):
	async def run_prompt(self, prompt: str, work_dir: str) -> str: ...


class ClaudePromptRunner:
	"""Runs a prompt on a fresh runner and returns the assistant and result text."""

	def __init__(self, factory: Optional[RunnerFactory] = None, model: str = PROMPT_MODEL):
		self.factory = factory
		self.model = model

	async def run_prompt(self, prompt: str, work_dir: str) -> str:
		if self.factory is None:
			raise PromptRunnerError("ClaudePromptRunner: a runner factory is required")

		runner = self.factory.new_runner()
		try:
			await runner.start(prompt, work_dir, StartOptions(model=self.model))
		except RunnerError as e:
			raise PromptRunnerError(f"start claude process: {e}") from e

		parts = []
		async for event in runner.output():
			if event.type in (StreamEventType.ASSISTANT, StreamEventType.RESULT):
				parts.append(event.message)
			elif event.type == StreamEventType.ERROR and not event.is_stderr:
				await runner.kill()
				raise PromptRunnerError(f"claude error: {event.error}")

		try:
			await runner.wait()
		except RunnerError as e:
			raise PromptRunnerError(f"wait for claude: {e}") from e

		return "".join(parts)
