"""Shared test helpers: a scripted runner and a real git repository."""

import subprocess
from pathlib import Path
from typing import Callable, Optional

from alphie.agent.runner import RunnerError, StartOptions
from alphie.agent.stream import EventChannel, StreamEvent, StreamEventType


def init_git_repo(path: Path) -> None:
	"""Create a real git repo with an initial commit."""
	path.mkdir(parents=True, exist_ok=True)
	subprocess.run(["git", "init"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "config", "user.email", "test@test.com"], cwd=str(path), capture_output=True)
	subprocess.run(["git", "config", "user.name", "Test"], cwd=str(path), capture_output=True)
	(path / "README.md").write_text("# Test\n")
	subprocess.run(["git", "add", "README.md"], cwd=str(path), capture_output=True, check=True)
	subprocess.run(["git", "commit", "-m", "init"], cwd=str(path), capture_output=True, check=True)


def assistant(text: str) -> StreamEvent:
	return StreamEvent(type=StreamEventType.ASSISTANT, message=text)


def result(text: str, input_tokens: int = 0, output_tokens: int = 0) -> StreamEvent:
	data = {"usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}}
	return StreamEvent(type=StreamEventType.RESULT, message=text, data=data)


def error(text: str) -> StreamEvent:
	return StreamEvent(type=StreamEventType.ERROR, error=text)


class FakeRunner:
	"""
	Runner that replays scripted events instead of spawning a process.

	on_start, when given, is called with the work dir before the events are
	emitted so a test can touch files the way an agent would.
	"""

	def __init__(
		self,
		events: list[StreamEvent],
		start_error: Optional[str] = None,
		wait_error: Optional[str] = None,
		on_start: Optional[Callable[[str], None]] = None,
	):
		self.events = events
		self.start_error = start_error
		self.wait_error = wait_error
		self.on_start = on_start
		self.prompt = ""
		self.work_dir = ""
		self.options: Optional[StartOptions] = None
		self.killed = False
		self._channel = EventChannel()

	async def start(self, prompt: str, work_dir: str, options: Optional[StartOptions] = None) -> None:
		if self.start_error:
			raise RunnerError(self.start_error)
		self.prompt = prompt
		self.work_dir = work_dir
		self.options = options
		if self.on_start:
			self.on_start(work_dir)
		for event in self.events:
			self._channel.offer(event)
		self._channel.close()

	def output(self) -> EventChannel:
		return self._channel

	async def wait(self) -> None:
		if self.wait_error:
			raise RunnerError(self.wait_error)

	async def kill(self) -> None:
		self.killed = True
		self._channel.close()

	def stderr(self) -> str:
		return ""

	def pid(self) -> int:
		return 0


class FakeRunnerFactory:
	"""Hands out scripted runners in order and records every one it created."""

	def __init__(self, *scripts: Callable[[], FakeRunner]):
		self.scripts = list(scripts)
		self.created: list[FakeRunner] = []

	def new_runner(self) -> FakeRunner:
		if not self.scripts:
			raise AssertionError("no scripted runner left")
		runner = self.scripts.pop(0)()
		self.created.append(runner)
		return runner

	@property
	def prompts(self) -> list[str]:
		return [r.prompt for r in self.created]
