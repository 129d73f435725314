"""
Runner protocol and the Claude Code subprocess runner.

A runner produces StreamEvents for one prompt. The engine only depends on
the small Runner protocol, so the subprocess runner here and any streaming
API runner are interchangeable. Factories hand out a fresh runner per task
or per critique iteration.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from .stream import STDERR_PREFIX, EventChannel, StreamEvent, StreamEventType, read_events

logger = logging.getLogger(__name__)

ALLOWED_TOOLS = "Read,Write,Edit,Bash,Glob,Grep,WebFetch"

# Large JSON lines from the CLI (tool results) exceed asyncio's 64 KiB default
STREAM_LIMIT = 1024 * 1024


class RunnerError(Exception):
	"""Raised for runner misuse or an unsuccessful exit."""
	pass


@dataclass
class StartOptions:
	"""Per-start runner options."""
	model: str = ""


@runtime_checkable
class Runner(Protocol):
	"""Behavioral contract the execution engine consumes."""

	async def start(self, prompt: str, work_dir: str, options: Optional[StartOptions] = None) -> None: ...

	def output(self) -> EventChannel: ...

	async def wait(self) -> None: ...

	async def kill(self) -> None: ...

	def stderr(self) -> str: ...

	def pid(self) -> int: ...


class RunnerFactory(Protocol):
	def new_runner(self) -> Runner: ...


class ClaudeProcess:
	"""Runs `claude --print --output-format stream-json` and streams its events."""

	def __init__(self, binary: str = "claude"):
		self.binary = binary
		self._proc: Optional[asyncio.subprocess.Process] = None
		self._channel = EventChannel()
		self._stderr_lines: list[str] = []
		self._reader_task: Optional[asyncio.Task] = None
		self._killed = False

	def build_args(self, prompt: str, options: Optional[StartOptions] = None) -> list[str]:
		args = [
			"--output-format", "stream-json",
			"--print",
			"--verbose",
			"--allowedTools", ALLOWED_TOOLS,
		]
		if options and options.model:
			args.extend(["--model", options.model])
		args.extend(["-p", prompt])
		return args

	async def start(self, prompt: str, work_dir: str, options: Optional[StartOptions] = None) -> None:
		if self._proc is not None:
			raise RunnerError("process already started")

		try:
			self._proc = await asyncio.create_subprocess_exec(
				self.binary, *self.build_args(prompt, options),
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.PIPE,
				stdin=asyncio.subprocess.DEVNULL,
				cwd=work_dir or None,
				limit=STREAM_LIMIT,
			)
		except FileNotFoundError as e:
			raise RunnerError(f"start process: command not found: {self.binary}") from e

		logger.debug(f"Started {self.binary} (pid {self._proc.pid}) in {work_dir}")
		self._reader_task = asyncio.create_task(self._read_output())

	async def _read_output(self) -> None:
		try:
			await asyncio.gather(
				read_events(self._proc.stdout, self._channel),
				self._read_stderr(),
			)
		finally:
			self._channel.close()

	async def _read_stderr(self) -> None:
		while True:
			line = await self._proc.stderr.readline()
			if not line:
				return
			text = line.decode("utf-8", errors="replace").rstrip("\n")
			if not text:
				continue
			self._stderr_lines.append(text)
			# Full channel: keep the line in the buffer only
			self._channel.offer(StreamEvent(type=StreamEventType.ERROR, error=STDERR_PREFIX + text))

	def output(self) -> EventChannel:
		return self._channel

	async def wait(self) -> None:
		if self._proc is None:
			raise RunnerError("process not started")

		if self._reader_task is not None:
			try:
				await self._reader_task
			except asyncio.CancelledError:
				if not self._killed:
					raise
		returncode = await self._proc.wait()
		if returncode != 0:
			msg = f"process exited with error: exit status {returncode}"
			if self._killed:
				msg += " (killed)"
			stderr = self.stderr()
			if stderr:
				msg += f"; stderr: {stderr}"
			raise RunnerError(msg)

	async def kill(self) -> None:
		self._killed = True
		if self._reader_task is not None and not self._reader_task.done():
			self._reader_task.cancel()
		self._channel.close()
		if self._proc is None or self._proc.returncode is not None:
			return
		try:
			self._proc.kill()
		except ProcessLookupError:
			pass

	def stderr(self) -> str:
		if not self._stderr_lines:
			return ""
		return "\n".join(self._stderr_lines) + "\n"

	def pid(self) -> int:
		if self._proc is None:
			return 0
		return self._proc.pid


class ClaudeProcessFactory:
	"""Factory producing ClaudeProcess runners."""

	def __init__(self, binary: str = "claude"):
		self.binary = binary

	def new_runner(self) -> ClaudeProcess:
		return ClaudeProcess(binary=self.binary)
