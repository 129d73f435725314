"""
Event stream parsing for line-delimited JSON runner output.

Each non-empty line becomes a StreamEvent. Lines that fail to parse become
error events carrying the raw line so the stream never aborts. Events are
delivered through a bounded EventChannel that is closed exactly once.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Optional

logger = logging.getLogger(__name__)

CHANNEL_CAPACITY = 100

STDERR_PREFIX = "[stderr] "


class StreamEventType(str, Enum):
	"""Discriminant of a runner event."""
	SYSTEM = "system"
	ASSISTANT = "assistant"
	USER = "user"
	RESULT = "result"
	ERROR = "error"
	UNKNOWN = "unknown"


@dataclass
class StreamEvent:
	"""A parsed runner event."""
	type: StreamEventType
	message: str = ""
	error: str = ""
	tool_action: str = ""
	raw: str = ""
	data: dict = field(default_factory=dict)

	@property
	def is_stderr(self) -> bool:
		"""True for error events relayed from the runner's stderr."""
		return self.type == StreamEventType.ERROR and self.error.startswith(STDERR_PREFIX)

	def usage(self) -> tuple[int, int]:
		"""(input_tokens, output_tokens) from the event's usage block, zeros when absent."""
		usage = self.data.get("usage")
		if not isinstance(usage, dict):
			return (0, 0)
		return (_as_int(usage.get("input_tokens")), _as_int(usage.get("output_tokens")))


def _as_int(value: Any) -> int:
	if isinstance(value, bool):
		return 0
	if isinstance(value, (int, float)) and value > 0:
		return int(value)
	return 0


# ---------------------------------------------------------------------------
# Tool action summaries
# ---------------------------------------------------------------------------

def truncate_filename(path: str) -> str:
	name = path.rsplit("/", 1)[-1]
	if len(name) > 20:
		return name[:17] + "..."
	return name


def truncate_command(cmd: str) -> str:
	for i, c in enumerate(cmd):
		if c in (" ", "\n"):
			cmd = cmd[:i]
			break
	if len(cmd) > 20:
		return cmd[:17] + "..."
	return cmd


def truncate_pattern(pattern: str) -> str:
	if len(pattern) > 15:
		return pattern[:12] + "..."
	return pattern


def format_tool_action(block: dict) -> str:
	"""Render a tool_use block as a short human-readable action."""
	name = block.get("name")
	if not isinstance(name, str) or not name:
		return ""
	tool_input = block.get("input")
	if not isinstance(tool_input, dict):
		tool_input = {}

	if name in ("Read", "Edit", "Write"):
		verb = {"Read": "Reading", "Edit": "Editing", "Write": "Writing"}[name]
		path = tool_input.get("file_path")
		if isinstance(path, str):
			return f"{verb} {truncate_filename(path)}"
		return f"{verb} file"
	if name == "Bash":
		cmd = tool_input.get("command")
		if isinstance(cmd, str):
			return f"Running {truncate_command(cmd)}"
		return "Running command"
	if name == "Glob":
		pattern = tool_input.get("pattern")
		if isinstance(pattern, str):
			return f"Searching {pattern}"
		return "Searching files"
	if name == "Grep":
		pattern = tool_input.get("pattern")
		if isinstance(pattern, str):
			return f"Grep {truncate_pattern(pattern)}"
		return "Searching code"
	if name == "WebFetch":
		return "Fetching URL"
	if name == "Task":
		return "Running subagent"
	return name


def _first_tool_use(blocks: Any) -> Optional[dict]:
	if not isinstance(blocks, list):
		return None
	for block in blocks:
		if isinstance(block, dict) and block.get("type") == "tool_use":
			return block
	return None


def extract_tool_action(data: dict) -> str:
	"""Find a tool_use in message.content[], content[] or tool_use, in that order."""
	message = data.get("message")
	if isinstance(message, dict):
		block = _first_tool_use(message.get("content"))
		if block is not None:
			return format_tool_action(block)

	block = _first_tool_use(data.get("content"))
	if block is not None:
		return format_tool_action(block)

	tool_use = data.get("tool_use")
	if isinstance(tool_use, dict):
		return format_tool_action(tool_use)
	return ""


def _text_of(message: Any) -> str:
	"""Text of a message field: a plain string or the text blocks of a message object."""
	if isinstance(message, str):
		return message
	if isinstance(message, dict):
		blocks = message.get("content")
		if isinstance(blocks, str):
			return blocks
		if isinstance(blocks, list):
			return "".join(
				b.get("text", "") for b in blocks
				if isinstance(b, dict) and b.get("type") == "text" and isinstance(b.get("text"), str)
			)
	return ""


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------

def parse_stream_event(line: str) -> StreamEvent:
	"""Parse one JSON line. Raises ValueError when the line is not a JSON object."""
	data = json.loads(line)
	if not isinstance(data, dict):
		raise ValueError(f"expected JSON object, got {type(data).__name__}")

	try:
		event_type = StreamEventType(data.get("type"))
	except ValueError:
		event_type = StreamEventType.UNKNOWN

	event = StreamEvent(type=event_type, raw=line, data=data)

	if event_type in (StreamEventType.SYSTEM, StreamEventType.ASSISTANT, StreamEventType.USER):
		event.message = _text_of(data.get("message"))
		if not event.message and isinstance(data.get("content"), str):
			event.message = data["content"]
		if event_type == StreamEventType.ASSISTANT:
			event.tool_action = extract_tool_action(data)
	elif event_type == StreamEventType.RESULT:
		if isinstance(data.get("result"), str):
			event.message = data["result"]
		elif isinstance(data.get("content"), str):
			event.message = data["content"]
	elif event_type == StreamEventType.ERROR:
		err = data.get("error")
		if isinstance(err, dict):
			err = err.get("message")
		if isinstance(err, str):
			event.error = err
		elif isinstance(data.get("message"), str):
			event.error = data["message"]

	return event


def parse_line(line: str) -> Optional[StreamEvent]:
	"""Parse a line into an event; None for blank lines, an error event for bad JSON."""
	line = line.strip()
	if not line:
		return None
	try:
		return parse_stream_event(line)
	except ValueError as e:
		return StreamEvent(type=StreamEventType.ERROR, error=f"parse error: {e}", raw=line)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

_CLOSED = object()


class EventChannel:
	"""
	Bounded event queue with a single close signal.

	get() returns None once the channel is closed and drained. Closing never
	blocks: if the queue is full the consumer drains it and then observes
	the closed flag.
	"""

	def __init__(self, maxsize: int = CHANNEL_CAPACITY):
		self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
		self._closed = False

	@property
	def closed(self) -> bool:
		return self._closed

	async def put(self, event: StreamEvent) -> None:
		if self._closed:
			return
		await self._queue.put(event)

	def offer(self, event: StreamEvent) -> bool:
		"""Non-blocking put. Returns False when the channel is full or closed."""
		if self._closed:
			return False
		try:
			self._queue.put_nowait(event)
			return True
		except asyncio.QueueFull:
			return False

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		try:
			self._queue.put_nowait(_CLOSED)
		except asyncio.QueueFull:
			pass

	async def get(self) -> Optional[StreamEvent]:
		if self._closed and self._queue.empty():
			return None
		item = await self._queue.get()
		if item is _CLOSED:
			return None
		return item

	async def __aiter__(self) -> AsyncIterator[StreamEvent]:
		while True:
			event = await self.get()
			if event is None:
				return
			yield event


async def read_events(reader: asyncio.StreamReader, channel: EventChannel) -> None:
	"""Parse lines from reader into channel until EOF. Does not close the channel."""
	while True:
		try:
			line = await reader.readline()
		except ValueError as e:
			# Line longer than the reader limit
			await channel.put(StreamEvent(type=StreamEventType.ERROR, error=f"read error: {e}"))
			continue
		if not line:
			return
		event = parse_line(line.decode("utf-8", errors="replace"))
		if event is not None:
			await channel.put(event)
