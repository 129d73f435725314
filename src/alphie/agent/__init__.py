"""Agent module - Lifecycle, runners, event streams, token metering and worktrees.

The execution engine lives in alphie.agent.executor and is imported from there.
"""

from .lifecycle import (
	AgentAlreadyExistsError,
	AgentNotFoundError,
	InvalidTransitionError,
	LifecycleError,
	LifecycleManager,
)
from .runner import ClaudeProcess, ClaudeProcessFactory, Runner, RunnerError, RunnerFactory, StartOptions
from .stream import EventChannel, StreamEvent, StreamEventType, parse_line
from .tokens import AggregateTracker, TokenTracker, TokenUsage
from .worktree import Worktree, WorktreeError, WorktreeManager

__all__ = [
	"LifecycleManager",
	"LifecycleError",
	"AgentNotFoundError",
	"AgentAlreadyExistsError",
	"InvalidTransitionError",
	"Runner",
	"RunnerFactory",
	"RunnerError",
	"StartOptions",
	"ClaudeProcess",
	"ClaudeProcessFactory",
	"StreamEvent",
	"StreamEventType",
	"EventChannel",
	"parse_line",
	"TokenTracker",
	"AggregateTracker",
	"TokenUsage",
	"Worktree",
	"WorktreeManager",
	"WorktreeError",
]
