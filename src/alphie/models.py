"""
Core models shared across the agent, ralph and verification packages.

Agent records are plain dataclasses owned by the lifecycle manager.
Tasks are pydantic models so they can be loaded from and written to JSON.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Tier(str, Enum):
	"""Complexity class that parameterizes iteration limits and model choice."""
	QUICK = "quick"
	SCOUT = "scout"
	BUILDER = "builder"
	ARCHITECT = "architect"

	@classmethod
	def parse(cls, value: "str | Tier | None") -> Optional["Tier"]:
		"""Parse a tier name, returning None for unknown values."""
		if value is None or isinstance(value, Tier):
			return value
		try:
			return cls(value.strip().lower())
		except ValueError:
			return None


class AgentStatus(str, Enum):
	"""Lifecycle status of an agent."""
	PENDING = "pending"
	RUNNING = "running"
	PAUSED = "paused"
	WAITING_APPROVAL = "waiting_approval"
	DONE = "done"
	FAILED = "failed"

	@property
	def is_terminal(self) -> bool:
		return self in (AgentStatus.DONE, AgentStatus.FAILED)


class TaskStatus(str, Enum):
	"""Status of a task."""
	PENDING = "pending"
	IN_PROGRESS = "in_progress"
	BLOCKED = "blocked"
	DONE = "done"
	FAILED = "failed"


@dataclass(frozen=True)
class RubricScore:
	"""Self-critique score: three criteria scored 1-3 each."""
	correctness: int = 0
	readability: int = 0
	edge_cases: int = 0

	def total(self) -> int:
		return self.correctness + self.readability + self.edge_cases

	def valid(self) -> bool:
		return all(1 <= v <= 3 for v in (self.correctness, self.readability, self.edge_cases))

	def passes(self, threshold: int) -> bool:
		return self.total() >= threshold


@dataclass
class Agent:
	"""Lifecycle record for one agent working in its own worktree."""
	id: str
	task_id: str
	status: AgentStatus = AgentStatus.PENDING
	worktree_path: str = ""
	pid: int = 0
	started_at: datetime = field(default_factory=datetime.now)
	tokens_used: int = 0
	cost: float = 0.0
	ralph_iteration: int = 0
	ralph_score: Optional[RubricScore] = None
	error: str = ""

	def copy(self) -> "Agent":
		return replace(self)


class Task(BaseModel):
	"""A unit of work handed to an agent."""
	id: str = Field(description="Unique task identifier")
	title: str = Field(description="Short task title")
	description: str = Field(default="", description="What needs to be done")
	parent_id: Optional[str] = Field(default=None, description="Parent task if decomposed")
	acceptance_criteria: str = Field(default="")
	status: TaskStatus = Field(default=TaskStatus.PENDING)
	depends_on: list[str] = Field(default_factory=list)
	assigned_to: Optional[str] = Field(default=None, description="Agent id working on this task")
	tier: Optional[Tier] = Field(default=None)
	verification_intent: str = Field(default="", description="Free-form description of how to verify the task")
	file_boundaries: list[str] = Field(default_factory=list, description="Paths the agent may modify")
	retry_count: int = Field(default=0)
	error: str = Field(default="")
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	completed_at: Optional[str] = Field(default=None)
