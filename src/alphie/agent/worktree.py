"""Worktree manager - one git worktree per agent, plus orphan cleanup."""

from __future__ import annotations

import asyncio
import logging
import shutil
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

AGENT_PREFIX = "agent-"
MANAGED_PREFIXES = ("agent-", "alphie/", "session-")


class WorktreeError(Exception):
	"""Raised when a git worktree operation fails."""
	pass


@dataclass
class Worktree:
	"""A git worktree owned (or not) by an agent."""
	path: Path
	branch_name: str = ""
	agent_id: str = ""
	created_at: datetime = field(default_factory=datetime.now)

	@property
	def is_managed(self) -> bool:
		return is_managed_branch(self.branch_name)

	@property
	def session_id(self) -> str:
		return session_id_from_branch(self.branch_name)


def is_managed_branch(branch: str) -> bool:
	return any(branch.startswith(p) for p in MANAGED_PREFIXES)


def session_id_from_branch(branch: str) -> str:
	"""Strip the managed prefix from a branch name; empty for unmanaged branches."""
	for prefix in MANAGED_PREFIXES:
		if branch.startswith(prefix):
			return branch[len(prefix):]
	return ""


def parse_worktree_list(output: str) -> list[Worktree]:
	"""Parse `git worktree list --porcelain` output."""
	worktrees: list[Worktree] = []
	current: Optional[Worktree] = None

	for line in output.splitlines():
		if line.startswith("worktree "):
			if current is not None:
				worktrees.append(current)
			current = Worktree(path=Path(line[len("worktree "):]))
		elif line.startswith("branch ") and current is not None:
			branch = line[len("branch "):]
			if branch.startswith("refs/heads/"):
				branch = branch[len("refs/heads/"):]
			current.branch_name = branch
			if branch.startswith(AGENT_PREFIX):
				current.agent_id = branch[len(AGENT_PREFIX):]
		elif not line.strip() and current is not None:
			worktrees.append(current)
			current = None

	if current is not None:
		worktrees.append(current)
	return worktrees


async def run_git(args: list[str], cwd: Path, timeout: int = 30) -> tuple[str, str, int]:
	"""Run a git command and return (stdout, stderr, returncode)."""
	proc = await asyncio.create_subprocess_exec(
		"git", *args,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
		cwd=str(cwd),
	)
	try:
		stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
	except asyncio.TimeoutError:
		proc.kill()
		return ("", f"git {args[0]} timed out after {timeout}s", -1)
	return (
		stdout.decode().strip(),
		stderr.decode().strip(),
		proc.returncode or 0,
	)


def _same_path(a: Path, b: Path) -> bool:
	return Path(a).resolve() == Path(b).resolve()


class WorktreeManager:
	"""
	Creates and removes per-agent worktrees under a base directory.

	All public operations are serialized by an asyncio lock. Internal
	helpers prefixed with an underscore assume the lock is held.
	"""

	def __init__(self, base_dir: Optional[str | Path], repo_path: str | Path):
		if base_dir:
			self.base_dir = Path(base_dir).expanduser()
		else:
			self.base_dir = Path.home() / ".cache" / "alphie" / "worktrees"
		self.base_dir.mkdir(parents=True, exist_ok=True)
		self.repo_path = Path(repo_path).expanduser().resolve()
		self._lock = asyncio.Lock()

	async def create(self, agent_id: str = "") -> Worktree:
		"""Create <base>/agent-<id> on a new branch agent-<id>."""
		agent_id = agent_id or str(uuid.uuid4())
		branch = f"{AGENT_PREFIX}{agent_id}"
		path = self.base_dir / branch

		async with self._lock:
			_, stderr, rc = await run_git(
				["worktree", "add", "-b", branch, str(path)],
				self.repo_path,
			)
			if rc != 0:
				raise WorktreeError(f"create worktree {path}: {stderr}")

		logger.info(f"Created worktree {path} on branch {branch}")
		return Worktree(path=path, branch_name=branch, agent_id=agent_id)

	async def remove(self, path: str | Path, force: bool = False) -> None:
		async with self._lock:
			await self._remove(Path(path), force)

	async def _remove(self, path: Path, force: bool) -> None:
		if _same_path(path, self.repo_path):
			raise WorktreeError("refusing to remove the main repository")
		args = ["worktree", "remove"]
		if force:
			args.append("--force")
		args.append(str(path))
		_, stderr, rc = await run_git(args, self.repo_path)
		if rc != 0:
			raise WorktreeError(f"remove worktree {path}: {stderr}")

	async def unlock(self, path: str | Path) -> None:
		async with self._lock:
			await self._unlock(Path(path))

	async def _unlock(self, path: Path) -> None:
		_, stderr, rc = await run_git(["worktree", "unlock", str(path)], self.repo_path)
		if rc != 0:
			raise WorktreeError(f"unlock worktree {path}: {stderr}")

	async def list(self) -> list[Worktree]:
		async with self._lock:
			return await self._list()

	async def _list(self) -> list[Worktree]:
		stdout, stderr, rc = await run_git(["worktree", "list", "--porcelain"], self.repo_path)
		if rc != 0:
			raise WorktreeError(f"list worktrees: {stderr}")
		return parse_worktree_list(stdout)

	async def prune(self) -> None:
		async with self._lock:
			await self._prune()

	async def _prune(self) -> None:
		_, stderr, rc = await run_git(["worktree", "prune", "--expire", "now"], self.repo_path)
		if rc != 0:
			raise WorktreeError(f"prune worktrees: {stderr}")

	async def list_orphans(self, active_session_ids: Iterable[str] = ()) -> list[Worktree]:
		async with self._lock:
			return await self._list_orphans(set(active_session_ids))

	async def _list_orphans(self, active: set[str]) -> list[Worktree]:
		orphans = []
		for wt in await self._list():
			if not wt.is_managed:
				continue
			if _same_path(wt.path, self.repo_path):
				continue
			if wt.session_id in active:
				continue
			orphans.append(wt)
		return orphans

	async def cleanup_orphans(
		self,
		active_session_ids: Iterable[str] = (),
		on_remove: Optional[Callable[[Worktree], None]] = None,
	) -> int:
		"""Remove managed worktrees not owned by an active session. Returns the count removed."""
		removed = 0
		async with self._lock:
			for wt in await self._list_orphans(set(active_session_ids)):
				try:
					await self._unlock(wt.path)
				except WorktreeError:
					pass  # Most worktrees are not locked

				try:
					await self._remove(wt.path, force=True)
				except WorktreeError as e:
					logger.warning(f"git could not remove {wt.path}, deleting directory: {e}")
					try:
						shutil.rmtree(wt.path)
					except FileNotFoundError:
						pass
					except OSError as rm_err:
						logger.warning(f"Skipping orphan {wt.path}: {rm_err}")
						continue

				removed += 1
				logger.info(f"Removed orphaned worktree {wt.path} ({wt.branch_name})")
				if on_remove is not None:
					on_remove(wt)

			await self._prune()
		return removed

	async def recover_orphaned(self) -> int:
		"""Delete directories under the base dir that git no longer tracks."""
		removed = 0
		async with self._lock:
			await self._prune()
			known = {wt.path.resolve() for wt in await self._list()}
			for entry in sorted(self.base_dir.iterdir()):
				if not entry.is_dir() or entry.resolve() in known:
					continue
				try:
					await self._unlock(entry)
				except WorktreeError:
					pass
				try:
					await self._remove(entry, force=True)
				except WorktreeError:
					try:
						shutil.rmtree(entry)
					except OSError as e:
						logger.warning(f"Could not delete untracked directory {entry}: {e}")
						continue
				removed += 1
				logger.info(f"Recovered untracked worktree directory {entry}")
		return removed

	async def startup_cleanup(self, active_session_ids: Iterable[str] = ()) -> int:
		"""Cleanup to run once at process start."""
		return await self.cleanup_orphans(active_session_ids)
