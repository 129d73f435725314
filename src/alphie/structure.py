"""
Directory-structure analysis.

Walks a repository once, records where each kind of code file lives and
caches the result for a day so prompts can tell agents where new files go.
"""

import logging
import os
import time
from collections import Counter
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CACHE_FILE = ".alphie/structure_cache.json"
CACHE_MAX_AGE = 24 * 60 * 60

CODE_EXTENSIONS = frozenset({
	".go", ".js", ".ts", ".jsx", ".tsx", ".py", ".rb", ".java",
	".c", ".cpp", ".h", ".hpp", ".rs", ".php", ".swift", ".kt",
})
SKIP_DIRS = frozenset({".git", "node_modules", "vendor", ".alphie"})


class StructureRule(BaseModel):
	"""Where files of one kind live."""
	pattern: str = Field(description="Glob for files in this directory, e.g. src/*.py")
	description: str
	examples: list[str] = Field(default_factory=list)
	directory: str = Field(default="", description="Repo-relative directory; empty for the root")


def _matches_or_contains(a: str, b: str) -> bool:
	"""True when either path is a prefix of the other."""
	if len(a) >= len(b):
		return a.startswith(b)
	return b.startswith(a)


class StructureRules(BaseModel):
	rules: list[StructureRule] = Field(default_factory=list)
	timestamp: int = 0

	def rules_for_paths(self, boundaries: list[str]) -> list[StructureRule]:
		"""Rules relevant to the given file boundaries; all rules when there are none."""
		if not boundaries:
			return list(self.rules)
		return [
			rule for rule in self.rules
			if any(_matches_or_contains(b, rule.directory) for b in boundaries)
		]


def is_code_file(path: str) -> bool:
	return os.path.splitext(path)[1].lower() in CODE_EXTENSIONS


def common_extension(files: list[str]) -> str:
	counts = Counter(os.path.splitext(f)[1] for f in files)
	if not counts:
		return ""
	return counts.most_common(1)[0][0]


def describe_directory(directory: str) -> str:
	if not directory:
		return "Root directory files"
	return directory.rstrip("/").split("/")[-1].title() + " files"


class StructureAnalyzer:
	"""Analyzes a repository's directory layout, cached under .alphie/."""

	def __init__(self, repo_path: str | Path):
		self.repo_path = Path(repo_path)
		self.rules: Optional[StructureRules] = None

	@property
	def cache_path(self) -> Path:
		return self.repo_path / CACHE_FILE

	def analyze_repository(self) -> StructureRules:
		if self._load_cache():
			return self.rules

		self.rules = self._analyze()
		try:
			self._save_cache()
		except OSError as e:
			logger.warning(f"Could not write structure cache {self.cache_path}: {e}")
		return self.rules

	def _load_cache(self) -> bool:
		try:
			age = time.time() - self.cache_path.stat().st_mtime
		except OSError:
			return False
		if age > CACHE_MAX_AGE:
			return False
		try:
			self.rules = StructureRules.model_validate_json(self.cache_path.read_text())
		except (OSError, ValueError) as e:
			logger.debug(f"Ignoring unreadable structure cache: {e}")
			return False
		return True

	def _save_cache(self) -> None:
		if self.rules is None:
			return
		self.cache_path.parent.mkdir(parents=True, exist_ok=True)
		self.rules.timestamp = int(time.time())
		self.cache_path.write_text(self.rules.model_dump_json(indent=2))

	def _analyze(self) -> StructureRules:
		dir_files: dict[str, list[str]] = {}
		for root, dirs, files in os.walk(self.repo_path):
			dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS)
			rel_dir = os.path.relpath(root, self.repo_path)
			if rel_dir == ".":
				rel_dir = ""
			for name in sorted(files):
				if not is_code_file(name):
					continue
				rel = os.path.join(rel_dir, name) if rel_dir else name
				dir_files.setdefault(rel_dir, []).append(rel)

		rules = []
		for directory, files in sorted(dir_files.items()):
			if len(files) < 2:
				continue
			ext = common_extension(files)
			if not ext:
				continue
			rules.append(StructureRule(
				pattern=os.path.join(directory, "*" + ext),
				description=describe_directory(directory),
				examples=files[:3],
				directory=directory,
			))
		logger.debug(f"Structure analysis of {self.repo_path}: {len(rules)} rule(s)")
		return StructureRules(rules=rules)
