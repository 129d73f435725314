"""
Focused test selection.

Picks the tests worth running for a set of changed files: co-located tests
first, every test in the changed file's directory when that finds too few,
and tags derived from path components.
"""

import ast
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_MIN_TESTS = 5

WALK_SKIP_DIRS = frozenset({".git", "vendor", "node_modules", ".worktrees"})

_GO_EXPORTED_FUNC_RE = re.compile(r"(?m)^func\s+([A-Z]\w*)\s*[\[(]")


def default_tag_mapping() -> dict[str, list[str]]:
	return {
		"auth": ["@auth"],
		"api": ["@api"],
		"db": ["@db"],
	}


@dataclass
class SelectTestResult:
	test_files: list[str] = field(default_factory=list)
	test_tags: list[str] = field(default_factory=list)


def is_test_file(path: str) -> bool:
	name = os.path.basename(path)
	if name.endswith("_test.go"):
		return True
	return name.endswith(".py") and (name.startswith("test_") or name.endswith("_test.py"))


def path_contains_prefix(file: str, prefix: str) -> bool:
	"""True when prefix appears in file as a run of whole path components."""
	file_parts = file.replace(os.sep, "/").split("/")
	prefix_parts = prefix.replace(os.sep, "/").split("/")
	n = len(prefix_parts)
	if n > len(file_parts):
		return False
	return any(file_parts[i:i + n] == prefix_parts for i in range(len(file_parts) - n + 1))


def build_test_run_pattern(tags: list[str]) -> str:
	"""A `go test -run` style pattern selecting tests named after the tags."""
	if not tags:
		return ""
	if len(tags) == 1:
		return "Test.*" + tags[0]
	return "Test.*(" + "|".join(tags) + ")"


class FocusedTestSelector:
	"""Selects tests relevant to changed files in a repository."""

	def __init__(
		self,
		repo_path: str | Path,
		min_tests: int = DEFAULT_MIN_TESTS,
		tag_mapping: Optional[dict[str, list[str]]] = None,
	):
		self.repo_path = Path(repo_path)
		self.min_tests = min_tests
		self.tag_mapping = default_tag_mapping() if tag_mapping is None else tag_mapping

	def add_tag_mapping(self, prefix: str, tags: list[str]) -> None:
		self.tag_mapping[prefix] = list(tags)

	def _exists(self, rel: str) -> bool:
		return (self.repo_path / rel).is_file()

	def get_colocated(self, file: str) -> str:
		"""x.go -> x_test.go, pkg/x.py -> pkg/test_x.py; test files map to themselves."""
		if is_test_file(file):
			return file
		directory, name = os.path.split(file)
		if name.endswith(".go"):
			return os.path.join(directory, name[:-3] + "_test.go")
		if name.endswith(".py"):
			return os.path.join(directory, "test_" + name)
		return ""

	def get_test_candidates(self, file: str) -> list[str]:
		"""Co-located test plus, for Python, tests/test_<name>.py at the repo root."""
		candidates = []
		colocated = self.get_colocated(file)
		if colocated:
			candidates.append(colocated)
		name = os.path.basename(file)
		if name.endswith(".py") and not is_test_file(name):
			candidates.append(os.path.join("tests", "test_" + name))
		return candidates

	def get_package_tests(self, directory: str) -> list[str]:
		full = self.repo_path / directory
		try:
			entries = sorted(os.listdir(full))
		except FileNotFoundError:
			return []
		return [
			os.path.join(directory, name) if directory else name
			for name in entries
			if (full / name).is_file() and is_test_file(name)
		]

	def get_tags_for_path(self, file: str) -> list[str]:
		tags: list[str] = []
		for prefix, prefix_tags in self.tag_mapping.items():
			if path_contains_prefix(file, prefix):
				for tag in prefix_tags:
					if tag not in tags:
						tags.append(tag)
		return tags

	def select_tests_with_tags(self, changed_files: list[str]) -> SelectTestResult:
		test_files: set[str] = set()
		for file in changed_files:
			for candidate in self.get_test_candidates(file):
				if self._exists(candidate):
					test_files.add(candidate)

		if len(test_files) < self.min_tests:
			seen: set[str] = set()
			for file in changed_files:
				directory = os.path.dirname(file)
				if directory in seen:
					continue
				seen.add(directory)
				test_files.update(self.get_package_tests(directory))

		tags: set[str] = set()
		for file in changed_files:
			tags.update(self.get_tags_for_path(file))

		return SelectTestResult(test_files=sorted(test_files), test_tags=sorted(tags))

	def select_tests(self, changed_files: list[str]) -> list[str]:
		return self.select_tests_with_tags(changed_files).test_files

	# -------------------------------------------------------------------------
	# Caller analysis
	# -------------------------------------------------------------------------

	def get_caller_tests(self, changed_file: str) -> list[str]:
		"""Tests co-located with files that call the changed file's public functions."""
		if is_test_file(changed_file):
			return []
		if changed_file.endswith(".py"):
			names = self._python_public_functions(changed_file)
			callers = self._find_python_callers(names) if names else []
		elif changed_file.endswith(".go"):
			names = self._go_exported_functions(changed_file)
			callers = self._find_go_callers(names) if names else []
		else:
			return []

		tests = set()
		for caller in callers:
			for candidate in self.get_test_candidates(caller):
				if self._exists(candidate):
					tests.add(candidate)
		return sorted(tests)

	def _python_public_functions(self, file: str) -> set[str]:
		try:
			tree = ast.parse((self.repo_path / file).read_text(), filename=file)
		except (OSError, SyntaxError, ValueError) as e:
			logger.debug(f"Cannot parse {file} for caller analysis: {e}")
			return set()
		return {
			node.name for node in tree.body
			if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and not node.name.startswith("_")
		}

	def _go_exported_functions(self, file: str) -> set[str]:
		try:
			return set(_GO_EXPORTED_FUNC_RE.findall((self.repo_path / file).read_text()))
		except OSError:
			return set()

	def _walk_sources(self, suffix: str):
		for root, dirs, files in os.walk(self.repo_path):
			dirs[:] = sorted(d for d in dirs if d not in WALK_SKIP_DIRS)
			for name in sorted(files):
				if name.endswith(suffix) and not is_test_file(name):
					path = Path(root) / name
					yield path, os.path.relpath(path, self.repo_path)

	def _find_python_callers(self, names: set[str]) -> list[str]:
		callers = []
		for path, rel in self._walk_sources(".py"):
			try:
				tree = ast.parse(path.read_text(), filename=rel)
			except (OSError, SyntaxError, ValueError):
				continue
			for node in ast.walk(tree):
				if not isinstance(node, ast.Call):
					continue
				func = node.func
				called = func.id if isinstance(func, ast.Name) else getattr(func, "attr", None)
				if called in names:
					callers.append(rel)
					break
		return callers

	def _find_go_callers(self, names: set[str]) -> list[str]:
		pattern = re.compile(r"\b(?:\w+\.)?(" + "|".join(sorted(map(re.escape, names))) + r")\(")
		callers = []
		for path, rel in self._walk_sources(".go"):
			try:
				source = path.read_text()
			except OSError:
				continue
			# Strip declarations so a function does not count as its own caller
			body = _GO_EXPORTED_FUNC_RE.sub("", source)
			if pattern.search(body):
				callers.append(rel)
		return callers
