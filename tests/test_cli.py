"""Tests for the alphie command line."""

import argparse
import os
from unittest.mock import patch

import pytest
from rich.console import Console

from alphie import cli
from alphie import config as config_module
from alphie.cli import _parse_tier, build_parser, build_task, main
from alphie.models import Tier
from alphie.ralph.baseline import Baseline

from .helpers import init_git_repo


@pytest.fixture
def console():
	recorder = Console(record=True, width=200)
	with patch.object(cli, "console", recorder):
		yield recorder


@pytest.fixture
def alphie_env(tmp_path):
	env = {
		"ALPHIE_CONFIG_DIR": str(tmp_path / "config"),
		"ALPHIE_DATA_DIR": str(tmp_path / "data"),
		"ALPHIE_WORKTREE_DIR": str(tmp_path / "worktrees"),
	}
	with patch.dict(os.environ, env), patch.object(config_module, "_config", None), \
			patch.object(cli, "setup_logging"):
		yield tmp_path


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParser:

	def test_run_arguments(self):
		args = build_parser().parse_args([
			"run", "Fix login",
			"-d", "Handle empty passwords",
			"--tier", "scout",
			"--verify", "tests pass",
			"--boundary", "auth/",
			"--boundary", "tests/test_auth.py",
			"--ralph",
		])
		assert args.tier == Tier.SCOUT
		assert args.ralph is True
		assert args.gates is False

		task = build_task(args)
		assert task.title == "Fix login"
		assert task.description == "Handle empty passwords"
		assert task.tier == Tier.SCOUT
		assert task.verification_intent == "tests pass"
		assert task.file_boundaries == ["auth/", "tests/test_auth.py"]
		assert task.id

	def test_run_defaults(self):
		args = build_parser().parse_args(["run", "Title"])
		assert args.tier == Tier.BUILDER
		assert args.repo == "."
		assert build_task(args).file_boundaries == []

	def test_unknown_tier(self):
		with pytest.raises(argparse.ArgumentTypeError, match="unknown tier 'huge'"):
			_parse_tier("huge")
		with pytest.raises(SystemExit):
			build_parser().parse_args(["run", "Title", "--tier", "huge"])

	def test_no_command_exits(self):
		with pytest.raises(SystemExit) as exc_info:
			main([])
		assert exc_info.value.code == 1

	def test_baseline_requires_action(self):
		with pytest.raises(SystemExit):
			build_parser().parse_args(["baseline"])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class TestCommands:

	def test_config(self, alphie_env, console):
		main(["config"])
		text = console.export_text()
		assert "alphie configuration" in text
		assert str(alphie_env / "data") in text
		assert "No config file at" in text

	def test_baseline_show(self, tmp_path, console):
		path = tmp_path / "baseline.json"
		Baseline(failing_tests=["tests/test_a.py::test_x"], lint_errors=["a.py: E501 line too long"]).save(path)
		main(["baseline", "show", str(path)])
		text = console.export_text()
		assert "Failing tests" in text
		assert "tests/test_a.py::test_x" in text

	def test_baseline_show_missing_file(self, tmp_path, console):
		with pytest.raises(SystemExit) as exc_info:
			main(["baseline", "show", str(tmp_path / "nope.json")])
		assert exc_info.value.code == 1
		assert "Baseline file not found" in console.export_text()

	def test_gates_skip_unknown_project(self, alphie_env, console):
		repo = alphie_env / "repo"
		repo.mkdir()
		main(["gates", "--repo", str(repo), "--lint"])
		text = console.export_text()
		assert "Quality Gates" in text
		assert "SKIP" in text
		assert "build" not in text

	def test_worktrees(self, alphie_env, console):
		repo = alphie_env / "repo"
		init_git_repo(repo)
		main(["worktrees", "--repo", str(repo)])
		assert "Worktrees" in console.export_text()

	def test_cleanup(self, alphie_env, console):
		repo = alphie_env / "repo"
		init_git_repo(repo)
		stray = alphie_env / "worktrees" / "agent-stale"
		stray.mkdir(parents=True)
		main(["cleanup", "--repo", str(repo)])
		assert not stray.exists()
		assert "recovered 1 untracked" in console.export_text()
