"""CLI for alphie: run, baseline, gates, worktrees, cleanup and config commands."""

import argparse
import asyncio
import dataclasses
import sys
import uuid
from pathlib import Path

from rich.console import Console
from rich.table import Table

from .config import Config, load_config
from .logging_config import setup_logging
from .models import Task, Tier

console = Console()


def _repo(args: argparse.Namespace) -> Path:
	return Path(args.repo).expanduser().resolve()


def _parse_tier(value: str) -> Tier:
	tier = Tier.parse(value)
	if tier is None:
		raise argparse.ArgumentTypeError(
			f"unknown tier '{value}' (choose from {', '.join(t.value for t in Tier)})"
		)
	return tier


def _setup(args: argparse.Namespace) -> Config:
	config = load_config()
	setup_logging(level="DEBUG" if getattr(args, "verbose", False) else None, log_dir=config.log_dir)
	return config


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------

def build_task(args: argparse.Namespace) -> Task:
	return Task(
		id=str(uuid.uuid4()),
		title=args.title,
		description=args.description or "",
		tier=args.tier,
		verification_intent=args.verify or "",
		file_boundaries=list(args.boundary or []),
	)


def cmd_run(args: argparse.Namespace) -> None:
	"""Execute a single task in an isolated worktree."""
	from .agent.executor import ExecuteOptions, Executor, ProgressUpdate
	from .agent.runner import ClaudeProcessFactory
	from .learning import JsonlLearningStore
	from .ralph.baseline import Baseline
	from .views import format_duration, render_execution_result

	config = _setup(args)
	task = build_task(args)

	baseline = None
	if args.baseline:
		baseline = Baseline.load(args.baseline)

	learnings = JsonlLearningStore(config.learnings_file).search(f"{task.title} {task.description}")

	def on_progress(update: ProgressUpdate) -> None:
		action = f" - {update.current_action}" if update.current_action else ""
		console.print(
			f"[dim]{format_duration(update.duration)} "
			f"{update.tokens_used:,} tokens ${update.cost:.4f}{action}[/dim]"
		)

	opts = ExecuteOptions(
		learnings=learnings,
		on_progress=on_progress,
		enable_ralph_loop=args.ralph,
		enable_quality_gates=args.gates,
		baseline=baseline,
	)
	executor = Executor(_repo(args), ClaudeProcessFactory(config.claude_binary), config=config)

	console.print(f"[bold cyan]Running:[/bold cyan] {task.title} (tier: {args.tier.value})")
	result = asyncio.run(executor.execute(task, args.tier, opts))
	render_execution_result(result, console)
	if not result.success:
		sys.exit(1)


# ---------------------------------------------------------------------------
# baseline
# ---------------------------------------------------------------------------

def cmd_baseline(args: argparse.Namespace) -> None:
	"""Capture or show a failure baseline."""
	from .ralph.baseline import Baseline, capture_baseline
	from .views import render_baseline

	if args.baseline_action == "show":
		path = Path(args.file)
		if not path.exists():
			console.print(f"[red]Baseline file not found: {path}[/red]")
			sys.exit(1)
		render_baseline(Baseline.load(path), console)
		return

	_setup(args)
	repo = _repo(args)
	output = Path(args.output) if args.output else repo / ".alphie" / "baseline.json"
	console.print(f"Capturing baseline for {repo}...")
	baseline = asyncio.run(capture_baseline(repo))
	baseline.save(output)
	render_baseline(baseline, console)
	console.print(f"Saved to {output}")


# ---------------------------------------------------------------------------
# gates
# ---------------------------------------------------------------------------

def cmd_gates(args: argparse.Namespace) -> None:
	"""Run quality gates against a working copy. Without flags, all gates run."""
	from .ralph.gates import GATE_NAMES, QualityGates, gates_passed
	from .views import render_gates

	config = _setup(args)
	gates = QualityGates(_repo(args), config.gate_timeout)
	selected = [name for name in GATE_NAMES if getattr(args, name)]
	for name in selected or GATE_NAMES:
		gates.enable(name)

	outputs = asyncio.run(gates.run_gates())
	render_gates(outputs, console)
	if not gates_passed(outputs):
		sys.exit(1)


# ---------------------------------------------------------------------------
# worktrees / cleanup
# ---------------------------------------------------------------------------

def cmd_worktrees(args: argparse.Namespace) -> None:
	"""List the repository's worktrees."""
	from .agent.worktree import WorktreeManager
	from .views import render_worktrees

	config = _setup(args)
	manager = WorktreeManager(config.worktree_base_dir, _repo(args))
	render_worktrees(asyncio.run(manager.list()), console)


async def _cleanup(manager, active: list[str], verbose: bool) -> tuple[int, int]:
	def on_remove(wt) -> None:
		if verbose:
			console.print(f"  removed {wt.path} ({wt.branch_name})")

	orphans = await manager.cleanup_orphans(active, on_remove=on_remove)
	recovered = await manager.recover_orphaned()
	return orphans, recovered


def cmd_cleanup(args: argparse.Namespace) -> None:
	"""Remove orphaned agent worktrees and untracked worktree directories."""
	from .agent.worktree import WorktreeManager

	config = _setup(args)
	manager = WorktreeManager(config.worktree_base_dir, _repo(args))
	orphans, recovered = asyncio.run(_cleanup(manager, args.active or [], args.verbose))
	console.print(f"Removed {orphans} orphaned worktree(s), recovered {recovered} untracked director(ies)")


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

def cmd_config(args: argparse.Namespace) -> None:
	"""Print the effective configuration."""
	config = load_config()

	table = Table(title="alphie configuration")
	table.add_column("Key", style="cyan")
	table.add_column("Value")
	for f in dataclasses.fields(config):
		value = getattr(config, f.name)
		if isinstance(value, dict) and not value:
			value = "(none)"
		table.add_row(f.name, str(value))
	console.print(table)
	if not config.config_file.exists():
		console.print(f"[dim]No config file at {config.config_file}; defaults and ALPHIE_* variables apply.[/dim]")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="alphie",
		description="Run Claude agents on tasks in isolated git worktrees",
	)
	subparsers = parser.add_subparsers(dest="command")

	# run
	run_parser = subparsers.add_parser("run", help="Execute one task")
	run_parser.add_argument("title", help="Task title")
	run_parser.add_argument("--description", "-d", default="", help="What needs to be done")
	run_parser.add_argument("--tier", type=_parse_tier, default=Tier.BUILDER, help="quick, scout, builder or architect")
	run_parser.add_argument("--verify", default="", help="How the result should be verified")
	run_parser.add_argument("--boundary", action="append", help="Path the agent may modify (repeatable)")
	run_parser.add_argument("--ralph", action="store_true", help="Enable the self-critique loop")
	run_parser.add_argument("--gates", action="store_true", help="Run quality gates after the agent finishes")
	run_parser.add_argument("--baseline", default=None, help="Baseline JSON file for regression checks")
	run_parser.add_argument("--repo", default=".", help="Repository path (default: .)")
	run_parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
	run_parser.set_defaults(func=cmd_run)

	# baseline
	baseline_parser = subparsers.add_parser("baseline", help="Capture or show a failure baseline")
	baseline_sub = baseline_parser.add_subparsers(dest="baseline_action", required=True)
	capture = baseline_sub.add_parser("capture", help="Record current test, lint and type failures")
	capture.add_argument("--repo", default=".", help="Repository path (default: .)")
	capture.add_argument("--output", "-o", default=None, help="Output file (default: <repo>/.alphie/baseline.json)")
	capture.set_defaults(func=cmd_baseline)
	show = baseline_sub.add_parser("show", help="Display a saved baseline")
	show.add_argument("file", help="Baseline JSON file")
	show.set_defaults(func=cmd_baseline)

	# gates
	gates_parser = subparsers.add_parser("gates", help="Run quality gates")
	gates_parser.add_argument("--repo", default=".", help="Repository path (default: .)")
	gates_parser.add_argument("--test", action="store_true", help="Run the test gate")
	gates_parser.add_argument("--build", action="store_true", help="Run the build gate")
	gates_parser.add_argument("--lint", action="store_true", help="Run the lint gate")
	gates_parser.add_argument("--typecheck", action="store_true", help="Run the typecheck gate")
	gates_parser.set_defaults(func=cmd_gates)

	# worktrees
	wt_parser = subparsers.add_parser("worktrees", help="List worktrees")
	wt_parser.add_argument("--repo", default=".", help="Repository path (default: .)")
	wt_parser.set_defaults(func=cmd_worktrees)

	# cleanup
	cleanup_parser = subparsers.add_parser("cleanup", help="Remove orphaned worktrees")
	cleanup_parser.add_argument("--repo", default=".", help="Repository path (default: .)")
	cleanup_parser.add_argument("--active", nargs="*", default=[], help="Session ids whose worktrees are kept")
	cleanup_parser.add_argument("--verbose", "-v", action="store_true", help="List each removed worktree")
	cleanup_parser.set_defaults(func=cmd_cleanup)

	# config
	config_parser = subparsers.add_parser("config", help="Show effective configuration")
	config_parser.set_defaults(func=cmd_config)

	return parser


def main(argv: list[str] | None = None) -> None:
	"""CLI entry point."""
	parser = build_parser()
	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(1)

	args.func(args)


if __name__ == "__main__":
	main()
