"""Rich terminal views for worktrees, gates, baselines and task results."""

from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .agent.worktree import Worktree
from .ralph.baseline import Baseline
from .ralph.gates import GateOutput, GateResult

GATE_STYLES = {
	GateResult.PASS: "green",
	GateResult.FAIL: "red",
	GateResult.ERROR: "red",
	GateResult.SKIP: "dim",
}


def format_duration(seconds: float) -> str:
	"""Format a duration for display. e.g. '1.2s', '45ms', '2m 3s'."""
	if seconds < 0.001:
		return "<1ms"
	if seconds < 1.0:
		return f"{seconds * 1000:.0f}ms"
	if seconds < 60.0:
		return f"{seconds:.1f}s"
	minutes = int(seconds // 60)
	secs = seconds % 60
	return f"{minutes}m {secs:.0f}s"


def status_style(success: bool) -> str:
	return "green" if success else "red"


def status_text(success: bool) -> str:
	return "OK" if success else "FAIL"


def optional_status(value: Optional[bool]) -> str:
	"""Markup for a tri-state check: not run, passed or failed."""
	if value is None:
		return "[dim]-[/dim]"
	style = status_style(value)
	return f"[{style}]{status_text(value)}[/{style}]"


def first_line(text: str, max_len: int = 80) -> str:
	"""First non-empty line of text, shortened for a table cell."""
	for line in text.splitlines():
		line = line.strip()
		if line:
			return line if len(line) <= max_len else line[:max_len - 3] + "..."
	return ""


def render_worktrees(worktrees: Iterable[Worktree], console: Optional[Console] = None) -> None:
	console = console or Console()
	worktrees = list(worktrees)
	if not worktrees:
		console.print("[dim]No worktrees found.[/dim]")
		return

	table = Table(title="Worktrees")
	table.add_column("Path", style="cyan")
	table.add_column("Branch")
	table.add_column("Agent")
	table.add_column("Managed", justify="center")

	for wt in worktrees:
		table.add_row(
			str(wt.path),
			wt.branch_name or "[dim](detached)[/dim]",
			wt.agent_id,
			"yes" if wt.is_managed else "",
		)
	console.print(table)


def render_gates(outputs: Iterable[GateOutput], console: Optional[Console] = None) -> None:
	"""Render one row per gate with its result, duration and first output line."""
	console = console or Console()
	outputs = list(outputs)
	if not outputs:
		console.print("[dim]No gates enabled.[/dim]")
		return

	table = Table(title="Quality Gates")
	table.add_column("Gate", style="cyan")
	table.add_column("Result", justify="center")
	table.add_column("Duration", justify="right")
	table.add_column("Output")

	for out in outputs:
		style = GATE_STYLES.get(out.result, "white")
		table.add_row(
			out.gate,
			f"[{style}]{out.result.value.upper()}[/{style}]",
			format_duration(out.duration),
			first_line(out.output),
		)
	console.print(table)


def render_baseline(baseline: Baseline, console: Optional[Console] = None) -> None:
	console = console or Console()
	console.print(f"\n[bold cyan]Baseline captured {baseline.captured_at.isoformat(timespec='seconds')}[/bold cyan]")

	sections = [
		("Failing tests", baseline.failing_tests),
		("Lint errors", baseline.lint_errors),
		("Type errors", baseline.type_errors),
	]
	table = Table()
	table.add_column("Category", style="cyan")
	table.add_column("Count", justify="right")
	table.add_column("Examples")
	for name, items in sections:
		table.add_row(name, str(len(items)), "\n".join(items[:5]))
	console.print(table)


def render_execution_result(result, console: Optional[Console] = None) -> None:
	"""Summary panel for an ExecutionResult."""
	console = console or Console()
	style = status_style(result.success)

	lines = [
		f"Status:     [{style}]{'SUCCESS' if result.success else 'FAILED'}[/{style}]",
		f"Agent:      {result.agent_id}",
		f"Model:      {result.model}",
		f"Duration:   {format_duration(result.duration)}",
		f"Tokens:     {result.tokens_used:,}",
		f"Cost:       ${result.cost:.4f}",
	]
	if result.loop_iterations or result.loop_exit_reason:
		lines.append(f"Ralph loop: {result.loop_iterations} iteration(s), {result.loop_exit_reason}")
	lines.append(f"Gates:      {optional_status(result.gates_passed)}")
	lines.append(f"Verified:   {optional_status(result.verify_passed)}")
	if result.verify_summary:
		lines.append(f"            {result.verify_summary}")
	if result.error:
		lines.append(f"Error:      [red]{result.error}[/red]")
	if result.log_file:
		lines.append(f"Log:        {result.log_file}")

	console.print(Panel("\n".join(lines), title="Task Result", border_style=style))

	if result.gate_results:
		render_gates(result.gate_results, console)

	for suggestion in result.suggested_learnings:
		console.print(
			f"[yellow]Suggested learning[/yellow] ({suggestion.confidence:.0%}): "
			f"WHEN {suggestion.condition} DO {suggestion.action}"
		)
