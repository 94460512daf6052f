"""Rich views for workflow results and run lists."""

from typing import Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ..orchestrator import WorkflowResult
from .utils import format_duration, status_style, status_text, syntax_lexer, truncate

STATUS_STYLES = {
	"pending": "dim",
	"running": "yellow",
	"completed": "green",
	"failed": "red",
	"cancelled": "magenta",
}


def render_workflow_result(result: WorkflowResult, console: Optional[Console] = None, show_steps: bool = False) -> None:
	"""Render the outcome of one run: questions, code, execution output, error."""
	console = console or Console()

	if result.needs_clarification and result.clarification_questions:
		lines = [f"{i}. {q}" for i, q in enumerate(result.clarification_questions, 1)]
		console.print(Panel("\n".join(lines), title="Clarification needed", border_style="yellow"))

	if result.generated_code:
		title = f"Generated {result.language or 'code'}"
		console.print(Panel(
			Syntax(result.generated_code, syntax_lexer(result.language), line_numbers=True),
			title=title,
			border_style="cyan",
		))
		if result.explanation:
			console.print(result.explanation)

	if result.execution_result is not None:
		execution = result.execution_result
		style = status_style(execution.success)
		body = [execution.output.rstrip() or "[dim](no output)[/dim]"]
		if execution.error:
			body.append(f"[red]{execution.error}[/red]")
		console.print(Panel(
			Group(*body),
			title=f"Execution [{style}]{status_text(execution.success)}[/{style}] ({execution.execution_time:.0f}ms)",
			border_style=style,
		))

	if show_steps:
		render_steps(result, console)

	status = result.status.value
	style = STATUS_STYLES.get(status, "white")
	summary = f"[{style}]{status}[/{style}]  [dim]{result.workflow_id}[/dim]"
	duration = result.metadata.get("duration")
	if duration is not None:
		summary += f"  [dim]{format_duration(duration)}[/dim]"
	if result.error:
		summary += f"\n[red]{result.error}[/red]"
	console.print(summary)


def render_steps(result: WorkflowResult, console: Optional[Console] = None) -> None:
	"""Render the step timeline of a run."""
	console = console or Console()
	steps = result.metadata.get("steps", [])
	if not steps:
		console.print("[dim]No steps recorded.[/dim]")
		return

	table = Table(title="Steps")
	table.add_column("Step", style="cyan")
	table.add_column("Duration", justify="right")
	table.add_column("Status", justify="center")
	table.add_column("Error")

	for step in steps:
		if step.get("skipped"):
			status = "[dim]skipped[/dim]"
		else:
			style = status_style(step["success"])
			status = f"[{style}]{status_text(step['success'])}[/{style}]"
		table.add_row(
			step["name"],
			format_duration(step["duration"]),
			status,
			truncate(step.get("error") or ""),
		)

	console.print(table)

