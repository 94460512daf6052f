"""Rich views for provider models and usage counters."""

from typing import Optional

from rich.console import Console
from rich.table import Table

from ..gateway import LLMGateway
from .utils import format_duration


def render_models(gateway: LLMGateway, console: Optional[Console] = None) -> None:
	"""Render configured providers, availability and models."""
	console = console or Console()

	table = Table(title="Providers")
	table.add_column("Provider", style="cyan")
	table.add_column("Available", justify="center")
	table.add_column("Models")

	for name in gateway.provider_names:
		available = gateway.is_provider_available(name)
		table.add_row(
			name,
			"[green]yes[/green]" if available else "[red]no[/red]",
			", ".join(gateway.get_available_models(name)),
		)

	console.print(table)


def render_usage(gateway: LLMGateway, console: Optional[Console] = None) -> None:
	"""Render per-provider request counters."""
	console = console or Console()
	usage = gateway.get_usage_stats()

	if not usage:
		console.print("[dim]No provider calls recorded yet.[/dim]")
		return

	table = Table(title="Provider Usage")
	table.add_column("Provider", style="cyan")
	table.add_column("Requests", justify="right")
	table.add_column("Success %", justify="right")
	table.add_column("Tokens", justify="right")
	table.add_column("Cost", justify="right")
	table.add_column("Avg Latency", justify="right")

	for name, stats in usage.items():
		rate = (stats.successes / stats.requests * 100) if stats.requests else 0.0
		rate_style = "green" if rate >= 90 else ("yellow" if rate >= 70 else "red")
		table.add_row(
			name,
			str(stats.requests),
			f"[{rate_style}]{rate:.1f}%[/{rate_style}]",
			str(stats.total_tokens),
			f"${stats.cost_estimate:.4f}",
			format_duration(stats.average_latency),
		)

	console.print(table)
