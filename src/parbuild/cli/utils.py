"""
CLI utility helpers - consoles and result rendering.
"""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from parbuild.models import RunSummary

console = Console()
err_console = Console(stderr=True)


def print_summary(summary: RunSummary) -> None:
    """Render a finished run as a table of targets."""
    if not summary.targets:
        console.print("[dim]No targets.[/dim]")
        return

    table = Table(title=f"Built {summary.total} target(s) in {summary.duration_seconds:.2f}s")
    table.add_column("target", overflow="fold")
    table.add_column("status")
    for target in summary.targets:
        outcome = summary.outcomes.get(target)
        if outcome is None:
            status = "[dim]-[/dim]"
        elif outcome.success:
            status = "[green]ok[/green]"
        else:
            status = "[red]failed[/red]"
        table.add_row(target, status)
    console.print(table)
