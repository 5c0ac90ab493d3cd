"""Rendering of plans, run results, state and drift reports."""

import json
from typing import Any, Dict, List

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stackwright.orchestrator.executor import Outcome, RunResult
from stackwright.orchestrator.orchestrator import DriftReport, DriftStatus
from stackwright.orchestrator.planner import Plan, PlanAction
from stackwright.orchestrator.rollback import RollbackResult
from stackwright.state.models import StateSnapshot

ACTION_STYLES = {
    PlanAction.CREATE: ("+", "green"),
    PlanAction.UPDATE: ("~", "yellow"),
    PlanAction.DELETE: ("-", "red"),
    PlanAction.NOOP: (" ", "dim"),
}

OUTCOME_STYLES = {
    Outcome.SUCCEEDED: ("✓", "green"),
    Outcome.FAILED: ("✗", "red"),
    Outcome.SKIPPED: ("○", "yellow"),
}

DRIFT_STYLES = {
    DriftStatus.IN_SYNC: "green",
    DriftStatus.MODIFIED: "yellow",
    DriftStatus.MISSING: "red",
    DriftStatus.ERROR: "red",
}


def echo_json(data: Any) -> None:
    """Write JSON to stdout without rich wrapping."""
    click.echo(json.dumps(data, indent=2, default=str))


def render_plan(console: Console, plan: Plan, title: str = "Plan") -> None:
    """Print a plan as a table followed by its summary."""
    if not plan.entries:
        console.print("[dim]No resources declared or recorded[/dim]")
        return

    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("Resource", style="cyan")
    table.add_column("Type")
    table.add_column("Action")
    table.add_column("Requires", style="dim")

    for entry in plan.entries:
        symbol, style = ACTION_STYLES[entry.action]
        table.add_row(
            f"[{style}]{symbol}[/{style}]",
            entry.resource_id,
            entry.resource_type.value,
            f"[{style}]{entry.action.value}[/{style}]",
            ", ".join(entry.prerequisites)
        )

    console.print(table)
    console.print(format_summary(plan.summary()))


def format_summary(summary: Dict[str, int]) -> str:
    return (
        f"[green]{summary[PlanAction.CREATE.value]} to create[/green], "
        f"[yellow]{summary[PlanAction.UPDATE.value]} to update[/yellow], "
        f"[red]{summary[PlanAction.DELETE.value]} to delete[/red], "
        f"[dim]{summary[PlanAction.NOOP.value]} unchanged[/dim]"
    )


def render_run(console: Console, run: RunResult, title: str = "Apply") -> None:
    """Print run results and a summary panel."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("", width=1)
    table.add_column("Resource", style="cyan")
    table.add_column("Action")
    table.add_column("Outcome")
    table.add_column("External ID")
    table.add_column("Attempts", justify="right")

    for result in run.results:
        symbol, style = OUTCOME_STYLES[result.outcome]
        table.add_row(
            f"[{style}]{symbol}[/{style}]",
            result.resource_id,
            result.action.value,
            f"[{style}]{result.outcome.value}[/{style}]",
            result.external_id or "",
            str(result.attempts) if result.attempts else ""
        )

    if run.results:
        console.print(table)

    counts = run.counts()
    if run.is_success():
        border, headline = "green", "[green]✓ All changes applied[/green]"
    else:
        border, headline = "red", f"[red]✗ {counts['failed']} resources failed[/red]"

    lines = [
        headline,
        "",
        f"Succeeded: {counts['succeeded']}",
        f"Failed: {counts['failed']}",
        f"Skipped: {counts['skipped']}",
        f"Duration: {run.duration:.2f}s",
    ]
    if run.timed_out:
        lines.append("[yellow]Run timed out; unfinished resources were skipped[/yellow]")

    console.print()
    console.print(Panel.fit("\n".join(lines), title=title, border_style=border))

    failed = run.failed()
    if failed:
        console.print("\n[bold]Failed Resources:[/bold]")
        for result in failed:
            cause = result.error.message if result.error else "unknown error"
            console.print(f"  [red]✗[/red] {result.resource_id}: {cause}")
            if result.error and result.error.suggestions:
                for suggestion in result.error.suggestions:
                    console.print(f"      [dim]- {suggestion}[/dim]")


def render_rollback(console: Console, rollback: RollbackResult) -> None:
    """Print what a rollback restored, destroyed and could not undo."""
    lines = [
        f"Destroyed: {', '.join(rollback.destroyed_resources) or 'none'}",
        f"Restored: {', '.join(rollback.restored_resources) or 'none'}",
    ]
    if rollback.failed_operations:
        lines.append("[red]Not rolled back:[/red]")
        lines.extend(f"  {rid}: {cause}" for rid, cause in rollback.failed_operations.items())
    if rollback.irreversible:
        lines.append(f"[yellow]Deleted, cannot be restored: {', '.join(rollback.irreversible)}[/yellow]")

    border = "green" if rollback.is_success() else "red"
    console.print(Panel.fit("\n".join(lines), title="Rollback", border_style=border))


def render_state(console: Console, snapshot: StateSnapshot, environment: str) -> None:
    """Print the recorded state as a table."""
    if snapshot.is_empty():
        console.print(f"[dim]No resources recorded for environment '{environment}'[/dim]")
        return

    table = Table(title=f"State - Environment: {environment}", show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Type")
    table.add_column("External ID")
    table.add_column("Depends On", style="dim")
    table.add_column("Updated")

    for resource_id in snapshot.ids():
        entry = snapshot.get(resource_id)
        table.add_row(
            resource_id,
            entry.resource_type.value,
            f"{entry.external_id} [yellow](pending)[/yellow]" if entry.pending else entry.external_id,
            ", ".join(entry.depends_on),
            entry.updated_at.strftime('%Y-%m-%d %H:%M:%S')
        )

    console.print(table)


def render_drift(console: Console, reports: List[DriftReport]) -> None:
    """Print drift reports."""
    if not reports:
        console.print("[dim]No resources recorded[/dim]")
        return

    table = Table(title="Drift", show_header=True, header_style="bold")
    table.add_column("Resource", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Details")

    for report in reports:
        style = DRIFT_STYLES.get(report.status, "white")
        if report.error:
            details = report.error
        else:
            details = "; ".join(
                f"{key}: {recorded!r} -> {live!r}"
                for key, (recorded, live) in report.differences.items()
            )
        table.add_row(
            report.resource_id,
            report.resource_type,
            f"[{style}]{report.status}[/{style}]",
            details
        )

    console.print(table)
