"""Main CLI entry point."""

import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
from botocore.exceptions import BotoCoreError
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn

from stackwright import __version__
from stackwright.adapters.registry import AdapterRegistry, build_aws_registry
from stackwright.cli.output import (
    echo_json,
    format_summary,
    render_drift,
    render_plan,
    render_rollback,
    render_run,
    render_state,
)
from stackwright.config.models import DeclarationSet, RollbackMode
from stackwright.config.parser import format_errors, load_declarations
from stackwright.orchestrator.dependency_graph import DependencyGraph
from stackwright.orchestrator.executor import Outcome
from stackwright.orchestrator.orchestrator import Orchestrator
from stackwright.orchestrator.planner import Planner
from stackwright.state.store import FileStateStore
from stackwright.utils.aws_client import AWSClientManager
from stackwright.utils.errors import ConfigValidationError, OrchestratorError, ValidationError
from stackwright.utils.logging import get_logger, setup_logging

console = Console()
logger = get_logger(__name__)

EXIT_FAILED = 1
EXIT_INVALID = 2


@click.group()
@click.version_option(__version__, prog_name='stackwright')
@click.option('--profile', help='AWS profile to use')
@click.option('--region', help='AWS region, overrides the declaration file')
@click.option('--log-level', default='info', type=click.Choice(['debug', 'info', 'warning', 'error']))
@click.option('--log-file/--no-log-file', default=True,
              help='Write JSON-lines logs under .stackwright/logs')
@click.pass_context
def cli(ctx, profile, region, log_level, log_file):
    """Declarative provisioning for AWS infrastructure."""
    ctx.ensure_object(dict)
    ctx.obj['profile'] = profile
    ctx.obj['region'] = region
    ctx.obj['log_level'] = log_level

    setup_logging(log_level, log_dir=Path('.stackwright') / 'logs' if log_file else None)


def load_or_exit(path: str, overrides: Optional[Dict[str, Any]] = None) -> DeclarationSet:
    """Load a declaration file, exiting with status 2 if it is invalid."""
    try:
        return load_declarations(path, overrides)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(EXIT_INVALID)
    except ConfigValidationError as e:
        console.print("[red]Declaration validation failed:[/red]\n")
        for line in format_errors(e):
            console.print(f"  - {line}")
        sys.exit(EXIT_INVALID)


def invalid(error: ValidationError) -> None:
    """Report a validation error and exit with status 2."""
    console.print(f"[red]Validation failed:[/red] {error.message}")
    for suggestion in error.suggestions:
        console.print(f"  [dim]- {suggestion}[/dim]")
    sys.exit(EXIT_INVALID)


def failed(error: OrchestratorError) -> None:
    """Report a run-level error and exit with status 1."""
    console.print(error.to_user_message(), markup=False)
    sys.exit(EXIT_FAILED)


def state_store_for(declarations: DeclarationSet) -> FileStateStore:
    return FileStateStore(str(declarations.resolve_state_path()))


def build_adapters(ctx: click.Context, declarations: DeclarationSet) -> AdapterRegistry:
    """Create the boto3-backed adapter registry for a run."""
    client_manager = AWSClientManager(
        profile=ctx.obj.get('profile'),
        region=ctx.obj.get('region') or declarations.region,
        max_pool_connections=max(10, declarations.settings.concurrency * 2)
    )
    try:
        return build_aws_registry(client_manager)
    except BotoCoreError as e:
        console.print(f"[red]Error creating AWS session:[/red] {e}")
        sys.exit(EXIT_FAILED)


class RichProgress:
    """Progress callback that displays updates using Rich."""

    def __init__(self, progress: Progress, task_id):
        self.progress = progress
        self.task_id = task_id
        self.completed = 0

    def __call__(self, resource_id: str, outcome: Optional[Outcome], message: str) -> None:
        if outcome is None:
            self.progress.update(self.task_id, description=f"[cyan]{message}:[/cyan] {resource_id}")
            return

        self.completed += 1
        status = {
            Outcome.SUCCEEDED: "[green]✓[/green]",
            Outcome.FAILED: "[red]✗[/red]",
            Outcome.SKIPPED: "[yellow]○[/yellow]",
        }[outcome]
        self.progress.update(
            self.task_id,
            completed=self.completed,
            description=f"{status} {resource_id}"
        )


def run_with_progress(orchestrator_factory, total: int, description: str, action):
    """Build an orchestrator bound to a rich progress bar and run ``action`` on it."""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True
    ) as progress:
        task_id = progress.add_task(description, total=total or None)
        orchestrator = orchestrator_factory(RichProgress(progress, task_id))
        return action(orchestrator)


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
def validate(file):
    """Validate a declaration file and its dependency graph."""
    declarations = load_or_exit(file)
    try:
        graph = DependencyGraph.from_declarations(declarations)
    except ValidationError as e:
        invalid(e)

    waves = graph.get_deployment_waves()
    console.print(Panel.fit(
        f"[green]✓ Declarations are valid[/green]\n\n"
        f"Environment: {declarations.environment}\n"
        f"Resources: {graph.size()}\n"
        f"Dependency levels: {len(waves)}",
        title="Validation",
        border_style="green"
    ))


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.option('--state', 'state_path', help='State file path')
def plan(file, output_format, state_path):
    """Show what apply would change."""
    declarations = load_or_exit(file, {'state_path': state_path})
    store = state_store_for(declarations)

    try:
        result = Planner().create_plan(declarations, store.all())
    except ValidationError as e:
        invalid(e)
    except OrchestratorError as e:
        failed(e)

    if output_format == 'json':
        echo_json(result.to_dict())
        return

    render_plan(console, result, title=f"Plan - Environment: {declarations.environment}")
    if not result.has_changes():
        console.print("\n[green]No changes. Infrastructure matches the declarations.[/green]")


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--concurrency', type=int, help='Maximum concurrent adapter calls')
@click.option('--timeout', type=float, help='Run timeout in seconds')
@click.option('--rollback', type=click.Choice([m.value for m in RollbackMode]),
              help='Roll back changes made by a run with failures')
@click.option('--state', 'state_path', help='State file path')
@click.pass_context
def apply(ctx, file, concurrency, timeout, rollback, state_path):
    """Apply declarations, creating, updating and deleting resources."""
    declarations = load_or_exit(file, {
        'concurrency': concurrency,
        'timeout': timeout,
        'rollback': rollback,
        'state_path': state_path,
    })
    store = state_store_for(declarations)

    try:
        adapters = build_adapters(ctx, declarations)
        planned = Orchestrator(declarations, store, adapters).plan()
    except ValidationError as e:
        invalid(e)
    except OrchestratorError as e:
        failed(e)

    console.print(f"Environment: [bold]{declarations.environment}[/bold]  "
                  f"{format_summary(planned.summary())}")

    def factory(callback):
        return Orchestrator(declarations, store, adapters, progress_callback=callback)

    try:
        outcome = run_with_progress(
            factory, len(planned), "[cyan]Applying...", lambda o: o.apply()
        )
    except ValidationError as e:
        invalid(e)
    except OrchestratorError as e:
        failed(e)

    render_run(console, outcome.run, title="Apply")
    if outcome.rollback is not None:
        render_rollback(console, outcome.rollback)

    if not outcome.is_success():
        sys.exit(EXIT_FAILED)


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--state', 'state_path', help='State file path')
@click.option('--yes', '-y', is_flag=True, help='Skip confirmation prompt')
@click.pass_context
def destroy(ctx, file, state_path, yes):
    """Delete every resource recorded in state."""
    declarations = load_or_exit(file, {'state_path': state_path})
    store = state_store_for(declarations)

    try:
        snapshot = store.all()
    except OrchestratorError as e:
        failed(e)

    if snapshot.is_empty():
        console.print(f"[yellow]Nothing recorded for environment:[/yellow] {declarations.environment}")
        return

    console.print(Panel.fit(
        f"[bold red]⚠ WARNING: This will delete {len(snapshot.resources)} resources[/bold red]\n\n"
        f"Environment: {declarations.environment}\n"
        f"State: {store.state_path}",
        title="Destroy",
        border_style="red"
    ))
    if not yes:
        click.confirm("Do you want to continue?", abort=True)

    try:
        adapters = build_adapters(ctx, declarations)

        def factory(callback):
            return Orchestrator(declarations, store, adapters, progress_callback=callback)

        outcome = run_with_progress(
            factory, len(snapshot.resources), "[red]Destroying...", lambda o: o.destroy()
        )
    except OrchestratorError as e:
        failed(e)

    render_run(console, outcome.run, title="Destroy")
    if not outcome.is_success():
        sys.exit(EXIT_FAILED)


@cli.command()
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.option('--state', 'state_path', help='State file path')
@click.pass_context
def drift(ctx, file, output_format, state_path):
    """Compare recorded state with the live resources."""
    declarations = load_or_exit(file, {'state_path': state_path})
    store = state_store_for(declarations)

    try:
        adapters = build_adapters(ctx, declarations)
        reports = Orchestrator(declarations, store, adapters).detect_drift()
    except OrchestratorError as e:
        failed(e)

    if output_format == 'json':
        echo_json([report.to_dict() for report in reports])
    else:
        render_drift(console, reports)

    drifted = [report for report in reports if report.has_drift]
    if drifted:
        if output_format == 'table':
            console.print(f"\n[yellow]{len(drifted)} resources drifted[/yellow]")
        sys.exit(EXIT_FAILED)


@cli.group()
def state():
    """Inspect recorded state."""
    pass


@state.command('list')
@click.argument('file', type=click.Path(dir_okay=False))
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']), default='table',
              help='Output format')
@click.option('--state', 'state_path', help='State file path')
def list_state(file, output_format, state_path):
    """List resources recorded in state."""
    declarations = load_or_exit(file, {'state_path': state_path})
    store = state_store_for(declarations)

    try:
        snapshot = store.all()
    except OrchestratorError as e:
        failed(e)

    if output_format == 'json':
        echo_json(snapshot.to_dict())
    else:
        render_state(console, snapshot, declarations.environment)


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == '__main__':
    main()
