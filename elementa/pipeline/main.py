"""CLI entry point for the feed syndication core.

Commands:
    elementa import              Import feeds for configured connections
    elementa cleanup             Delete a connection's syndicated products
    elementa cleanup-prune       Delete finished cleanup runs past retention
    elementa throttle show       Show shared throttle state for a destination
    elementa throttle reset      Clear recovery state and reset batch size
    elementa throttle set-limit  Override the admission rate
    elementa mock-server         Run the mock storefront
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
import uvicorn
from rich.console import Console
from rich.table import Table

from elementa.destination.state_store import create_state_store
from elementa.mock_servers import create_mock_app
from elementa.destination.throttle import AdaptiveThrottle, destination_key
from elementa.models.config import ConfigManager, SyndicationConfig
from elementa.models.data_models import CleanupRun, CleanupType, CleanupWorkUnit, ImportRun, ThrottleState
from elementa.models.exceptions import CleanupConflictError
from elementa.pipeline.orchestrator import SyndicationOrchestrator
from elementa.pipeline.output import JSONOutputFormatter


console = Console()


def _load_config(ctx: click.Context, **overrides) -> SyndicationConfig:
    cli_overrides = {k: v for k, v in overrides.items() if v is not None}
    if ctx.obj.get("log_level"):
        cli_overrides["log_level"] = ctx.obj["log_level"].upper()
    return ConfigManager(ctx.obj["config_path"]).load_config(cli_overrides)


async def _close_store(store) -> None:
    closer = getattr(store, "aclose", None)
    if closer is not None:
        await closer()


@click.group()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(path_type=Path),
    default="config/config.yaml",
    help="Path to configuration YAML file",
)
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging level (overrides config)",
)
@click.version_option(version="0.1.0", prog_name="elementa")
@click.pass_context
def cli(ctx: click.Context, config_path: Path, log_level: Optional[str]) -> None:
    """
    Elementa - product feed syndication into partner storefronts.

    Examples:

        # Import every active connection
        $ elementa import

        # Count what a cleanup would delete
        $ elementa cleanup --connection 3 --dry-run

        # Inspect a destination's throttle
        $ elementa throttle show https://shop.example.com
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level


@cli.command("import")
@click.option("--connection", "-C", "connection_ids", type=int, multiple=True,
              help="Connection id to import (repeatable, default: all active)")
@click.option("--chunk-size", type=int, help="Records per chunk (overrides config)")
@click.option("--reconcile", is_flag=True, help="Delete listings not seen during the import")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Report JSON path (overrides config)")
@click.pass_context
def import_command(
    ctx: click.Context,
    connection_ids: Tuple[int, ...],
    chunk_size: Optional[int],
    reconcile: bool,
    output: Optional[Path],
) -> None:
    """Import feeds and syndicate products."""
    try:
        config = _load_config(ctx, chunk_size=chunk_size)
        orchestrator = SyndicationOrchestrator(config)
        ids = list(connection_ids) or [c.id for c in orchestrator.active_connections()]
        if not ids:
            console.print("[yellow]No active connections configured[/yellow]")
            sys.exit(0)

        runs = asyncio.run(_run_imports(orchestrator, ids, reconcile))

        output_path = output if output else config.output_path
        JSONOutputFormatter().save(str(output_path), import_runs=runs)
        _display_import_runs(runs)
        console.print(f"[bold]Report saved to:[/bold] {output_path}")
    except KeyError as e:
        console.print(f"[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)

    sys.exit(0 if all(r.status.value == "completed" for r in runs) else 1)


async def _run_imports(orchestrator: SyndicationOrchestrator, ids: List[int], reconcile: bool) -> List[ImportRun]:
    try:
        return [await orchestrator.run_import(cid, reconcile_stale=reconcile) for cid in ids]
    finally:
        await _close_store(orchestrator.store)


@cli.command()
@click.option("--connection", "-C", "connection_id", type=int, required=True, help="Connection id")
@click.option("--dry-run", is_flag=True, help="Count products without deleting")
@click.option("--type", "run_type", type=click.Choice([t.value for t in CleanupType]),
              default=CleanupType.CONNECTION.value, show_default=True, help="Cleanup type")
@click.option("--cutoff", type=int, help="Unix timestamp for stale cleanups")
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Report JSON path (overrides config)")
@click.pass_context
def cleanup(
    ctx: click.Context,
    connection_id: int,
    dry_run: bool,
    run_type: str,
    cutoff: Optional[int],
    output: Optional[Path],
) -> None:
    """Delete products syndicated by a connection."""
    try:
        config = _load_config(ctx)
        orchestrator = SyndicationOrchestrator(config)
        run = asyncio.run(_run_cleanup(
            orchestrator, CleanupWorkUnit(connection_id, dry_run), CleanupType(run_type), cutoff
        ))
    except CleanupConflictError as e:
        console.print(f"[red]Conflict:[/red] {e}", style="bold red")
        sys.exit(1)
    except KeyError as e:
        console.print(f"[red]Error:[/red] {e}", style="bold red")
        sys.exit(1)

    output_path = output if output else config.output_path
    JSONOutputFormatter().save(str(output_path), cleanup_runs=[run])
    _display_cleanup_run(run)
    sys.exit(0 if run.status.value == "completed" else 1)


async def _run_cleanup(orchestrator, unit, run_type, cutoff) -> CleanupRun:
    try:
        return await orchestrator.run_cleanup(unit, run_type=run_type, cutoff_timestamp=cutoff)
    finally:
        await _close_store(orchestrator.store)


@cli.command("cleanup-prune")
@click.option("--days", type=int, help="Retention in days (overrides config)")
@click.pass_context
def cleanup_prune(ctx: click.Context, days: Optional[int]) -> None:
    """Delete finished cleanup runs older than the retention period."""
    if days is not None and days < 0:
        raise click.BadParameter("days must not be negative", param_hint="--days")
    config = _load_config(ctx)
    orchestrator = SyndicationOrchestrator(config)
    try:
        removed = orchestrator.cleanup_service.prune(days)
    finally:
        asyncio.run(_close_store(orchestrator.store))

    retention = days if days is not None else config.cleanup_retention_days
    console.print(f"[green]Pruned {removed} cleanup run(s)[/green] older than {retention} days")


@cli.group()
def throttle() -> None:
    """Inspect and control shared destination throttle state."""


async def _throttle_call(config: SyndicationConfig, action):
    store = create_state_store(config.redis_url)
    try:
        return await action(AdaptiveThrottle.from_config(config, store))
    finally:
        await _close_store(store)


@throttle.command()
@click.argument("destination_url")
@click.pass_context
def show(ctx: click.Context, destination_url: str) -> None:
    """Show throttle state for DESTINATION_URL."""
    config = _load_config(ctx)
    key = destination_key(destination_url)
    state = asyncio.run(_throttle_call(config, lambda t: t.state(key)))
    _display_throttle_state(destination_url, state)


@throttle.command()
@click.argument("destination_url")
@click.option("--batch-size", type=int, help="Batch size to restore (clamped to [5, 50])")
@click.pass_context
def reset(ctx: click.Context, destination_url: str, batch_size: Optional[int]) -> None:
    """Clear recovery mode for DESTINATION_URL."""
    config = _load_config(ctx)
    key = destination_key(destination_url)
    state = asyncio.run(_throttle_call(config, lambda t: t.reset(key, batch_size)))
    console.print(f"[green]Throttle reset for {destination_url}[/green]")
    _display_throttle_state(destination_url, state)


@throttle.command("set-limit")
@click.argument("destination_url")
@click.argument("limit", type=int)
@click.option("--window", type=float, help="Window in seconds")
@click.pass_context
def set_limit(ctx: click.Context, destination_url: str, limit: int, window: Optional[float]) -> None:
    """Override the admission LIMIT for DESTINATION_URL."""
    if limit <= 0:
        raise click.BadParameter("limit must be positive", param_hint="LIMIT")
    config = _load_config(ctx)
    key = destination_key(destination_url)

    async def action(t: AdaptiveThrottle) -> ThrottleState:
        await t.set_admission_limit(key, limit, window)
        return await t.state(key)

    state = asyncio.run(_throttle_call(config, action))
    _display_throttle_state(destination_url, state)


@cli.command("mock-server")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address")
@click.option("--port", type=int, default=8001, show_default=True, help="Bind port")
@click.option("--fail-first", type=int, default=0, help="Answer the first N API calls with 503")
@click.option("--error-rate", type=float, default=0.0, help="Probability of a random 5xx")
@click.option("--seed", type=int, default=42, help="Random seed for injected errors")
def mock_server(host: str, port: int, fail_first: int, error_rate: float, seed: int) -> None:
    """Run the mock WooCommerce storefront for local syndication runs."""
    app = create_mock_app(
        name=f"mock-storefront-{port}",
        random_seed=seed,
        error_rate=error_rate,
        fail_first=fail_first,
    )
    console.print(f"[bold]Mock storefront listening on[/bold] http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


def _display_import_runs(runs: List[ImportRun]) -> None:
    table = Table(title="Import Runs")
    table.add_column("Run", style="cyan")
    table.add_column("Connection", style="cyan")
    table.add_column("Status")
    table.add_column("Processed", justify="right")
    table.add_column("Created", justify="right", style="green")
    table.add_column("Updated", justify="right", style="green")
    table.add_column("Skipped", justify="right", style="yellow")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Deleted", justify="right", style="magenta")

    for run in runs:
        table.add_row(
            str(run.id),
            str(run.connection_id),
            run.status.value,
            str(run.processed_records),
            str(run.created_records),
            str(run.updated_records),
            str(run.skipped_records),
            str(run.failed_records),
            str(run.deleted_records),
        )
    console.print(table)
    for run in runs:
        if run.error_message:
            console.print(f"[red]Run {run.id}:[/red] {run.error_message}")


def _display_cleanup_run(run: CleanupRun) -> None:
    table = Table(title=f"Cleanup Run {run.id}", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Connection", str(run.connection_id))
    table.add_row("Type", run.type.value)
    table.add_row("Status", run.status.value)
    table.add_row("Dry Run", "yes" if run.dry_run else "no")
    table.add_row("Found", str(run.products_found))
    table.add_row("Processed", str(run.products_processed))
    table.add_row("Failed", str(run.products_failed))
    if run.success_rate is not None:
        table.add_row("Success Rate", f"{run.success_rate:.1f}%")
    if run.error_summary:
        table.add_row("Errors", run.error_summary)
    console.print(table)


def _display_throttle_state(destination_url: str, state: ThrottleState) -> None:
    table = Table(title=f"Throttle: {destination_url}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Key", state.destination)
    table.add_row("Recovering", "yes" if state.recovering else "no")
    table.add_row("Recovery Time", f"{state.recovery_time:.0f}s")
    table.add_row("Batch Size", str(state.batch_size))
    table.add_row("Admission", f"{state.admission_limit} per {state.admission_window:.0f}s")
    console.print(table)


if __name__ == "__main__":
    cli()
