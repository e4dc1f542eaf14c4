"""Command-line interface for EngagementDB.

This module provides a Typer-based CLI for operating the reaction and lead
engagement core against the configured gateway.

Commands:
- init: Create the local SQLite database
- react: Toggle a user's reaction on a post or comment
- summary: Show reaction counts and the user's own reaction
- reactors: Show who reacted to a target
- view-lead: Record a CA's view of a lead
- viewers: Show distinct viewer counts for leads
- status: Show configuration, row counts and (optionally) metrics
- verify: Check that the gateway is reachable

Example:
    $ engagementdb init
    $ engagementdb react u1 post 42 like
    $ engagementdb summary u1 post 42 43
    $ engagementdb viewers lead-1 lead-2
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from engagementdb.config import GatewayBackend, MEMORY_DATABASE, settings
from engagementdb.logging import setup_logging as configure_logging
from engagementdb.metrics import generate_metrics_output
from engagementdb.models import ReactionType, Target, TargetType
from engagementdb.result import GatewayFailure
from engagementdb.service import EngagementService

T = TypeVar("T")

# Initialize CLI app
app = typer.Typer(
    name="engagementdb",
    help="Reaction counting and lead engagement tracking",
    add_completion=False,
)
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level.

    Log lines go to stderr so command output stays clean. With ``LOG_JSON``
    set they are JSON documents carrying the request context.

    Args:
        verbose: If True, set DEBUG level; otherwise WARNING
    """
    configure_logging(
        level="DEBUG" if verbose else "WARNING",
        json_logs=settings.log_json,
        log_file=settings.data_dir / "engagementdb.log" if settings.log_to_file else None,
        colorize=not settings.log_json,
        sink=sys.stderr,
    )


def run_async(coro: Awaitable[T]) -> T:
    """Run async coroutine in event loop."""
    return asyncio.run(coro)  # type: ignore[arg-type]


def with_service(action: Callable[[EngagementService], Awaitable[T]], failure: str) -> T:
    """Run an action against an initialized service, exiting 1 on failure."""

    async def _run() -> T:
        service = EngagementService()
        try:
            await service.initialize()
            return await action(service)
        finally:
            await service.close()

    try:
        return run_async(_run())
    except Exception as e:
        console.print(f"\n❌ [bold red]{failure}: {e}[/bold red]")
        raise typer.Exit(code=1)


def format_counts(counts: dict[ReactionType, int]) -> str:
    nonzero = [f"{reaction_type.value}={count}" for reaction_type, count in counts.items() if count]
    return ", ".join(nonzero) or "-"


VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")


# =============================================================================
# CLI Commands
# =============================================================================


@app.command()
def init(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force re-initialization (recreate database)",
    ),
    verbose: bool = VerboseOption,
) -> None:
    """Initialize the local database.

    Creates the SQLite database with the reaction, counter, profile and lead
    engagement tables. The hosted backend manages its own schema.

    Examples:
        $ engagementdb init
        $ engagementdb init --force
    """
    setup_logging(verbose)

    console.print("🏗️  [bold cyan]EngagementDB Initialization[/bold cyan]\n")

    if settings.gateway_backend == GatewayBackend.REST:
        console.print("ℹ️  The rest gateway manages its schema on the hosted backend.")
        return

    db_path = settings.database_path
    if db_path != MEMORY_DATABASE and db_path.exists():
        if not force:
            console.print(
                f"⚠️  Database already exists at {db_path}\n"
                "Use --force to recreate it."
            )
            return
        db_path.unlink()

    async def _init(service: EngagementService) -> None:
        return None

    with_service(_init, "Initialization failed")

    console.print(f"✅ Database created at [yellow]{db_path}[/yellow]")
    console.print("\n✅ [bold green]Initialization complete![/bold green]")


@app.command()
def react(
    user_id: str = typer.Argument(..., help="Reacting user"),
    target_type: TargetType = typer.Argument(..., help="Target kind"),
    target_id: int = typer.Argument(..., help="Target identifier"),
    reaction_type: ReactionType = typer.Argument(..., help="Reaction to toggle"),
    verbose: bool = VerboseOption,
) -> None:
    """Toggle a reaction: choosing the held reaction again removes it.

    Examples:
        $ engagementdb react u1 post 42 like
    """
    setup_logging(verbose)

    async def _react(service: EngagementService) -> Any:
        current = await service.toggle_reaction(user_id, target_type, target_id, reaction_type)
        summary = await service.get_reaction_summary(user_id, target_type, target_id)
        return current, summary

    current, summary = with_service(_react, "Reaction failed")

    target = Target.of(target_type, target_id)
    if current is None:
        console.print(f"✅ Removed {reaction_type.value} from [yellow]{target}[/yellow]")
    else:
        console.print(f"✅ Reacted {current.value} on [yellow]{target}[/yellow]")
    console.print(f"📊 Counts: {format_counts(summary.counts)} (total {summary.total})")


@app.command()
def summary(
    user_id: str = typer.Argument(..., help="Viewing user"),
    target_type: TargetType = typer.Argument(..., help="Target kind"),
    target_ids: list[int] = typer.Argument(..., help="Target identifiers"),
    verbose: bool = VerboseOption,
) -> None:
    """Show reaction counts, top reactors and the user's own reaction.

    Examples:
        $ engagementdb summary u1 post 42 43 44
    """
    setup_logging(verbose)

    targets = [Target.of(target_type, target_id) for target_id in target_ids]

    async def _summary(service: EngagementService) -> Any:
        return await service.get_reaction_summaries(user_id, targets)

    summaries = with_service(_summary, "Summary failed")

    table = Table(title=f"Reactions seen by {user_id}")
    table.add_column("Target", style="cyan")
    table.add_column("Counts", style="green")
    table.add_column("Total", justify="right", style="green")
    table.add_column("Mine", style="yellow")
    table.add_column("Reactors", style="magenta")

    for target, item in summaries.items():
        reactors = ", ".join(item.reactors)
        if item.total > len(item.reactors) and item.reactors:
            reactors += f" and {item.total - len(item.reactors)} others"
        table.add_row(
            str(target),
            format_counts(item.counts),
            str(item.total),
            item.my_reaction.value if item.my_reaction else "-",
            reactors or "-",
        )

    console.print(table)


@app.command()
def reactors(
    target_type: TargetType = typer.Argument(..., help="Target kind"),
    target_id: int = typer.Argument(..., help="Target identifier"),
    verbose: bool = VerboseOption,
) -> None:
    """Show everyone who reacted to a target, newest first.

    Examples:
        $ engagementdb reactors post 42
    """
    setup_logging(verbose)

    async def _reactors(service: EngagementService) -> Any:
        return await service.get_reactors(target_type, target_id)

    entries = with_service(_reactors, "Reactor lookup failed")

    if not entries:
        console.print(f"No reactions on {Target.of(target_type, target_id)}")
        return

    table = Table(title=f"Reactions on {Target.of(target_type, target_id)}")
    table.add_column("Name", style="cyan")
    table.add_column("Reaction", style="green")
    table.add_column("When", style="yellow")
    for entry in entries:
        table.add_row(
            entry.name,
            entry.reaction_type.value,
            entry.created_at.isoformat() if entry.created_at else "-",
        )
    console.print(table)


@app.command("view-lead")
def view_lead(
    lead_id: str = typer.Argument(..., help="Viewed lead"),
    ca_id: str = typer.Argument(..., help="Viewing CA"),
    verbose: bool = VerboseOption,
) -> None:
    """Record that a CA viewed a lead.

    Examples:
        $ engagementdb view-lead lead-1 ca-7
    """
    setup_logging(verbose)

    async def _view(service: EngagementService) -> Any:
        result = await service.record_lead_view(lead_id, ca_id)
        viewers = await service.get_lead_view_count(lead_id)
        return result, viewers

    result, viewers = with_service(_view, "Recording view failed")

    if isinstance(result, GatewayFailure):
        console.print(f"\n❌ [bold red]Recording view failed: {result.reason}[/bold red]")
        raise typer.Exit(code=1)

    console.print(f"👀 Recorded view of [yellow]{lead_id}[/yellow] by [yellow]{ca_id}[/yellow]")
    console.print(f"📊 Distinct viewers: {viewers}")


@app.command()
def viewers(
    lead_ids: list[str] = typer.Argument(..., help="Lead identifiers"),
    verbose: bool = VerboseOption,
) -> None:
    """Show how many distinct CAs viewed each lead.

    Examples:
        $ engagementdb viewers lead-1 lead-2
    """
    setup_logging(verbose)

    async def _viewers(service: EngagementService) -> Any:
        return await service.recorder.count_distinct_viewers_batch(lead_ids)

    counts = with_service(_viewers, "Viewer count failed")

    table = Table(title="Lead Viewers")
    table.add_column("Lead", style="cyan")
    table.add_column("Viewers", justify="right", style="green")
    for lead_id, count in counts.items():
        table.add_row(lead_id, str(count))
    console.print(table)


@app.command()
def status(
    show_metrics: bool = typer.Option(
        False, "--metrics", help="Also print Prometheus metrics for this run"
    ),
    verbose: bool = VerboseOption,
) -> None:
    """Show configuration and row counts.

    Examples:
        $ engagementdb status
        $ engagementdb status --metrics
    """
    setup_logging(verbose)

    console.print("📊 [bold cyan]EngagementDB Status[/bold cyan]\n")

    config_table = Table(title="Configuration", show_header=False)
    config_table.add_column("Key", style="cyan")
    config_table.add_column("Value", style="yellow")

    config_table.add_row("Environment", settings.environment.value)
    config_table.add_row("Gateway", settings.gateway_backend.value)
    if settings.gateway_backend == GatewayBackend.REST:
        config_table.add_row("REST Endpoint", settings.rest_endpoint)
        config_table.add_row("Gateway Key", settings.redact_key())
    else:
        config_table.add_row("Database Path", str(settings.database_path))
    config_table.add_row("Atomic Writes", str(settings.atomic_reaction_writes))
    config_table.add_row("Unique Engagement", str(settings.enforce_unique_engagement))

    console.print(config_table)
    console.print()

    async def _stats(service: EngagementService) -> Any:
        return await service.get_statistics()

    stats = with_service(_stats, "Status failed")

    stats_table = Table(title="Row Counts")
    stats_table.add_column("Table", style="cyan")
    stats_table.add_column("Rows", justify="right", style="green")
    for table_name, count in stats.items():
        stats_table.add_row(table_name, f"{count:,}")
    console.print(stats_table)

    if show_metrics:
        console.print()
        console.print(generate_metrics_output().decode(), markup=False, highlight=False)


@app.command()
def verify(verbose: bool = VerboseOption) -> None:
    """Check that the configured gateway is reachable.

    Examples:
        $ engagementdb verify
    """
    setup_logging(verbose)

    console.print("🔐 [bold cyan]EngagementDB Connectivity[/bold cyan]\n")
    console.print(f"🌐 Gateway: [yellow]{settings.gateway_backend.value}[/yellow]")

    async def _verify(service: EngagementService) -> Any:
        return await service.verify()

    with_service(_verify, "Verification failed")
    console.print("\n✅ [bold green]Gateway reachable![/bold green]")


def main() -> None:
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
