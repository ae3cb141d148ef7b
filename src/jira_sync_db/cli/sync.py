"""Sync commands for Jira Sync DB."""

from __future__ import annotations

import typer
from rich.table import Table

from jira_sync_db.cli.common import (
    OutputFormatOption,
    console,
    open_context,
    parse_date,
    print_json,
    run_async_command,
)
from jira_sync_db.sync import AccessReport, OutputFormat, SyncResult

app = typer.Typer(help="Sync data from Jira into the local store")


def _report(result: SyncResult, output_format: OutputFormat) -> None:
    """Print a sync result and exit 1 when the run failed."""
    if output_format == OutputFormat.JSON:
        print_json(result.to_dict())
    else:
        status = "[green]done[/green]" if result.succeeded else "[red]done with errors[/red]"
        console.print(f"[bold]{result.sync_type.value.title()} sync[/bold] {status}")
        console.print(f"  Duration: {result.duration_seconds:.1f}s")

        counts = result.counts()
        if counts:
            table = Table(title="Fetched")
            table.add_column("Slice", style="cyan")
            table.add_column("Items", justify="right")
            for name, count in counts.items():
                table.add_row(name, str(count))
            console.print(table)

        if result.persisted is not None:
            stored = {k: v for k, v in result.persisted.to_dict().items() if v}
            summary = ", ".join(f"{k}={v}" for k, v in stored.items()) or "nothing"
            console.print(f"  Stored: {summary}")

        for error in result.errors:
            color = "red" if error.critical else "yellow"
            console.print(f"  [{color}]{error.phase}:[/{color}] {error.error}")

    if not result.succeeded:
        raise typer.Exit(1)


@app.command("full")
def sync_full(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Sync projects, users and every configured project's issues, epics and sprints.

    Examples:
        jirasync sync full
        jirasync sync full --format json
    """

    async def _sync() -> SyncResult:
        async with open_context() as ctx:
            return await ctx.orchestrator.full_sync()

    _report(run_async_command(_sync(), error_prefix="Sync failed"), output_format)


@app.command("incremental")
def sync_incremental(
    since: str | None = typer.Option(
        None,
        "--since",
        help="Only issues updated after this date (YYYY-MM-DD). Defaults to the last completed sync.",
    ),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Sync issues updated since a date, recently updated epics and all sprints.

    Examples:
        jirasync sync incremental
        jirasync sync incremental --since 2024-10-01
    """
    try:
        since_dt = parse_date(since)
    except typer.BadParameter as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    async def _sync() -> SyncResult:
        async with open_context() as ctx:
            return await ctx.orchestrator.incremental_sync(since_dt)

    _report(run_async_command(_sync(), error_prefix="Sync failed"), output_format)


@app.command("quick")
def sync_quick(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Sync current sprints, issues active this week and active epics."""

    async def _sync() -> SyncResult:
        async with open_context() as ctx:
            return await ctx.orchestrator.quick_sync()

    _report(run_async_command(_sync(), error_prefix="Sync failed"), output_format)


@app.command("attention")
def sync_attention(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Sync stale, blocked, high-priority, QA and overdue issues."""

    async def _sync() -> SyncResult:
        async with open_context() as ctx:
            return await ctx.orchestrator.attention_sync()

    _report(run_async_command(_sync(), error_prefix="Sync failed"), output_format)


@app.command("user")
def sync_user(
    account_id: str = typer.Argument(..., help="Jira account id"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Sync one user's assigned issues plus recently completed sprints."""

    async def _sync() -> SyncResult:
        async with open_context() as ctx:
            return await ctx.orchestrator.user_stats_sync(account_id)

    _report(run_async_command(_sync(), error_prefix="Sync failed"), output_format)


@app.command("validate")
def validate_access(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Check API access and every configured project."""

    async def _validate() -> AccessReport:
        async with open_context() as ctx:
            return await ctx.orchestrator.validate_access()

    report = run_async_command(_validate(), error_prefix="Validation failed")

    if output_format == OutputFormat.JSON:
        print_json(report.to_dict())
    elif not report.api_accessible:
        console.print(f"[red]API not accessible:[/red] {report.error}")
    else:
        console.print(f"[green]API accessible[/green] as {report.current_user or 'unknown user'}")
        for key in report.valid_projects:
            console.print(f"  [green]✓[/green] {key}")
        for entry in report.invalid_projects:
            console.print(f"  [red]✗[/red] {entry['key']}: {entry['error']}")

    if not report.success:
        raise typer.Exit(1)
