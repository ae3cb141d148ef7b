"""Cache inspection and refresh commands."""

from __future__ import annotations

from typing import Any

import typer
from rich.table import Table

from jira_sync_db.cache import GROUP_KEYS, FreshnessGroup
from jira_sync_db.cli.common import OutputFormatOption, console, open_context, print_json, run_async_command
from jira_sync_db.errors import SyncError
from jira_sync_db.sync import OutputFormat

app = typer.Typer(help="Freshness cache commands")


def _group_of(key: str) -> FreshnessGroup:
    for group, keys in GROUP_KEYS.items():
        if key in keys:
            return group
    choices = ", ".join(k for keys in GROUP_KEYS.values() for k in keys)
    console.print(f"[red]Error:[/red] Unknown cache key '{key}'. Choose one of: {choices}")
    raise typer.Exit(1)


@app.command("show")
def show(
    key: str = typer.Argument(..., help="projects, users, epics, sprints or current_sprints"),
    output_format: OutputFormatOption = OutputFormat.JSON,
) -> None:
    """Print a cached value, syncing its group first when stale."""
    group = _group_of(key)

    async def _show() -> Any:
        async with open_context() as ctx:
            return await ctx.cache.get(group, key)

    value = run_async_command(_show(), error_prefix="Cache read failed")

    if output_format == OutputFormat.JSON:
        print_json(value)
        return
    if isinstance(value, dict):
        for name, item in value.items():
            size = len(item) if isinstance(item, list) else int(item is not None)
            console.print(f"  [cyan]{name}[/cyan]: {size}")
    else:
        console.print(f"  {len(value or [])} {key}")


@app.command("refresh")
def refresh(
    group: FreshnessGroup | None = typer.Argument(None, help="Group to refresh (default: all)"),  # noqa: B008
) -> None:
    """Sync a freshness group (or every group) now."""

    async def _refresh() -> dict[FreshnessGroup, SyncError | None]:
        async with open_context() as ctx:
            if group is None:
                return await ctx.cache.sync_all()
            try:
                await ctx.cache.sync_group(group)
            except SyncError as exc:
                return {group: exc}
            return {group: None}

    outcome = run_async_command(_refresh(), error_prefix="Refresh failed")
    failed = False
    for name, error in outcome.items():
        if error is None:
            console.print(f"[green]Refreshed {name.value}[/green]")
        else:
            failed = True
            console.print(f"[red]{name.value}:[/red] {error}")
    if failed:
        raise typer.Exit(1)


@app.command("status")
def status(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Show the age and TTL of every group."""

    async def _status() -> list[dict[str, Any]]:
        async with open_context(require_remote=False) as ctx:
            return ctx.cache.status()

    report = run_async_command(_status(), error_prefix="Status failed")

    if output_format == OutputFormat.JSON:
        print_json(report)
        return
    table = Table(title="Cache freshness")
    table.add_column("Group", style="bold")
    table.add_column("Synced at")
    table.add_column("Age (s)", justify="right")
    table.add_column("TTL (s)", justify="right")
    table.add_column("Fresh")
    for row in report:
        table.add_row(
            row["group"],
            row["synced_at"] or "never",
            "-" if row["age_seconds"] is None else str(row["age_seconds"]),
            str(row["ttl_seconds"]),
            "[green]yes[/green]" if row["fresh"] else "[yellow]no[/yellow]",
        )
    console.print(table)
