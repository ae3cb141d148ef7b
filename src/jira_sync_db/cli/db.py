"""Local store maintenance commands."""

from __future__ import annotations

from typing import Any

import typer
from rich.table import Table

from jira_sync_db.cli.common import (
    OutputFormatOption,
    ProjectFilterOption,
    console,
    open_context,
    print_json,
    run_async_command,
)
from jira_sync_db.config import get_settings
from jira_sync_db.db import RepairResult, Store, StoreHealth
from jira_sync_db.sync import OutputFormat

app = typer.Typer(help="Local database commands")


@app.command("init")
def init_db() -> None:
    """Create the schema and seed the status mappings."""

    async def _init() -> tuple[str, int]:
        async with open_context(require_remote=False) as ctx:
            return ctx.store.database_url, await ctx.repos.status_categories.count()

    url, mappings = run_async_command(_init(), error_prefix="Init failed")
    console.print(f"[green]Database ready:[/green] {url}")
    console.print(f"  Status mappings: {mappings}")


@app.command("health")
def health(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Report schema presence and read/write access (creates nothing)."""

    async def _check() -> StoreHealth:
        store = Store.from_settings(get_settings())
        try:
            return await store.health_check()
        finally:
            await store.close()

    report = run_async_command(_check(), error_prefix="Health check failed")

    if output_format == OutputFormat.JSON:
        print_json(report.to_dict())
    else:
        table = Table(title="Store health")
        table.add_column("Check", style="bold")
        table.add_column("Status")
        for name in ("db_exists", "tables_exist", "indexes_exist", "readable", "writable"):
            ok = getattr(report, name)
            table.add_row(name, "[green]ok[/green]" if ok else "[red]failed[/red]")
        console.print(table)
        if report.missing_tables:
            console.print(f"  Missing tables: {', '.join(report.missing_tables)}")
        if report.missing_indexes:
            console.print(f"  Missing indexes: {', '.join(report.missing_indexes)}")
        if report.error:
            console.print(f"  [red]Error:[/red] {report.error}")

    if not report.healthy:
        raise typer.Exit(1)


@app.command("repair")
def repair(output_format: OutputFormatOption = OutputFormat.TEXT) -> None:
    """Recreate missing tables and indexes without touching existing data."""

    async def _repair() -> RepairResult:
        store = Store.from_settings(get_settings())
        try:
            return await store.repair()
        finally:
            await store.close()

    result = run_async_command(_repair(), error_prefix="Repair failed")

    if output_format == OutputFormat.JSON:
        print_json(result.to_dict())
    elif not result.changed:
        console.print("[green]Schema complete, nothing to repair[/green]")
    else:
        for name in result.tables_repaired:
            console.print(f"  [yellow]Recreated table[/yellow] {name}")
        for name in result.indexes_repaired:
            console.print(f"  [yellow]Recreated index[/yellow] {name}")


@app.command("delete-project")
def delete_project(
    project_key: str = typer.Argument(..., help="Project key to delete"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """Delete a project and all its tickets, epics, sprints and history."""
    if not yes and not typer.confirm(f"Delete all local data of {project_key}?"):
        raise typer.Exit(1)

    async def _delete() -> dict[str, int]:
        async with open_context(require_remote=False) as ctx:
            return await ctx.repos.projects.delete_cascade(project_key)

    removed = run_async_command(_delete(), error_prefix="Delete failed")

    if output_format == OutputFormat.JSON:
        print_json({"project_key": project_key, "removed": removed})
        return
    if not removed.get("projects"):
        console.print(f"[yellow]Project {project_key} not found[/yellow]")
        return
    console.print(f"[green]Deleted {project_key}[/green]")
    for name, count in removed.items():
        if count:
            console.print(f"  {name}: {count}")


@app.command("seed-statuses")
def seed_statuses(
    update_tickets: bool = typer.Option(
        True, "--update-tickets/--no-update-tickets", help="Re-derive ticket categories afterwards"
    ),
) -> None:
    """Reload the status mappings from the configuration."""

    async def _seed() -> tuple[int, int | None]:
        async with open_context(require_remote=False) as ctx:
            loaded = await ctx.seed_status_mappings(reload=True)
            changed = await ctx.repos.status_categories.update_ticket_statuses() if update_tickets else None
            return loaded, changed

    loaded, changed = run_async_command(_seed(), error_prefix="Seed failed")
    console.print(f"[green]Loaded {loaded} status mappings[/green]")
    if changed is not None:
        console.print(f"  Updated {changed} tickets")


@app.command("update-statuses")
def update_statuses(project: ProjectFilterOption = None) -> None:
    """Re-derive ticket status categories from the current mappings."""

    async def _update() -> int:
        async with open_context(require_remote=False) as ctx:
            return await ctx.repos.status_categories.update_ticket_statuses(project)

    changed = run_async_command(_update(), error_prefix="Update failed")
    console.print(f"[green]Updated {changed} tickets[/green]")


@app.command("unmapped")
def unmapped(
    project: ProjectFilterOption = None,
    output_format: OutputFormatOption = OutputFormat.TEXT,
) -> None:
    """List raw statuses with no explicit category mapping."""

    async def _list() -> list[dict[str, Any]]:
        async with open_context(require_remote=False) as ctx:
            translator = await ctx.repos.status_categories.load_translator()
            names = await ctx.repos.status_categories.get_unmapped_statuses(project)
            return [{"status": name, "guessed_category": translator.translate(name).value} for name in names]

    rows = run_async_command(_list(), error_prefix="Query failed")

    if output_format == OutputFormat.JSON:
        print_json(rows)
        return
    if not rows:
        console.print("[green]Every status is mapped[/green]")
        return
    table = Table(title="Unmapped statuses")
    table.add_column("Status", style="cyan")
    table.add_column("Guessed category")
    for row in rows:
        table.add_row(row["status"], row["guessed_category"])
    console.print(table)
