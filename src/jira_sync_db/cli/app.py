"""Entry point of the jirasync command line."""

from pathlib import Path
from typing import Annotated

import typer

from jira_sync_db import __version__
from jira_sync_db.cli import cache as cache_cmd
from jira_sync_db.cli import db as db_cmd
from jira_sync_db.cli import sync as sync_cmd
from jira_sync_db.cli.common import console
from jira_sync_db.config import Settings, get_settings
from jira_sync_db.logging import setup_logging

app = typer.Typer(
    name="jirasync",
    help="Resilient Jira sync with a local SQLite store and freshness cache.",
    add_completion=False,
)


def _show_version(value: bool) -> None:
    if not value:
        return
    console.print(f"jirasync version {__version__}")
    raise typer.Exit()


def _configure_logging(settings: Settings, *, verbose: bool, quiet: bool) -> None:
    """Apply the logging settings, with the verbosity flags taking precedence."""
    sinks = settings.logging
    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(sinks.log_file) if sinks.log_file else None,
        rotation=sinks.rotation,
        retention=sinks.retention,
        serialize=sinks.serialize,
    )


VersionFlag = Annotated[
    bool,
    typer.Option("--version", help="Print the jirasync version and exit.", callback=_show_version, is_eager=True),
]
VerboseFlag = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Log debug output, including each API and store call."),
]
QuietFlag = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only log warnings and errors."),
]


@app.callback()
def main(version: VersionFlag = False, verbose: VerboseFlag = False, quiet: QuietFlag = False) -> None:
    """Sync Jira projects, tickets and sprints into a local store."""
    if verbose and quiet:
        raise typer.BadParameter("--verbose and --quiet cannot be combined")
    _configure_logging(get_settings(), verbose=verbose, quiet=quiet)


for name, group in (("sync", sync_cmd.app), ("db", db_cmd.app), ("cache", cache_cmd.app)):
    app.add_typer(group, name=name)


if __name__ == "__main__":
    app()
