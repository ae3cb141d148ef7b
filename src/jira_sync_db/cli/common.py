"""Common CLI option factories and helpers.

It provides:
- `run_async_command`: Unified async execution with error handling for CLI commands
- `open_context`: Application context from the current settings
- Shared option aliases and output helpers
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Coroutine
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console

from jira_sync_db.config import get_settings
from jira_sync_db.context import AppContext
from jira_sync_db.errors import SyncError
from jira_sync_db.sync.enums import OutputFormat

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from synchronous CLI command with unified error handling.

    Classified failures print their category and message; anything else
    prints the exception text. Both exit with code 1.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        # Re-raise deliberate exits (e.g., from validation helpers)
        raise
    except SyncError as e:
        console.print(f"[red]{error_prefix}:[/red] ({e.error_type.value}) {e}")
        raise typer.Exit(1) from None
    except Exception as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


def open_context(*, require_remote: bool = True) -> AbstractAsyncContextManager[AppContext]:
    """Application context over the current settings."""
    return AppContext.create(get_settings(), require_remote=require_remote)


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def parse_date(date_str: str | None) -> datetime | None:
    """Parse YYYY-MM-DD or ISO date strings into naive UTC datetimes.

    Raises:
        typer.BadParameter: If the date string is invalid
    """
    if date_str is None:
        return None
    try:
        parsed = datetime.fromisoformat(date_str.replace("Z", "+00:00"))
    except ValueError:
        raise typer.BadParameter(
            f"Invalid date format: {date_str}. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS format."
        ) from None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


# Typer requires function calls as default arguments, which triggers B008.
# Using Annotated with a centralized type alias keeps the noqa in one place.

OutputFormatOption = Annotated[
    OutputFormat,
    typer.Option(
        "--format",
        "-f",
        help="Output format",
    ),
]
"""Output format option type for CLI commands.

Usage:
    def command(output_format: OutputFormatOption = OutputFormat.TEXT):
"""

ProjectFilterOption = Annotated[
    str | None,
    typer.Option(
        "--project",
        "-p",
        help="Limit to one project key",
    ),
]
"""Optional project filter option."""
