"""Async SQLAlchemy engine creation for the local SQLite store."""

from pathlib import Path

from sqlalchemy import pool
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from jira_sync_db.errors import DatabaseError
from jira_sync_db.logging import get_logger

logger = get_logger(__name__)

_WRITE_TEST_FILE = ".write_test"


def sqlite_path(database_url: str) -> Path | None:
    """Database file of a SQLite URL (None for in-memory databases)."""
    url = make_url(database_url)
    if not url.get_backend_name().startswith("sqlite"):
        return None
    database = url.database
    if not database or database == ":memory:" or database.startswith("file::memory:"):
        return None
    return Path(database)


def ensure_writable_directory(directory: Path) -> None:
    """Create a directory if needed and prove it is writable.

    Raises:
        DatabaseError: The directory cannot be created or written to
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
        marker = directory / _WRITE_TEST_FILE
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
    except OSError as exc:
        raise DatabaseError(
            f"State directory {directory} is not writable: {exc}",
            context="store",
            details={"directory": str(directory)},
        ) from exc


def create_engine_for(database_url: str, *, echo: bool = False) -> AsyncEngine:
    """Create the async engine for a database URL.

    File databases get their directory created and checked for write access first.
    """
    path = sqlite_path(database_url)
    if path is not None:
        ensure_writable_directory(path.parent)
        logger.debug("Opening database at {}", path)
        poolclass: type[pool.Pool] = pool.NullPool  # Avoids "database is locked" across pooled handles
    else:
        # A single shared connection keeps an in-memory database alive
        poolclass = pool.StaticPool

    return create_async_engine(
        database_url,
        echo=echo,
        poolclass=poolclass,
    )
