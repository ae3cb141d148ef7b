"""Base repository pattern over the Store primitives.

Provides keyed lookups and idempotent upserts shared by every
entity repository. Rows are plain dictionaries keyed by column name.
"""

from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, ClassVar

from sqlalchemy import Table

from jira_sync_db.db.store import Store


def utc_now() -> datetime:
    """Naive UTC timestamp (the store's datetime convention)."""
    return datetime.now(UTC).replace(tzinfo=None)


class BaseRepository:
    """Base repository bound to one table.

    Subclasses set `table` and `key_column`.

    Usage:
        class ProjectRepository(BaseRepository):
            table = models.projects
            key_column = "key"

            async def get_active(self) -> list[dict[str, Any]]:
                return await self._store.select_where(self.table, {"active": True})

    Writes go through the store, which serializes them; call several
    repository methods inside `store.transaction()` to make them atomic.
    """

    table: ClassVar[Table]
    key_column: ClassVar[str]
    # Row timestamp refreshed on every write (None if the table has none)
    synced_column: ClassVar[str | None] = "synced_at"

    def __init__(self, store: Store, *, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize the repository.

        Args:
            store: Store shared by all repositories of the application
            clock: Source of naive UTC timestamps (injectable for tests)
        """
        self._store = store
        self._clock = clock

    @property
    def store(self) -> Store:
        return self._store

    def _stamp(self, row: Mapping[str, Any]) -> dict[str, Any]:
        stamped = dict(row)
        if self.synced_column and self.synced_column in self.table.c:
            stamped[self.synced_column] = self._clock()
        return stamped

    # -------------------------------------------------------------------------
    # Common Read Operations
    # -------------------------------------------------------------------------

    async def get(self, key: Any) -> dict[str, Any] | None:
        """Get a row by its key, or None."""
        return await self._store.select_one(self.table, {self.key_column: key})

    async def exists(self, key: Any) -> bool:
        return await self._store.exists(self.table, {self.key_column: key})

    async def count(self, where: Mapping[str, Any] | None = None) -> int:
        return await self._store.count_where(self.table, where)

    # -------------------------------------------------------------------------
    # Common Write Operations
    # -------------------------------------------------------------------------

    async def upsert(self, row: Mapping[str, Any]) -> None:
        """Insert or update a row keyed by its primary key."""
        await self._store.upsert_row(self.table, self._stamp(row))

    async def upsert_batch(self, rows: Sequence[Mapping[str, Any]]) -> int:
        """Upsert many rows in one transaction."""
        return await self._store.upsert_rows(self.table, [self._stamp(r) for r in rows])

    async def delete(self, key: Any) -> int:
        return await self._store.delete_where(self.table, {self.key_column: key})
