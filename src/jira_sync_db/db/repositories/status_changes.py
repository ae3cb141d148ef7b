"""Repository for the append-only status change log.

Rows are only ever inserted; re-syncing a changelog goes through
`add_if_absent`, which skips transitions already recorded.
"""

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select

from jira_sync_db.db import models
from jira_sync_db.status import StatusCategory

from .base import BaseRepository

_IDENTITY = ("ticket_key", "from_status", "to_status", "changed_date")


class StatusChangeRepository(BaseRepository):
    """Repository for StatusChange rows."""

    table = models.status_changes
    key_column = "id"
    synced_column = None

    async def add(self, change: Mapping[str, Any]) -> None:
        await self._store.insert_rows(self.table, [dict(change)])

    async def add_if_absent(self, change: Mapping[str, Any]) -> bool:
        """Insert a transition unless the same one is already logged."""
        identity = {name: change.get(name) for name in _IDENTITY}
        async with self._store.transaction():
            if await self._store.exists(self.table, identity):
                return False
            await self.add(change)
        return True

    async def add_batch(self, changes: Sequence[Mapping[str, Any]], *, skip_existing: bool = True) -> int:
        """Insert many transitions in one transaction. Returns the number inserted."""
        inserted = 0
        async with self._store.transaction():
            for change in changes:
                if skip_existing:
                    inserted += await self.add_if_absent(change)
                else:
                    await self.add(change)
                    inserted += 1
        return inserted

    async def get_by_ticket(self, ticket_key: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Transitions of a ticket, newest first."""
        return await self._store.select_where(
            self.table, {"ticket_key": ticket_key}, order_by=["-changed_date", "-id"], limit=limit
        )

    async def get_qa_bounces(self, ticket_key: str) -> tuple[int, list[dict[str, Any]]]:
        """Number of entries into QA, with when/who/from for each."""
        changes = await self._store.select_where(
            self.table,
            {"ticket_key": ticket_key, "to_status": StatusCategory.QA.value},
            order_by=["changed_date", "id"],
        )
        details = [
            {"date": c["changed_date"], "changed_by": c["changed_by_id"], "from_status": c["from_status"]}
            for c in changes
        ]
        return len(details), details

    async def get_time_in_status(self, ticket_key: str, now: datetime | None = None) -> dict[str, float]:
        """Days spent in each status; the current status counts up to `now`."""
        now = now or self._clock()
        changes = await self._store.select_where(
            self.table, {"ticket_key": ticket_key}, order_by=["changed_date", "id"]
        )
        durations: dict[str, float] = {}
        for current, following in zip(changes, [*changes[1:], None], strict=True):
            end = following["changed_date"] if following else now
            days = (end - current["changed_date"]) / timedelta(days=1)
            durations[current["to_status"]] = durations.get(current["to_status"], 0.0) + days
        return durations

    async def get_thrashing_tickets(
        self, project_key: str | None = None, min_changes: int = 5, days_window: int = 14
    ) -> list[dict[str, Any]]:
        """Tickets with at least `min_changes` transitions inside the window."""
        sc, t = self.table, models.tickets
        cutoff = self._clock() - timedelta(days=days_window)
        stmt = (
            select(
                sc.c.ticket_key,
                func.count().label("change_count"),
                t.c.summary,
                t.c.assignee_id,
                t.c.status,
            )
            .select_from(sc.join(t, sc.c.ticket_key == t.c.key))
            .where(sc.c.changed_date >= cutoff)
            .group_by(sc.c.ticket_key, t.c.summary, t.c.assignee_id, t.c.status)
            .having(func.count() >= min_changes)
            .order_by(func.count().desc(), sc.c.ticket_key)
        )
        if project_key is not None:
            stmt = stmt.where(t.c.project_key == project_key)
        return await self._store.fetch_all(stmt, name="thrashing_tickets")
