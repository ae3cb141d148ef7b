"""Repository for ticket comments.

At most one comment per ticket carries `is_latest`: the newest by creation
date (ties broken by id). Every write recomputes the flag for the affected
tickets inside the write's transaction, so insertion order never matters.
"""

from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Any

from sqlalchemy import select

from jira_sync_db.db import models

from .base import BaseRepository


class CommentRepository(BaseRepository):
    """Repository for Comment rows."""

    table = models.comments
    key_column = "id"
    synced_column = None

    async def add(self, comment: Mapping[str, Any]) -> None:
        """Upsert a comment and refresh its ticket's latest flag."""
        row = {k: v for k, v in comment.items() if k != "is_latest"}
        async with self._store.transaction():
            await self._store.upsert_row(self.table, row)
            await self.update_latest_for_ticket(row["ticket_key"])

    async def add_batch(self, comments: Sequence[Mapping[str, Any]]) -> int:
        if not comments:
            return 0
        rows = [{k: v for k, v in c.items() if k != "is_latest"} for c in comments]
        async with self._store.transaction():
            await self._store.upsert_rows(self.table, rows)
            for ticket_key in sorted({row["ticket_key"] for row in rows}):
                await self.update_latest_for_ticket(ticket_key)
        return len(rows)

    async def update_latest_for_ticket(self, ticket_key: str) -> str | None:
        """Flag the newest comment of a ticket. Returns its id."""
        async with self._store.transaction():
            await self._store.update_where(self.table, {"is_latest": False}, {"ticket_key": ticket_key})
            newest = await self._store.select_where(
                self.table,
                {"ticket_key": ticket_key},
                order_by=["-created_date", "-id"],
                limit=1,
                columns=["id"],
            )
            if not newest:
                return None
            await self._store.update_where(self.table, {"is_latest": True}, {"id": newest[0]["id"]})
            return newest[0]["id"]

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get_by_ticket(self, ticket_key: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Comments of a ticket, newest first."""
        return await self._store.select_where(
            self.table, {"ticket_key": ticket_key}, order_by=["-created_date", "-id"], limit=limit
        )

    async def get_latest(self, ticket_key: str) -> dict[str, Any] | None:
        return await self._store.select_one(self.table, {"ticket_key": ticket_key, "is_latest": True})

    def _with_ticket(self) -> Any:
        c, t, u = self.table, models.tickets, models.users
        return (
            select(c, t.c.summary.label("ticket_summary"), t.c.project_key, u.c.display_name.label("author_name"))
            .select_from(c.join(t, c.c.ticket_key == t.c.key).outerjoin(u, c.c.author_id == u.c.account_id))
            .order_by(c.c.created_date.desc(), c.c.id.desc())
        )

    async def get_by_author(
        self, author_id: str, project_key: str | None = None, limit: int | None = None
    ) -> list[dict[str, Any]]:
        stmt = self._with_ticket().where(self.table.c.author_id == author_id)
        if project_key is not None:
            stmt = stmt.where(models.tickets.c.project_key == project_key)
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._store.fetch_all(stmt, name="comments_by_author")

    async def get_recent(
        self, project_key: str | None = None, days: int = 7, limit: int = 50
    ) -> list[dict[str, Any]]:
        cutoff = self._clock() - timedelta(days=days)
        stmt = self._with_ticket().where(self.table.c.created_date >= cutoff).limit(limit)
        if project_key is not None:
            stmt = stmt.where(models.tickets.c.project_key == project_key)
        return await self._store.fetch_all(stmt, name="recent_comments")

    async def search(self, term: str, project_key: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """Comments whose body contains `term` (case-insensitive)."""
        stmt = self._with_ticket().where(self.table.c.body.like(f"%{term}%")).limit(limit)
        if project_key is not None:
            stmt = stmt.where(models.tickets.c.project_key == project_key)
        return await self._store.fetch_all(stmt, name="search_comments")
