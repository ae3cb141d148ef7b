"""Repository for issue links and the derived blocked flag.

Links are directed and named by their outward verb, so "A blocks B" is
stored as (A, B, "blocks"). A ticket is blocked while at least one
"blocks" link targets it.
"""

from collections.abc import Iterable
from typing import Any

from sqlalchemy import func, literal, literal_column, or_, select, union_all

from jira_sync_db.db import models

from .base import BaseRepository

BLOCKS = "blocks"
MAX_CHAIN_DEPTH = 5

Edge = tuple[str, str, str]


class IssueLinkRepository(BaseRepository):
    """Repository for IssueLink rows."""

    table = models.issue_links
    key_column = "id"
    synced_column = None

    _EDGE_COLUMNS = ("source_key", "target_key", "link_type")

    async def add(self, source_key: str, target_key: str, link_type: str) -> None:
        """Record a link (idempotent) and refresh the target's blocked flag."""
        async with self._store.transaction():
            await self._store.upsert_row(
                self.table,
                {"source_key": source_key, "target_key": target_key, "link_type": link_type},
                conflict_columns=self._EDGE_COLUMNS,
            )
            if link_type == BLOCKS:
                await self.update_blocked_status(target_key)

    async def add_batch(self, edges: Iterable[Edge]) -> int:
        unique = sorted(set(edges))
        if not unique:
            return 0
        rows = [dict(zip(self._EDGE_COLUMNS, edge, strict=True)) for edge in unique]
        async with self._store.transaction():
            await self._store.upsert_rows(self.table, rows, conflict_columns=self._EDGE_COLUMNS)
            for target in sorted({target for _, target, kind in unique if kind == BLOCKS}):
                await self.update_blocked_status(target)
        return len(rows)

    async def remove(self, source_key: str, target_key: str, link_type: str) -> int:
        async with self._store.transaction():
            removed = await self._store.delete_where(
                self.table, {"source_key": source_key, "target_key": target_key, "link_type": link_type}
            )
            if link_type == BLOCKS:
                await self.update_blocked_status(target_key)
        return removed

    async def remove_all_for_ticket(self, ticket_key: str) -> int:
        """Drop every link touching a ticket and refresh affected blocked flags."""
        async with self._store.transaction():
            blocked = await self._store.select_where(
                self.table, {"source_key": ticket_key, "link_type": BLOCKS}, columns=["target_key"]
            )
            removed = await self._store.delete_where(self.table, {"source_key": ticket_key})
            removed += await self._store.delete_where(self.table, {"target_key": ticket_key})
            for target in {row["target_key"] for row in blocked} | {ticket_key}:
                await self.update_blocked_status(target)
        return removed

    async def update_blocked_status(self, ticket_key: str) -> bool:
        """Derive `tickets.is_blocked` from the current links."""
        is_blocked = await self._store.exists(self.table, {"target_key": ticket_key, "link_type": BLOCKS})
        await self._store.update_where(models.tickets, {"is_blocked": is_blocked}, {"key": ticket_key})
        return is_blocked

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get_by_ticket(self, ticket_key: str) -> list[dict[str, Any]]:
        """Links in both directions, with the other ticket's summary and status."""
        il, t = self.table, models.tickets
        other = (t.c.summary.label("other_summary"), t.c.status.label("other_status"))
        outward = (
            select(il, literal("outward").label("direction"), *other)
            .select_from(il.outerjoin(t, il.c.target_key == t.c.key))
            .where(il.c.source_key == ticket_key)
        )
        inward = (
            select(il, literal("inward").label("direction"), *other)
            .select_from(il.outerjoin(t, il.c.source_key == t.c.key))
            .where(il.c.target_key == ticket_key)
        )
        stmt = union_all(outward, inward).order_by(literal_column("link_type"), literal_column("id"))
        return await self._store.fetch_all(stmt, name="links_by_ticket")

    async def get_blockers(self, ticket_key: str) -> list[dict[str, Any]]:
        """Links blocking a ticket, with the blocker's details (None if not synced)."""
        il, t = self.table, models.tickets
        stmt = (
            select(
                il,
                t.c.summary.label("blocker_summary"),
                t.c.status.label("blocker_status"),
                t.c.assignee_id.label("blocker_assignee"),
            )
            .select_from(il.outerjoin(t, il.c.source_key == t.c.key))
            .where(il.c.target_key == ticket_key, il.c.link_type == BLOCKS)
            .order_by(il.c.source_key)
        )
        return await self._store.fetch_all(stmt, name="blockers")

    async def get_blocked_tickets(self, ticket_key: str) -> list[dict[str, Any]]:
        """Links from a ticket to the tickets it blocks."""
        il, t = self.table, models.tickets
        stmt = (
            select(
                il,
                t.c.summary.label("blocked_summary"),
                t.c.status.label("blocked_status"),
                t.c.assignee_id.label("blocked_assignee"),
            )
            .select_from(il.outerjoin(t, il.c.target_key == t.c.key))
            .where(il.c.source_key == ticket_key, il.c.link_type == BLOCKS)
            .order_by(il.c.target_key)
        )
        return await self._store.fetch_all(stmt, name="blocked_tickets")

    async def get_all_blocked(self, project_key: str | None = None) -> list[dict[str, Any]]:
        """Tickets targeted by at least one blocks link, most blockers first."""
        il, t = self.table, models.tickets
        stmt = (
            select(
                t.c.key,
                t.c.summary,
                t.c.status,
                t.c.assignee_id,
                func.count(il.c.source_key).label("blocker_count"),
            )
            .select_from(t.join(il, (il.c.target_key == t.c.key) & (il.c.link_type == BLOCKS)))
            .group_by(t.c.key, t.c.summary, t.c.status, t.c.assignee_id)
            .order_by(func.count(il.c.source_key).desc(), t.c.key)
        )
        if project_key is not None:
            stmt = stmt.where(t.c.project_key == project_key)
        return await self._store.fetch_all(stmt, name="all_blocked")

    async def get_dependency_chain(self, ticket_key: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[dict[str, Any]]:
        """Tickets transitively blocked by `ticket_key`."""
        return await self._chain(ticket_key, 0, max_depth, set(), downstream=True)

    async def get_blocking_chain(self, ticket_key: str, max_depth: int = MAX_CHAIN_DEPTH) -> list[dict[str, Any]]:
        """Tickets `ticket_key` transitively waits on."""
        return await self._chain(ticket_key, 0, max_depth, set(), downstream=False)

    async def _chain(
        self, ticket_key: str, depth: int, max_depth: int, visited: set[str], *, downstream: bool
    ) -> list[dict[str, Any]]:
        if depth > max_depth or ticket_key in visited:
            return []
        visited.add(ticket_key)

        if downstream:
            links = await self.get_blocked_tickets(ticket_key)
            other, prefix, nested = "target_key", "blocked", "dependencies"
        else:
            links = await self.get_blockers(ticket_key)
            other, prefix, nested = "source_key", "blocker", "blockers"

        chain = []
        for link in links:
            key = link[other]
            chain.append(
                {
                    "key": key,
                    "summary": link[f"{prefix}_summary"],
                    "status": link[f"{prefix}_status"],
                    "assignee_id": link[f"{prefix}_assignee"],
                    "depth": depth,
                    nested: await self._chain(key, depth + 1, max_depth, visited, downstream=downstream),
                }
            )
        return chain

    async def get_link_stats(self, project_key: str | None = None) -> dict[str, int]:
        """Link counts per type, for links touching the project's tickets."""
        il, t = self.table, models.tickets
        stmt = select(il.c.link_type, func.count().label("count")).group_by(il.c.link_type)
        if project_key is not None:
            project_tickets = select(t.c.key).where(t.c.project_key == project_key)
            stmt = stmt.where(or_(il.c.source_key.in_(project_tickets), il.c.target_key.in_(project_tickets)))
        rows = await self._store.fetch_all(stmt, name="link_stats")
        return {row["link_type"]: row["count"] for row in rows}
