"""Repository for tickets.

Tickets carry both the canonical status category and the raw Jira status.
Status updates go through `update_status`, which appends the transition to
the status change log in the same transaction.
"""

from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import case, func, or_, select

from jira_sync_db.db import models
from jira_sync_db.logging import get_logger
from jira_sync_db.status import StatusCategory

from .base import BaseRepository

logger = get_logger(__name__)

MAX_HIERARCHY_DEPTH = 10


class TicketRepository(BaseRepository):
    """Repository for Ticket rows."""

    table = models.tickets
    key_column = "key"

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    async def get_all(
        self, project_key: str | None = None, status: StatusCategory | str | None = None
    ) -> list[dict[str, Any]]:
        where: dict[str, Any] = {}
        if project_key is not None:
            where["project_key"] = project_key
        if status is not None:
            where["status"] = StatusCategory(status).value
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_by_key(self, key: str) -> dict[str, Any] | None:
        return await self.get(key)

    async def get_by_sprint(self, sprint_id: int, include_removed: bool = False) -> list[dict[str, Any]]:
        """Tickets of a sprint; removed members only when asked for."""
        t, ts = self.table, models.ticket_sprints
        stmt = (
            select(t, ts.c.added_date, ts.c.removed_date)
            .select_from(t.join(ts, ts.c.ticket_key == t.c.key))
            .where(ts.c.sprint_id == sprint_id)
            .order_by(t.c.key)
        )
        if not include_removed:
            stmt = stmt.where(ts.c.removed_date.is_(None))
        return await self._store.fetch_all(stmt, name="tickets_by_sprint")

    async def get_by_epic(self, epic_key: str) -> list[dict[str, Any]]:
        return await self._store.select_where(self.table, {"epic_key": epic_key}, order_by="key")

    async def get_by_assignee(self, account_id: str, include_done: bool = False) -> list[dict[str, Any]]:
        where: dict[str, Any] = {"assignee_id": account_id}
        if not include_done:
            where["status !="] = StatusCategory.DONE.value
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_unassigned(self, project_key: str | None = None) -> list[dict[str, Any]]:
        where: dict[str, Any] = {"assignee_id": None, "status !=": StatusCategory.DONE.value}
        if project_key is not None:
            where["project_key"] = project_key
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_blocked(self, project_key: str | None = None) -> list[dict[str, Any]]:
        where: dict[str, Any] = {"is_blocked": True}
        if project_key is not None:
            where["project_key"] = project_key
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_stale(self, days: int = 3, project_key: str | None = None) -> list[dict[str, Any]]:
        """Unfinished tickets not updated for `days` days, oldest first."""
        where: dict[str, Any] = {
            "updated_date <": self._clock() - timedelta(days=days),
            "status !=": StatusCategory.DONE.value,
        }
        if project_key is not None:
            where["project_key"] = project_key
        return await self._store.select_where(self.table, where, order_by="updated_date")

    async def get_with_latest_comments(self, key: str, limit: int = 3) -> dict[str, Any] | None:
        """Ticket row plus its newest comments under `comments`."""
        ticket = await self.get(key)
        if ticket is None:
            return None
        ticket["comments"] = await self._store.select_where(
            models.comments, {"ticket_key": key}, order_by=["-created_date", "-id"], limit=limit
        )
        return ticket

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    async def update_status(
        self,
        key: str,
        status: StatusCategory | str,
        *,
        raw_status: str | None = None,
        changed_by_id: str | None = None,
        changed_date: datetime | None = None,
    ) -> bool:
        """Change a ticket's status and log the transition.

        Returns:
            False when the ticket is unknown or already has that status
        """
        new_status = StatusCategory(status).value
        at = changed_date or self._clock()
        async with self._store.transaction():
            ticket = await self.get(key)
            if ticket is None or ticket["status"] == new_status:
                return False
            values: dict[str, Any] = {"status": new_status}
            if raw_status is not None:
                values["raw_status"] = raw_status
            await self._store.update_where(self.table, values, {"key": key})
            await self._store.insert_rows(
                models.status_changes,
                [
                    {
                        "ticket_key": key,
                        "from_status": ticket["status"],
                        "to_status": new_status,
                        "changed_by_id": changed_by_id,
                        "changed_date": at,
                    }
                ],
            )
        logger.debug("{}: {} -> {}", key, ticket["status"], new_status)
        return True

    # -------------------------------------------------------------------------
    # Hierarchy and velocity
    # -------------------------------------------------------------------------

    async def get_hierarchy(
        self, key: str, max_depth: int = MAX_HIERARCHY_DEPTH, visited: set[str] | None = None
    ) -> dict[str, Any] | None:
        """Tree of a ticket (or epic) and its descendants.

        Children are tickets whose parent or epic is the node. Walking stops
        at `max_depth` (the node is flagged `truncated`) and never visits a
        key twice, so cyclic parent data terminates.
        """
        return await self._walk(key, 0, max_depth, visited if visited is not None else set())

    async def _walk(self, key: str, depth: int, max_depth: int, visited: set[str]) -> dict[str, Any] | None:
        if key in visited:
            return None
        visited.add(key)

        row = await self.get(key)
        if row is None:
            row = await self._store.select_one(models.epics, {"key": key})
        node: dict[str, Any] = {"key": key, "item": row, "depth": depth, "children": [], "truncated": False}
        if depth >= max_depth:
            node["truncated"] = True
            return node

        t = self.table
        stmt = select(t.c.key).where(or_(t.c.parent_key == key, t.c.epic_key == key)).order_by(t.c.key)
        for child in await self._store.fetch_all(stmt, name="ticket_children"):
            subtree = await self._walk(child["key"], depth + 1, max_depth, visited)
            if subtree is not None:
                node["children"].append(subtree)
        return node

    async def get_velocity_data(self, project_key: str, sprint_count: int = 3) -> list[dict[str, Any]]:
        """Committed and completed points of the latest completed sprints."""
        s, ts, t = models.sprints, models.ticket_sprints, self.table
        recent = (
            select(s.c.id)
            .where(s.c.project_key == project_key, s.c.state == "closed", s.c.complete_date.is_not(None))
            .order_by(s.c.complete_date.desc())
            .limit(sprint_count)
        )
        done = (t.c.status == StatusCategory.DONE.value) & ts.c.removed_date.is_(None)
        stmt = (
            select(
                s.c.id.label("sprint_id"),
                s.c.name,
                s.c.complete_date,
                func.count(t.c.key).label("ticket_count"),
                func.coalesce(func.sum(t.c.story_points), 0).label("committed_points"),
                func.coalesce(func.sum(case((done, t.c.story_points), else_=0)), 0).label("completed_points"),
            )
            .select_from(s.outerjoin(ts, ts.c.sprint_id == s.c.id).outerjoin(t, t.c.key == ts.c.ticket_key))
            .where(s.c.id.in_(recent))
            .group_by(s.c.id, s.c.name, s.c.complete_date)
            .order_by(s.c.complete_date.desc())
        )
        rows = await self._store.fetch_all(stmt, name="velocity")
        for row in rows:
            row["committed_points"] = float(row["committed_points"] or 0)
            row["completed_points"] = float(row["completed_points"] or 0)
        return rows
