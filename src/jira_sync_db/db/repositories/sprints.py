"""Repository for sprints and sprint memberships."""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select

from jira_sync_db.db import models
from jira_sync_db.status import StatusCategory

from .base import BaseRepository


@dataclass
class MembershipChanges:
    """Sprint ids a membership sync added and removed."""

    added: list[int]
    removed: list[int]


class SprintRepository(BaseRepository):
    """Repository for Sprint rows and the ticket_sprints link table.

    Memberships are never deleted: removing a ticket from a sprint stamps
    `removed_date`, so sprint scope changes stay visible.
    """

    table = models.sprints
    key_column = "id"

    async def get_all(self, project_key: str | None = None, active_only: bool = True) -> list[dict[str, Any]]:
        where: dict[str, Any] = {}
        if project_key is not None:
            where["project_key"] = project_key
        if active_only:
            where["active"] = True
        return await self._store.select_where(self.table, where, order_by=["-start_date", "-id"])

    async def get_by_id(self, sprint_id: int) -> dict[str, Any] | None:
        return await self.get(sprint_id)

    async def get_current_by_project(self, project_key: str) -> dict[str, Any] | None:
        """The open sprint of a project (latest started if several)."""
        rows = await self._store.select_where(
            self.table,
            {"project_key": project_key, "state": "active", "active": True},
            order_by=["-start_date", "-id"],
            limit=1,
        )
        return rows[0] if rows else None

    async def get_by_date_range(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        """Sprints overlapping [start, end]."""
        return await self._store.select_where(
            self.table,
            {"start_date <=": end, "end_date >=": start},
            order_by="start_date",
        )

    async def deactivate(self, sprint_id: int) -> int:
        return await self._store.update_where(self.table, {"active": False}, {"id": sprint_id})

    async def get_recent_completed(self, project_key: str, limit: int = 3) -> list[dict[str, Any]]:
        """Closed sprints with a completion date, newest first."""
        return await self._store.select_where(
            self.table,
            {"project_key": project_key, "state": "closed", "complete_date !=": None},
            order_by="-complete_date",
            limit=limit,
        )

    # -------------------------------------------------------------------------
    # Memberships
    # -------------------------------------------------------------------------

    async def add_ticket(self, ticket_key: str, sprint_id: int, added_date: datetime | None = None) -> None:
        """Add (or re-add) a ticket to a sprint."""
        await self._store.upsert_row(
            models.ticket_sprints,
            {
                "ticket_key": ticket_key,
                "sprint_id": sprint_id,
                "added_date": added_date or self._clock(),
                "removed_date": None,
            },
        )

    async def remove_ticket(self, ticket_key: str, sprint_id: int, removed_date: datetime | None = None) -> int:
        return await self._store.update_where(
            models.ticket_sprints,
            {"removed_date": removed_date or self._clock()},
            {"ticket_key": ticket_key, "sprint_id": sprint_id, "removed_date": None},
        )

    async def get_memberships(self, ticket_key: str, include_removed: bool = False) -> list[dict[str, Any]]:
        where: dict[str, Any] = {"ticket_key": ticket_key}
        if not include_removed:
            where["removed_date"] = None
        return await self._store.select_where(models.ticket_sprints, where, order_by="sprint_id")

    async def sync_memberships(
        self, ticket_key: str, sprint_ids: Iterable[int], now: datetime | None = None
    ) -> MembershipChanges:
        """Make a ticket's open memberships equal `sprint_ids`.

        New sprints are added, sprints the ticket left get `removed_date`
        stamped, and a sprint the ticket returns to is reopened.
        """
        now = now or self._clock()
        wanted = set(sprint_ids)
        changes = MembershipChanges(added=[], removed=[])

        async with self._store.transaction():
            existing = {
                row["sprint_id"]: row for row in await self.get_memberships(ticket_key, include_removed=True)
            }
            for sprint_id in sorted(wanted):
                row = existing.get(sprint_id)
                if row is None or row["removed_date"] is not None:
                    await self.add_ticket(ticket_key, sprint_id, now)
                    changes.added.append(sprint_id)
            for sprint_id, row in existing.items():
                if sprint_id not in wanted and row["removed_date"] is None:
                    await self.remove_ticket(ticket_key, sprint_id, now)
                    changes.removed.append(sprint_id)
        return changes

    async def get_with_stats(self, sprint_id: int) -> dict[str, Any] | None:
        """Sprint row plus ticket and story point totals of its current scope."""
        sprint = await self.get(sprint_id)
        if sprint is None:
            return None

        t, ts = models.tickets, models.ticket_sprints
        done = t.c.status == StatusCategory.DONE.value
        stmt = (
            select(
                func.count(t.c.key).label("total_tickets"),
                func.coalesce(func.sum(case((done, 1), else_=0)), 0).label("done_tickets"),
                func.coalesce(func.sum(t.c.story_points), 0).label("total_points"),
                func.coalesce(func.sum(case((done, t.c.story_points), else_=0)), 0).label("done_points"),
                func.coalesce(func.sum(case((t.c.is_blocked.is_(True), 1), else_=0)), 0).label("blocked_tickets"),
            )
            .select_from(ts.join(t, ts.c.ticket_key == t.c.key))
            .where(ts.c.sprint_id == sprint_id, ts.c.removed_date.is_(None))
        )
        rows = await self._store.fetch_all(stmt, name="sprint_stats")
        stats = rows[0] if rows else {}
        removed = await self._store.count_where(ts, {"sprint_id": sprint_id, "removed_date !=": None})
        total_points = float(stats.get("total_points") or 0)
        done_points = float(stats.get("done_points") or 0)
        return {
            **sprint,
            "total_tickets": int(stats.get("total_tickets") or 0),
            "done_tickets": int(stats.get("done_tickets") or 0),
            "blocked_tickets": int(stats.get("blocked_tickets") or 0),
            "removed_tickets": removed,
            "total_points": total_points,
            "done_points": done_points,
            "completion": round(done_points / total_points, 3) if total_points else 0.0,
        }
