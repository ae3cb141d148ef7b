"""Repository for Jira users."""

from typing import Any

from sqlalchemy import case, func, select

from jira_sync_db.db import models
from jira_sync_db.status import StatusCategory

from .base import BaseRepository


class UserRepository(BaseRepository):
    """Repository for User rows."""

    table = models.users
    key_column = "account_id"

    async def get_all(self, active_only: bool = True) -> list[dict[str, Any]]:
        where = {"active": True} if active_only else None
        return await self._store.select_where(self.table, where, order_by="display_name")

    async def get_by_id(self, account_id: str) -> dict[str, Any] | None:
        return await self.get(account_id)

    async def get_by_display_name(self, display_name: str) -> list[dict[str, Any]]:
        """Case-insensitive display name match."""
        u = self.table
        stmt = select(u).where(func.lower(u.c.display_name) == display_name.lower())
        return await self._store.fetch_all(stmt, name="user_by_name")

    async def deactivate(self, account_id: str) -> int:
        return await self._store.update_where(self.table, {"active": False}, {"account_id": account_id})

    async def get_with_workload(self, project_key: str | None = None) -> list[dict[str, Any]]:
        """Active users with counts of their open and in-flight tickets."""
        u, t = self.table, models.tickets
        join_on = u.c.account_id == t.c.assignee_id
        if project_key is not None:
            join_on = join_on & (t.c.project_key == project_key)

        def count_status(*statuses: StatusCategory) -> Any:
            return func.sum(case((t.c.status.in_([s.value for s in statuses]), 1), else_=0))

        stmt = (
            select(
                u.c.account_id,
                u.c.display_name,
                func.count(t.c.key).label("total"),
                count_status(StatusCategory.NOT_STARTED).label("not_started"),
                count_status(StatusCategory.IN_PROGRESS).label("in_progress"),
                count_status(StatusCategory.QA).label("qa"),
                func.coalesce(
                    func.sum(case((t.c.status != StatusCategory.DONE.value, t.c.story_points), else_=0)), 0
                ).label("open_points"),
            )
            .select_from(u.outerjoin(t, join_on))
            .where(u.c.active.is_(True))
            .group_by(u.c.account_id, u.c.display_name)
            .order_by(u.c.display_name)
        )
        rows = await self._store.fetch_all(stmt, name="user_workload")
        for row in rows:
            for name in ("not_started", "in_progress", "qa"):
                row[name] = int(row[name] or 0)
        return rows
