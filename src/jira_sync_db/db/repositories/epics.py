"""Repository for epics.

Epic status is kept as the raw Jira name; progress is derived from the
canonical status of the epic's child tickets.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import case, func, select

from jira_sync_db.db import models
from jira_sync_db.status import StatusCategory

from .base import BaseRepository


class EpicRepository(BaseRepository):
    """Repository for Epic rows."""

    table = models.epics
    key_column = "key"

    async def get_all(self, project_key: str | None = None) -> list[dict[str, Any]]:
        where = {"project_key": project_key} if project_key is not None else None
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_by_key(self, key: str) -> dict[str, Any] | None:
        return await self.get(key)

    async def get_active(self, project_key: str | None = None) -> list[dict[str, Any]]:
        """Epics not yet resolved."""
        where: dict[str, Any] = {"resolved_date": None}
        if project_key is not None:
            where["project_key"] = project_key
        return await self._store.select_where(self.table, where, order_by="key")

    async def mark_resolved(self, key: str, resolved_date: datetime | None = None) -> int:
        return await self._store.update_where(
            self.table, {"resolved_date": resolved_date or self._clock()}, {"key": key}
        )

    async def get_with_progress(self, key: str) -> dict[str, Any] | None:
        """Epic row plus child ticket counts per canonical status."""
        epic = await self.get(key)
        if epic is None:
            return None

        t = models.tickets

        def status_count(category: StatusCategory) -> Any:
            return func.coalesce(func.sum(case((t.c.status == category.value, 1), else_=0)), 0)

        stmt = select(
            func.count(t.c.key).label("total"),
            *(status_count(category).label(category.value) for category in StatusCategory),
            func.coalesce(func.sum(t.c.story_points), 0).label("total_points"),
            func.coalesce(
                func.sum(case((t.c.status == StatusCategory.DONE.value, t.c.story_points), else_=0)), 0
            ).label("done_points"),
        ).where(t.c.epic_key == key)
        rows = await self._store.fetch_all(stmt, name="epic_progress")
        stats = rows[0]
        total = int(stats["total"] or 0)
        by_status = {category.value: int(stats[category.value] or 0) for category in StatusCategory}
        return {
            **epic,
            "total_tickets": total,
            "by_status": by_status,
            "total_points": float(stats["total_points"] or 0),
            "done_points": float(stats["done_points"] or 0),
            "progress": round(by_status[StatusCategory.DONE.value] / total, 3) if total else 0.0,
        }

    async def get_stats(self, project_key: str | None = None) -> dict[str, int]:
        base: dict[str, Any] = {"project_key": project_key} if project_key is not None else {}
        return {
            "total": await self._store.count_where(self.table, base),
            "active": await self._store.count_where(self.table, {**base, "resolved_date": None}),
            "resolved": await self._store.count_where(self.table, {**base, "resolved_date !=": None}),
        }
