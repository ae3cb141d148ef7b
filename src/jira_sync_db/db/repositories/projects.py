"""Repository for projects, including the cascade delete."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, or_, select

from jira_sync_db.db import models
from jira_sync_db.logging import bind_project

from .base import BaseRepository
from .issue_links import BLOCKS, IssueLinkRepository


class ProjectRepository(BaseRepository):
    """Repository for Project rows."""

    table = models.projects
    key_column = "key"

    async def get_all(self, active_only: bool = True) -> list[dict[str, Any]]:
        where = {"active": True} if active_only else None
        return await self._store.select_where(self.table, where, order_by="key")

    async def get_by_key(self, key: str) -> dict[str, Any] | None:
        return await self.get(key)

    async def ensure_exists(self, key: str, name: str | None = None) -> bool:
        """Create a minimal project row if the key is unknown.

        Returns:
            True if a row was created
        """
        async with self._store.transaction():
            if await self.exists(key):
                return False
            await self._store.insert_rows(
                self.table, [{"key": key, "name": name or key, "active": True, "synced_at": self._clock()}]
            )
        return True

    async def deactivate(self, key: str) -> int:
        return await self._store.update_where(self.table, {"active": False}, {"key": key})

    async def mark_synced(self, keys: Iterable[str], at: datetime | None = None) -> int:
        """Stamp the last completed sync on the given projects."""
        key_list = list(keys)
        if not key_list:
            return 0
        return await self._store.update_where(
            self.table, {"last_synced_at": at or self._clock()}, {"key": key_list}
        )

    async def delete_cascade(self, key: str) -> dict[str, int]:
        """Delete a project and every row that depends on it.

        Runs in one transaction, children first: comments, status changes,
        issue links, sprint memberships, tickets, epics, sprints, project.
        Tickets of other projects that were blocked from this one get
        their blocked flag recomputed.

        Returns:
            Rows removed per table
        """
        ticket_keys = select(models.tickets.c.key).where(models.tickets.c.project_key == key)
        sprint_ids = select(models.sprints.c.id).where(models.sprints.c.project_key == key)
        links = models.issue_links
        memberships = models.ticket_sprints

        statements = [
            ("comments", delete(models.comments).where(models.comments.c.ticket_key.in_(ticket_keys))),
            (
                "status_changes",
                delete(models.status_changes).where(models.status_changes.c.ticket_key.in_(ticket_keys)),
            ),
            (
                "issue_links",
                delete(links).where(or_(links.c.source_key.in_(ticket_keys), links.c.target_key.in_(ticket_keys))),
            ),
            (
                "ticket_sprints",
                delete(memberships).where(
                    or_(memberships.c.ticket_key.in_(ticket_keys), memberships.c.sprint_id.in_(sprint_ids))
                ),
            ),
            ("tickets", delete(models.tickets).where(models.tickets.c.project_key == key)),
            ("epics", delete(models.epics).where(models.epics.c.project_key == key)),
            ("sprints", delete(models.sprints).where(models.sprints.c.project_key == key)),
            ("projects", delete(models.projects).where(models.projects.c.key == key)),
        ]

        removed: dict[str, int] = {}
        async with self._store.transaction():
            # Tickets of other projects blocked from this one lose those blockers
            targets = await self._store.fetch_all(
                select(links.c.target_key)
                .where(
                    links.c.link_type == BLOCKS,
                    links.c.source_key.in_(ticket_keys),
                    links.c.target_key.not_in(ticket_keys),
                )
                .distinct(),
                name="cascade:blocked_targets",
            )
            for name, stmt in statements:
                removed[name] = await self._store.execute_write(stmt, name=f"cascade:{name}")
            link_repo = IssueLinkRepository(self._store, clock=self._clock)
            for row in targets:
                await link_repo.update_blocked_status(row["target_key"])

        bind_project(key).info("Deleted project data: {}", removed)
        return removed

    async def get_stats(self, key: str) -> dict[str, Any]:
        """Ticket counts per status plus epic and sprint counts."""
        t = models.tickets
        stmt = (
            select(t.c.status, func.count().label("count"))
            .where(t.c.project_key == key)
            .group_by(t.c.status)
        )
        rows = await self._store.fetch_all(stmt, name="project_stats")
        by_status = {row["status"]: row["count"] for row in rows}
        return {
            "project_key": key,
            "tickets": sum(by_status.values()),
            "by_status": by_status,
            "epics": await self._store.count_where(models.epics, {"project_key": key}),
            "sprints": await self._store.count_where(models.sprints, {"project_key": key}),
            "blocked": await self._store.count_where(t, {"project_key": key, "is_blocked": True}),
        }
