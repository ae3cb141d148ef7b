"""Repository for raw status -> category mappings."""

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import case, func, select

from jira_sync_db.db import models
from jira_sync_db.logging import get_logger
from jira_sync_db.status import CATEGORY_VALUES, StatusCategory, StatusTranslator

from .base import BaseRepository

logger = get_logger(__name__)

_CATEGORY_ORDER = case(
    {value: index for index, value in enumerate(CATEGORY_VALUES)},
    value=models.status_categories.c.category,
)


class StatusCategoryRepository(BaseRepository):
    """Repository for StatusCategoryMapping rows.

    The persisted mapping feeds a StatusTranslator; statuses with no row
    fall back to the keyword heuristic.
    """

    table = models.status_categories
    key_column = "status_name"
    synced_column = None

    async def get_all(self) -> list[dict[str, Any]]:
        stmt = select(self.table).order_by(_CATEGORY_ORDER, self.table.c.status_name)
        return await self._store.fetch_all(stmt, name="status_categories")

    async def get_category(self, status_name: str) -> StatusCategory | None:
        row = await self.get(status_name)
        return StatusCategory(row["category"]) if row else None

    async def get_by_category(self, category: StatusCategory | str) -> list[str]:
        rows = await self._store.select_where(
            self.table, {"category": StatusCategory(category).value}, order_by="status_name"
        )
        return [row["status_name"] for row in rows]

    async def init_from_mappings(self, mappings: Mapping[StatusCategory | str, Iterable[str]]) -> int:
        """Replace every mapping with `mappings` (category -> status names)."""
        rows = [
            {"status_name": name, "category": StatusCategory(category).value}
            for category, names in mappings.items()
            for name in names
        ]
        async with self._store.transaction():
            await self._store.delete_where(self.table, None)
            await self._store.upsert_rows(self.table, rows)
        logger.info("Initialized {} status mappings", len(rows))
        return len(rows)

    async def upsert_mapping(self, status_name: str, category: StatusCategory | str) -> None:
        await self.upsert({"status_name": status_name, "category": StatusCategory(category).value})

    async def load_translator(self) -> StatusTranslator:
        """Translator over the persisted mapping."""
        rows = await self._store.select_where(self.table)
        return StatusTranslator({row["status_name"]: row["category"] for row in rows})

    async def translate(self, raw_status: str | None) -> StatusCategory:
        if raw_status:
            category = await self.get_category(raw_status)
            if category is not None:
                return category
        return StatusTranslator().translate(raw_status)

    async def get_unmapped_statuses(self, project_key: str | None = None) -> list[str]:
        """Raw statuses present on tickets with no mapping row."""
        t, sc = models.tickets, self.table
        stmt = (
            select(t.c.raw_status)
            .distinct()
            .select_from(t.outerjoin(sc, t.c.raw_status == sc.c.status_name))
            .where(sc.c.status_name.is_(None), t.c.raw_status.is_not(None))
            .order_by(t.c.raw_status)
        )
        if project_key is not None:
            stmt = stmt.where(t.c.project_key == project_key)
        rows = await self._store.fetch_all(stmt, name="unmapped_statuses")
        return [row["raw_status"] for row in rows]

    async def update_ticket_statuses(self, project_key: str | None = None) -> int:
        """Re-derive ticket categories from their raw status.

        All distinct raw statuses are translated with the current mapping
        and applied in one transaction. Returns the number of tickets whose
        category changed.
        """
        t = models.tickets
        scope: dict[str, Any] = {"project_key": project_key} if project_key is not None else {}
        changed = 0
        async with self._store.transaction():
            translator = await self.load_translator()
            raw_statuses = select(t.c.raw_status).distinct().where(t.c.raw_status.is_not(None))
            if project_key is not None:
                raw_statuses = raw_statuses.where(t.c.project_key == project_key)
            rows = await self._store.fetch_all(raw_statuses, name="raw_statuses")
            for row in rows:
                raw = row["raw_status"]
                category = translator.translate(raw).value
                changed += await self._store.update_where(
                    t, {"status": category}, {**scope, "raw_status": raw, "status !=": category}
                )
        logger.info("Re-derived ticket statuses: {} changed", changed)
        return changed

    async def get_status_distribution(self, project_key: str | None = None) -> list[dict[str, Any]]:
        """Ticket count and story points per canonical category."""
        t = models.tickets
        stmt = (
            select(
                t.c.status.label("category"),
                func.count(t.c.key).label("ticket_count"),
                func.coalesce(func.sum(t.c.story_points), 0).label("total_points"),
            )
            .group_by(t.c.status)
        )
        if project_key is not None:
            stmt = stmt.where(t.c.project_key == project_key)
        counts = {row["category"]: row for row in await self._store.fetch_all(stmt, name="status_distribution")}
        return [
            {
                "category": value,
                "ticket_count": int(counts[value]["ticket_count"]) if value in counts else 0,
                "total_points": float(counts[value]["total_points"]) if value in counts else 0.0,
            }
            for value in CATEGORY_VALUES
        ]
