"""Tests for StatusCategoryRepository and StatusChangeRepository."""

from datetime import timedelta

from jira_sync_db.status import StatusCategory
from tests.conftest import JAN_10, JAN_12, JAN_15, JAN_16, JAN_20
from tests.factories import add_ticket

MAPPINGS = {
    StatusCategory.NOT_STARTED: ["To Do", "Backlog"],
    StatusCategory.IN_PROGRESS: ["In Progress"],
    StatusCategory.QA: ["In QA"],
    StatusCategory.DONE: ["Done", "Shipped"],
}


# -----------------------------------------------------------------------------
# Status categories
# -----------------------------------------------------------------------------
class TestStatusCategoryRepository:
    async def test_init_replaces_existing(self, repos):
        await repos.status_categories.upsert_mapping("Legacy", "done")

        count = await repos.status_categories.init_from_mappings(MAPPINGS)

        assert count == 6
        assert await repos.status_categories.get_category("Legacy") is None
        assert await repos.status_categories.get_category("Shipped") is StatusCategory.DONE

    async def test_get_all_ordered_by_category(self, repos):
        await repos.status_categories.init_from_mappings(MAPPINGS)

        rows = await repos.status_categories.get_all()

        assert [r["status_name"] for r in rows] == ["Backlog", "To Do", "In Progress", "In QA", "Done", "Shipped"]

    async def test_get_by_category(self, repos):
        await repos.status_categories.init_from_mappings(MAPPINGS)

        assert await repos.status_categories.get_by_category("done") == ["Done", "Shipped"]

    async def test_translate_prefers_mapping_then_heuristic(self, repos):
        await repos.status_categories.upsert_mapping("Shipped", StatusCategory.DONE)

        assert await repos.status_categories.translate("Shipped") is StatusCategory.DONE
        assert await repos.status_categories.translate("Peer Review") is StatusCategory.QA
        assert await repos.status_categories.translate(None) is StatusCategory.NOT_STARTED

    async def test_load_translator(self, repos):
        await repos.status_categories.init_from_mappings(MAPPINGS)

        translator = await repos.status_categories.load_translator()

        assert len(translator) == 6
        assert translator.translate("Shipped") is StatusCategory.DONE

    async def test_unmapped_statuses(self, repos):
        await repos.status_categories.init_from_mappings(MAPPINGS)
        await add_ticket(repos, "ABC-1", raw_status="In Progress")
        await add_ticket(repos, "ABC-2", raw_status="Waiting for Vendor")
        await add_ticket(repos, "DEF-1", raw_status="Parked")
        await add_ticket(repos, "DEF-2", raw_status=None)

        assert await repos.status_categories.get_unmapped_statuses() == ["Parked", "Waiting for Vendor"]
        assert await repos.status_categories.get_unmapped_statuses("ABC") == ["Waiting for Vendor"]

    async def test_update_ticket_statuses(self, repos):
        """Changing a mapping re-derives affected tickets only."""
        await repos.status_categories.init_from_mappings(MAPPINGS)
        await add_ticket(repos, "ABC-1", raw_status="Shipped", status="done")
        await add_ticket(repos, "ABC-2", raw_status="In QA", status="qa")
        await add_ticket(repos, "DEF-1", raw_status="Shipped", status="done")

        await repos.status_categories.upsert_mapping("Shipped", "qa")
        changed = await repos.status_categories.update_ticket_statuses("ABC")

        assert changed == 1
        assert (await repos.tickets.get_by_key("ABC-1"))["status"] == "qa"
        assert (await repos.tickets.get_by_key("DEF-1"))["status"] == "done"

    async def test_status_distribution_lists_every_category(self, repos):
        await add_ticket(repos, "ABC-1", status="done", story_points=3)
        await add_ticket(repos, "ABC-2", status="done", story_points=2)
        await add_ticket(repos, "ABC-3", status="qa")

        rows = await repos.status_categories.get_status_distribution()

        assert rows == [
            {"category": "not_started", "ticket_count": 0, "total_points": 0.0},
            {"category": "in_progress", "ticket_count": 0, "total_points": 0.0},
            {"category": "qa", "ticket_count": 1, "total_points": 0.0},
            {"category": "done", "ticket_count": 2, "total_points": 5.0},
        ]


# -----------------------------------------------------------------------------
# Status change log
# -----------------------------------------------------------------------------
def change(ticket_key: str, from_status, to_status: str, at, by: str | None = "acc-1") -> dict:
    return {
        "ticket_key": ticket_key,
        "from_status": from_status,
        "to_status": to_status,
        "changed_by_id": by,
        "changed_date": at,
    }


class TestStatusChangeRepository:
    async def test_add_if_absent(self, repos):
        await add_ticket(repos, "ABC-1")

        assert await repos.status_changes.add_if_absent(change("ABC-1", None, "not_started", JAN_10)) is True
        assert await repos.status_changes.add_if_absent(change("ABC-1", None, "not_started", JAN_10)) is False
        assert await repos.status_changes.count() == 1

    async def test_add_batch_skips_existing(self, repos):
        await add_ticket(repos, "ABC-1")
        await repos.status_changes.add(change("ABC-1", "not_started", "in_progress", JAN_12))

        inserted = await repos.status_changes.add_batch(
            [
                change("ABC-1", "not_started", "in_progress", JAN_12),
                change("ABC-1", "in_progress", "qa", JAN_15),
            ]
        )

        assert inserted == 1
        assert await repos.status_changes.count() == 2

    async def test_get_by_ticket_newest_first(self, repos):
        await add_ticket(repos, "ABC-1")
        await repos.status_changes.add_batch(
            [change("ABC-1", "not_started", "in_progress", JAN_12), change("ABC-1", "in_progress", "qa", JAN_15)]
        )

        rows = await repos.status_changes.get_by_ticket("ABC-1")

        assert [r["to_status"] for r in rows] == ["qa", "in_progress"]

    async def test_qa_bounces(self, repos):
        await add_ticket(repos, "ABC-1")
        await repos.status_changes.add_batch(
            [
                change("ABC-1", "in_progress", "qa", JAN_12, by="acc-1"),
                change("ABC-1", "qa", "in_progress", JAN_15, by="acc-qa"),
                change("ABC-1", "in_progress", "qa", JAN_16, by="acc-2"),
            ]
        )

        count, details = await repos.status_changes.get_qa_bounces("ABC-1")

        assert count == 2
        assert details[0] == {"date": JAN_12, "changed_by": "acc-1", "from_status": "in_progress"}
        assert details[1]["changed_by"] == "acc-2"

    async def test_time_in_status(self, repos):
        await add_ticket(repos, "ABC-1")
        start = JAN_10
        await repos.status_changes.add_batch(
            [
                change("ABC-1", None, "not_started", start),
                change("ABC-1", "not_started", "in_progress", start + timedelta(days=1)),
                change("ABC-1", "in_progress", "qa", start + timedelta(days=3)),
                change("ABC-1", "qa", "in_progress", start + timedelta(days=4)),
            ]
        )

        durations = await repos.status_changes.get_time_in_status("ABC-1", now=start + timedelta(days=6))

        assert durations == {"not_started": 1.0, "in_progress": 4.0, "qa": 1.0}

    async def test_thrashing_tickets(self, repos, clock):
        await add_ticket(repos, "ABC-1")
        await add_ticket(repos, "ABC-2")
        statuses = ["not_started", "in_progress", "qa", "in_progress", "qa", "done"]
        await repos.status_changes.add_batch(
            [
                change("ABC-1", prev, nxt, clock.now - timedelta(days=5, hours=i))
                for i, (prev, nxt) in enumerate(zip(statuses, statuses[1:], strict=False))
            ]
        )
        await repos.status_changes.add(change("ABC-2", "not_started", "in_progress", JAN_20))

        rows = await repos.status_changes.get_thrashing_tickets(min_changes=5)

        assert [(r["ticket_key"], r["change_count"]) for r in rows] == [("ABC-1", 5)]
