"""Tests for IssueLinkRepository and the derived blocked flag."""

from jira_sync_db.db.repositories import BLOCKS
from tests.factories import add_ticket


async def is_blocked(repos, key: str) -> bool:
    return (await repos.tickets.get_by_key(key))["is_blocked"]


class TestBlockedFlag:
    """A ticket is blocked while any blocks link targets it."""

    async def test_add_and_remove(self, repos):
        await add_ticket(repos, "ABC-1")
        await add_ticket(repos, "ABC-2")

        await repos.issue_links.add("ABC-1", "ABC-2", BLOCKS)
        assert await is_blocked(repos, "ABC-2") is True
        assert await is_blocked(repos, "ABC-1") is False

        await repos.issue_links.remove("ABC-1", "ABC-2", BLOCKS)
        assert await is_blocked(repos, "ABC-2") is False

    async def test_stays_blocked_while_another_blocker_remains(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch([("ABC-1", "ABC-3", BLOCKS), ("ABC-2", "ABC-3", BLOCKS)])

        await repos.issue_links.remove("ABC-1", "ABC-3", BLOCKS)

        assert await is_blocked(repos, "ABC-3") is True

    async def test_other_link_types_do_not_block(self, repos):
        await add_ticket(repos, "ABC-1")
        await add_ticket(repos, "ABC-2")

        await repos.issue_links.add("ABC-1", "ABC-2", "relates to")

        assert await is_blocked(repos, "ABC-2") is False

    async def test_add_is_idempotent(self, repos):
        await add_ticket(repos, "ABC-1")
        await add_ticket(repos, "ABC-2")

        await repos.issue_links.add("ABC-1", "ABC-2", BLOCKS)
        await repos.issue_links.add("ABC-1", "ABC-2", BLOCKS)
        added = await repos.issue_links.add_batch([("ABC-1", "ABC-2", BLOCKS), ("ABC-1", "ABC-2", BLOCKS)])

        assert added == 1
        assert await repos.issue_links.count() == 1

    async def test_remove_all_for_ticket_unblocks_targets(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch([("ABC-1", "ABC-2", BLOCKS), ("ABC-3", "ABC-1", BLOCKS)])

        removed = await repos.issue_links.remove_all_for_ticket("ABC-1")

        assert removed == 2
        assert await is_blocked(repos, "ABC-2") is False
        assert await is_blocked(repos, "ABC-1") is False

    async def test_link_to_unsynced_ticket(self, repos):
        """Links may reference tickets that are not stored."""
        await add_ticket(repos, "ABC-1")

        await repos.issue_links.add("ABC-1", "XYZ-9", BLOCKS)

        assert await repos.issue_links.count() == 1
        [blocker] = await repos.issue_links.get_blockers("XYZ-9")
        assert blocker["blocker_summary"] == "Summary of ABC-1"


class TestLinkQueries:
    async def test_get_by_ticket_both_directions(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3"):
            await add_ticket(repos, key)
        await repos.issue_links.add("ABC-1", "ABC-2", BLOCKS)
        await repos.issue_links.add("ABC-3", "ABC-1", "relates to")

        links = await repos.issue_links.get_by_ticket("ABC-1")

        directions = {(link["direction"], link["link_type"]) for link in links}
        assert directions == {("outward", BLOCKS), ("inward", "relates to")}
        outward = next(link for link in links if link["direction"] == "outward")
        assert outward["other_summary"] == "Summary of ABC-2"

    async def test_get_all_blocked_orders_by_blocker_count(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3", "ABC-4"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch(
            [("ABC-1", "ABC-4", BLOCKS), ("ABC-2", "ABC-4", BLOCKS), ("ABC-1", "ABC-3", BLOCKS)]
        )

        blocked = await repos.issue_links.get_all_blocked()

        assert [(b["key"], b["blocker_count"]) for b in blocked] == [("ABC-4", 2), ("ABC-3", 1)]

    async def test_link_stats(self, repos):
        for key in ("ABC-1", "ABC-2", "DEF-1"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch(
            [("ABC-1", "ABC-2", BLOCKS), ("ABC-1", "ABC-2", "relates to"), ("DEF-1", "DEF-2", BLOCKS)]
        )

        assert await repos.issue_links.get_link_stats() == {BLOCKS: 2, "relates to": 1}
        assert await repos.issue_links.get_link_stats("ABC") == {BLOCKS: 1, "relates to": 1}


class TestChains:
    """Tests for transitive dependency walks."""

    async def test_dependency_chain(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch([("ABC-1", "ABC-2", BLOCKS), ("ABC-2", "ABC-3", BLOCKS)])

        chain = await repos.issue_links.get_dependency_chain("ABC-1")

        assert chain[0]["key"] == "ABC-2"
        assert chain[0]["depth"] == 0
        assert chain[0]["dependencies"][0]["key"] == "ABC-3"
        assert chain[0]["dependencies"][0]["depth"] == 1

    async def test_blocking_chain(self, repos):
        for key in ("ABC-1", "ABC-2", "ABC-3"):
            await add_ticket(repos, key)
        await repos.issue_links.add_batch([("ABC-1", "ABC-2", BLOCKS), ("ABC-2", "ABC-3", BLOCKS)])

        chain = await repos.issue_links.get_blocking_chain("ABC-3")

        assert chain[0]["key"] == "ABC-2"
        assert chain[0]["blockers"][0]["key"] == "ABC-1"
        assert chain[0]["blockers"][0]["blockers"] == []

    async def test_cycle_terminates(self, repos):
        await add_ticket(repos, "ABC-1")
        await add_ticket(repos, "ABC-2")
        await repos.issue_links.add_batch([("ABC-1", "ABC-2", BLOCKS), ("ABC-2", "ABC-1", BLOCKS)])

        chain = await repos.issue_links.get_dependency_chain("ABC-1")

        assert chain[0]["key"] == "ABC-2"
        # ABC-1 is listed again as a dependency of ABC-2 but not expanded
        assert chain[0]["dependencies"][0]["key"] == "ABC-1"
        assert chain[0]["dependencies"][0]["dependencies"] == []

    async def test_depth_limit(self, repos):
        keys = [f"ABC-{i}" for i in range(1, 6)]
        for key in keys:
            await add_ticket(repos, key)
        await repos.issue_links.add_batch([(a, b, BLOCKS) for a, b in zip(keys, keys[1:], strict=False)])

        chain = await repos.issue_links.get_dependency_chain("ABC-1", max_depth=1)

        assert chain[0]["key"] == "ABC-2"
        assert chain[0]["dependencies"][0]["key"] == "ABC-3"
        assert chain[0]["dependencies"][0]["dependencies"] == []
