"""Tests for the paginator and batcher."""

import asyncio

import pytest

from jira_sync_db.errors import ApiError, ErrorType, NetworkError
from jira_sync_db.jira import Batcher, Page, Paginator, page_from_payload
from jira_sync_db.jira.pagination import TOO_MANY_PAGES


def pages_of(sizes: list[int], *, total: int | None = None):
    """Fetch function serving pages with the given sizes, recording calls."""
    calls: list[tuple[int, int]] = []

    async def fetch(start_at: int, max_results: int) -> Page[int]:
        calls.append((start_at, max_results))
        index = len(calls) - 1
        size = sizes[index] if index < len(sizes) else 0
        return Page(items=list(range(start_at, start_at + size)), total=total)

    return fetch, calls


# -----------------------------------------------------------------------------
# page_from_payload
# -----------------------------------------------------------------------------
class TestPageFromPayload:
    def test_search_payload(self):
        page = page_from_payload({"issues": [{"key": "A-1"}], "total": 7}, "issues")

        assert page.items == [{"key": "A-1"}]
        assert page.total == 7
        assert page.is_last is None

    def test_agile_payload(self):
        page = page_from_payload({"values": [1, 2], "isLast": True})

        assert page.items == [1, 2]
        assert page.is_last is True

    def test_list_payload(self):
        assert page_from_payload([1, 2, 3]).items == [1, 2, 3]

    def test_unexpected_payload(self):
        assert page_from_payload("nope").items == []


# -----------------------------------------------------------------------------
# Paginator
# -----------------------------------------------------------------------------
class TestPaginator:
    async def test_stops_on_short_page(self):
        """Pages of 50, 50, 12 with page size 50: three fetches, 112 items."""
        fetch, calls = pages_of([50, 50, 12])

        result = await Paginator(page_size=50, max_pages=10).collect(fetch)

        assert len(result) == 112
        assert result.pages_fetched == 3
        assert calls == [(0, 50), (50, 50), (100, 50)]
        assert result.complete

    async def test_stops_at_reported_total(self):
        """A full last page is recognized by the reported total."""
        fetch, calls = pages_of([50, 50, 50], total=100)

        result = await Paginator(page_size=50, max_pages=10).collect(fetch)

        assert len(result) == 100
        assert len(calls) == 2
        assert result.total == 100

    async def test_stops_on_is_last(self):
        async def fetch(start_at: int, max_results: int) -> Page[int]:
            return Page(items=[0] * max_results, is_last=True)

        result = await Paginator(page_size=10, max_pages=5).collect(fetch)

        assert result.pages_fetched == 1

    async def test_empty_first_page(self):
        fetch, calls = pages_of([0])

        result = await Paginator(page_size=50).collect(fetch)

        assert result.items == []
        assert len(calls) == 1

    async def test_page_ceiling_keeps_items(self):
        """An endless listing stops at max_pages with a non-fatal error."""

        async def fetch(start_at: int, max_results: int) -> Page[int]:
            return Page(items=[start_at] * max_results)

        result = await Paginator(page_size=10, max_pages=3).collect(fetch, context="sprints:7")

        assert result.pages_fetched == 3
        assert len(result.items) == 30
        assert not result.complete
        assert result.error.message == TOO_MANY_PAGES
        assert result.error.error_type is ErrorType.VALIDATION
        assert result.error.context == "sprints:7"

    async def test_fetch_failure_propagates(self):
        async def fetch(start_at: int, max_results: int) -> Page[int]:
            raise NetworkError("down")

        with pytest.raises(NetworkError):
            await Paginator(page_size=10).collect(fetch)

    def test_rejects_invalid_sizes(self):
        with pytest.raises(ValueError):
            Paginator(page_size=0)


# -----------------------------------------------------------------------------
# Batcher
# -----------------------------------------------------------------------------
class TestBatcher:
    def test_chunk_sizes(self):
        """250 identifiers with chunk size 100: chunks of 100, 100, 50."""
        chunks = Batcher(chunk_size=100).chunk([f"A-{i}" for i in range(250)])

        assert [len(c) for c in chunks] == [100, 100, 50]

    def test_chunk_drops_duplicates(self):
        assert Batcher(chunk_size=2).chunk(["A", "B", "A", "C"]) == [["A", "B"], ["C"]]

    async def test_merges_results(self):
        async def query(chunk: list[int]) -> list[int]:
            return [i * 10 for i in chunk]

        outcome = await Batcher(chunk_size=2).run([1, 2, 3], query)

        assert sorted(outcome.items) == [10, 20, 30]
        assert outcome.chunk_count == 2
        assert outcome.all_succeeded

    async def test_failed_chunk_does_not_abort_siblings(self):
        async def query(chunk: list[int]) -> list[int]:
            if 3 in chunk:
                raise ApiError("Bad request", status_code=400)
            await asyncio.sleep(0)
            return chunk

        outcome = await Batcher(chunk_size=2).run([1, 2, 3, 4, 5], query, context="multiple_issues")

        assert sorted(outcome.items) == [1, 2, 5]
        assert len(outcome.failed_chunks) == 1
        assert outcome.failed_ids == [3, 4]
        failed = outcome.failed_chunks[0]
        assert failed.index == 1
        assert failed.error.context == "multiple_issues"
        assert failed.to_dict()["ids"] == [3, 4]

    async def test_respects_concurrency_limit(self):
        running = 0
        peak = 0

        async def query(chunk: list[int]) -> list[int]:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return chunk

        await Batcher(chunk_size=1, max_concurrency=2).run(list(range(6)), query)

        assert peak == 2

    async def test_empty_ids(self):
        async def query(chunk: list[int]) -> list[int]:
            raise AssertionError("not called")

        outcome = await Batcher().run([], query)

        assert outcome.chunk_count == 0
        assert outcome.items == []
