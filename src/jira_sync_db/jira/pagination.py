"""Pagination and identifier batching over the API gateway.

The Paginator walks offset-paged endpoints strictly in order, since each
page decides whether another is needed. The Batcher splits identifier
lists into chunks that run concurrently and never abort one another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from jira_sync_db.errors import SyncError, ValidationError, classify_exception
from jira_sync_db.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

TOO_MANY_PAGES = "Too many pages, possible infinite loop"


@dataclass
class Page(Generic[T]):
    """One page returned by a paged endpoint."""

    items: list[T]
    total: int | None = None
    is_last: bool | None = None


def page_from_payload(payload: Any, key: str | None = None) -> Page[Any]:
    """Extract a Page from a Jira payload.

    Items are taken from `key` when given, else from `issues` or `values`,
    else the payload itself when it is a list.
    """
    if isinstance(payload, list):
        return Page(items=payload)
    if not isinstance(payload, dict):
        return Page(items=[])
    keys = (key,) if key else ("issues", "values")
    items: list[Any] = []
    for name in keys:
        if isinstance(payload.get(name), list):
            items = payload[name]
            break
    total = payload.get("total")
    is_last = payload.get("isLast")
    return Page(
        items=items,
        total=total if isinstance(total, int) else None,
        is_last=is_last if isinstance(is_last, bool) else None,
    )


@dataclass
class PaginatedResult(Generic[T]):
    """Items accumulated across pages.

    `error` is set when the page ceiling was hit; the items fetched so far
    are kept so callers can degrade gracefully.
    """

    items: list[T] = field(default_factory=list)
    """Accumulated items in page order."""

    pages_fetched: int = 0
    """Number of pages requested."""

    total: int | None = None
    """Server-reported total from the last page, if any."""

    error: SyncError | None = None
    """Non-fatal error (page ceiling reached)."""

    @property
    def complete(self) -> bool:
        return self.error is None

    def __len__(self) -> int:
        return len(self.items)


FetchPage = Callable[[int, int], Awaitable[Page[T]]]


class Paginator:
    """Sequential offset pagination with a page-count ceiling.

    Usage:
        paginator = Paginator(page_size=50, max_pages=20)

        async def fetch(start_at: int, max_results: int) -> Page[dict]:
            payload = await client.get_board_sprints(board_id, start_at=start_at)
            return page_from_payload(payload)

        result = await paginator.collect(fetch)
    """

    def __init__(self, page_size: int = 50, max_pages: int = 100) -> None:
        if page_size < 1 or max_pages < 1:
            raise ValueError("page_size and max_pages must be positive")
        self.page_size = page_size
        self.max_pages = max_pages

    async def collect(self, fetch_page: FetchPage[T], *, context: str | None = None) -> PaginatedResult[T]:
        """Fetch pages until a short page, the reported total, or the ceiling.

        Args:
            fetch_page: Called with (start_at, max_results) for each page
            context: Label for logs and errors

        Returns:
            PaginatedResult with all items (error set when the ceiling was hit)

        Raises:
            SyncError: A page fetch failed; nothing is returned in that case
        """
        result: PaginatedResult[T] = PaginatedResult()
        start_at = 0

        while True:
            if result.pages_fetched >= self.max_pages:
                result.error = ValidationError(
                    TOO_MANY_PAGES,
                    context=context,
                    details={"max_pages": self.max_pages, "items": len(result.items)},
                )
                logger.warning(
                    "{}: stopped after {} pages ({} items)",
                    context or "pagination",
                    result.pages_fetched,
                    len(result.items),
                )
                return result

            page = await fetch_page(start_at, self.page_size)
            result.pages_fetched += 1
            result.items.extend(page.items)
            if page.total is not None:
                result.total = page.total

            count = len(page.items)
            if count < self.page_size or page.is_last:
                break
            if page.total is not None and start_at + count >= page.total:
                break
            start_at += count

        return result


# -----------------------------------------------------------------------------
# Batching
# -----------------------------------------------------------------------------


@dataclass
class FailedChunk(Generic[K]):
    """A chunk whose query failed."""

    index: int
    ids: list[K]
    error: SyncError

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "ids": list(self.ids), "error": self.error.to_dict()}


@dataclass
class BatchOutcome(Generic[T]):
    """Merged results of a chunked query."""

    items: list[T] = field(default_factory=list)
    failed_chunks: list[FailedChunk[Any]] = field(default_factory=list)
    chunk_count: int = 0

    @property
    def all_succeeded(self) -> bool:
        return not self.failed_chunks

    @property
    def failed_ids(self) -> list[Any]:
        return [i for chunk in self.failed_chunks for i in chunk.ids]


class Batcher:
    """Splits identifiers into chunks and queries them concurrently.

    A failing chunk is recorded without cancelling its siblings; run()
    returns only after every chunk has reported.
    """

    def __init__(self, chunk_size: int = 100, max_concurrency: int = 5) -> None:
        if chunk_size < 1 or max_concurrency < 1:
            raise ValueError("chunk_size and max_concurrency must be positive")
        self.chunk_size = chunk_size
        self.max_concurrency = max_concurrency

    def chunk(self, ids: Sequence[K]) -> list[list[K]]:
        """Split identifiers into chunks, dropping duplicates (order kept)."""
        unique = list(dict.fromkeys(ids))
        return [unique[i : i + self.chunk_size] for i in range(0, len(unique), self.chunk_size)]

    async def run(
        self,
        ids: Sequence[K],
        query: Callable[[list[K]], Awaitable[list[T]]],
        *,
        context: str | None = None,
    ) -> BatchOutcome[T]:
        """Run `query` once per chunk and merge the results.

        Args:
            ids: Identifiers to query
            query: Coroutine receiving one chunk, returning its items
            context: Label for logs and errors

        Returns:
            BatchOutcome with merged items and any failed chunks
        """
        chunks = self.chunk(ids)
        outcome: BatchOutcome[T] = BatchOutcome(chunk_count=len(chunks))
        if not chunks:
            return outcome

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_chunk(chunk: list[K]) -> list[T]:
            async with semaphore:
                return await query(chunk)

        results = await asyncio.gather(*(run_chunk(c) for c in chunks), return_exceptions=True)

        for index, (chunk, res) in enumerate(zip(chunks, results, strict=True)):
            if isinstance(res, Exception):
                error = classify_exception(res, context=context)
                outcome.failed_chunks.append(FailedChunk(index=index, ids=chunk, error=error))
                logger.warning(
                    "{}: chunk {} ({} ids) failed: {}",
                    context or "batch",
                    index,
                    len(chunk),
                    error.message,
                )
            elif isinstance(res, BaseException):
                raise res
            else:
                outcome.items.extend(res)

        return outcome
