"""Application context - owns every long-lived component of a process.

Usage:
    async with AppContext.create(settings) as ctx:
        result = await ctx.orchestrator.full_sync()

Components are built once per context and closed when it exits; nothing
else in the package keeps process-wide mutable state.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import httpx

from jira_sync_db.cache import CacheController
from jira_sync_db.config import Settings
from jira_sync_db.db import Repositories, Store
from jira_sync_db.db.repositories import utc_now
from jira_sync_db.jira import CircuitBreakerRegistry, JiraClient, JiraFetcher
from jira_sync_db.logging import get_logger
from jira_sync_db.sync import SnapshotWriter, SyncOrchestrator

logger = get_logger(__name__)


@dataclass
class AppContext:
    """Wired components sharing one settings object, store and client."""

    settings: Settings
    breakers: CircuitBreakerRegistry
    store: Store
    repos: Repositories
    client: JiraClient
    fetcher: JiraFetcher
    writer: SnapshotWriter
    orchestrator: SyncOrchestrator
    cache: CacheController

    @classmethod
    @asynccontextmanager
    async def create(
        cls,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        require_remote: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> AsyncIterator[AppContext]:
        """Build, initialize and finally close every component.

        Args:
            settings: Application settings
            transport: Optional httpx transport (tests use httpx.MockTransport)
            require_remote: Validate remote credentials up front; local-only
                commands (store maintenance) pass False
            clock: Returns the current naive UTC time

        Raises:
            ConfigError: If require_remote and the remote settings are incomplete
            DatabaseError: If the store cannot be opened or initialized
        """
        if require_remote:
            settings.ensure_valid()

        breakers = CircuitBreakerRegistry.from_config(settings.circuit_breaker)
        store = Store.from_settings(settings)
        repos = Repositories(store, clock=clock)
        client = JiraClient(settings, breakers, transport=transport)
        fetcher = JiraFetcher(client, settings)
        writer = SnapshotWriter(repos, settings, clock=clock)
        ctx = cls(
            settings=settings,
            breakers=breakers,
            store=store,
            repos=repos,
            client=client,
            fetcher=fetcher,
            writer=writer,
            orchestrator=SyncOrchestrator(fetcher, settings, writer=writer, repos=repos, clock=clock),
            cache=CacheController(fetcher, settings, clock=clock),
        )
        try:
            await store.init_schema()
            await ctx.seed_status_mappings()
            yield ctx
        finally:
            await client.close()
            await store.close()
            logger.debug("Application context closed")

    async def seed_status_mappings(self, *, reload: bool = False) -> int:
        """Load the configured status mappings.

        On startup only an empty mapping table is seeded. With `reload`
        the table is cleared and refilled from the settings, dropping
        mappings added since.
        """
        if not reload and await self.repos.status_categories.count() > 0:
            return 0
        return await self.repos.status_categories.init_from_mappings(self.settings.status_mappings)
