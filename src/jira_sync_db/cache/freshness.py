"""Freshness-aware cache for slow-changing Jira reference data.

Data is split into two freshness groups with their own TTL:

- LONG: projects and users (change rarely)
- SHORT: active epics, sprints and current-sprint pointers

A read computes the age of the group's last successful sync. When the
age reaches the TTL the group is synced before the read is served. The
group timestamp is only written after a successful sync, so a failed
refresh keeps serving the previous (stale) data.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from jira_sync_db.db.repositories import utc_now
from jira_sync_db.errors import DatabaseError, SyncError, ValidationError, classify_exception
from jira_sync_db.logging import get_logger

if TYPE_CHECKING:
    from jira_sync_db.config import Settings
    from jira_sync_db.jira.fetchers import JiraFetcher

logger = get_logger(__name__)

CACHE_VERSION = 1


class FreshnessGroup(str, Enum):
    """Cached data grouped by how quickly it changes."""

    LONG = "long"
    """Projects and users."""

    SHORT = "short"
    """Active epics, sprints and current sprints."""


GROUP_KEYS: dict[FreshnessGroup, tuple[str, ...]] = {
    FreshnessGroup.LONG: ("projects", "users"),
    FreshnessGroup.SHORT: ("epics", "sprints", "current_sprints"),
}


class GroupState(BaseModel):
    """Payload and last successful sync of one group."""

    synced_at: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class CacheBlob(BaseModel):
    """On-disk cache document."""

    version: int = CACHE_VERSION
    groups: dict[FreshnessGroup, GroupState] = Field(default_factory=dict)

    def group(self, group: FreshnessGroup) -> GroupState:
        return self.groups.setdefault(group, GroupState())


class CacheController:
    """Serves cached groups, syncing a group first once its TTL has passed.

    Usage:
        cache = CacheController(fetcher, settings)
        projects = await cache.get_projects()
        sprint = (await cache.get_current_sprints()).get("ABC")

    Concurrent reads of the same stale group share one sync: readers
    queue on a per-group lock and whoever gets it second finds the
    attempt already made.
    """

    def __init__(
        self,
        fetcher: JiraFetcher,
        settings: Settings,
        *,
        path: Path | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._fetcher = fetcher
        self._settings = settings
        self._path = path or settings.cache_path
        self._clock = clock
        self._ttl = {
            FreshnessGroup.LONG: settings.cache_ttl_long,
            FreshnessGroup.SHORT: settings.cache_ttl_short,
        }
        self._blob: CacheBlob | None = None
        self._locks = {group: asyncio.Lock() for group in FreshnessGroup}
        self._attempts = dict.fromkeys(FreshnessGroup, 0)
        self.last_error: dict[FreshnessGroup, SyncError | None] = dict.fromkeys(FreshnessGroup)

    @property
    def path(self) -> Path:
        return self._path

    def ttl(self, group: FreshnessGroup) -> int:
        return self._ttl[group]

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    @property
    def blob(self) -> CacheBlob:
        if self._blob is None:
            self._blob = self._load()
        return self._blob

    def _load(self) -> CacheBlob:
        if not self._path.exists():
            return CacheBlob()
        try:
            blob = CacheBlob.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            logger.warning("Ignoring unreadable cache at {}: {}", self._path, exc)
            return CacheBlob()
        if blob.version != CACHE_VERSION:
            logger.info("Discarding cache version {} (expected {})", blob.version, CACHE_VERSION)
            return CacheBlob()
        return blob

    def _save(self, blob: CacheBlob) -> None:
        """Write `blob` atomically (temp file in the same directory, then replace)."""
        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DatabaseError(
                f"Cannot create cache directory {directory}: {exc}", context="cache"
            ) from exc
        if not os.access(directory, os.W_OK):
            raise DatabaseError(f"Cache directory {directory} is not writable", context="cache")

        payload = blob.model_dump_json(indent=2)
        try:
            fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".cache-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            raise DatabaseError(f"Cannot write cache {self._path}: {exc}", context="cache") from exc

    # -------------------------------------------------------------------------
    # Freshness
    # -------------------------------------------------------------------------

    def age_seconds(self, group: FreshnessGroup) -> float | None:
        """Seconds since the group's last successful sync (None if never)."""
        synced_at = self.blob.group(group).synced_at
        if synced_at is None:
            return None
        return (self._clock() - synced_at).total_seconds()

    def is_fresh(self, group: FreshnessGroup) -> bool:
        age = self.age_seconds(group)
        return age is not None and age < self._ttl[group]

    def has_data(self, group: FreshnessGroup) -> bool:
        return bool(self.blob.group(group).data)

    def invalidate(self, group: FreshnessGroup | None = None) -> None:
        """Force the next read of `group` (or every group) to sync.

        The cached payload is kept so it can still be served if that sync
        fails.
        """
        for target in [group] if group is not None else list(FreshnessGroup):
            self.blob.group(target).synced_at = None
        self._save(self.blob)

    # -------------------------------------------------------------------------
    # Sync
    # -------------------------------------------------------------------------

    async def sync_group(self, group: FreshnessGroup) -> dict[str, Any]:
        """Refresh a group from the API.

        On success the payload and timestamp are written together. On
        failure nothing is written and the classified error is raised:
        the fetch error, or DatabaseError when the cache file cannot be
        written.
        """
        data = await self._refresh(group)
        self._commit(group, data)
        return data

    async def _refresh(self, group: FreshnessGroup) -> dict[str, Any]:
        try:
            return await self._fetch_group(group)
        except Exception as exc:
            error = classify_exception(exc, context=f"cache:{group.value}")
            self.last_error[group] = error
            logger.warning("Cache sync of {} group failed: {}", group.value, error.message)
            raise error from exc
        finally:
            # Counted on completion; ensure_fresh compares against it
            self._attempts[group] += 1

    def _commit(self, group: FreshnessGroup, data: dict[str, Any]) -> None:
        """Persist the new group state, adopting it only once it is on disk."""
        blob = self.blob.model_copy(deep=True)
        state = blob.group(group)
        state.data = data
        state.synced_at = self._clock()
        try:
            self._save(blob)
        except DatabaseError as exc:
            self.last_error[group] = exc
            logger.error("Cache {} group not saved: {}", group.value, exc.message)
            raise
        self._blob = blob
        self.last_error[group] = None
        logger.info("Cache {} group synced ({} keys)", group.value, len(data))

    async def _fetch_group(self, group: FreshnessGroup) -> dict[str, Any]:
        f = self._fetcher
        projects = list(self._settings.configured_projects)

        if group is FreshnessGroup.LONG:
            (details, _), users = await asyncio.gather(
                f.get_configured_projects_details(projects), f.get_all_users()
            )
            return {"projects": details, "users": users.items}

        async def active_epics() -> dict[str, list[dict[str, Any]]]:
            results = await asyncio.gather(*(f.get_active_epics(key) for key in projects))
            return {key: result.items for key, result in zip(projects, results, strict=True)}

        epics, (sprints, sprint_errors), (current, current_errors) = await asyncio.gather(
            active_epics(),
            f.get_all_project_sprints(projects),
            f.get_all_current_sprints(projects),
        )
        # All-or-nothing: a partial refresh would replace good data with gaps
        errors = [*sprint_errors, *current_errors]
        if errors:
            raise errors[0]
        return {"epics": epics, "sprints": sprints, "current_sprints": current}

    async def ensure_fresh(self, group: FreshnessGroup) -> None:
        """Sync the group first if its TTL has passed.

        A failed fetch is swallowed when stale data exists (served instead,
        error kept on `last_error`) and raised when there is nothing to
        serve. A cache file that cannot be written always raises.
        """
        if self.is_fresh(group):
            return
        seen = self._attempts[group]
        async with self._locks[group]:
            if self.is_fresh(group):
                return
            if self._attempts[group] != seen:
                # Another reader just attempted this sync and it failed
                self._raise_unservable(group)
                return
            try:
                data = await self._refresh(group)
            except SyncError:
                self._raise_unservable(group)
                logger.warning("Serving stale {} data", group.value)
                return
            self._commit(group, data)

    def _raise_unservable(self, group: FreshnessGroup) -> None:
        error = self.last_error[group]
        if error is None:
            return
        if isinstance(error, DatabaseError) or not self.has_data(group):
            raise error

    async def sync_all(self) -> dict[FreshnessGroup, SyncError | None]:
        """Sync every group; returns the error (or None) per group."""
        outcome: dict[FreshnessGroup, SyncError | None] = {}
        for group in FreshnessGroup:
            async with self._locks[group]:
                try:
                    await self.sync_group(group)
                    outcome[group] = None
                except SyncError as exc:
                    outcome[group] = exc
        return outcome

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get(self, group: FreshnessGroup, key: str) -> Any:
        """Cached value of `key`, syncing the group first when stale."""
        if key not in GROUP_KEYS[group]:
            raise ValidationError(f"Unknown cache key {key!r} for group {group.value}", context="cache")
        await self.ensure_fresh(group)
        return self.blob.group(group).data.get(key)

    async def get_projects(self) -> list[dict[str, Any]]:
        return await self.get(FreshnessGroup.LONG, "projects") or []

    async def get_users(self) -> list[dict[str, Any]]:
        return await self.get(FreshnessGroup.LONG, "users") or []

    async def get_epics(self) -> dict[str, list[dict[str, Any]]]:
        return await self.get(FreshnessGroup.SHORT, "epics") or {}

    async def get_sprints(self) -> dict[str, list[dict[str, Any]]]:
        return await self.get(FreshnessGroup.SHORT, "sprints") or {}

    async def get_current_sprints(self) -> dict[str, dict[str, Any] | None]:
        return await self.get(FreshnessGroup.SHORT, "current_sprints") or {}

    def status(self) -> list[dict[str, Any]]:
        """Freshness report per group."""
        report = []
        for group in FreshnessGroup:
            state = self.blob.group(group)
            age = self.age_seconds(group)
            error = self.last_error[group]
            report.append(
                {
                    "group": group.value,
                    "ttl_seconds": self._ttl[group],
                    "synced_at": state.synced_at.isoformat() if state.synced_at else None,
                    "age_seconds": round(age, 1) if age is not None else None,
                    "fresh": self.is_fresh(group),
                    "keys": sorted(state.data),
                    "last_error": error.message if error else None,
                }
            )
        return report
