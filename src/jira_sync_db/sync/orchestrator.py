"""Sync Orchestrator - run sync strategies against Jira.

Every strategy is a set of independent phases. Phases run concurrently
in an asyncio.TaskGroup and never raise: each one catches its own
failure into a PhaseResult, so a run always completes with whatever data
the healthy phases obtained.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, TypeVar

from jira_sync_db.db.repositories import Repositories, utc_now
from jira_sync_db.errors import ConfigError, ErrorType, SyncError, classify_exception
from jira_sync_db.logging import bind_sync, get_logger

from .enums import SyncRunState, SyncType
from .results import PhaseError, PhaseResult, SyncResult

if TYPE_CHECKING:
    from jira_sync_db.config import Settings
    from jira_sync_db.jira.fetchers import JiraFetcher
    from jira_sync_db.jira.pagination import PaginatedResult

    from .ingestion import SnapshotWriter

logger = get_logger(__name__)

T = TypeVar("T")

PhaseOutput = tuple[Any, list[SyncError]]
PhaseFactory = Callable[[], Awaitable[PhaseOutput]]

INCREMENTAL_DEFAULT_DAYS = 7
RECENT_ISSUE_DAYS = 7


@dataclass
class Phase:
    """One unit of work inside a sync run."""

    name: str
    factory: PhaseFactory
    empty: Any = None
    """Data slice reported when the phase fails."""

    critical: bool = True


@dataclass
class AccessReport:
    """Result of validate_access()."""

    api_accessible: bool
    current_user: str | None = None
    valid_projects: list[str] = field(default_factory=list)
    invalid_projects: list[dict[str, Any]] = field(default_factory=list)
    error: SyncError | None = None

    @property
    def success(self) -> bool:
        return self.api_accessible and not self.invalid_projects

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "api_accessible": self.api_accessible,
            "current_user": self.current_user,
            "valid_projects": self.valid_projects,
            "invalid_projects": self.invalid_projects,
            "error": self.error.to_dict() if self.error else None,
        }


def _paged(result: PaginatedResult[dict[str, Any]]) -> PhaseOutput:
    return result.items, [result.error] if result.error else []


async def _per_project(
    keys: Iterable[str],
    fetch: Callable[[str], Coroutine[Any, Any, T]],
    *,
    context: str,
    empty: T,
) -> tuple[dict[str, T], list[SyncError]]:
    """Run `fetch` for every project; a failing project gets `empty` and an error."""
    key_list = list(keys)
    results = await asyncio.gather(*(fetch(key) for key in key_list), return_exceptions=True)
    data: dict[str, T] = {}
    errors: list[SyncError] = []
    for key, res in zip(key_list, results, strict=True):
        if isinstance(res, Exception):
            errors.append(classify_exception(res, context=f"{context}:{key}"))
            data[key] = empty
        elif isinstance(res, BaseException):
            raise res
        else:
            data[key] = res
    return data, errors


class SyncOrchestrator:
    """Runs the full, incremental, quick, attention and user-stats syncs.

    Usage:
        orchestrator = SyncOrchestrator(fetcher, settings, writer=writer)
        result = await orchestrator.full_sync()
        if not result.succeeded:
            for error in result.critical_errors:
                ...

    Run lifecycle: pending → running → aggregated → done | done_with_errors.
    A top-level phase failure is critical; sub-failures inside a phase
    (one project of many, a truncated listing) are recorded as
    non-critical warnings. When a SnapshotWriter is attached the
    aggregated data is persisted after the phases join.
    """

    def __init__(
        self,
        fetcher: JiraFetcher,
        settings: Settings,
        *,
        writer: SnapshotWriter | None = None,
        repos: Repositories | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            fetcher: Remote query layer
            settings: Application settings
            writer: Optional snapshot writer; without one nothing is persisted
            repos: Store access for local fallbacks (defaults to the writer's)
            clock: Returns the current naive UTC time
        """
        self._fetcher = fetcher
        self._settings = settings
        self._writer = writer
        self._repos = repos if repos is not None else (writer.repos if writer is not None else None)
        self._clock = clock

    @property
    def projects(self) -> list[str]:
        return list(self._settings.configured_projects)

    # -------------------------------------------------------------------------
    # Run machinery
    # -------------------------------------------------------------------------

    async def _run_phase(self, phase: Phase) -> PhaseResult:
        """Run one phase, converting any failure into its PhaseResult."""
        try:
            data, warnings = await phase.factory()
        except Exception as exc:
            error = classify_exception(exc, context=phase.name)
            logger.warning("Phase {} failed: {}", phase.name, error.message)
            return PhaseResult(name=phase.name, data=phase.empty, error=error, critical=phase.critical)
        return PhaseResult(name=phase.name, data=data, warnings=warnings)

    async def _run(
        self,
        sync_type: SyncType,
        phases: list[Phase],
        *,
        health_check: bool = False,
        stamp_projects: bool = False,
        unsynced: set[str] | None = None,
        initial_data: dict[str, Any] | None = None,
        after_phases: Callable[[dict[str, PhaseResult]], Awaitable[None]] | None = None,
    ) -> SyncResult:
        log = bind_sync(sync_type.value)
        result = SyncResult(sync_type=sync_type, data=dict(initial_data or {}), started_at=self._clock())
        result.state = SyncRunState.RUNNING
        log.info("Starting {} sync ({} phases)", sync_type.value, len(phases))

        if not await self._preflight(result, health_check=health_check):
            return self._finish(result, log)

        async with asyncio.TaskGroup() as tg:
            tasks = {phase.name: tg.create_task(self._run_phase(phase)) for phase in phases}
        phase_results = {name: task.result() for name, task in tasks.items()}

        if after_phases is not None:
            await after_phases(phase_results)

        for phase_result in phase_results.values():
            result.data[phase_result.name] = phase_result.data
            result.errors.extend(phase_result.errors())
        result.state = SyncRunState.AGGREGATED
        log.debug("Aggregated {} phases: {}", len(phase_results), result.counts())

        if self._writer is not None:
            try:
                result.persisted = await self._writer.write(sync_type, result.data)
            except Exception as exc:
                error = classify_exception(exc, context="persist")
                log.error("Persisting snapshot failed: {}", error.message)
                result.errors.append(PhaseError("persist", error, critical=True))

        self._finish(result, log)
        if stamp_projects and result.succeeded and self._writer is not None and self._repos is not None:
            await self._stamp(result, unsynced or set(), log)
        return result

    async def _stamp(self, result: SyncResult, unsynced: set[str], log: Any) -> None:
        """Stamp `last_synced_at` on every configured project fetched without errors."""
        keys = [key for key in self.projects if key not in unsynced]
        if unsynced:
            log.warning("Not stamping last sync of {} (fetch errors)", ", ".join(sorted(unsynced)))
        if not keys:
            return
        try:
            await self._repos.projects.mark_synced(keys, result.completed_at)
        except Exception as exc:
            error = classify_exception(exc, context="mark_synced")
            log.warning("Could not stamp last sync: {}", error.message)
            result.errors.append(PhaseError("persist", error, critical=False))

    async def _preflight(self, result: SyncResult, *, health_check: bool) -> bool:
        try:
            self._settings.ensure_valid()
        except ConfigError as exc:
            result.errors.append(PhaseError("config", exc))
            return False
        if health_check:
            health = await self._fetcher.client.health_check()
            if not health.ok:
                error = health.error or SyncError("Health check failed", context="health_check")
                result.errors.append(PhaseError("health_check", error))
                return False
        return True

    def _finish(self, result: SyncResult, log: Any) -> SyncResult:
        result.state = SyncRunState.DONE_WITH_ERRORS if result.critical_errors else SyncRunState.DONE
        result.completed_at = self._clock()
        log.info(
            "{} sync finished: {} ({} errors, {:.2f}s)",
            result.sync_type.value,
            result.state.value,
            len(result.errors),
            result.duration_seconds,
        )
        return result

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    async def full_sync(self) -> SyncResult:
        """Projects, users and every configured project's issues, epics and sprints.

        A project whose data fetch recorded any error is not stamped, so
        the next incremental sync still starts from its previous sync.
        """
        unsynced: set[str] = set()

        async def projects() -> PhaseOutput:
            return await self._fetcher.get_configured_projects_details(self.projects)

        async def users() -> PhaseOutput:
            return _paged(await self._fetcher.get_all_users())

        async def project_data() -> PhaseOutput:
            async with asyncio.TaskGroup() as tg:
                tasks = [tg.create_task(self._fetcher.get_project_data(key)) for key in self.projects]
            bundles = [task.result() for task in tasks]
            errors = [error for bundle in bundles for error in bundle.errors]
            unsynced.update(bundle.project_key for bundle in bundles if bundle.errors)
            return {bundle.project_key: bundle.to_dict() for bundle in bundles}, errors

        return await self._run(
            SyncType.FULL,
            [
                Phase("projects", projects, empty=[]),
                Phase("users", users, empty=[]),
                Phase("project_data", project_data, empty={}),
            ],
            health_check=True,
            stamp_projects=True,
            unsynced=unsynced,
        )

    async def incremental_sync(self, since: datetime | None = None) -> SyncResult:
        """Issues and epics updated since `since`, plus all sprints.

        Without `since`, the oldest completed sync of the configured
        projects is used (7 days back for a project that has none yet). A
        truncated issue or epic listing leaves every project unstamped.
        """
        if since is None:
            since = await self._default_since()
        unsynced: set[str] = set()

        def updated(result: PaginatedResult[dict[str, Any]]) -> PhaseOutput:
            if result.error is not None:
                unsynced.update(self.projects)
            return _paged(result)

        async def issues() -> PhaseOutput:
            return updated(await self._fetcher.get_updated_issues(since, self.projects))

        async def epics() -> PhaseOutput:
            return updated(await self._fetcher.get_epics_updated_since(since, self.projects))

        async def sprints() -> PhaseOutput:
            return await self._fetcher.get_all_project_sprints(self.projects)

        return await self._run(
            SyncType.INCREMENTAL,
            [
                Phase("issues", issues, empty=[]),
                Phase("epics", epics, empty=[]),
                Phase("sprints", sprints, empty={}),
            ],
            stamp_projects=True,
            unsynced=unsynced,
            initial_data={"since": since.isoformat()},
        )

    async def _default_since(self) -> datetime:
        fallback = self._clock() - timedelta(days=INCREMENTAL_DEFAULT_DAYS)
        if self._repos is None:
            return fallback
        try:
            rows = await self._repos.projects.get_all(active_only=False)
        except SyncError as exc:
            logger.warning("Could not read last sync times: {}", exc.message)
            return fallback
        stamped = {row["key"]: row["last_synced_at"] for row in rows if row["last_synced_at"] is not None}
        stamps = [stamped[key] for key in self.projects if key in stamped]
        if not stamps or len(stamps) < len(self.projects):
            # A project without a completed sync starts from the fallback window
            stamps.append(fallback)
        return min(stamps)

    async def quick_sync(self) -> SyncResult:
        """Current sprints, issues active in the last 7 days and active epics."""

        async def current_sprints() -> PhaseOutput:
            return await self._fetcher.get_all_current_sprints(self.projects)

        async def recent_issues() -> PhaseOutput:
            return _paged(await self._fetcher.get_recently_active_issues(RECENT_ISSUE_DAYS, self.projects))

        async def active_epics() -> PhaseOutput:
            async def fetch(key: str) -> list[dict[str, Any]]:
                return (await self._fetcher.get_active_epics(key)).items

            return await _per_project(self.projects, fetch, context="active_epics", empty=[])

        return await self._run(
            SyncType.QUICK,
            [
                Phase("current_sprints", current_sprints, empty={}),
                Phase("recent_issues", recent_issues, empty=[]),
                Phase("active_epics", active_epics, empty={}),
            ],
        )

    async def attention_sync(self) -> SyncResult:
        """Stale, blocked, high-priority, QA and overdue issues.

        The five queries run concurrently and fail independently. When the
        blocked query is rejected by the API (for example when the
        issueFunction JQL extension is not installed), the tickets flagged
        blocked by locally stored links are reported as `blocked_local`.
        """
        today = self._clock().date()
        f = self._fetcher

        async def stale() -> PhaseOutput:
            return _paged(await f.get_stale_issues(self._settings.stale_days_threshold, self.projects))

        async def blocked() -> PhaseOutput:
            return _paged(await f.get_blocked_issues(self.projects))

        async def high_priority() -> PhaseOutput:
            return _paged(await f.get_high_priority_issues(self.projects))

        async def qa() -> PhaseOutput:
            return _paged(await f.get_qa_issues(self.projects))

        async def overdue() -> PhaseOutput:
            return _paged(await f.get_overdue_issues(today, self.projects))

        return await self._run(
            SyncType.ATTENTION,
            [
                Phase("stale", stale, empty=[]),
                Phase("blocked", blocked, empty=[]),
                Phase("high_priority", high_priority, empty=[]),
                Phase("qa", qa, empty=[]),
                Phase("overdue", overdue, empty=[]),
            ],
            after_phases=self._blocked_fallback,
        )

    async def _blocked_fallback(self, phases: dict[str, PhaseResult]) -> None:
        blocked = phases.get("blocked")
        if blocked is None or blocked.error is None or self._repos is None:
            return
        if blocked.error.error_type is not ErrorType.API:
            return
        try:
            local = await self._repos.tickets.get_blocked()
        except SyncError as exc:
            logger.warning("Local blocked fallback failed: {}", exc.message)
            return
        local = [row for row in local if row["project_key"] in self.projects]
        logger.info("Blocked query unavailable, using {} locally linked tickets", len(local))
        blocked.error.details["fallback"] = "local_links"
        blocked.critical = False
        phases["blocked_local"] = PhaseResult(name="blocked_local", data=local)

    async def user_stats_sync(self, account_id: str) -> SyncResult:
        """One user's assigned issues plus recently completed sprints per project."""
        count = self._settings.sprint_lookback_count

        async def assigned_issues() -> PhaseOutput:
            return _paged(await self._fetcher.get_user_issues(account_id, self.projects))

        async def recent_sprints() -> PhaseOutput:
            async def fetch(key: str) -> list[dict[str, Any]]:
                return await self._fetcher.get_recent_completed_sprints(key, count)

            return await _per_project(self.projects, fetch, context="recent_sprints", empty=[])

        return await self._run(
            SyncType.USER_STATS,
            [
                Phase("assigned_issues", assigned_issues, empty=[]),
                Phase("recent_sprints", recent_sprints, empty={}),
            ],
            initial_data={"account_id": account_id},
        )

    # -------------------------------------------------------------------------
    # Access validation
    # -------------------------------------------------------------------------

    async def validate_access(self) -> AccessReport:
        """Check API reachability and access to every configured project."""
        health = await self._fetcher.client.health_check()
        if not health.ok:
            return AccessReport(api_accessible=False, error=health.error)

        report = AccessReport(
            api_accessible=True,
            current_user=(health.user or {}).get("displayName"),
        )
        keys = self.projects
        results = await asyncio.gather(
            *(self._fetcher.get_project_details(key) for key in keys), return_exceptions=True
        )
        for key, res in zip(keys, results, strict=True):
            if isinstance(res, Exception):
                error = classify_exception(res, context=f"project:{key}")
                report.invalid_projects.append({"key": key, "error": error.message, "type": error.error_type.value})
            elif isinstance(res, BaseException):
                raise res
            else:
                report.valid_projects.append(key)
        logger.info(
            "Access check: {} valid, {} invalid projects",
            len(report.valid_projects),
            len(report.invalid_projects),
        )
        return report
