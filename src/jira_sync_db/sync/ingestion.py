"""Snapshot writer - Parse → Transform → Store pipeline.

Turns the raw payloads gathered by a sync run into store rows. Each
entity group is written in one transaction, so a failed persist leaves
the previous snapshot of that group intact.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from jira_sync_db.db.repositories import Repositories, utc_now
from jira_sync_db.logging import bind_sync, get_logger
from jira_sync_db.schemas import JiraIssue, JiraProject, JiraSprint, JiraUser, parse_items
from jira_sync_db.status import StatusTranslator

from .enums import SyncType
from .results import IngestionStats

if TYPE_CHECKING:
    from jira_sync_db.config import Settings

logger = get_logger(__name__)

# Data slices holding flat lists of issue payloads
ISSUE_KEYS = frozenset(
    {"issues", "recent_issues", "assigned_issues", "stale", "blocked", "high_priority", "qa", "overdue"}
)


class SnapshotWriter:
    """Persists sync payloads through the repositories.

    Usage:
        writer = SnapshotWriter(Repositories(store), settings)
        stats = await writer.write(SyncType.FULL, result.data)

    Issues are split into epics and tickets. For tickets the writer also
    stores comments (latest flag maintained), status changes from the
    changelog, issue links (blocked flags derived) and sprint memberships.
    Related data is only replaced when the payload carried the field, so
    a query with a narrow field list never wipes existing rows.
    """

    def __init__(
        self,
        repos: Repositories,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repos = repos
        self._settings = settings
        self._clock = clock

    @property
    def repos(self) -> Repositories:
        return self._repos

    async def write(self, sync_type: SyncType, data: dict[str, Any]) -> IngestionStats:
        """Persist every recognized slice of a sync result's data."""
        log = bind_sync(sync_type.value)
        stats = IngestionStats()
        translator = await self._repos.status_categories.load_translator()

        handlers: dict[str, Callable[[Any], Awaitable[IngestionStats]]] = {
            "projects": self.write_projects,
            "users": self.write_users,
            "project_data": lambda value: self._write_project_data(value, translator),
            "epics": self.write_epics,
            "active_epics": self._write_project_epics,
            "sprints": self._write_project_sprints,
            "recent_sprints": self._write_project_sprints,
            "current_sprints": self._write_current_sprints,
        }
        for key, value in data.items():
            if not value:
                continue
            if key in ISSUE_KEYS:
                stats.merge(await self.write_issues(value, translator))
            elif key in handlers:
                stats.merge(await handlers[key](value))

        log.info("Persisted snapshot: {}", stats.to_dict())
        return stats

    # -------------------------------------------------------------------------
    # Reference data
    # -------------------------------------------------------------------------

    async def write_projects(self, payloads: list[dict[str, Any]]) -> IngestionStats:
        now = self._clock()
        projects = parse_items(JiraProject, payloads, context="projects")
        await self._repos.projects.upsert_batch([p.to_row(now) for p in projects])
        return IngestionStats(projects=len(projects), skipped=len(payloads) - len(projects))

    async def write_users(self, payloads: list[dict[str, Any]]) -> IngestionStats:
        now = self._clock()
        users = parse_items(JiraUser, payloads, context="users")
        await self._repos.users.upsert_batch([u.to_row(now) for u in users])
        return IngestionStats(users=len(users), skipped=len(payloads) - len(users))

    async def write_sprints(
        self, payloads: list[dict[str, Any]], project_key: str | None = None
    ) -> IngestionStats:
        now = self._clock()
        sprints = parse_items(JiraSprint, payloads, context="sprints")
        rows = [s.to_row(now, project_key) for s in sprints]
        async with self._repos.store.transaction():
            await self._ensure_projects(row["project_key"] for row in rows)
            await self._repos.sprints.upsert_batch(rows)
        return IngestionStats(sprints=len(rows), skipped=len(payloads) - len(rows))

    async def write_epics(self, payloads: list[dict[str, Any]]) -> IngestionStats:
        now = self._clock()
        epics = parse_items(JiraIssue, payloads, context="epics")
        rows = [e.to_epic_row(now) for e in epics]
        async with self._repos.store.transaction():
            await self._ensure_projects(row["project_key"] for row in rows)
            await self._repos.epics.upsert_batch(rows)
        return IngestionStats(epics=len(rows), skipped=len(payloads) - len(rows))

    async def _write_project_sprints(self, per_project: dict[str, list[dict[str, Any]]]) -> IngestionStats:
        stats = IngestionStats()
        for project_key, payloads in per_project.items():
            if payloads:
                stats.merge(await self.write_sprints(payloads, project_key))
        return stats

    async def _write_project_epics(self, per_project: dict[str, list[dict[str, Any]]]) -> IngestionStats:
        stats = IngestionStats()
        for payloads in per_project.values():
            if payloads:
                stats.merge(await self.write_epics(payloads))
        return stats

    async def _write_current_sprints(self, current: dict[str, dict[str, Any] | None]) -> IngestionStats:
        stats = IngestionStats()
        for project_key, sprint in current.items():
            if sprint:
                stats.merge(await self.write_sprints([sprint], project_key))
        return stats

    async def _write_project_data(
        self, project_data: dict[str, dict[str, Any]], translator: StatusTranslator
    ) -> IngestionStats:
        stats = IngestionStats()
        for project_key, bundle in project_data.items():
            await self._repos.projects.ensure_exists(project_key)
            if bundle.get("sprints"):
                stats.merge(await self.write_sprints(bundle["sprints"], project_key))
            if bundle.get("epics"):
                stats.merge(await self.write_epics(bundle["epics"]))
            if bundle.get("issues"):
                stats.merge(await self.write_issues(bundle["issues"], translator))
        return stats

    async def _ensure_projects(self, keys: Iterable[str | None]) -> None:
        for key in sorted({k for k in keys if k}):
            if await self._repos.projects.ensure_exists(key):
                logger.debug("Created placeholder project {}", key)

    # -------------------------------------------------------------------------
    # Issues
    # -------------------------------------------------------------------------

    async def write_issues(
        self, payloads: list[dict[str, Any]], translator: StatusTranslator | None = None
    ) -> IngestionStats:
        """Store issues: epics to `epics`, everything else to `tickets`."""
        if translator is None:
            translator = await self._repos.status_categories.load_translator()
        issues = parse_items(JiraIssue, payloads, context="issues")
        stats = IngestionStats(skipped=len(payloads) - len(issues))
        epics = [i for i in issues if i.is_epic]
        tickets = [i for i in issues if not i.is_epic]

        now = self._clock()
        s = self._settings
        async with self._repos.store.transaction():
            await self._ensure_projects(i.project_key for i in issues)
            if epics:
                await self._repos.epics.upsert_batch([e.to_epic_row(now) for e in epics])
                stats.epics += len(epics)
            if not tickets:
                return stats

            keys = [t.key for t in tickets]
            previous = {
                row["key"]: row["status"]
                for row in await self._repos.store.select_where(
                    self._repos.tickets.table, {"key": keys}, columns=["key", "status"]
                )
            }
            rows = [
                t.to_ticket_row(
                    translator,
                    story_points_field=s.story_points_field,
                    epic_link_field=s.epic_link_field,
                    synced_at=now,
                )
                for t in tickets
            ]
            await self._repos.tickets.upsert_batch(rows)
            stats.tickets += len(rows)

            for ticket, row in zip(tickets, rows, strict=True):
                stats.merge(await self._write_ticket_details(ticket, row, previous.get(ticket.key), translator, now))
        return stats

    async def _write_ticket_details(
        self,
        issue: JiraIssue,
        row: dict[str, Any],
        previous_status: str | None,
        translator: StatusTranslator,
        now: datetime,
    ) -> IngestionStats:
        stats = IngestionStats()
        fields_set = issue.fields.model_fields_set
        extra = issue.fields.model_extra or {}

        if "comment" in fields_set:
            comments = [c.to_row(issue.key) for c in issue.comments()]
            stats.comments = await self._repos.comments.add_batch(comments)

        histories = issue.histories()
        if histories:
            changes = []
            for history in histories:
                for item in history.status_items():
                    from_status = translator.translate(item.from_string).value if item.from_string else None
                    to_status = translator.translate(item.to_string).value
                    if from_status == to_status:
                        continue
                    changes.append(
                        {
                            "ticket_key": issue.key,
                            "from_status": from_status,
                            "to_status": to_status,
                            "changed_by_id": history.author.account_id if history.author else None,
                            "changed_date": history.created,
                        }
                    )
            stats.status_changes = await self._repos.status_changes.add_batch(changes)
        elif previous_status is not None and previous_status != row["status"]:
            # No changelog in the payload: log the transition observed between syncs
            await self._repos.status_changes.add(
                {
                    "ticket_key": issue.key,
                    "from_status": previous_status,
                    "to_status": row["status"],
                    "changed_date": row["updated_date"] or now,
                }
            )
            stats.status_changes = 1

        if "issuelinks" in fields_set:
            await self._repos.issue_links.remove_all_for_ticket(issue.key)
            stats.issue_links = await self._repos.issue_links.add_batch(issue.link_edges())

        sprint_field = self._settings.sprint_field
        if sprint_field in extra:
            for sprint in issue.sprints(sprint_field):
                # Sprints embedded in the ticket carry no board project
                if not await self._repos.sprints.exists(sprint.id):
                    await self._repos.sprints.upsert(sprint.to_row(now, sprint.project_key or issue.project_key))
                    stats.sprints += 1
            changes = await self._repos.sprints.sync_memberships(issue.key, issue.sprint_ids(sprint_field), now)
            stats.memberships_added = len(changes.added)
            stats.memberships_removed = len(changes.removed)
        return stats
