"""Named remote queries composed from the gateway, paginator and batcher."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from jira_sync_db.errors import SyncError, classify_exception
from jira_sync_db.logging import bind_project, get_logger
from jira_sync_db.schemas import JiraBoard, parse_items

from .jql import build_jql, date_literal, in_clause, jql_and, not_in_clause, project_clause, relative_days
from .pagination import Batcher, BatchOutcome, Page, PaginatedResult, Paginator, page_from_payload

if TYPE_CHECKING:
    from jira_sync_db.config import Settings

    from .client import JiraClient

logger = get_logger(__name__)

TICKET_FIELDS: tuple[str, ...] = (
    "key",
    "summary",
    "status",
    "assignee",
    "reporter",
    "priority",
    "description",
    "issuetype",
    "project",
    "created",
    "updated",
    "resolutiondate",
    "duedate",
    "parent",
    "epic",
    "comment",
    "issuelinks",
    "subtasks",
)
EPIC_FIELDS: tuple[str, ...] = (
    "key",
    "summary",
    "status",
    "assignee",
    "description",
    "issuetype",
    "project",
    "created",
    "updated",
    "resolutiondate",
)
FULL_EXPAND = "changelog,comment"

CLOSED_STATUSES: tuple[str, ...] = ("Done", "Closed", "Resolved", "Cancelled")
QA_STATUSES: tuple[str, ...] = ("In QA", "Testing", "Ready for QA", "QA Review", "Code Review")
HIGH_PRIORITIES: tuple[str, ...] = ("Highest", "High", "Critical", "Blocker")

SPRINT_MAX_PAGES = 20
EPIC_MAX_PAGES = 5


@dataclass
class ProjectData:
    """Issues, epics and sprints of one project.

    A failed slice is left empty and its error recorded.
    """

    project_key: str
    issues: list[dict[str, Any]] = field(default_factory=list)
    epics: list[dict[str, Any]] = field(default_factory=list)
    sprints: list[dict[str, Any]] = field(default_factory=list)
    errors: list[SyncError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"issues": self.issues, "epics": self.epics, "sprints": self.sprints}


class JiraFetcher:
    """Higher-level queries over the Jira API.

    Paged queries return a PaginatedResult so the caller can see when a
    listing was cut short by the page ceiling.
    """

    def __init__(self, client: JiraClient, settings: Settings) -> None:
        self._client = client
        self._settings = settings
        pg = settings.pagination
        self._search_paginator = Paginator(pg.search_page_size, pg.max_pages)
        self._list_paginator = Paginator(pg.page_size, pg.max_pages)
        self._sprint_paginator = Paginator(pg.page_size, SPRINT_MAX_PAGES)
        self._epic_paginator = Paginator(pg.page_size, EPIC_MAX_PAGES)
        self._issue_batcher = Batcher(pg.batch_chunk_size, pg.max_concurrent_requests)
        self._changelog_batcher = Batcher(pg.changelog_chunk_size, pg.max_concurrent_requests)

    @property
    def client(self) -> JiraClient:
        return self._client

    @property
    def ticket_fields(self) -> list[str]:
        """Ticket fields plus the instance-specific custom fields."""
        s = self._settings
        return [*TICKET_FIELDS, s.story_points_field, s.sprint_field, s.epic_link_field]

    def _projects(self, projects: Iterable[str] | None) -> list[str]:
        return list(projects) if projects is not None else list(self._settings.configured_projects)

    # -------------------------------------------------------------------------
    # Issue search
    # -------------------------------------------------------------------------

    async def search(
        self,
        jql: str,
        *,
        fields: Sequence[str] | None = None,
        expand: str | None = FULL_EXPAND,
        paginator: Paginator | None = None,
        context: str | None = None,
    ) -> PaginatedResult[dict[str, Any]]:
        """Run a JQL search across all pages."""
        selected = list(fields) if fields is not None else self.ticket_fields
        label = context or "search"

        async def fetch(start_at: int, max_results: int) -> Page[dict[str, Any]]:
            payload = await self._client.search_issues(
                jql,
                fields=selected,
                expand=expand,
                start_at=start_at,
                max_results=max_results,
                context=label,
            )
            return page_from_payload(payload, "issues")

        logger.debug("Searching ({}): {}", label, jql)
        return await (paginator or self._search_paginator).collect(fetch, context=label)

    async def get_issues(self, jql: str) -> PaginatedResult[dict[str, Any]]:
        """Issues matching an arbitrary JQL query."""
        return await self.search(jql, context="issues")

    async def get_project_issues(self, project_key: str) -> PaginatedResult[dict[str, Any]]:
        return await self.search(build_jql({"project": project_key}), context=f"issues:{project_key}")

    async def get_sprint_issues(self, sprint_id: int) -> PaginatedResult[dict[str, Any]]:
        return await self.search(f"sprint = {int(sprint_id)}", context=f"sprint_issues:{sprint_id}")

    async def get_epic_issues(self, epic_key: str) -> PaginatedResult[dict[str, Any]]:
        field_id = self._settings.epic_link_field.removeprefix("customfield_")
        jql = f'cf[{field_id}] = "{epic_key}" OR parent = "{epic_key}"'
        return await self.search(jql, context=f"epic_issues:{epic_key}")

    async def get_user_issues(
        self, account_id: str, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(build_jql({"assignee": account_id}), project_clause(self._projects(projects)))
        return await self.search(jql, context=f"user_issues:{account_id}")

    async def get_updated_issues(
        self, since: date | datetime, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(f"updated >= {date_literal(since)}", project_clause(self._projects(projects)))
        return await self.search(jql, context="updated_issues")

    async def get_recently_active_issues(
        self, days: int = 7, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(f"updated >= {relative_days(days)}", project_clause(self._projects(projects)))
        return await self.search(jql, context="recent_issues")

    async def get_stale_issues(
        self, days: int | None = None, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        days = days or self._settings.stale_days_threshold
        jql = jql_and(
            f"updated <= {relative_days(days)}",
            not_in_clause("status", CLOSED_STATUSES),
            project_clause(self._projects(projects)),
        )
        return await self.search(jql, context="stale_issues")

    async def get_blocked_issues(self, projects: Iterable[str] | None = None) -> PaginatedResult[dict[str, Any]]:
        """Issues linked as 'is blocked by' (needs the ScriptRunner issueFunction)."""
        keys = ", ".join(self._projects(projects))
        inner = f"project in ({keys}) and issueType != Epic"
        jql = f"issueFunction in linkedIssuesOf('{inner}', 'is blocked by')"
        return await self.search(jql, context="blocked_issues")

    async def get_issues_by_status(
        self, statuses: Iterable[str], projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(in_clause("status", statuses), project_clause(self._projects(projects)))
        return await self.search(jql, context="issues_by_status")

    async def get_qa_issues(self, projects: Iterable[str] | None = None) -> PaginatedResult[dict[str, Any]]:
        return await self.get_issues_by_status(QA_STATUSES, projects)

    async def get_issues_by_priority(
        self, priorities: Iterable[str], projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(
            in_clause("priority", priorities),
            not_in_clause("status", CLOSED_STATUSES),
            project_clause(self._projects(projects)),
        )
        return await self.search(jql, context="issues_by_priority")

    async def get_high_priority_issues(self, projects: Iterable[str] | None = None) -> PaginatedResult[dict[str, Any]]:
        return await self.get_issues_by_priority(HIGH_PRIORITIES, projects)

    async def get_overdue_issues(
        self, today: date, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(
            f"due < {date_literal(today)}",
            not_in_clause("status", CLOSED_STATUSES),
            project_clause(self._projects(projects)),
        )
        return await self.search(jql, context="overdue_issues")

    async def get_unassigned_issues(self, projects: Iterable[str] | None = None) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and("assignee is EMPTY", project_clause(self._projects(projects)))
        return await self.search(jql, context="unassigned_issues")

    async def get_subtasks(self, parent_key: str) -> PaginatedResult[dict[str, Any]]:
        return await self.search(build_jql({"parent": parent_key}), context=f"subtasks:{parent_key}")

    async def get_issue_details(self, issue_key: str) -> dict[str, Any]:
        return await self._client.get_issue(issue_key, fields=self.ticket_fields, expand=FULL_EXPAND)

    async def get_issue_changelog(self, issue_key: str) -> list[dict[str, Any]]:
        """Every changelog history entry of one issue."""

        async def fetch(start_at: int, max_results: int) -> Page[dict[str, Any]]:
            payload = await self._client.get_issue_changelog(issue_key, start_at=start_at, max_results=max_results)
            return page_from_payload(payload, "values")

        result = await self._list_paginator.collect(fetch, context=f"changelog:{issue_key}")
        return result.items

    async def get_multiple_issues(self, issue_keys: Sequence[str]) -> BatchOutcome[dict[str, Any]]:
        """Fetch many issues by key, one search per chunk."""
        fields = self.ticket_fields

        async def query(chunk: list[str]) -> list[dict[str, Any]]:
            payload = await self._client.search_issues(
                in_clause("key", chunk),
                fields=fields,
                expand=FULL_EXPAND,
                max_results=len(chunk),
                context="multiple_issues",
            )
            return page_from_payload(payload, "issues").items

        outcome = await self._issue_batcher.run(issue_keys, query, context="multiple_issues")
        logger.info(
            "Fetched {} issues in {} chunks ({} failed)",
            len(outcome.items),
            outcome.chunk_count,
            len(outcome.failed_chunks),
        )
        return outcome

    async def get_multiple_changelogs(self, issue_keys: Sequence[str]) -> BatchOutcome[dict[str, Any]]:
        """Fetch changelogs for many issues (issue payloads with changelog expanded)."""

        async def query(chunk: list[str]) -> list[dict[str, Any]]:
            payload = await self._client.search_issues(
                in_clause("key", chunk),
                fields=["key"],
                expand="changelog",
                max_results=len(chunk),
                context="multiple_changelogs",
            )
            return page_from_payload(payload, "issues").items

        return await self._changelog_batcher.run(issue_keys, query, context="multiple_changelogs")

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def get_projects(self) -> list[dict[str, Any]]:
        return await self._client.get_projects()

    async def get_project_details(self, project_key: str) -> dict[str, Any]:
        return await self._client.get_project(project_key)

    async def get_configured_projects_details(
        self, projects: Iterable[str] | None = None
    ) -> tuple[list[dict[str, Any]], list[SyncError]]:
        """Details of each configured project.

        A project whose details cannot be fetched falls back to a minimal
        record (key used as name) and its error is returned alongside.
        """
        keys = self._projects(projects)
        results = await asyncio.gather(
            *(self._client.get_project(key) for key in keys), return_exceptions=True
        )
        details: list[dict[str, Any]] = []
        errors: list[SyncError] = []
        for key, res in zip(keys, results, strict=True):
            if isinstance(res, Exception):
                error = classify_exception(res, context=f"project:{key}")
                errors.append(error)
                bind_project(key).warning("Project details unavailable: {}", error.message)
                details.append({"key": key, "name": key})
            elif isinstance(res, BaseException):
                raise res
            else:
                details.append(res)
        return details, errors

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_all_users(self) -> PaginatedResult[dict[str, Any]]:
        async def fetch(start_at: int, max_results: int) -> Page[dict[str, Any]]:
            users = await self._client.search_users(start_at=start_at, max_results=max_results)
            return Page(items=users)

        return await self._list_paginator.collect(fetch, context="users")

    async def get_active_users(self) -> list[dict[str, Any]]:
        """All users except those explicitly marked inactive."""
        result = await self.get_all_users()
        return [u for u in result.items if u.get("active") is not False]

    async def get_project_assignees(self, project_key: str) -> PaginatedResult[dict[str, Any]]:
        async def fetch(start_at: int, max_results: int) -> Page[dict[str, Any]]:
            users = await self._client.get_assignable_users(
                project_key, start_at=start_at, max_results=max_results
            )
            return Page(items=users)

        return await self._list_paginator.collect(fetch, context=f"assignees:{project_key}")

    # -------------------------------------------------------------------------
    # Epics
    # -------------------------------------------------------------------------

    async def get_project_epics(self, project_key: str) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(build_jql({"project": project_key}), "issuetype = Epic")
        return await self.search(jql, fields=EPIC_FIELDS, expand=None, context=f"epics:{project_key}")

    async def get_active_epics(self, project_key: str) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(
            build_jql({"project": project_key}),
            "issuetype = Epic",
            not_in_clause("status", CLOSED_STATUSES),
        )
        return await self.search(
            jql,
            fields=EPIC_FIELDS,
            expand=None,
            paginator=self._epic_paginator,
            context=f"active_epics:{project_key}",
        )

    async def get_recently_updated_epics(
        self, days: int = 30, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(
            "issuetype = Epic",
            f"updated >= {relative_days(days)}",
            project_clause(self._projects(projects)),
        )
        return await self.search(jql, fields=EPIC_FIELDS, expand=None, context="recent_epics")

    async def get_epics_updated_since(
        self, since: date | datetime, projects: Iterable[str] | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        jql = jql_and(
            "issuetype = Epic",
            f"updated >= {date_literal(since)}",
            project_clause(self._projects(projects)),
        )
        return await self.search(jql, fields=EPIC_FIELDS, expand=None, context="updated_epics")

    # -------------------------------------------------------------------------
    # Boards and sprints
    # -------------------------------------------------------------------------

    async def get_project_board_id(self, project_key: str) -> int | None:
        """Id of the first board of a project (None for board-less projects)."""
        payload = await self._client.get_boards(project_key)
        boards = parse_items(JiraBoard, page_from_payload(payload, "values").items, context=f"boards:{project_key}")
        if not boards:
            bind_project(project_key).debug("No board found")
            return None
        return boards[0].id

    async def get_board_sprints(
        self, board_id: int, state: str | None = None
    ) -> PaginatedResult[dict[str, Any]]:
        async def fetch(start_at: int, max_results: int) -> Page[dict[str, Any]]:
            payload = await self._client.get_board_sprints(
                board_id, state=state, start_at=start_at, max_results=max_results
            )
            return page_from_payload(payload, "values")

        return await self._sprint_paginator.collect(fetch, context=f"sprints:{board_id}")

    async def get_project_sprints(self, project_key: str, state: str | None = None) -> list[dict[str, Any]]:
        """Sprints of a project's board, tagged with `projectKey`."""
        board_id = await self.get_project_board_id(project_key)
        if board_id is None:
            return []
        result = await self.get_board_sprints(board_id, state)
        if result.error:
            bind_project(project_key).warning("Sprint listing truncated: {}", result.error.message)
        return [{**sprint, "projectKey": project_key} for sprint in result.items]

    async def get_all_project_sprints(
        self, projects: Iterable[str] | None = None, state: str | None = None
    ) -> tuple[dict[str, list[dict[str, Any]]], list[SyncError]]:
        """Sprints per project; a failing project yields an empty list plus its error."""
        keys = self._projects(projects)
        results = await asyncio.gather(
            *(self.get_project_sprints(key, state) for key in keys), return_exceptions=True
        )
        sprints: dict[str, list[dict[str, Any]]] = {}
        errors: list[SyncError] = []
        for key, res in zip(keys, results, strict=True):
            if isinstance(res, Exception):
                errors.append(classify_exception(res, context=f"sprints:{key}"))
                sprints[key] = []
            elif isinstance(res, BaseException):
                raise res
            else:
                sprints[key] = res
        return sprints, errors

    async def get_current_sprint(self, project_key: str) -> dict[str, Any] | None:
        sprints = await self.get_project_sprints(project_key, "active")
        active = [s for s in sprints if s.get("state") == "active"]
        return active[0] if active else None

    async def get_all_current_sprints(
        self, projects: Iterable[str] | None = None
    ) -> tuple[dict[str, dict[str, Any] | None], list[SyncError]]:
        keys = self._projects(projects)
        results = await asyncio.gather(
            *(self.get_current_sprint(key) for key in keys), return_exceptions=True
        )
        current: dict[str, dict[str, Any] | None] = {}
        errors: list[SyncError] = []
        for key, res in zip(keys, results, strict=True):
            if isinstance(res, Exception):
                errors.append(classify_exception(res, context=f"current_sprint:{key}"))
                current[key] = None
            elif isinstance(res, BaseException):
                raise res
            else:
                current[key] = res
        return current, errors

    async def get_recent_completed_sprints(self, project_key: str, count: int) -> list[dict[str, Any]]:
        """Most recently completed sprints, newest first."""
        sprints = await self.get_project_sprints(project_key, "closed")
        completed = [s for s in sprints if s.get("state") == "closed" and s.get("completeDate")]
        completed.sort(key=lambda s: s["completeDate"], reverse=True)
        return completed[:count]

    # -------------------------------------------------------------------------
    # Composite
    # -------------------------------------------------------------------------

    async def get_project_data(self, project_key: str) -> ProjectData:
        """Issues, epics and sprints of a project fetched concurrently.

        Never raises for a remote failure: a failed slice stays empty and its
        error is recorded on the result.
        """
        data = ProjectData(project_key=project_key)
        log = bind_project(project_key)

        async def issues() -> None:
            result = await self.get_project_issues(project_key)
            data.issues = result.items
            if result.error:
                data.errors.append(result.error)

        async def epics() -> None:
            result = await self.get_project_epics(project_key)
            data.epics = result.items
            if result.error:
                data.errors.append(result.error)

        async def sprints() -> None:
            data.sprints = await self.get_project_sprints(project_key)

        slices = {"issues": issues, "epics": epics, "sprints": sprints}
        results = await asyncio.gather(*(fn() for fn in slices.values()), return_exceptions=True)
        for name, res in zip(slices, results, strict=True):
            if isinstance(res, Exception):
                error = classify_exception(res, context=f"{name}:{project_key}")
                data.errors.append(error)
                log.warning("Failed to fetch {}: {}", name, error.message)
            elif isinstance(res, BaseException):
                raise res

        log.info(
            "Fetched {} issues, {} epics, {} sprints",
            len(data.issues),
            len(data.epics),
            len(data.sprints),
        )
        return data
