"""Pydantic schemas for parsing Jira API responses.

These schemas map to the Jira Cloud REST v2 and Agile 1.0 payloads. Each
top-level entity offers a `to_row()` conversion into the local store's
column layout. Timestamps are stored as naive UTC datetimes.
See: https://developer.atlassian.com/cloud/jira/platform/rest/v2/
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Annotated, Any, TypeVar

from pydantic import AfterValidator, BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from jira_sync_db.logging import get_logger

if TYPE_CHECKING:
    from jira_sync_db.status import StatusTranslator

logger = get_logger(__name__)

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


def _normalize_offset(value: Any) -> Any:
    # Jira sends "+0000"; ISO 8601 parsers want "+00:00"
    if isinstance(value, str):
        return _COMPACT_OFFSET.sub(r"\1:\2", value.strip())
    return value


def _to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


JiraDateTime = Annotated[datetime, BeforeValidator(_normalize_offset), AfterValidator(_to_naive_utc)]


def flatten_text(value: Any) -> str | None:
    """Plain text from a string or an Atlassian Document Format node."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        if value.get("type") == "text":
            return value.get("text", "")
        parts = [flatten_text(child) or "" for child in value.get("content") or []]
        joiner = "\n" if value.get("type") == "doc" else ""
        return joiner.join(parts)
    if isinstance(value, list):
        return "".join(flatten_text(v) or "" for v in value)
    return str(value)


def date_to_datetime(value: date | None) -> datetime | None:
    if value is None:
        return None
    return datetime(value.year, value.month, value.day)


class JiraModel(BaseModel):
    """Base for Jira payload models (aliases accepted, unknown keys ignored)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


M = TypeVar("M", bound=JiraModel)


class JiraUser(JiraModel):
    """User object from /users/search and embedded issue fields."""

    account_id: str = Field(alias="accountId", description="Stable account id")
    display_name: str = Field(default="", alias="displayName")
    email_address: str | None = Field(default=None, alias="emailAddress")
    active: bool = Field(default=True)
    account_type: str | None = Field(default=None, alias="accountType")

    def to_row(self, synced_at: datetime) -> dict[str, Any]:
        return {
            "account_id": self.account_id,
            "display_name": self.display_name or self.account_id,
            "email": self.email_address,
            "active": self.active,
            "synced_at": synced_at,
        }


class JiraProject(JiraModel):
    """Project object from /rest/api/2/project."""

    key: str
    name: str = ""
    archived: bool = False

    def to_row(self, synced_at: datetime) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name or self.key,
            "active": not self.archived,
            "synced_at": synced_at,
        }


class JiraNamed(JiraModel):
    """Status, issue type or priority reference."""

    name: str
    id: str | None = None


class JiraStatus(JiraNamed):
    pass


class JiraIssueType(JiraNamed):
    subtask: bool = False


class JiraPriority(JiraNamed):
    pass


class JiraParentFields(JiraModel):
    issuetype: JiraNamed | None = None


class JiraIssueRef(JiraModel):
    """Reference to another issue (parent, subtask, linked issue)."""

    key: str
    fields: JiraParentFields | None = None

    @property
    def is_epic(self) -> bool:
        return bool(self.fields and self.fields.issuetype and self.fields.issuetype.name.lower() == "epic")


class JiraComment(JiraModel):
    """Comment from the issue `comment` field."""

    id: str
    author: JiraUser | None = None
    body: str | None = None
    created: JiraDateTime
    updated: JiraDateTime | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("body", mode="before")
    @classmethod
    def _flatten_body(cls, value: Any) -> Any:
        return flatten_text(value)

    def to_row(self, ticket_key: str) -> dict[str, Any]:
        return {
            "id": self.id,
            "ticket_key": ticket_key,
            "author_id": self.author.account_id if self.author else None,
            "body": self.body,
            "created_date": self.created,
            "updated_date": self.updated,
        }


class JiraCommentPage(JiraModel):
    comments: list[JiraComment] = Field(default_factory=list)
    total: int | None = None


class JiraChangelogItem(JiraModel):
    field: str
    from_string: str | None = Field(default=None, alias="fromString")
    to_string: str | None = Field(default=None, alias="toString")


class JiraChangelogHistory(JiraModel):
    """One changelog entry (may hold several field changes)."""

    id: str | None = None
    author: JiraUser | None = None
    created: JiraDateTime
    items: list[JiraChangelogItem] = Field(default_factory=list)

    def status_items(self) -> list[JiraChangelogItem]:
        return [item for item in self.items if item.field.lower() == "status"]


class JiraChangelog(JiraModel):
    histories: list[JiraChangelogHistory] = Field(default_factory=list)


class JiraLinkType(JiraModel):
    name: str
    inward: str | None = None
    outward: str | None = None


class JiraIssueLink(JiraModel):
    """Issue link as listed in the `issuelinks` field.

    Only one of inward_issue/outward_issue is set, relative to the issue
    that carries the link.
    """

    id: str | None = None
    type: JiraLinkType
    inward_issue: JiraIssueRef | None = Field(default=None, alias="inwardIssue")
    outward_issue: JiraIssueRef | None = Field(default=None, alias="outwardIssue")

    def edge(self, issue_key: str) -> tuple[str, str, str] | None:
        """Directed (source, target, link_type) edge, named by the outward verb."""
        link_type = (self.type.outward or self.type.name).lower()
        if self.outward_issue is not None:
            return issue_key, self.outward_issue.key, link_type
        if self.inward_issue is not None:
            return self.inward_issue.key, issue_key, link_type
        return None


class JiraProjectRef(JiraModel):
    key: str
    name: str | None = None


class JiraIssueFields(JiraModel):
    """The `fields` object of an issue. Custom fields stay in model_extra."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    summary: str = ""
    description: str | None = None
    status: JiraStatus | None = None
    issuetype: JiraIssueType | None = None
    priority: JiraPriority | None = None
    project: JiraProjectRef | None = None
    assignee: JiraUser | None = None
    reporter: JiraUser | None = None
    created: JiraDateTime | None = None
    updated: JiraDateTime | None = None
    resolutiondate: JiraDateTime | None = None
    duedate: date | None = None
    parent: JiraIssueRef | None = None
    comment: JiraCommentPage | None = None
    issuelinks: list[JiraIssueLink] = Field(default_factory=list)
    subtasks: list[JiraIssueRef] = Field(default_factory=list)

    @field_validator("description", mode="before")
    @classmethod
    def _flatten_description(cls, value: Any) -> Any:
        return flatten_text(value)

    def custom(self, field_id: str) -> Any:
        return (self.model_extra or {}).get(field_id)


class JiraIssue(JiraModel):
    """Issue object from /rest/api/2/search or /rest/api/2/issue/{key}."""

    id: str | None = None
    key: str
    fields: JiraIssueFields = Field(default_factory=JiraIssueFields)
    changelog: JiraChangelog | None = None

    @property
    def project_key(self) -> str:
        if self.fields.project is not None:
            return self.fields.project.key
        return self.key.rsplit("-", 1)[0]

    @property
    def is_epic(self) -> bool:
        issuetype = self.fields.issuetype
        return issuetype is not None and issuetype.name.lower() == "epic"

    @property
    def raw_status(self) -> str | None:
        return self.fields.status.name if self.fields.status else None

    def epic_key(self, epic_link_field: str) -> str | None:
        parent = self.fields.parent
        if parent is not None and parent.is_epic:
            return parent.key
        link = self.fields.custom(epic_link_field)
        return link if isinstance(link, str) and link else None

    def parent_key(self) -> str | None:
        parent = self.fields.parent
        if parent is None or parent.is_epic:
            return None
        return parent.key

    def story_points(self, field_id: str) -> float | None:
        value = self.fields.custom(field_id)
        if isinstance(value, int | float) and not isinstance(value, bool):
            return float(value)
        return None

    def sprint_ids(self, field_id: str) -> list[int]:
        """Ids from the sprint custom field (list of sprint objects)."""
        value = self.fields.custom(field_id)
        if not isinstance(value, list):
            return []
        ids = []
        for sprint in value:
            if isinstance(sprint, dict) and isinstance(sprint.get("id"), int):
                ids.append(sprint["id"])
        return ids

    def sprints(self, field_id: str) -> list[JiraSprint]:
        value = self.fields.custom(field_id)
        if not isinstance(value, list):
            return []
        return [JiraSprint.model_validate(s) for s in value if isinstance(s, dict) and "id" in s]

    def link_edges(self) -> list[tuple[str, str, str]]:
        edges = (link.edge(self.key) for link in self.fields.issuelinks)
        return [edge for edge in edges if edge is not None]

    def comments(self) -> list[JiraComment]:
        return self.fields.comment.comments if self.fields.comment else []

    def histories(self) -> list[JiraChangelogHistory]:
        return self.changelog.histories if self.changelog else []

    def to_ticket_row(
        self,
        translator: StatusTranslator,
        *,
        story_points_field: str,
        epic_link_field: str,
        synced_at: datetime,
    ) -> dict[str, Any]:
        f = self.fields
        return {
            "key": self.key,
            "project_key": self.project_key,
            "epic_key": self.epic_key(epic_link_field),
            "parent_key": self.parent_key(),
            "summary": f.summary,
            "description": f.description,
            "issue_type": f.issuetype.name if f.issuetype else None,
            "status": translator.translate(self.raw_status).value,
            "raw_status": self.raw_status,
            "priority": f.priority.name if f.priority else None,
            "assignee_id": f.assignee.account_id if f.assignee else None,
            "reporter_id": f.reporter.account_id if f.reporter else None,
            "story_points": self.story_points(story_points_field),
            "created_date": f.created,
            "updated_date": f.updated,
            "resolved_date": f.resolutiondate,
            "due_date": date_to_datetime(f.duedate),
            "synced_at": synced_at,
        }

    def to_epic_row(self, synced_at: datetime) -> dict[str, Any]:
        f = self.fields
        return {
            "key": self.key,
            "project_key": self.project_key,
            "summary": f.summary,
            "status": self.raw_status,
            "assignee_id": f.assignee.account_id if f.assignee else None,
            "description": f.description,
            "created_date": f.created,
            "resolved_date": f.resolutiondate,
            "synced_at": synced_at,
        }


class JiraSprint(JiraModel):
    """Sprint from /rest/agile/1.0/board/{id}/sprint."""

    id: int
    name: str = ""
    state: str = "future"
    start_date: JiraDateTime | None = Field(default=None, alias="startDate")
    end_date: JiraDateTime | None = Field(default=None, alias="endDate")
    complete_date: JiraDateTime | None = Field(default=None, alias="completeDate")
    goal: str | None = None
    origin_board_id: int | None = Field(default=None, alias="originBoardId")
    project_key: str | None = Field(default=None, alias="projectKey")

    @field_validator("state", mode="before")
    @classmethod
    def _lower_state(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    def to_row(self, synced_at: datetime, project_key: str | None = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_key": project_key or self.project_key,
            "name": self.name,
            "state": self.state,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "complete_date": self.complete_date,
            "goal": self.goal,
            "active": True,
            "synced_at": synced_at,
        }


class JiraBoard(JiraModel):
    id: int
    name: str = ""
    type: str | None = None


def parse_items(model: type[M], payloads: list[dict[str, Any]], *, context: str) -> list[M]:
    """Validate payload items, skipping malformed ones with a warning."""
    parsed: list[M] = []
    for payload in payloads:
        try:
            parsed.append(model.model_validate(payload))
        except ValidationError as exc:
            ident = payload.get("key") or payload.get("id") or payload.get("accountId")
            logger.warning(
                "{}: skipping malformed {} {} ({} validation errors)", context, model.__name__, ident, exc.error_count()
            )
    return parsed
