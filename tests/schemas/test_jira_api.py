"""Tests for Jira payload schemas and their row conversions."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from jira_sync_db.schemas import (
    JiraBoard,
    JiraComment,
    JiraIssue,
    JiraIssueLink,
    JiraProject,
    JiraSprint,
    JiraUser,
    flatten_text,
    parse_items,
)
from jira_sync_db.status import StatusCategory, StatusTranslator
from tests.conftest import JAN_10, JAN_15, JAN_16, JAN_20
from tests.factories import (
    EPIC_LINK_FIELD,
    SPRINT_FIELD,
    STORY_POINTS_FIELD,
    make_comment,
    make_history,
    make_issue,
    make_link,
    make_project,
    make_sprint,
    make_user,
)

TRANSLATOR = StatusTranslator({"To Do": "not_started", "In QA": "qa", "Shipped": "done"})


def ticket_row(payload: dict) -> dict:
    return JiraIssue.model_validate(payload).to_ticket_row(
        TRANSLATOR,
        story_points_field=STORY_POINTS_FIELD,
        epic_link_field=EPIC_LINK_FIELD,
        synced_at=JAN_20,
    )


# -----------------------------------------------------------------------------
# Primitive parsing
# -----------------------------------------------------------------------------
class TestDateTimes:
    """Jira timestamps become naive UTC datetimes."""

    def test_compact_utc_offset(self):
        comment = JiraComment.model_validate(make_comment("1", "2024-01-10T09:00:00.000+0000"))

        assert comment.created == JAN_10
        assert comment.created.tzinfo is None

    def test_non_utc_offset_converted(self):
        comment = JiraComment.model_validate(make_comment("1", "2024-01-10T11:00:00.000+0200"))

        assert comment.created == JAN_10

    def test_invalid_timestamp_rejected(self):
        with pytest.raises(ValidationError):
            JiraComment.model_validate(make_comment("1", "yesterday"))


class TestFlattenText:
    def test_plain_string(self):
        assert flatten_text("hello") == "hello"

    def test_none(self):
        assert flatten_text(None) is None

    def test_document_format(self):
        doc = {
            "type": "doc",
            "content": [
                {
                    "type": "paragraph",
                    "content": [{"type": "text", "text": "First "}, {"type": "text", "text": "line"}],
                },
                {"type": "paragraph", "content": [{"type": "text", "text": "Second"}]},
            ],
        }

        assert flatten_text(doc) == "First line\nSecond"


# -----------------------------------------------------------------------------
# Reference entities
# -----------------------------------------------------------------------------
class TestReferenceRows:
    def test_user_row(self):
        row = JiraUser.model_validate(make_user("acc-1", "Ada")).to_row(JAN_20)

        assert row == {
            "account_id": "acc-1",
            "display_name": "Ada",
            "email": "acc-1@example.com",
            "active": True,
            "synced_at": JAN_20,
        }

    def test_user_without_display_name(self):
        row = JiraUser.model_validate({"accountId": "acc-9"}).to_row(JAN_20)

        assert row["display_name"] == "acc-9"

    def test_archived_project_inactive(self):
        row = JiraProject.model_validate(make_project("ABC", archived=True)).to_row(JAN_20)

        assert row["active"] is False
        assert row["name"] == "Project ABC"

    def test_sprint_row(self):
        sprint = JiraSprint.model_validate(make_sprint(4, state="ACTIVE", end="2024-01-29T10:00:00.000+0000"))

        row = sprint.to_row(JAN_20, "ABC")

        assert row["state"] == "active"
        assert row["start_date"] == JAN_15
        assert row["end_date"] == datetime(2024, 1, 29, 10, 0)
        assert row["project_key"] == "ABC"
        assert row["active"] is True

    def test_sprint_project_from_payload(self):
        sprint = JiraSprint.model_validate(make_sprint(4, project_key="DEF"))

        assert sprint.to_row(JAN_20)["project_key"] == "DEF"


# -----------------------------------------------------------------------------
# Issues
# -----------------------------------------------------------------------------
class TestIssueRows:
    """Tests for JiraIssue.to_ticket_row and friends."""

    def test_ticket_row(self):
        row = ticket_row(
            make_issue(
                "ABC-1",
                status="In QA",
                story_points=5,
                due="2024-01-31",
                resolved="2024-01-16T14:00:00.000+0000",
            )
        )

        assert row["key"] == "ABC-1"
        assert row["project_key"] == "ABC"
        assert row["status"] == StatusCategory.QA.value
        assert row["raw_status"] == "In QA"
        assert row["priority"] == "Medium"
        assert row["assignee_id"] == "acc-1"
        assert row["reporter_id"] == "acc-reporter"
        assert row["story_points"] == 5.0
        assert row["created_date"] == JAN_10
        assert row["updated_date"] == JAN_16
        assert row["resolved_date"] == JAN_16
        assert row["due_date"] == datetime(2024, 1, 31)
        assert row["synced_at"] == JAN_20

    def test_unmapped_status_uses_heuristic(self):
        assert ticket_row(make_issue(status="Ready for Testing"))["status"] == "qa"

    def test_epic_from_parent(self):
        row = ticket_row(make_issue("ABC-1", parent="ABC-100", parent_is_epic=True))

        assert row["epic_key"] == "ABC-100"
        assert row["parent_key"] is None

    def test_epic_from_link_field(self):
        row = ticket_row(make_issue("ABC-1", epic_link="ABC-200"))

        assert row["epic_key"] == "ABC-200"

    def test_subtask_parent(self):
        row = ticket_row(make_issue("ABC-3", issue_type="Sub-task", parent="ABC-1"))

        assert row["parent_key"] == "ABC-1"
        assert row["epic_key"] is None

    def test_unassigned_without_points(self):
        row = ticket_row(make_issue(assignee=None, priority=None))

        assert row["assignee_id"] is None
        assert row["priority"] is None
        assert row["story_points"] is None

    def test_adf_description(self):
        description = {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "Hi"}]}]}

        assert ticket_row(make_issue(description=description))["description"] == "Hi"

    def test_epic_row_keeps_raw_status(self):
        issue = JiraIssue.model_validate(make_issue("ABC-100", issue_type="Epic", status="Shipped"))

        row = issue.to_epic_row(JAN_20)

        assert issue.is_epic
        assert row["status"] == "Shipped"
        assert row["project_key"] == "ABC"


class TestIssueDetails:
    def test_sprints_from_custom_field(self):
        issue = JiraIssue.model_validate(
            make_issue(sprints=[make_sprint(1, state="closed"), make_sprint(2), {"name": "broken"}])
        )

        assert issue.sprint_ids(SPRINT_FIELD) == [1, 2]
        assert [s.id for s in issue.sprints(SPRINT_FIELD)] == [1, 2]

    def test_missing_sprint_field(self):
        assert JiraIssue.model_validate(make_issue()).sprint_ids(SPRINT_FIELD) == []

    def test_comments(self):
        issue = JiraIssue.model_validate(
            make_issue(comments=[make_comment("10", "2024-01-12T16:00:00.000+0000", author="acc-2")])
        )

        [comment] = issue.comments()
        row = comment.to_row(issue.key)
        assert row["ticket_key"] == "ABC-1"
        assert row["author_id"] == "acc-2"

    def test_numeric_comment_id(self):
        payload = make_comment("1", "2024-01-12T16:00:00.000+0000")
        payload["id"] = 10001

        assert JiraComment.model_validate(payload).id == "10001"

    def test_status_history(self):
        history = make_history("2024-01-15T10:00:00.000+0000", "In Progress", "In QA")
        history["items"].append({"field": "assignee", "fromString": "a", "toString": "b"})
        issue = JiraIssue.model_validate(make_issue(histories=[history]))

        [entry] = issue.histories()
        [item] = entry.status_items()
        assert entry.created == JAN_15
        assert (item.from_string, item.to_string) == ("In Progress", "In QA")


class TestIssueLinks:
    """Link edges are directed and named by the outward verb."""

    def test_outward_link(self):
        link = JiraIssueLink.model_validate(make_link(outward="ABC-2"))

        assert link.edge("ABC-1") == ("ABC-1", "ABC-2", "blocks")

    def test_inward_link(self):
        link = JiraIssueLink.model_validate(make_link(inward="ABC-9"))

        assert link.edge("ABC-1") == ("ABC-9", "ABC-1", "blocks")

    def test_link_without_issue(self):
        assert JiraIssueLink.model_validate(make_link()).edge("ABC-1") is None

    def test_issue_link_edges(self):
        issue = JiraIssue.model_validate(
            make_issue("ABC-1", links=[make_link(outward="ABC-2"), make_link("Relates", inward="DEF-1")])
        )

        assert issue.link_edges() == [("ABC-1", "ABC-2", "blocks"), ("DEF-1", "ABC-1", "relates to")]


class TestParseItems:
    def test_skips_malformed_items(self):
        payloads = [make_user("acc-1"), {"displayName": "No id"}, make_user("acc-2")]

        users = parse_items(JiraUser, payloads, context="users")

        assert [u.account_id for u in users] == ["acc-1", "acc-2"]

    def test_issue_without_fields(self):
        [issue] = parse_items(JiraIssue, [{"key": "ABC-7"}], context="issues")

        assert issue.project_key == "ABC"
        assert issue.raw_status is None

    def test_boards(self):
        payloads = [{"id": 7, "name": "ABC board", "type": "scrum"}, {"name": "No id"}]

        boards = parse_items(JiraBoard, payloads, context="boards")

        assert [b.id for b in boards] == [7]
