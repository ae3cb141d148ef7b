"""Pydantic schemas for Jira API payloads."""

from .jira_api import (
    JiraBoard,
    JiraChangelog,
    JiraChangelogHistory,
    JiraChangelogItem,
    JiraComment,
    JiraIssue,
    JiraIssueFields,
    JiraIssueLink,
    JiraIssueRef,
    JiraIssueType,
    JiraPriority,
    JiraProject,
    JiraSprint,
    JiraStatus,
    JiraUser,
    flatten_text,
    parse_items,
)

__all__ = [
    "JiraBoard",
    "JiraChangelog",
    "JiraChangelogHistory",
    "JiraChangelogItem",
    "JiraComment",
    "JiraIssue",
    "JiraIssueFields",
    "JiraIssueLink",
    "JiraIssueRef",
    "JiraIssueType",
    "JiraPriority",
    "JiraProject",
    "JiraSprint",
    "JiraStatus",
    "JiraUser",
    "flatten_text",
    "parse_items",
]
