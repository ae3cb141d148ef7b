"""Test fixtures for Jira Sync DB."""

from .jira_responses import (
    BOARDS_RESPONSE,
    EMPTY_BOARDS_RESPONSE,
    ERROR_RESPONSE,
    MYSELF_RESPONSE,
    JiraRouter,
)

__all__ = [
    # Canned Jira API responses
    "BOARDS_RESPONSE",
    "EMPTY_BOARDS_RESPONSE",
    "ERROR_RESPONSE",
    "MYSELF_RESPONSE",
    # MockTransport routing
    "JiraRouter",
]
