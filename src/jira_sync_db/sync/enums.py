"""Enums for sync operations."""

from enum import Enum


class SyncType(str, Enum):
    """Sync strategy.

    Strategies trade completeness against the number of remote calls.
    """

    FULL = "full"
    """Projects, users and every project's issues, epics and sprints."""

    INCREMENTAL = "incremental"
    """Issues and epics updated since a date, plus all sprints."""

    QUICK = "quick"
    """Current sprints, issues of the last 7 days and active epics."""

    ATTENTION = "attention"
    """Stale, blocked, high-priority, QA and overdue issues."""

    USER_STATS = "user_stats"
    """One user's assigned issues plus recently completed sprints."""


class SyncRunState(str, Enum):
    """Lifecycle of one sync run."""

    PENDING = "pending"
    RUNNING = "running"
    AGGREGATED = "aggregated"
    """Every phase has reported; results merged."""

    DONE = "done"
    DONE_WITH_ERRORS = "done_with_errors"
    """At least one critical phase failed (partial data kept)."""


class OutputFormat(str, Enum):
    """Output format for CLI commands."""

    TEXT = "text"
    """Human-readable text output."""

    JSON = "json"
    """Machine-readable JSON output."""
