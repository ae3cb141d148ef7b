"""Result objects for sync operations.

Structured results provide consistent interfaces for monitoring,
error handling, and CLI output.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from jira_sync_db.errors import SyncError

from .enums import SyncRunState, SyncType


def _count(value: Any) -> int:
    if isinstance(value, list):
        return len(value)
    if isinstance(value, dict) and any(isinstance(v, list) for v in value.values()):
        # Per-project bundle such as {"issues": [...], "epics": [...]}
        return sum(len(v) for v in value.values() if isinstance(v, list))
    return int(value is not None)


@dataclass
class IngestionStats:
    """Rows written by one snapshot persist."""

    projects: int = 0
    users: int = 0
    sprints: int = 0
    epics: int = 0
    tickets: int = 0
    comments: int = 0
    status_changes: int = 0
    issue_links: int = 0
    memberships_added: int = 0
    memberships_removed: int = 0

    skipped: int = 0
    """Malformed payload items that were not stored."""

    @property
    def total(self) -> int:
        """Entity rows written (memberships and skips excluded)."""
        return (
            self.projects
            + self.users
            + self.sprints
            + self.epics
            + self.tickets
            + self.comments
            + self.status_changes
            + self.issue_links
        )

    def merge(self, other: IngestionStats) -> None:
        for name in self.__dataclass_fields__:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def to_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass
class PhaseError:
    """Failure recorded by one phase of a sync run."""

    phase: str
    error: SyncError
    critical: bool = True
    """Critical errors mark the whole run as failed."""

    def to_dict(self) -> dict[str, Any]:
        return {"phase": self.phase, "critical": self.critical, **self.error.to_dict()}


@dataclass
class PhaseResult:
    """Outcome of one phase.

    A failed phase still carries its (empty or partial) data slice.
    """

    name: str
    data: Any = None
    error: SyncError | None = None
    critical: bool = True
    warnings: list[SyncError] = field(default_factory=list)
    """Non-critical sub-failures (one project of many, truncated listings)."""

    @property
    def ok(self) -> bool:
        return self.error is None

    def errors(self) -> list[PhaseError]:
        recorded = [PhaseError(self.name, w, critical=False) for w in self.warnings]
        if self.error is not None:
            recorded.append(PhaseError(self.name, self.error, critical=self.critical))
        return recorded


@dataclass
class SyncResult:
    """Result of a sync run.

    `data` always holds whatever the phases obtained, even when the run
    failed.
    """

    sync_type: SyncType
    state: SyncRunState = SyncRunState.PENDING
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[PhaseError] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    persisted: IngestionStats | None = None
    """Rows written when a snapshot writer is attached."""

    @property
    def critical_errors(self) -> list[PhaseError]:
        return [e for e in self.errors if e.critical]

    @property
    def succeeded(self) -> bool:
        """True when the run finished without any critical error."""
        return self.state is SyncRunState.DONE

    @property
    def duration_seconds(self) -> float:
        if self.started_at is None or self.completed_at is None:
            return 0.0
        return (self.completed_at - self.started_at).total_seconds()

    def counts(self) -> dict[str, int]:
        """Item count per data slice (dict slices count their nested items)."""
        counts: dict[str, int] = {}
        for name, value in self.data.items():
            if isinstance(value, list):
                counts[name] = len(value)
            elif isinstance(value, dict):
                counts[name] = sum(_count(v) for v in value.values())
        return counts

    def to_dict(self, include_data: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "sync_type": self.sync_type.value,
            "state": self.state.value,
            "succeeded": self.succeeded,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": round(self.duration_seconds, 2),
            "counts": self.counts(),
            "errors": [e.to_dict() for e in self.errors],
            "persisted": self.persisted.to_dict() if self.persisted else None,
        }
        if include_data:
            result["data"] = self.data
        return result
