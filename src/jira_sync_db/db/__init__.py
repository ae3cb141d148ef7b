"""Database module for Jira Sync DB."""

from jira_sync_db.db.engine import create_engine_for, ensure_writable_directory, sqlite_path
from jira_sync_db.db.models import (
    Base,
    Comment,
    Epic,
    IssueLink,
    Project,
    Sprint,
    StatusCategoryMapping,
    StatusChange,
    Ticket,
    TicketSprint,
    User,
)
from jira_sync_db.db.repositories import Repositories
from jira_sync_db.db.store import RepairResult, Store, StoreHealth, expected_indexes, expected_tables

__all__ = [
    # Models
    "Base",
    "Comment",
    "Epic",
    "IssueLink",
    "Project",
    "Sprint",
    "StatusCategoryMapping",
    "StatusChange",
    "Ticket",
    "TicketSprint",
    "User",
    # Engine
    "create_engine_for",
    "ensure_writable_directory",
    "sqlite_path",
    # Store
    "RepairResult",
    "Store",
    "StoreHealth",
    "expected_indexes",
    "expected_tables",
    # Repositories
    "Repositories",
]
