"""Repository pattern implementation for database access.

Each repository wraps one table (plus its link tables) on top of the
Store primitives. `Repositories` bundles one instance of each over a
shared store.
"""

from collections.abc import Callable
from datetime import datetime

from jira_sync_db.db.store import Store

from .base import BaseRepository, utc_now
from .comments import CommentRepository
from .epics import EpicRepository
from .issue_links import BLOCKS, IssueLinkRepository
from .projects import ProjectRepository
from .sprints import MembershipChanges, SprintRepository
from .status_categories import StatusCategoryRepository
from .status_changes import StatusChangeRepository
from .tickets import TicketRepository
from .users import UserRepository


class Repositories:
    """Every repository over one store."""

    def __init__(self, store: Store, *, clock: Callable[[], datetime] = utc_now) -> None:
        self.store = store
        self.projects = ProjectRepository(store, clock=clock)
        self.users = UserRepository(store, clock=clock)
        self.sprints = SprintRepository(store, clock=clock)
        self.epics = EpicRepository(store, clock=clock)
        self.tickets = TicketRepository(store, clock=clock)
        self.comments = CommentRepository(store, clock=clock)
        self.issue_links = IssueLinkRepository(store, clock=clock)
        self.status_changes = StatusChangeRepository(store, clock=clock)
        self.status_categories = StatusCategoryRepository(store, clock=clock)


__all__ = [
    "BLOCKS",
    "BaseRepository",
    "CommentRepository",
    "EpicRepository",
    "IssueLinkRepository",
    "MembershipChanges",
    "ProjectRepository",
    "Repositories",
    "SprintRepository",
    "StatusCategoryRepository",
    "StatusChangeRepository",
    "TicketRepository",
    "UserRepository",
    "utc_now",
]
