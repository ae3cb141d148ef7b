"""SQLAlchemy ORM models for Jira Sync DB.

The store works on these tables through Core statements (see Store); the
declarative classes define the canonical schema that repair recreates.
"""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jira_sync_db.status import CATEGORY_VALUES

_CATEGORY_LIST = ", ".join(f"'{value}'" for value in CATEGORY_VALUES)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ------------------------------------------------------------------------------
# Reference data
# ------------------------------------------------------------------------------
class Project(Base):
    """Configured Jira project."""

    __tablename__ = "projects"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (Index("idx_projects_active", "active"),)

    def __repr__(self) -> str:
        return f"<Project(key='{self.key}', name='{self.name}')>"


class User(Base):
    """Jira account."""

    __tablename__ = "users"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<User(account_id='{self.account_id}', display_name='{self.display_name}')>"


class Sprint(Base):
    """Agile sprint of a project board."""

    __tablename__ = "sprints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    project_key: Mapped[str | None] = mapped_column(ForeignKey("projects.key"), nullable=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    state: Mapped[str] = mapped_column(String(20), default="future")  # future, active, closed
    start_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    complete_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    goal: Mapped[str | None] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_sprints_active", "active"),
        Index("idx_sprints_project", "project_key"),
    )

    def __repr__(self) -> str:
        return f"<Sprint(id={self.id}, name='{self.name}', state='{self.state}')>"


class Epic(Base):
    """Epic issue (status kept as the raw Jira name)."""

    __tablename__ = "epics"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    project_key: Mapped[str] = mapped_column(ForeignKey("projects.key"))
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assignee_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_epics_project", "project_key"),
        Index("idx_epics_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Epic(key='{self.key}')>"


class StatusCategoryMapping(Base):
    """Raw status name -> canonical category."""

    __tablename__ = "status_categories"

    status_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    category: Mapped[str] = mapped_column(String(20))

    __table_args__ = (
        CheckConstraint(f"category IN ({_CATEGORY_LIST})", name="ck_status_categories_category"),
    )

    def __repr__(self) -> str:
        return f"<StatusCategoryMapping('{self.status_name}' -> '{self.category}')>"


# ------------------------------------------------------------------------------
# Tickets and their dependents
# ------------------------------------------------------------------------------
class Ticket(Base):
    """Non-epic issue with canonical and raw status."""

    __tablename__ = "tickets"

    key: Mapped[str] = mapped_column(String(50), primary_key=True)
    project_key: Mapped[str] = mapped_column(ForeignKey("projects.key"))
    epic_key: Mapped[str | None] = mapped_column(String(50), nullable=True)
    parent_key: Mapped[str | None] = mapped_column(String(50), nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="not_started")
    raw_status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str | None] = mapped_column(String(50), nullable=True)
    assignee_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reporter_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    story_points: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False)
    synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(f"status IN ({_CATEGORY_LIST})", name="ck_tickets_status"),
        Index("idx_tickets_project", "project_key"),
        Index("idx_tickets_epic", "epic_key"),
        Index("idx_tickets_assignee", "assignee_id"),
        Index("idx_tickets_status", "status"),
        Index("idx_tickets_parent", "parent_key"),
    )

    def __repr__(self) -> str:
        return f"<Ticket(key='{self.key}', status='{self.status}')>"


class TicketSprint(Base):
    """Sprint membership; removals are stamped, never deleted."""

    __tablename__ = "ticket_sprints"

    ticket_key: Mapped[str] = mapped_column(ForeignKey("tickets.key"), primary_key=True)
    sprint_id: Mapped[int] = mapped_column(ForeignKey("sprints.id"), primary_key=True)
    added_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    removed_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_ticket_sprints_sprint", "sprint_id"),
        Index("idx_ticket_sprints_ticket", "ticket_key"),
    )


class IssueLink(Base):
    """Directed link between two issues (source <link_type> target)."""

    __tablename__ = "issue_links"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_key: Mapped[str] = mapped_column(String(50))
    target_key: Mapped[str] = mapped_column(String(50))
    link_type: Mapped[str] = mapped_column(String(50))

    __table_args__ = (
        UniqueConstraint("source_key", "target_key", "link_type", name="uq_issue_links_edge"),
        Index("idx_issue_links_source", "source_key"),
        Index("idx_issue_links_target", "target_key"),
    )

    def __repr__(self) -> str:
        return f"<IssueLink({self.source_key} {self.link_type} {self.target_key})>"


class Comment(Base):
    """Ticket comment; at most one per ticket has is_latest set."""

    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    ticket_key: Mapped[str] = mapped_column(ForeignKey("tickets.key"))
    author_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    updated_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_latest: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_comments_ticket", "ticket_key"),
        Index("idx_comments_latest", "ticket_key", "is_latest", sqlite_where=text("is_latest = 1")),
    )

    def __repr__(self) -> str:
        return f"<Comment(id='{self.id}', ticket='{self.ticket_key}')>"


class StatusChange(Base):
    """Append-only status transition log."""

    __tablename__ = "status_changes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_key: Mapped[str] = mapped_column(ForeignKey("tickets.key"))
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20))
    changed_by_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    changed_date: Mapped[datetime] = mapped_column(DateTime)

    __table_args__ = (
        CheckConstraint(
            f"from_status IS NULL OR from_status IN ({_CATEGORY_LIST})",
            name="ck_status_changes_from",
        ),
        CheckConstraint(f"to_status IN ({_CATEGORY_LIST})", name="ck_status_changes_to"),
        Index("idx_status_changes_ticket", "ticket_key"),
        Index("idx_status_changes_date", "changed_date"),
    )

    def __repr__(self) -> str:
        return f"<StatusChange({self.ticket_key}: {self.from_status} -> {self.to_status})>"


# Core table handles used by the store and repositories
projects = Project.__table__
users = User.__table__
sprints = Sprint.__table__
epics = Epic.__table__
status_categories = StatusCategoryMapping.__table__
tickets = Ticket.__table__
ticket_sprints = TicketSprint.__table__
issue_links = IssueLink.__table__
comments = Comment.__table__
status_changes = StatusChange.__table__
