"""SQLAlchemy models for State Store."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


class AttemptState(StrEnum):
    """Lifecycle of one run queue entry."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"
    CANCELLED = "cancelled"


TERMINAL_ATTEMPT_STATES = frozenset(
    {
        AttemptState.COMPLETED,
        AttemptState.FAILED,
        AttemptState.STOPPED,
        AttemptState.CANCELLED,
    }
)


class PRStatus(StrEnum):
    """Pull request status as reported by GitHub."""

    OPEN = "open"
    MERGED = "merged"
    CLOSED = "closed"


class TaskStatus(StrEnum):
    """Backlog task status."""

    TODO = "todo"
    IN_PROGRESS = "in_progress"
    DONE = "done"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite DateTime columns round-trip."""
    return datetime.now(UTC).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Project(Base):
    """Project model - the default scope for attempt scheduling."""

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    repo: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    base_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    repo_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    tasks: Mapped[list[Task]] = relationship(
        "Task", back_populates="project", cascade="all, delete-orphan"
    )

    def __init__(
        self,
        name: str,
        repo: str,
        id: str | None = None,
        base_branch: str = "main",
        repo_path: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.id = id if id is not None else generate_uuid()
        self.name = name
        self.repo = repo
        self.base_branch = base_branch
        self.repo_path = repo_path

    def __repr__(self) -> str:
        return f"<Project(id={self.id!r}, name={self.name!r}, repo={self.repo!r})>"


class Task(Base):
    """Task model - one backlog item."""

    __tablename__ = "tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    project: Mapped[Project] = relationship("Project", back_populates="tasks")

    def __init__(
        self,
        project_id: str,
        title: str,
        id: str | None = None,
        description: str = "",
        status: str | None = None,
        position: int = 0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.id = id if id is not None else generate_uuid()
        self.project_id = project_id
        self.title = title
        self.description = description
        self.status = status if status is not None else TaskStatus.TODO.value
        self.position = position

    def __repr__(self) -> str:
        return f"<Task(id={self.id!r}, title={self.title!r}, status={self.status!r})>"


class Attempt(Base):
    """Attempt model - one run queue entry for the external runner.

    At most one attempt per scope may be running; the partial unique index
    rejects a second running row even if a caller bypasses the scheduler.
    """

    __tablename__ = "attempts"
    __table_args__ = (
        Index(
            "ux_attempts_running_scope",
            "scope_id",
            unique=True,
            sqlite_where=text("state = 'running'"),
        ),
        Index("ix_attempts_scope_state", "scope_id", "state"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False)
    scope_id: Mapped[str] = mapped_column(String(36), nullable=False)
    state: Mapped[str] = mapped_column(String(20), nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pr_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pr_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    pr_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    def __init__(
        self,
        task_id: str,
        scope_id: str,
        seq: int,
        id: str | None = None,
        state: str | None = None,
        enqueued_at: datetime | None = None,
        started_at: datetime | None = None,
        pr_number: int | None = None,
        pr_url: str | None = None,
        pr_status: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.id = id if id is not None else generate_uuid()
        self.task_id = task_id
        self.scope_id = scope_id
        self.seq = seq
        self.state = state if state is not None else AttemptState.QUEUED.value
        self.enqueued_at = enqueued_at if enqueued_at is not None else utcnow()
        self.started_at = started_at
        self.finished_at = None
        self.exit_code = None
        self.pr_number = pr_number
        self.pr_url = pr_url
        self.pr_status = pr_status

    @property
    def attempt_state(self) -> AttemptState:
        """Get state as AttemptState enum."""
        return AttemptState(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.attempt_state in TERMINAL_ATTEMPT_STATES

    def __repr__(self) -> str:
        return (
            f"<Attempt(id={self.id!r}, task_id={self.task_id!r}, "
            f"scope_id={self.scope_id!r}, state={self.state!r})>"
        )


class ProcessedWebhook(Base):
    """Processed webhook model - one applied delivery, never updated."""

    __tablename__ = "processed_webhooks"

    delivery_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(36), nullable=False)
    event: Mapped[str] = mapped_column(String(50), nullable=False)
    applied_status: Mapped[str] = mapped_column(String(20), nullable=False)
    applied_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __init__(
        self,
        delivery_id: str,
        subject_id: str,
        applied_status: str,
        event: str = "pull_request",
        applied_at: datetime | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.delivery_id = delivery_id
        self.subject_id = subject_id
        self.event = event
        self.applied_status = applied_status
        self.applied_at = applied_at if applied_at is not None else utcnow()

    def __repr__(self) -> str:
        return (
            f"<ProcessedWebhook(delivery_id={self.delivery_id!r}, "
            f"subject_id={self.subject_id!r}, applied_status={self.applied_status!r})>"
        )


class AutopilotSession(Base):
    """Autopilot session model - persisted autopilot state for one planning session."""

    __tablename__ = "autopilot_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False)
    state: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __init__(
        self,
        project_id: str,
        state: str,
        id: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.id = id if id is not None else generate_uuid()
        self.project_id = project_id
        self.state = state

    def __repr__(self) -> str:
        return f"<AutopilotSession(id={self.id!r}, project_id={self.project_id!r})>"
