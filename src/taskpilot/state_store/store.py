"""StateStore - Main API for State Store operations."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - used at runtime in signatures
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from taskpilot.state_store.database import Database
from taskpilot.state_store.exceptions import (
    AttemptNotFoundError,
    ProjectExistsError,
    ProjectNotFoundError,
    ScopeCapacityError,
    SessionNotFoundError,
    TaskNotFoundError,
)
from taskpilot.state_store.models import (
    TERMINAL_ATTEMPT_STATES,
    Attempt,
    AttemptState,
    AutopilotSession,
    PRStatus,
    ProcessedWebhook,
    Project,
    Task,
    TaskStatus,
    utcnow,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


class DeliveryOutcome(StrEnum):
    """Result of recording a webhook delivery against an attempt."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    UNKNOWN_SUBJECT = "unknown_subject"


def _is_running_scope_violation(error: IntegrityError) -> bool:
    message = str(error.orig) if error.orig is not None else str(error)
    return "attempts.scope_id" in message


class StateStore:
    """Main API for State Store operations.

    Provides CRUD for projects, tasks, attempts, processed webhook deliveries
    and persisted autopilot sessions.
    """

    def __init__(self, db_path: str = "taskpilot.db") -> None:
        """Open (and create if needed) the SQLite database at db_path."""
        self._db = Database(db_path)
        self._db.create_tables()

    @property
    def database(self) -> Database:
        return self._db

    def close(self) -> None:
        """Close the database connection."""
        self._db.close()

    # --- Project Operations ---

    def create_project(
        self,
        name: str,
        repo: str,
        base_branch: str = "main",
        repo_path: str | None = None,
    ) -> Project:
        """Create a new project.

        Args:
            name: Human-readable project name
            repo: GitHub repo in "owner/repo" format
            base_branch: Default branch attempts start from
            repo_path: Local checkout used by the runner (None until cloned)

        Returns:
            Created Project object with generated ID

        Raises:
            ProjectExistsError: If project with same repo already exists
        """
        session = self._db.get_session()
        try:
            project = Project(
                name=name,
                repo=repo,
                base_branch=base_branch,
                repo_path=repo_path,
            )
            session.add(project)
            session.commit()
            session.refresh(project)
            return project
        except IntegrityError as e:
            session.rollback()
            raise ProjectExistsError(f"Project with repo '{repo}' already exists") from e
        finally:
            session.close()

    def get_project(self, project_id: str) -> Project:
        """Get project by ID.

        Raises:
            ProjectNotFoundError: If project doesn't exist
        """
        session = self._db.get_session()
        try:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project with id '{project_id}' not found")
            return project
        finally:
            session.close()

    def find_project_by_repo(self, repo: str) -> Project | None:
        """Find a project by "owner/repo" name, case-insensitively."""
        session = self._db.get_session()
        try:
            stmt = select(Project).where(func.lower(Project.repo) == repo.lower())
            return session.execute(stmt).scalar_one_or_none()
        finally:
            session.close()

    def list_projects(self) -> list[Project]:
        """List all projects, ordered by name."""
        session = self._db.get_session()
        try:
            stmt = select(Project).order_by(Project.name)
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()

    def update_project(
        self,
        project_id: str,
        name: str | None = None,
        base_branch: str | None = None,
        repo_path: str | None = None,
    ) -> Project:
        """Update project fields. Only provided fields are updated.

        Raises:
            ProjectNotFoundError: If project doesn't exist
        """
        session = self._db.get_session()
        try:
            project = session.get(Project, project_id)
            if project is None:
                raise ProjectNotFoundError(f"Project with id '{project_id}' not found")

            if name is not None:
                project.name = name
            if base_branch is not None:
                project.base_branch = base_branch
            if repo_path is not None:
                project.repo_path = repo_path

            session.commit()
            session.refresh(project)
            return project
        finally:
            session.close()

    # --- Task Operations ---

    def create_task(
        self,
        project_id: str,
        title: str,
        description: str = "",
    ) -> Task:
        """Create a task at the end of the project's backlog.

        Raises:
            ProjectNotFoundError: If project doesn't exist
        """
        session = self._db.get_session()
        try:
            if session.get(Project, project_id) is None:
                raise ProjectNotFoundError(f"Project with id '{project_id}' not found")

            last_position = session.execute(
                select(func.max(Task.position)).where(Task.project_id == project_id)
            ).scalar()
            task = Task(
                project_id=project_id,
                title=title,
                description=description,
                position=0 if last_position is None else last_position + 1,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            return task
        finally:
            session.close()

    def get_task(self, task_id: str) -> Task:
        """Get task by ID.

        Raises:
            TaskNotFoundError: If task doesn't exist
        """
        session = self._db.get_session()
        try:
            task = session.get(Task, task_id)
            if task is None:
                raise TaskNotFoundError(f"Task with id '{task_id}' not found")
            return task
        finally:
            session.close()

    def list_tasks(self, project_id: str, status: TaskStatus | None = None) -> list[Task]:
        """List a project's tasks in backlog order."""
        session = self._db.get_session()
        try:
            stmt = select(Task).where(Task.project_id == project_id)
            if status is not None:
                stmt = stmt.where(Task.status == status.value)
            stmt = stmt.order_by(Task.position)
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()

    def update_task_status(self, task_id: str, status: TaskStatus) -> Task:
        """Set a task's status.

        Raises:
            TaskNotFoundError: If task doesn't exist
        """
        session = self._db.get_session()
        try:
            task = session.get(Task, task_id)
            if task is None:
                raise TaskNotFoundError(f"Task with id '{task_id}' not found")
            task.status = status.value
            session.commit()
            session.refresh(task)
            return task
        finally:
            session.close()

    # --- Attempt Operations ---

    def create_attempt(
        self,
        task_id: str,
        scope_id: str,
        state: AttemptState = AttemptState.QUEUED,
    ) -> Attempt:
        """Append a run queue entry for a scope.

        Only QUEUED and RUNNING are valid initial states. The entry gets the
        next insertion sequence number of its scope, which breaks ties between
        equal enqueue timestamps.

        Raises:
            ScopeCapacityError: If state is RUNNING and the scope already has
                a running attempt
            ValueError: If state is terminal
        """
        if state not in (AttemptState.QUEUED, AttemptState.RUNNING):
            raise ValueError(f"Attempts cannot be created in state {state.value!r}")

        session = self._db.get_session()
        try:
            if state == AttemptState.RUNNING and self._running_in(session, scope_id) is not None:
                raise ScopeCapacityError(f"Scope '{scope_id}' already has a running attempt")

            last_seq = session.execute(
                select(func.max(Attempt.seq)).where(Attempt.scope_id == scope_id)
            ).scalar()
            now = utcnow()
            attempt = Attempt(
                task_id=task_id,
                scope_id=scope_id,
                seq=1 if last_seq is None else last_seq + 1,
                state=state.value,
                enqueued_at=now,
                started_at=now if state == AttemptState.RUNNING else None,
            )
            session.add(attempt)
            session.commit()
            session.refresh(attempt)
            return attempt
        except IntegrityError as e:
            session.rollback()
            if _is_running_scope_violation(e):
                raise ScopeCapacityError(
                    f"Scope '{scope_id}' already has a running attempt"
                ) from e
            raise
        finally:
            session.close()

    def get_attempt(self, attempt_id: str) -> Attempt:
        """Get attempt by ID.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
        """
        session = self._db.get_session()
        try:
            attempt = session.get(Attempt, attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(f"Attempt with id '{attempt_id}' not found")
            return attempt
        finally:
            session.close()

    def get_running_attempt(self, scope_id: str) -> Attempt | None:
        """Return the scope's running attempt, if any."""
        session = self._db.get_session()
        try:
            return self._running_in(session, scope_id)
        finally:
            session.close()

    def list_attempts(
        self,
        scope_id: str | None = None,
        state: AttemptState | None = None,
        task_id: str | None = None,
    ) -> list[Attempt]:
        """List attempts in FIFO order (enqueue time, then insertion sequence)."""
        session = self._db.get_session()
        try:
            stmt = select(Attempt)
            if scope_id is not None:
                stmt = stmt.where(Attempt.scope_id == scope_id)
            if state is not None:
                stmt = stmt.where(Attempt.state == state.value)
            if task_id is not None:
                stmt = stmt.where(Attempt.task_id == task_id)
            stmt = stmt.order_by(Attempt.enqueued_at, Attempt.seq)
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()

    def next_queued_attempt(self, scope_id: str) -> Attempt | None:
        """Return the head of the scope's FIFO without changing it."""
        session = self._db.get_session()
        try:
            stmt = (
                select(Attempt)
                .where(
                    Attempt.scope_id == scope_id,
                    Attempt.state == AttemptState.QUEUED.value,
                )
                .order_by(Attempt.enqueued_at, Attempt.seq)
                .limit(1)
            )
            return session.execute(stmt).scalar_one_or_none()
        finally:
            session.close()

    def transition_attempt(
        self,
        attempt_id: str,
        state: AttemptState,
        expected_state: AttemptState | None = None,
        exit_code: int | None = None,
    ) -> Attempt | None:
        """Move an attempt to a new state.

        With expected_state the update is a compare-and-swap: it only applies
        while the row is still in expected_state, and None is returned when
        another writer got there first.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
            ScopeCapacityError: If moving to RUNNING would give the scope a
                second running attempt
        """
        values: dict[str, object] = {"state": state.value}
        if state == AttemptState.RUNNING:
            values["started_at"] = utcnow()
        if state in TERMINAL_ATTEMPT_STATES:
            values["finished_at"] = utcnow()
        if exit_code is not None:
            values["exit_code"] = exit_code

        session = self._db.get_session()
        try:
            attempt = session.get(Attempt, attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(f"Attempt with id '{attempt_id}' not found")

            stmt = update(Attempt).where(Attempt.id == attempt_id)
            if expected_state is not None:
                stmt = stmt.where(Attempt.state == expected_state.value)
            result = session.execute(stmt.values(**values))
            session.commit()
            if result.rowcount == 0:
                return None

            session.refresh(attempt)
            return attempt
        except IntegrityError as e:
            session.rollback()
            if _is_running_scope_violation(e):
                raise ScopeCapacityError(
                    f"Scope of attempt '{attempt_id}' already has a running attempt"
                ) from e
            raise
        finally:
            session.close()

    def set_attempt_pr(
        self,
        attempt_id: str,
        pr_number: int,
        pr_url: str | None = None,
        pr_status: PRStatus = PRStatus.OPEN,
    ) -> Attempt:
        """Record the pull request an attempt produced.

        Raises:
            AttemptNotFoundError: If attempt doesn't exist
        """
        session = self._db.get_session()
        try:
            attempt = session.get(Attempt, attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(f"Attempt with id '{attempt_id}' not found")
            attempt.pr_number = pr_number
            attempt.pr_url = pr_url
            attempt.pr_status = pr_status.value
            session.commit()
            session.refresh(attempt)
            return attempt
        finally:
            session.close()

    def find_attempt_by_pr(self, project_id: str, pr_number: int) -> Attempt | None:
        """Find the most recent attempt in a project that opened PR #pr_number."""
        session = self._db.get_session()
        try:
            stmt = (
                select(Attempt)
                .join(Task, Task.id == Attempt.task_id)
                .where(Task.project_id == project_id, Attempt.pr_number == pr_number)
                .order_by(Attempt.enqueued_at.desc(), Attempt.seq.desc())
                .limit(1)
            )
            return session.execute(stmt).scalar_one_or_none()
        finally:
            session.close()

    def count_open_prs(self, project_id: str) -> int:
        """Count attempts in a project whose pull request is still open."""
        session = self._db.get_session()
        try:
            stmt = (
                select(func.count(Attempt.id))
                .join(Task, Task.id == Attempt.task_id)
                .where(
                    Task.project_id == project_id,
                    Attempt.pr_status == PRStatus.OPEN.value,
                )
            )
            return int(session.execute(stmt).scalar() or 0)
        finally:
            session.close()

    @staticmethod
    def _running_in(session: Session, scope_id: str) -> Attempt | None:
        stmt = select(Attempt).where(
            Attempt.scope_id == scope_id,
            Attempt.state == AttemptState.RUNNING.value,
        )
        return session.execute(stmt).scalar_one_or_none()

    # --- Webhook Delivery Operations ---

    def apply_delivery(
        self,
        delivery_id: str,
        attempt_id: str,
        pr_status: PRStatus,
        event: str = "pull_request",
    ) -> DeliveryOutcome:
        """Apply a PR status to an attempt once per delivery ID.

        The delivery record insert and the attempt update commit together. The
        primary key on delivery_id makes check-then-insert atomic: a concurrent
        writer that loses the race sees an IntegrityError, rolls back, and the
        delivery is reported as a duplicate with no change to the attempt.
        Unknown attempts are not recorded.
        """
        session = self._db.get_session()
        try:
            if session.get(ProcessedWebhook, delivery_id) is not None:
                return DeliveryOutcome.DUPLICATE

            attempt = session.get(Attempt, attempt_id)
            if attempt is None:
                return DeliveryOutcome.UNKNOWN_SUBJECT

            session.add(
                ProcessedWebhook(
                    delivery_id=delivery_id,
                    subject_id=attempt_id,
                    applied_status=pr_status.value,
                    event=event,
                )
            )
            attempt.pr_status = pr_status.value
            session.commit()
            return DeliveryOutcome.APPLIED
        except IntegrityError:
            session.rollback()
            return DeliveryOutcome.DUPLICATE
        finally:
            session.close()

    def get_processed_webhook(self, delivery_id: str) -> ProcessedWebhook | None:
        """Look up a processed delivery by ID."""
        session = self._db.get_session()
        try:
            return session.get(ProcessedWebhook, delivery_id)
        finally:
            session.close()

    def purge_processed_webhooks(self, older_than: datetime) -> int:
        """Delete delivery records applied before older_than. Returns the count."""
        session = self._db.get_session()
        try:
            result = session.execute(
                delete(ProcessedWebhook).where(ProcessedWebhook.applied_at < older_than)
            )
            session.commit()
            return int(result.rowcount or 0)
        finally:
            session.close()

    # --- Autopilot Session Operations ---

    def create_autopilot_session(self, project_id: str, state: str) -> AutopilotSession:
        """Persist a new autopilot session with its serialized state.

        Raises:
            ProjectNotFoundError: If project doesn't exist
        """
        session = self._db.get_session()
        try:
            if session.get(Project, project_id) is None:
                raise ProjectNotFoundError(f"Project with id '{project_id}' not found")
            autopilot_session = AutopilotSession(project_id=project_id, state=state)
            session.add(autopilot_session)
            session.commit()
            session.refresh(autopilot_session)
            return autopilot_session
        finally:
            session.close()

    def get_autopilot_session(self, session_id: str) -> AutopilotSession:
        """Get an autopilot session by ID.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        session = self._db.get_session()
        try:
            autopilot_session = session.get(AutopilotSession, session_id)
            if autopilot_session is None:
                raise SessionNotFoundError(f"Autopilot session '{session_id}' not found")
            return autopilot_session
        finally:
            session.close()

    def save_autopilot_state(self, session_id: str, state: str) -> AutopilotSession:
        """Replace a session's serialized state.

        Raises:
            SessionNotFoundError: If session doesn't exist
        """
        session = self._db.get_session()
        try:
            autopilot_session = session.get(AutopilotSession, session_id)
            if autopilot_session is None:
                raise SessionNotFoundError(f"Autopilot session '{session_id}' not found")
            autopilot_session.state = state
            session.commit()
            session.refresh(autopilot_session)
            return autopilot_session
        finally:
            session.close()

    def list_autopilot_sessions(self, project_id: str) -> list[AutopilotSession]:
        """List a project's autopilot sessions, newest first."""
        session = self._db.get_session()
        try:
            stmt = (
                select(AutopilotSession)
                .where(AutopilotSession.project_id == project_id)
                .order_by(AutopilotSession.created_at.desc())
            )
            return list(session.execute(stmt).scalars().all())
        finally:
            session.close()
