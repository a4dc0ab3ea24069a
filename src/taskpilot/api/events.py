"""Event manager for Server-Sent Events (SSE)."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4


class EventType(str, Enum):
    """Types of events that can be emitted."""

    AUTOPILOT_UPDATED = "autopilot_updated"
    ATTEMPT_UPDATED = "attempt_updated"
    PR_UPDATED = "pr_updated"
    HEARTBEAT = "heartbeat"


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class Event:
    """An event to be sent via SSE."""

    event_type: EventType
    data: dict[str, Any]
    project_id: str | None = None

    def to_sse(self) -> str:
        """Convert to SSE format."""
        return f"event: {self.event_type.value}\ndata: {json.dumps(self.data)}\n\n"


@dataclass
class Subscriber:
    """A subscriber to the event stream."""

    id: str
    queue: asyncio.Queue[Event]
    project_id: str | None = None  # None means every project

    @classmethod
    def create(cls, project_id: str | None = None) -> Subscriber:
        """Create a new subscriber."""
        return cls(id=str(uuid4()), queue=asyncio.Queue(), project_id=project_id)


@dataclass
class EventManager:
    """Manager for SSE events."""

    _subscribers: dict[str, Subscriber] = field(default_factory=dict)
    _heartbeat_interval: int = 30  # seconds

    def subscribe(self, project_id: str | None = None) -> Subscriber:
        """Subscribe a client to events.

        Args:
            project_id: Optional project ID to filter events. None means all projects.

        Returns:
            Subscriber instance for receiving events.
        """
        subscriber = Subscriber.create(project_id)
        self._subscribers[subscriber.id] = subscriber
        return subscriber

    def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber. Unknown IDs are ignored."""
        self._subscribers.pop(subscriber_id, None)

    def _matches(self, subscriber: Subscriber, event: Event) -> bool:
        return subscriber.project_id is None or subscriber.project_id == event.project_id

    async def emit(self, event: Event) -> None:
        """Emit an event to all matching subscribers."""
        for subscriber in list(self._subscribers.values()):
            if self._matches(subscriber, event):
                await subscriber.queue.put(event)

    def emit_sync(self, event: Event) -> None:
        """Emit an event from synchronous code."""
        for subscriber in list(self._subscribers.values()):
            if self._matches(subscriber, event):
                subscriber.queue.put_nowait(event)

    @property
    def subscriber_count(self) -> int:
        """Get the number of active subscribers."""
        return len(self._subscribers)

    @property
    def heartbeat_interval(self) -> int:
        return self._heartbeat_interval

    # Convenience methods for emitting specific event types

    def emit_autopilot_updated(
        self,
        session_id: str,
        project_id: str,
        status: str,
        previous_status: str,
        task_progress: str,
    ) -> None:
        """Emit an autopilot_updated event."""
        self.emit_sync(
            Event(
                event_type=EventType.AUTOPILOT_UPDATED,
                project_id=project_id,
                data={
                    "session_id": session_id,
                    "project_id": project_id,
                    "status": status,
                    "previous_status": previous_status,
                    "task_progress": task_progress,
                },
            )
        )

    def emit_attempt_updated(
        self,
        attempt_id: str,
        scope_id: str,
        task_id: str,
        state: str,
        previous_state: str | None = None,
    ) -> None:
        """Emit an attempt_updated event. The scope is the owning project."""
        self.emit_sync(
            Event(
                event_type=EventType.ATTEMPT_UPDATED,
                project_id=scope_id,
                data={
                    "attempt_id": attempt_id,
                    "task_id": task_id,
                    "state": state,
                    "previous_state": previous_state,
                },
            )
        )

    def emit_pr_updated(
        self,
        attempt_id: str,
        project_id: str,
        pr_number: int,
        pr_status: str,
    ) -> None:
        """Emit a pr_updated event."""
        self.emit_sync(
            Event(
                event_type=EventType.PR_UPDATED,
                project_id=project_id,
                data={
                    "attempt_id": attempt_id,
                    "pr_number": pr_number,
                    "pr_status": pr_status,
                    "timestamp": _timestamp(),
                },
            )
        )

    def create_heartbeat_event(self) -> Event:
        """Create a heartbeat event."""
        return Event(
            event_type=EventType.HEARTBEAT,
            project_id=None,
            data={"timestamp": _timestamp()},
        )
