"""Unit tests for EventManager and events."""

import asyncio
import json

import pytest

from taskpilot.api.events import Event, EventManager, EventType


@pytest.fixture
def event_manager() -> EventManager:
    """Create an EventManager instance."""
    return EventManager()


@pytest.mark.unit
class TestEventManagerSubscribe:
    """Tests for EventManager.subscribe."""

    def test_event_manager_subscribe(self, event_manager: EventManager) -> None:
        """Client can subscribe."""
        subscriber = event_manager.subscribe()

        assert subscriber.id is not None
        assert subscriber.queue is not None
        assert event_manager.subscriber_count == 1

    def test_event_manager_subscribe_with_project_filter(self, event_manager: EventManager) -> None:
        """Client can subscribe with project filter."""
        subscriber = event_manager.subscribe(project_id="project-123")

        assert subscriber.project_id == "project-123"
        assert event_manager.subscriber_count == 1

    def test_event_manager_unsubscribe(self, event_manager: EventManager) -> None:
        """Client can unsubscribe, and unknown IDs are ignored."""
        subscriber = event_manager.subscribe()

        event_manager.unsubscribe(subscriber.id)
        event_manager.unsubscribe("nonexistent-id")

        assert event_manager.subscriber_count == 0


@pytest.mark.unit
class TestEventManagerEmit:
    """Tests for EventManager.emit."""

    @pytest.mark.asyncio
    async def test_event_manager_emit_to_all(self, event_manager: EventManager) -> None:
        """Event reaches all subscribers."""
        sub1 = event_manager.subscribe()
        sub2 = event_manager.subscribe()

        event = Event(
            event_type=EventType.ATTEMPT_UPDATED,
            project_id="project-123",
            data={"attempt_id": "att-1"},
        )
        await event_manager.emit(event)

        event1 = await asyncio.wait_for(sub1.queue.get(), timeout=1.0)
        event2 = await asyncio.wait_for(sub2.queue.get(), timeout=1.0)

        assert event1.event_type == EventType.ATTEMPT_UPDATED
        assert event2.event_type == EventType.ATTEMPT_UPDATED

    @pytest.mark.asyncio
    async def test_event_manager_filter_by_project(self, event_manager: EventManager) -> None:
        """Only matching events sent to filtered subscribers."""
        sub_all = event_manager.subscribe()
        sub_filtered = event_manager.subscribe(project_id="project-123")

        for project_id, attempt_id in (("project-123", "att-1"), ("project-456", "att-2")):
            await event_manager.emit(
                Event(
                    event_type=EventType.ATTEMPT_UPDATED,
                    project_id=project_id,
                    data={"attempt_id": attempt_id},
                )
            )

        received1 = await asyncio.wait_for(sub_all.queue.get(), timeout=1.0)
        received2 = await asyncio.wait_for(sub_all.queue.get(), timeout=1.0)
        assert received1.data["attempt_id"] == "att-1"
        assert received2.data["attempt_id"] == "att-2"

        received = await asyncio.wait_for(sub_filtered.queue.get(), timeout=1.0)
        assert received.data["attempt_id"] == "att-1"
        assert sub_filtered.queue.empty()

    def test_event_manager_no_subscribers(self, event_manager: EventManager) -> None:
        """Emit doesn't fail with no subscribers."""
        event_manager.emit_sync(
            Event(event_type=EventType.PR_UPDATED, project_id="p", data={"pr_number": 1})
        )


@pytest.mark.unit
class TestEventFormat:
    """Tests for event formatting."""

    def test_event_format_autopilot_updated(self, event_manager: EventManager) -> None:
        """Correct event structure for autopilot_updated."""
        sub = event_manager.subscribe()

        event_manager.emit_autopilot_updated(
            session_id="sess-1",
            project_id="project-456",
            status="PAUSED",
            previous_status="RUNNING",
            task_progress="1/3",
        )

        event = sub.queue.get_nowait()
        assert event.event_type == EventType.AUTOPILOT_UPDATED
        assert event.project_id == "project-456"
        assert event.data["session_id"] == "sess-1"
        assert event.data["status"] == "PAUSED"
        assert event.data["previous_status"] == "RUNNING"
        assert event.data["task_progress"] == "1/3"

        sse = event.to_sse()
        assert sse.startswith("event: autopilot_updated\n")
        data = json.loads(sse.split("data: ")[1].strip())
        assert data["session_id"] == "sess-1"

    def test_event_format_attempt_updated(self, event_manager: EventManager) -> None:
        """attempt_updated is routed by the attempt's scope."""
        sub = event_manager.subscribe(project_id="project-456")

        event_manager.emit_attempt_updated(
            attempt_id="att-1",
            scope_id="project-456",
            task_id="task-1",
            state="running",
            previous_state="queued",
        )

        event = sub.queue.get_nowait()
        assert event.event_type == EventType.ATTEMPT_UPDATED
        assert event.data == {
            "attempt_id": "att-1",
            "task_id": "task-1",
            "state": "running",
            "previous_state": "queued",
        }

    def test_event_format_pr_updated(self, event_manager: EventManager) -> None:
        """Correct event structure for pr_updated."""
        sub = event_manager.subscribe()

        event_manager.emit_pr_updated(
            attempt_id="att-1", project_id="project-456", pr_number=42, pr_status="merged"
        )

        event = sub.queue.get_nowait()
        assert event.event_type == EventType.PR_UPDATED
        assert event.data["pr_number"] == 42
        assert event.data["pr_status"] == "merged"
        assert "timestamp" in event.data

    def test_event_format_heartbeat(self, event_manager: EventManager) -> None:
        """Correct event structure for heartbeat."""
        heartbeat = event_manager.create_heartbeat_event()

        assert heartbeat.event_type == EventType.HEARTBEAT
        assert "timestamp" in heartbeat.data
        assert heartbeat.project_id is None
        assert heartbeat.to_sse().startswith("event: heartbeat\n")
