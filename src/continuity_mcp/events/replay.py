"""Pure reductions over ordered event lists."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable

from ..storage import EventRecord
from .types import EventType


@dataclass(slots=True)
class ReplayState:
    last_task: str | None = None
    last_event_type: str | None = None
    latest_timestamp: datetime | None = None
    total_events_replayed: int = 0
    checkpoint_state: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_task": self.last_task,
            "last_event_type": self.last_event_type,
            "latest_timestamp": self.latest_timestamp.isoformat() if self.latest_timestamp else None,
            "total_events_replayed": self.total_events_replayed,
            "checkpoint_state": dict(self.checkpoint_state),
        }


def _apply_checkpoint_created(state: ReplayState, event: EventRecord) -> None:
    state.checkpoint_state["checkpoint_id"] = event.payload.get("checkpoint_id")
    state.checkpoint_state["created_at"] = event.timestamp.isoformat()


def _apply_checkpoint_loaded(state: ReplayState, event: EventRecord) -> None:
    state.checkpoint_state["checkpoint_id"] = event.payload.get(
        "checkpoint_id", state.checkpoint_state.get("checkpoint_id")
    )
    state.checkpoint_state["loaded_at"] = event.timestamp.isoformat()


_MERGE_RULES: dict[str, Callable[[ReplayState, EventRecord], None]] = {
    EventType.CHECKPOINT_CREATED.value: _apply_checkpoint_created,
    EventType.CHECKPOINT_LOADED.value: _apply_checkpoint_loaded,
}


def replay_events(events: Iterable[EventRecord]) -> ReplayState:
    """Fold events, in sequence order, into a ``ReplayState``."""

    state = ReplayState()
    for event in events:
        epic_id = event.payload.get("epic_id")
        if isinstance(epic_id, str) and epic_id:
            state.last_task = epic_id
        rule = _MERGE_RULES.get(event.event_type)
        if rule is not None:
            rule(state, event)
        state.last_event_type = event.event_type
        state.latest_timestamp = event.timestamp
        state.total_events_replayed += 1
    return state


@dataclass(slots=True)
class EventMarkers:
    """Task, test and error markers recovered from an event history."""

    current_task: str | None = None
    current_feature: str | None = None
    task_status: str | None = None
    last_completed_task: str | None = None
    tests_passed: int = 0
    tests_failed: int = 0
    coverage: float | None = None
    last_error: str | None = None
    branch: str | None = None
    last_commit: str | None = None
    recent_actions: list[str] = field(default_factory=list)
    latest_timestamp: datetime | None = None


def _describe(event: EventRecord) -> str:
    payload = event.payload
    detail = (
        payload.get("epic_id")
        or payload.get("tool_name")
        or payload.get("checkpoint_id")
        or payload.get("message")
        or payload.get("test_suite")
    )
    return f"{event.event_type}: {detail}" if detail else event.event_type


def derive_markers(events: Iterable[EventRecord], *, recent_limit: int = 10) -> EventMarkers:
    markers = EventMarkers()
    actions: list[str] = []
    for event in events:
        payload = event.payload
        kind = event.event_type
        if kind == EventType.EPIC_STARTED.value:
            markers.current_task = payload.get("epic_id")
            markers.current_feature = payload.get("feature_name")
            markers.task_status = "implementation"
        elif kind == EventType.EPIC_COMPLETED.value:
            markers.last_completed_task = payload.get("epic_id")
            if markers.current_task == markers.last_completed_task:
                markers.current_task = None
                markers.task_status = None
        elif kind == EventType.EPIC_FAILED.value:
            markers.task_status = "failed"
            markers.last_error = payload.get("error") or f"{payload.get('epic_id')} failed"
        elif kind in {EventType.TEST_PASSED.value, EventType.TEST_FAILED.value}:
            markers.tests_passed += int(payload.get("passed") or 0)
            markers.tests_failed += int(payload.get("failed") or 0)
            if payload.get("coverage") is not None:
                markers.coverage = payload.get("coverage")
            if kind == EventType.TEST_FAILED.value:
                markers.last_error = f"Tests failed in {payload.get('test_suite') or 'test suite'}"
        elif kind == EventType.VALIDATION_PASSED.value and markers.current_task:
            markers.task_status = "validation"
        elif kind == EventType.ERROR.value:
            markers.last_error = payload.get("message")
        elif kind == EventType.COMMIT_CREATED.value:
            markers.last_commit = payload.get("commit_hash")
            if payload.get("branch"):
                markers.branch = payload["branch"]
        actions.append(_describe(event))
        markers.latest_timestamp = event.timestamp
    markers.recent_actions = actions[-recent_limit:]
    return markers


__all__ = ["EventMarkers", "ReplayState", "derive_markers", "replay_events"]
