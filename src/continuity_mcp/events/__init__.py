"""Event sourcing primitives."""

from .replay import EventMarkers, ReplayState, derive_markers, replay_events
from .store import EmitResult, EventPage, EventStore, ReplayResult
from .types import (
    EventCategory,
    EventPayload,
    EventType,
    UnrecognizedPayload,
    coerce_event_type,
    event_category,
    parse_payload,
)

__all__ = [
    "EmitResult",
    "EventCategory",
    "EventMarkers",
    "EventPage",
    "EventPayload",
    "EventStore",
    "EventType",
    "ReplayResult",
    "ReplayState",
    "UnrecognizedPayload",
    "coerce_event_type",
    "derive_markers",
    "event_category",
    "parse_payload",
    "replay_events",
]
