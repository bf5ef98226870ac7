"""Storage abstractions for Continuity MCP."""

from .database import Database, as_utc
from .models import (
    CommandLogRecord,
    CommandType,
    EventRecord,
    InstanceRecord,
    InstanceRole,
    InstanceStatus,
)
from .tables import Base, CheckpointRow, CommandLogRow, EventRow, InstanceRow

__all__ = [
    "Base",
    "CheckpointRow",
    "CommandLogRecord",
    "CommandLogRow",
    "CommandType",
    "Database",
    "EventRecord",
    "EventRow",
    "InstanceRecord",
    "InstanceRole",
    "InstanceRow",
    "InstanceStatus",
    "as_utc",
]
