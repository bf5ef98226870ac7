"""Data models for persistent tracking."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class InstanceRole(str, Enum):
    PROJECT = "PS"
    FLEET = "MS"


class InstanceStatus(str, Enum):
    ACTIVE = "active"
    STALE = "stale"
    CLOSED = "closed"


class CommandType(str, Enum):
    TOOL_CALL = "tool_call"
    EXPLICIT = "explicit"


@dataclass(slots=True)
class InstanceRecord:
    instance_id: str
    project: str
    role: InstanceRole
    status: InstanceStatus
    context_percent: int
    current_task: str | None
    host_location: str
    last_heartbeat: datetime
    created_at: datetime
    closed_at: datetime | None
    age_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "project": self.project,
            "role": self.role.value,
            "status": self.status.value,
            "context_percent": self.context_percent,
            "current_task": self.current_task,
            "host_location": self.host_location,
            "last_heartbeat": self.last_heartbeat.isoformat(),
            "created_at": self.created_at.isoformat(),
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "age_seconds": round(self.age_seconds, 1),
        }


@dataclass(slots=True)
class EventRecord:
    event_id: str
    instance_id: str
    event_type: str
    sequence_num: int
    timestamp: datetime
    payload: dict[str, Any]
    metadata: dict[str, Any] | None = None
    parent_event_id: str | None = None
    root_event_id: str | None = None
    depth: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "instance_id": self.instance_id,
            "event_type": self.event_type,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
            "payload": self.payload,
            "metadata": self.metadata,
            "parent_event_id": self.parent_event_id,
            "root_event_id": self.root_event_id,
            "depth": self.depth,
        }


@dataclass(slots=True)
class CommandLogRecord:
    id: int
    instance_id: str
    command_type: CommandType
    action: str
    tool_name: str | None
    parameters: dict[str, Any] | None
    result: Any
    error_message: str | None
    success: bool
    execution_time_ms: int | None
    tags: list[str] = field(default_factory=list)
    context_data: dict[str, Any] | None = None
    source: str = "auto"
    timestamp: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "instance_id": self.instance_id,
            "command_type": self.command_type.value,
            "action": self.action,
            "tool_name": self.tool_name,
            "parameters": self.parameters,
            "result": self.result,
            "error_message": self.error_message,
            "success": self.success,
            "execution_time_ms": self.execution_time_ms,
            "tags": list(self.tags),
            "context_data": self.context_data,
            "source": self.source,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


__all__ = [
    "CommandLogRecord",
    "CommandType",
    "EventRecord",
    "InstanceRecord",
    "InstanceRole",
    "InstanceStatus",
]
