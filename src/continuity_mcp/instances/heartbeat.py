"""Liveness reporting over the instance registry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..errors import InvalidInputError
from ..failures import BackgroundWriter
from ..storage import InstanceRecord, InstanceStatus
from .registry import STALE_TIMEOUT_SECONDS, InstanceRegistry

logger = logging.getLogger(__name__)

SLOW_HEARTBEAT_MS = 20


@dataclass(slots=True)
class HeartbeatResult:
    instance_id: str
    status: InstanceStatus
    last_heartbeat: datetime
    age_seconds: float
    stale: bool
    context_percent: int
    current_task: str | None = None

    @classmethod
    def from_record(cls, record: InstanceRecord) -> "HeartbeatResult":
        return cls(
            instance_id=record.instance_id,
            status=record.status,
            last_heartbeat=record.last_heartbeat,
            age_seconds=record.age_seconds,
            stale=record.status is InstanceStatus.STALE,
            context_percent=record.context_percent,
            current_task=record.current_task,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "status": self.status.value,
            "last_heartbeat": self.last_heartbeat.isoformat(),
            "age_seconds": round(self.age_seconds, 1),
            "stale": self.stale,
            "context_percent": self.context_percent,
            "current_task": self.current_task,
        }


def validate_context_percent(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInputError(f"context_percent must be an integer, got {type(value).__name__}")
    if not 0 <= value <= 100:
        raise InvalidInputError(f"context_percent must be between 0 and 100, got {value}")
    return value


def format_staleness_message(result: HeartbeatResult) -> str:
    if result.status is InstanceStatus.CLOSED:
        return f"Instance {result.instance_id} is closed"
    if result.stale:
        minutes = int(result.age_seconds // 60)
        return (
            f"Instance {result.instance_id} is stale (last heartbeat {minutes}m ago). "
            f'Use "resume {result.instance_id}" to restore it.'
        )
    return f"Instance {result.instance_id} is active (last heartbeat {int(result.age_seconds)}s ago)"


class HeartbeatManager:
    """Validates heartbeats and forwards them to the registry."""

    def __init__(self, registry: InstanceRegistry, background: BackgroundWriter) -> None:
        self._registry = registry
        self._background = background

    async def send(
        self,
        instance_id: str,
        context_percent: int,
        current_task: str | None = None,
    ) -> HeartbeatResult:
        validate_context_percent(context_percent)
        started = time.perf_counter()
        record = await self._registry.update_heartbeat(instance_id, context_percent, current_task)
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > SLOW_HEARTBEAT_MS:
            logger.warning(
                "Heartbeat exceeded latency target",
                extra={"instance_id": instance_id, "elapsed_ms": round(elapsed_ms, 2)},
            )
        return HeartbeatResult.from_record(record)

    def send_background(
        self,
        instance_id: str,
        context_percent: int,
        current_task: str | None = None,
    ) -> asyncio.Task[Any] | None:
        """Schedule a heartbeat without waiting; failures go to the failure channel."""

        return self._background.spawn(
            self.send(instance_id, context_percent, current_task),
            source="heartbeat",
            operation="heartbeat",
            instance_id=instance_id,
        )

    async def check(self, instance_id: str) -> HeartbeatResult:
        record = await self._registry.require(instance_id)
        return HeartbeatResult.from_record(record)


__all__ = [
    "HeartbeatManager",
    "HeartbeatResult",
    "SLOW_HEARTBEAT_MS",
    "STALE_TIMEOUT_SECONDS",
    "format_staleness_message",
    "validate_context_percent",
]
