"""Append-only, per-instance ordered event log."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Iterator

from sqlalchemy import String, cast, delete, func, or_, select, update

from ..errors import EventNotFoundError, InstanceNotFoundError, InvalidEventError
from ..failures import BackgroundWriter
from ..storage import Database, EventRecord, EventRow, InstanceRow, as_utc
from .replay import ReplayState, replay_events
from .types import EventType, coerce_event_type, parse_payload

logger = logging.getLogger(__name__)

SLOW_EMIT_MS = 10
DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000
MAX_CHAIN_DEPTH = 1000

_current_parent: ContextVar[str | None] = ContextVar("continuity_event_parent", default=None)


@dataclass(slots=True)
class EmitResult:
    event_id: str
    sequence_num: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "sequence_num": self.sequence_num,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class EventPage:
    events: list[EventRecord]
    total_count: int
    has_more: bool
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [event.to_dict() for event in self.events],
            "total_count": self.total_count,
            "has_more": self.has_more,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class ReplayResult:
    state: ReplayState
    events_replayed: int
    duration_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict(),
            "events_replayed": self.events_replayed,
            "duration_ms": round(self.duration_ms, 2),
        }


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _to_record(row: EventRow) -> EventRecord:
    return EventRecord(
        event_id=row.event_id,
        instance_id=row.instance_id,
        event_type=row.event_type,
        sequence_num=row.sequence_num,
        timestamp=as_utc(row.timestamp),
        payload=dict(row.payload or {}),
        metadata=dict(row.event_metadata) if row.event_metadata is not None else None,
        parent_event_id=row.parent_event_id,
        root_event_id=row.root_event_id,
        depth=row.depth,
    )


class EventStore:
    """Records structured lifecycle events and reads them back in order.

    Sequence numbers are allocated as ``max(sequence_num) + 1`` inside the
    inserting transaction. That is gap-free for a single writer per
    instance; concurrent writers to the same instance can collide on the
    ``(instance_id, sequence_num)`` unique constraint and surface a
    ``StorageError``.
    """

    def __init__(
        self,
        database: Database,
        background: BackgroundWriter,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._background = background
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @staticmethod
    @contextmanager
    def parent_context(event_id: str | None) -> Iterator[None]:
        """Make ``event_id`` the implicit parent of events emitted in this block."""

        token = _current_parent.set(event_id)
        try:
            yield
        finally:
            _current_parent.reset(token)

    @staticmethod
    def current_parent() -> str | None:
        return _current_parent.get()

    async def emit(
        self,
        instance_id: str,
        event_type: EventType | str,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        parent_event_id: str | None = None,
    ) -> EmitResult:
        kind = coerce_event_type(event_type)
        payload = {} if payload is None else payload
        if not isinstance(payload, dict):
            raise InvalidEventError("Event payload must be an object")
        if metadata is not None and not isinstance(metadata, dict):
            raise InvalidEventError("Event metadata must be an object")
        try:
            json.dumps(payload)
            json.dumps(metadata)
        except (TypeError, ValueError) as exc:
            raise InvalidEventError(f"Event payload is not JSON-serializable: {exc}") from exc
        parse_payload(kind, payload)

        parent_id = parent_event_id if parent_event_id is not None else _current_parent.get()
        started = time.perf_counter()
        async with self._database.session("emit event") as session:
            if await session.get(InstanceRow, instance_id) is None:
                raise InstanceNotFoundError(instance_id)

            root_id: str | None = None
            depth = 0
            if parent_id is not None:
                parent = await session.get(EventRow, parent_id)
                if parent is None:
                    raise EventNotFoundError(parent_id)
                if parent.instance_id != instance_id:
                    raise InvalidEventError(
                        f"Parent event {parent_id} belongs to a different instance"
                    )
                root_id = parent.root_event_id or parent.event_id
                depth = parent.depth + 1

            current_max = await session.scalar(
                select(func.max(EventRow.sequence_num)).where(EventRow.instance_id == instance_id)
            )
            sequence_num = (current_max or 0) + 1
            timestamp = self._clock()
            row = EventRow(
                event_id=str(uuid.uuid4()),
                instance_id=instance_id,
                event_type=kind.value,
                sequence_num=sequence_num,
                timestamp=timestamp,
                payload=payload,
                event_metadata=metadata,
                parent_event_id=parent_id,
                root_event_id=root_id,
                depth=depth,
            )
            session.add(row)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > SLOW_EMIT_MS:
            logger.warning(
                "Event emit exceeded latency target",
                extra={
                    "instance_id": instance_id,
                    "event_type": kind.value,
                    "elapsed_ms": round(elapsed_ms, 2),
                },
            )
        return EmitResult(event_id=row.event_id, sequence_num=sequence_num, timestamp=timestamp)

    def emit_background(
        self,
        instance_id: str,
        event_type: EventType | str,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        parent_event_id: str | None = None,
    ) -> asyncio.Task[Any] | None:
        return self._background.spawn(
            self.emit(instance_id, event_type, payload, metadata, parent_event_id=parent_event_id),
            source="events",
            operation=f"emit {event_type}",
            instance_id=instance_id,
        )

    def _filtered(
        self,
        statement,
        instance_id: str,
        *,
        event_types: Iterable[EventType | str] | EventType | str | None,
        since: datetime | None,
        until: datetime | None,
        keyword: str | None,
    ):
        statement = statement.where(EventRow.instance_id == instance_id)
        if event_types:
            if isinstance(event_types, (str, EventType)):
                event_types = [event_types]
            kinds = [coerce_event_type(kind).value for kind in event_types]
            statement = statement.where(EventRow.event_type.in_(kinds))
        if since is not None:
            statement = statement.where(EventRow.timestamp >= since)
        if until is not None:
            statement = statement.where(EventRow.timestamp <= until)
        if keyword:
            pattern = f"%{_escape_like(keyword)}%"
            statement = statement.where(
                or_(
                    EventRow.event_type.ilike(pattern, escape="\\"),
                    cast(EventRow.payload, String).ilike(pattern, escape="\\"),
                    cast(EventRow.event_metadata, String).ilike(pattern, escape="\\"),
                )
            )
        return statement

    async def query(
        self,
        instance_id: str,
        *,
        event_types: Iterable[EventType | str] | EventType | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        keyword: str | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0,
    ) -> EventPage:
        limit = min(max(int(limit), 1), MAX_QUERY_LIMIT)
        offset = max(int(offset), 0)
        filters = {
            "event_types": event_types,
            "since": since,
            "until": until,
            "keyword": keyword,
        }
        async with self._database.session("query events") as session:
            total = await session.scalar(
                self._filtered(select(func.count(EventRow.event_id)), instance_id, **filters)
            )
            rows = (
                await session.scalars(
                    self._filtered(select(EventRow), instance_id, **filters)
                    .order_by(EventRow.sequence_num.asc())
                    .limit(limit)
                    .offset(offset)
                )
            ).all()
        total = int(total or 0)
        return EventPage(
            events=[_to_record(row) for row in rows],
            total_count=total,
            has_more=offset + limit < total,
            limit=limit,
            offset=offset,
        )

    async def replay(self, instance_id: str, up_to: int | datetime | None = None) -> ReplayResult:
        """Fold the instance's events, optionally stopping at a sequence number or time."""

        started = time.perf_counter()
        statement = select(EventRow).where(EventRow.instance_id == instance_id)
        if isinstance(up_to, datetime):
            statement = statement.where(EventRow.timestamp <= up_to)
        elif up_to is not None:
            statement = statement.where(EventRow.sequence_num <= int(up_to))
        async with self._database.session("replay events") as session:
            rows = (await session.scalars(statement.order_by(EventRow.sequence_num.asc()))).all()
        state = replay_events(_to_record(row) for row in rows)
        return ReplayResult(
            state=state,
            events_replayed=state.total_events_replayed,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def aggregate_by_type(self, instance_id: str) -> dict[str, int]:
        counted = func.count(EventRow.event_id).label("count")
        async with self._database.session("aggregate events") as session:
            rows = (
                await session.execute(
                    select(EventRow.event_type, counted)
                    .where(EventRow.instance_id == instance_id)
                    .group_by(EventRow.event_type)
                    .order_by(counted.desc(), EventRow.event_type.asc())
                )
            ).all()
        return {event_type: int(count) for event_type, count in rows}

    async def get_latest(self, instance_id: str, n: int = 10) -> list[EventRecord]:
        """Return the newest ``n`` events in ascending sequence order."""

        async with self._database.session("get latest events") as session:
            rows = (
                await session.scalars(
                    select(EventRow)
                    .where(EventRow.instance_id == instance_id)
                    .order_by(EventRow.sequence_num.desc())
                    .limit(max(int(n), 1))
                )
            ).all()
        return [_to_record(row) for row in reversed(rows)]

    async def get_by_id(self, event_id: str) -> EventRecord | None:
        async with self._database.session("get event") as session:
            row = await session.get(EventRow, event_id)
        return _to_record(row) if row is not None else None

    async def count(self, instance_id: str) -> int:
        async with self._database.session("count events") as session:
            total = await session.scalar(
                select(func.count(EventRow.event_id)).where(EventRow.instance_id == instance_id)
            )
        return int(total or 0)

    async def delete_for_instance(self, instance_id: str) -> int:
        """Purge an instance's events. Only for tests and cleanup tooling."""

        async with self._database.session("delete events") as session:
            # children first so the self-referencing parent key never dangles
            await session.execute(
                update(EventRow)
                .where(EventRow.instance_id == instance_id)
                .values(parent_event_id=None)
            )
            result = await session.execute(delete(EventRow).where(EventRow.instance_id == instance_id))
        logger.info(
            "Deleted events for instance",
            extra={"instance_id": instance_id, "deleted": result.rowcount},
        )
        return int(result.rowcount or 0)

    async def get_parent_chain(
        self, event_id: str, max_depth: int = MAX_CHAIN_DEPTH
    ) -> list[EventRecord]:
        """Walk parent links from ``event_id`` and return the chain root-first."""

        chain: list[EventRecord] = []
        seen: set[str] = set()
        current: str | None = event_id
        async with self._database.session("walk event chain") as session:
            while current is not None and len(chain) < max_depth:
                if current in seen:
                    logger.warning("Cycle in event lineage", extra={"event_id": current})
                    break
                seen.add(current)
                row = await session.get(EventRow, current)
                if row is None:
                    if not chain:
                        raise EventNotFoundError(event_id)
                    break
                chain.append(_to_record(row))
                current = row.parent_event_id
        chain.reverse()
        return chain

    async def get_children(self, event_id: str) -> list[EventRecord]:
        async with self._database.session("get child events") as session:
            rows = (
                await session.scalars(
                    select(EventRow)
                    .where(EventRow.parent_event_id == event_id)
                    .order_by(EventRow.sequence_num.asc())
                )
            ).all()
        return [_to_record(row) for row in rows]


__all__ = [
    "DEFAULT_QUERY_LIMIT",
    "EmitResult",
    "EventPage",
    "EventStore",
    "MAX_CHAIN_DEPTH",
    "MAX_QUERY_LIMIT",
    "ReplayResult",
]
