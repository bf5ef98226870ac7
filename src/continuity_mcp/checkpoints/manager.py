"""Checkpoint persistence, retrieval and retention."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import ValidationError
from sqlalchemy import delete, func, select

from ..errors import CheckpointNotFoundError, InstanceNotFoundError, InvalidInputError
from ..storage import CheckpointRow, Database, InstanceRow, as_utc
from .instructions import render_resume_instructions
from .models import (
    CheckpointDetail,
    CheckpointPage,
    CheckpointRecord,
    CheckpointSummary,
    CheckpointType,
    CleanupResult,
    WorkState,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 1000
DEFAULT_RETENTION_DAYS = 30

SLOW_CREATE_MS = 200
SLOW_GET_MS = 50
SLOW_LIST_MS = 30
SLOW_CLEANUP_MS = 500


def _coerce_type(value: CheckpointType | str) -> CheckpointType:
    try:
        return CheckpointType(value)
    except ValueError as exc:
        valid = ", ".join(member.value for member in CheckpointType)
        raise InvalidInputError(f"Invalid checkpoint type: {value!r}. Valid types: {valid}") from exc


def _to_record(row: CheckpointRow) -> CheckpointRecord:
    return CheckpointRecord(
        checkpoint_id=row.checkpoint_id,
        instance_id=row.instance_id,
        checkpoint_type=CheckpointType(row.checkpoint_type),
        sequence_num=row.sequence_num,
        context_percent=row.context_percent,
        work_state=WorkState.model_validate(row.work_state),
        metadata=dict(row.checkpoint_metadata or {}),
        size_bytes=row.size_bytes,
        created_at=as_utc(row.created_at),
    )


def _warn_if_slow(operation: str, started: float, threshold_ms: float, **extra: Any) -> None:
    elapsed_ms = (time.perf_counter() - started) * 1000
    if elapsed_ms > threshold_ms:
        logger.warning(
            "Checkpoint %s exceeded latency target",
            operation,
            extra={"elapsed_ms": round(elapsed_ms, 2), "threshold_ms": threshold_ms, **extra},
        )


class CheckpointManager:
    """Stores full work-state snapshots per instance."""

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], datetime] | None = None,
        render_brief: Callable[[WorkState, CheckpointType], str] = render_resume_instructions,
    ) -> None:
        self._database = database
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._render_brief = render_brief

    async def create(
        self,
        instance_id: str,
        checkpoint_type: CheckpointType | str,
        work_state: WorkState | dict[str, Any],
        *,
        context_percent: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CheckpointRecord:
        kind = _coerce_type(checkpoint_type)
        if context_percent is not None and (
            isinstance(context_percent, bool)
            or not isinstance(context_percent, int)
            or not 0 <= context_percent <= 100
        ):
            raise InvalidInputError(f"context_percent must be an integer 0-100, got {context_percent!r}")
        try:
            state = work_state if isinstance(work_state, WorkState) else WorkState.model_validate(work_state)
        except ValidationError as exc:
            raise InvalidInputError(f"Invalid work state: {exc}") from exc

        started = time.perf_counter()
        now = self._clock()
        if state.snapshot_at is None:
            state = state.model_copy(update={"snapshot_at": now})
        serialized = state.model_dump_json()
        size_bytes = len(serialized.encode("utf-8"))
        supplied = metadata or {}
        stored_metadata = {
            "trigger": supplied.get("trigger") or kind.value,
            "event_id": supplied.get("event_id"),
            "manual_note": supplied.get("manual_note"),
            "size_bytes": size_bytes,
        }

        async with self._database.session("create checkpoint") as session:
            if await session.get(InstanceRow, instance_id) is None:
                raise InstanceNotFoundError(instance_id)
            current_max = await session.scalar(
                select(func.max(CheckpointRow.sequence_num)).where(
                    CheckpointRow.instance_id == instance_id
                )
            )
            row = CheckpointRow(
                checkpoint_id=str(uuid.uuid4()),
                instance_id=instance_id,
                checkpoint_type=kind.value,
                sequence_num=(current_max or 0) + 1,
                context_percent=context_percent,
                work_state=state.model_dump(mode="json"),
                checkpoint_metadata=stored_metadata,
                size_bytes=size_bytes,
                created_at=now,
            )
            session.add(row)

        _warn_if_slow("create", started, SLOW_CREATE_MS, instance_id=instance_id)
        logger.info(
            "Created checkpoint",
            extra={
                "instance_id": instance_id,
                "checkpoint_id": row.checkpoint_id,
                "checkpoint_type": kind.value,
                "size_bytes": size_bytes,
            },
        )
        return _to_record(row)

    async def get(self, checkpoint_id: str) -> CheckpointDetail:
        started = time.perf_counter()
        async with self._database.session("get checkpoint") as session:
            row = await session.get(CheckpointRow, checkpoint_id)
        if row is None:
            raise CheckpointNotFoundError(checkpoint_id)
        record = _to_record(row)
        _warn_if_slow("get", started, SLOW_GET_MS, checkpoint_id=checkpoint_id)
        return CheckpointDetail(
            checkpoint=record,
            recovery_instructions=self._render_brief(record.work_state, record.checkpoint_type),
        )

    async def latest(self, instance_id: str) -> CheckpointRecord | None:
        async with self._database.session("get latest checkpoint") as session:
            row = await session.scalar(
                select(CheckpointRow)
                .where(CheckpointRow.instance_id == instance_id)
                .order_by(CheckpointRow.created_at.desc(), CheckpointRow.sequence_num.desc())
                .limit(1)
            )
        return _to_record(row) if row is not None else None

    async def list_checkpoints(
        self,
        instance_id: str,
        *,
        checkpoint_type: CheckpointType | str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
        offset: int = 0,
    ) -> CheckpointPage:
        started = time.perf_counter()
        limit = min(max(int(limit), 1), MAX_LIST_LIMIT)
        offset = max(int(offset), 0)
        conditions = [CheckpointRow.instance_id == instance_id]
        if checkpoint_type is not None:
            conditions.append(CheckpointRow.checkpoint_type == _coerce_type(checkpoint_type).value)

        async with self._database.session("list checkpoints") as session:
            rows = (
                await session.scalars(
                    select(CheckpointRow)
                    .where(*conditions)
                    .order_by(CheckpointRow.created_at.desc(), CheckpointRow.sequence_num.desc())
                    .limit(limit)
                    .offset(offset)
                )
            ).all()
            total = await session.scalar(
                select(func.count(CheckpointRow.checkpoint_id)).where(*conditions)
            )

        summaries = [
            CheckpointSummary(
                checkpoint_id=row.checkpoint_id,
                checkpoint_type=CheckpointType(row.checkpoint_type),
                sequence_num=row.sequence_num,
                context_percent=row.context_percent,
                epic_id=((row.work_state or {}).get("current_task") or {}).get("epic_id"),
                size_bytes=row.size_bytes,
                created_at=as_utc(row.created_at),
            )
            for row in rows
        ]
        total = int(total or 0)
        _warn_if_slow("list", started, SLOW_LIST_MS, instance_id=instance_id)
        return CheckpointPage(
            checkpoints=summaries,
            total_count=total,
            has_more=offset + limit < total,
            limit=limit,
            offset=offset,
        )

    async def cleanup(self, retention_days: int = DEFAULT_RETENTION_DAYS) -> CleanupResult:
        """Delete checkpoints created strictly before ``now - retention_days``."""

        if retention_days < 1:
            raise InvalidInputError("retention_days must be >= 1")
        started = time.perf_counter()
        cutoff = self._clock() - timedelta(days=retention_days)
        expired = CheckpointRow.created_at < cutoff
        async with self._database.session("cleanup checkpoints") as session:
            count, freed = (
                await session.execute(
                    select(
                        func.count(CheckpointRow.checkpoint_id),
                        func.coalesce(func.sum(CheckpointRow.size_bytes), 0),
                    ).where(expired)
                )
            ).one()
            if count:
                await session.execute(delete(CheckpointRow).where(expired))

        _warn_if_slow("cleanup", started, SLOW_CLEANUP_MS)
        logger.info(
            "Checkpoint retention cleanup finished",
            extra={"deleted": int(count), "freed_bytes": int(freed), "retention_days": retention_days},
        )
        return CleanupResult(
            deleted_count=int(count),
            freed_bytes=int(freed),
            retention_days=retention_days,
            cutoff=cutoff,
        )

    async def instance_stats(self, instance_id: str) -> dict[str, Any]:
        async with self._database.session("checkpoint stats") as session:
            total, total_bytes, oldest, newest = (
                await session.execute(
                    select(
                        func.count(CheckpointRow.checkpoint_id),
                        func.coalesce(func.sum(CheckpointRow.size_bytes), 0),
                        func.min(CheckpointRow.created_at),
                        func.max(CheckpointRow.created_at),
                    ).where(CheckpointRow.instance_id == instance_id)
                )
            ).one()
            by_type = (
                await session.execute(
                    select(CheckpointRow.checkpoint_type, func.count(CheckpointRow.checkpoint_id))
                    .where(CheckpointRow.instance_id == instance_id)
                    .group_by(CheckpointRow.checkpoint_type)
                )
            ).all()
        return {
            "instance_id": instance_id,
            "total": int(total or 0),
            "total_bytes": int(total_bytes or 0),
            "by_type": {kind: int(count) for kind, count in by_type},
            "oldest": _isoformat(oldest),
            "newest": _isoformat(newest),
        }


def _isoformat(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        # sqlite hands back aggregate timestamps as text
        value = datetime.fromisoformat(value)
    return as_utc(value).isoformat()


__all__ = ["CheckpointManager", "DEFAULT_LIST_LIMIT", "DEFAULT_RETENTION_DAYS"]
