"""Instance registry: the source of truth for session existence and liveness."""

from __future__ import annotations

import logging
import socket
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..errors import DuplicateInstanceError, InstanceNotFoundError, StorageError
from ..storage import Database, InstanceRecord, InstanceRole, InstanceRow, InstanceStatus, as_utc
from .ids import coerce_role, generate_instance_id, validate_project

logger = logging.getLogger(__name__)

STALE_TIMEOUT_SECONDS = 120
PREFIX_MATCH_LIMIT = 10


def compute_status(
    stored_status: str,
    last_heartbeat: datetime,
    now: datetime,
    closed_at: datetime | None = None,
) -> InstanceStatus:
    """Derive the status of an instance at ``now``.

    Closed wins over everything; otherwise an instance is stale once its last
    heartbeat is more than ``STALE_TIMEOUT_SECONDS`` old.
    """

    if closed_at is not None or stored_status == InstanceStatus.CLOSED.value:
        return InstanceStatus.CLOSED
    age = (now - last_heartbeat).total_seconds()
    if age > STALE_TIMEOUT_SECONDS:
        return InstanceStatus.STALE
    return InstanceStatus.ACTIVE


class InstanceRegistry:
    """Registers instances and serves their liveness-derived status."""

    def __init__(
        self,
        database: Database,
        *,
        default_host: str | None = None,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[str, InstanceRole], str] | None = None,
    ) -> None:
        self._database = database
        self._default_host = default_host
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (
            lambda project, role: generate_instance_id(project, role, clock=self._clock)
        )

    def now(self) -> datetime:
        return self._clock()

    def _to_record(self, row: InstanceRow, now: datetime | None = None) -> InstanceRecord:
        now = now or self._clock()
        last_heartbeat = as_utc(row.last_heartbeat)
        closed_at = as_utc(row.closed_at)
        return InstanceRecord(
            instance_id=row.instance_id,
            project=row.project,
            role=InstanceRole(row.role),
            status=compute_status(row.status, last_heartbeat, now, closed_at),
            context_percent=row.context_percent,
            current_task=row.current_task,
            host_location=row.host_location,
            last_heartbeat=last_heartbeat,
            created_at=as_utc(row.created_at),
            closed_at=closed_at,
            age_seconds=max((now - last_heartbeat).total_seconds(), 0.0),
        )

    async def register(
        self,
        project: str,
        role: InstanceRole | str,
        host: str | None = None,
    ) -> InstanceRecord:
        validate_project(project)
        role_value = coerce_role(role)
        instance_id = self._id_factory(project, role_value)
        now = self._clock()
        row = InstanceRow(
            instance_id=instance_id,
            project=project,
            role=role_value.value,
            status=InstanceStatus.ACTIVE.value,
            context_percent=0,
            current_task=None,
            host_location=host or self._default_host or socket.gethostname(),
            last_heartbeat=now,
            created_at=now,
            closed_at=None,
        )
        try:
            async with self._database.session("register instance") as session:
                session.add(row)
        except StorageError as exc:
            if isinstance(exc.cause, IntegrityError):
                raise DuplicateInstanceError(instance_id) from exc
            raise
        logger.info(
            "Registered instance",
            extra={"instance_id": instance_id, "project": project, "role": role_value.value},
        )
        return self._to_record(row, now)

    async def update_heartbeat(
        self,
        instance_id: str,
        context_percent: int,
        current_task: str | None = None,
    ) -> InstanceRecord:
        now = self._clock()
        values: dict[str, object] = {"last_heartbeat": now, "context_percent": context_percent}
        if current_task is not None:
            values["current_task"] = current_task
        async with self._database.session("update heartbeat") as session:
            result = await session.execute(
                update(InstanceRow).where(InstanceRow.instance_id == instance_id).values(**values)
            )
            if result.rowcount == 0:
                raise InstanceNotFoundError(instance_id)
            row = await session.get(InstanceRow, instance_id, populate_existing=True)
        return self._to_record(row, now)

    async def get(self, instance_id: str) -> InstanceRecord | None:
        async with self._database.session("get instance") as session:
            row = await session.get(InstanceRow, instance_id)
        return self._to_record(row) if row is not None else None

    async def require(self, instance_id: str) -> InstanceRecord:
        record = await self.get(instance_id)
        if record is None:
            raise InstanceNotFoundError(instance_id)
        return record

    async def exists(self, instance_id: str) -> bool:
        async with self._database.session("check instance") as session:
            found = await session.scalar(
                select(InstanceRow.instance_id).where(InstanceRow.instance_id == instance_id)
            )
        return found is not None

    async def list_instances(
        self,
        project: str | None = None,
        *,
        active_only: bool = False,
    ) -> list[InstanceRecord]:
        now = self._clock()
        statement = select(InstanceRow)
        if project:
            statement = statement.where(InstanceRow.project == project)
        if active_only:
            cutoff = now - timedelta(seconds=STALE_TIMEOUT_SECONDS)
            statement = statement.where(
                InstanceRow.status != InstanceStatus.CLOSED.value,
                InstanceRow.last_heartbeat >= cutoff,
            )
        statement = statement.order_by(InstanceRow.project.asc(), InstanceRow.last_heartbeat.desc())
        async with self._database.session("list instances") as session:
            rows = (await session.scalars(statement)).all()
        return [self._to_record(row, now) for row in rows]

    async def get_details(self, hint: str) -> InstanceRecord | None:
        """Exact id match, else a prefix that matches exactly one instance."""

        exact = await self.get(hint)
        if exact is not None:
            return exact
        async with self._database.session("get instance details") as session:
            rows = (
                await session.scalars(
                    select(InstanceRow)
                    .where(InstanceRow.instance_id.startswith(hint, autoescape=True))
                    .limit(2)
                )
            ).all()
        if len(rows) != 1:
            return None
        return self._to_record(rows[0])

    async def prefix_matches(self, prefix: str, limit: int = PREFIX_MATCH_LIMIT) -> list[InstanceRecord]:
        async with self._database.session("prefix match instances") as session:
            rows = (
                await session.scalars(
                    select(InstanceRow)
                    .where(InstanceRow.instance_id.startswith(prefix, autoescape=True))
                    .order_by(InstanceRow.last_heartbeat.desc())
                    .limit(limit)
                )
            ).all()
        now = self._clock()
        return [self._to_record(row, now) for row in rows]

    async def open_instances(self) -> list[InstanceRecord]:
        """Every non-closed instance, most recent heartbeat first."""

        async with self._database.session("list open instances") as session:
            rows = (
                await session.scalars(
                    select(InstanceRow)
                    .where(InstanceRow.status != InstanceStatus.CLOSED.value)
                    .order_by(InstanceRow.last_heartbeat.desc(), InstanceRow.instance_id.asc())
                )
            ).all()
        now = self._clock()
        return [self._to_record(row, now) for row in rows]

    async def mark_closed(self, instance_id: str) -> InstanceRecord:
        now = self._clock()
        async with self._database.session("close instance") as session:
            row = await session.get(InstanceRow, instance_id)
            if row is None:
                raise InstanceNotFoundError(instance_id)
            if row.status != InstanceStatus.CLOSED.value:
                row.status = InstanceStatus.CLOSED.value
                row.closed_at = now
        logger.info("Closed instance", extra={"instance_id": instance_id})
        return self._to_record(row, now)


__all__ = [
    "InstanceRegistry",
    "PREFIX_MATCH_LIMIT",
    "STALE_TIMEOUT_SECONDS",
    "compute_status",
]
