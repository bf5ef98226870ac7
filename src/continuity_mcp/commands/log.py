"""Command log: a sanitized record of every discrete action a session takes."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from sqlalchemy import case, delete, func, select

from ..errors import InstanceNotFoundError, InvalidInputError
from ..failures import BackgroundWriter
from ..redaction import Sanitizer
from ..storage import CommandLogRecord, CommandLogRow, CommandType, Database, InstanceRow, as_utc

logger = logging.getLogger(__name__)

SLOW_LOG_MS = 50
DEFAULT_SEARCH_LIMIT = 100
MAX_SEARCH_LIMIT = 1000
RECENT_LIMIT = 20


def _to_record(row: CommandLogRow) -> CommandLogRecord:
    return CommandLogRecord(
        id=row.id,
        instance_id=row.instance_id,
        command_type=CommandType(row.command_type),
        action=row.action,
        tool_name=row.tool_name,
        parameters=row.parameters,
        result=row.result,
        error_message=row.error_message,
        success=row.success,
        execution_time_ms=row.execution_time_ms,
        tags=list(row.tags or []),
        context_data=row.context_data,
        source=row.source,
        timestamp=as_utc(row.created_at),
    )


class CommandLogSink:
    """Stores sanitized command entries and answers search queries."""

    def __init__(
        self,
        database: Database,
        background: BackgroundWriter,
        *,
        sanitizer: Sanitizer | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._database = database
        self._background = background
        self._sanitizer = sanitizer or Sanitizer()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def log(
        self,
        instance_id: str,
        action: str,
        *,
        command_type: CommandType | str = CommandType.TOOL_CALL,
        tool_name: str | None = None,
        parameters: dict[str, Any] | None = None,
        result: Any = None,
        success: bool = True,
        error_message: str | None = None,
        execution_time_ms: int | None = None,
        tags: Iterable[str] | None = None,
        context_data: dict[str, Any] | None = None,
        source: str = "auto",
    ) -> CommandLogRecord:
        if not action or not action.strip():
            raise InvalidInputError("Command action must not be empty")
        try:
            kind = CommandType(command_type)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown command type: {command_type!r}") from exc
        if source not in {"auto", "explicit"}:
            raise InvalidInputError(f"Unknown command source: {source!r}")

        started = time.perf_counter()
        row = CommandLogRow(
            instance_id=instance_id,
            command_type=kind.value,
            action=action.strip(),
            tool_name=tool_name,
            parameters=self._sanitizer.sanitize(parameters) if parameters is not None else None,
            result=self._sanitizer.sanitize(result) if result is not None else None,
            error_message=self._sanitizer.sanitize_text(error_message) if error_message else None,
            success=success,
            execution_time_ms=execution_time_ms,
            tags=list(tags or []),
            context_data=self._sanitizer.sanitize(context_data) if context_data is not None else None,
            source=source,
            created_at=self._clock(),
        )
        async with self._database.session("log command") as session:
            if await session.get(InstanceRow, instance_id) is None:
                raise InstanceNotFoundError(instance_id)
            session.add(row)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > SLOW_LOG_MS:
            logger.warning(
                "Command log exceeded latency target",
                extra={"instance_id": instance_id, "action": action, "elapsed_ms": round(elapsed_ms, 2)},
            )
        return _to_record(row)

    async def log_explicit(
        self,
        instance_id: str,
        action: str,
        *,
        description: str | None = None,
        tags: Iterable[str] | None = None,
        context_data: dict[str, Any] | None = None,
    ) -> CommandLogRecord:
        """Record an operation the session chose to log by hand."""

        data = dict(context_data or {})
        if description:
            data["description"] = description
        return await self.log(
            instance_id,
            action,
            command_type=CommandType.EXPLICIT,
            tags=tags,
            context_data=data or None,
            source="explicit",
        )

    def log_background(self, instance_id: str, action: str, **kwargs: Any) -> asyncio.Task[Any] | None:
        return self._background.spawn(
            self.log(instance_id, action, **kwargs),
            source="command_log",
            operation="log command",
            instance_id=instance_id,
        )

    async def search(
        self,
        instance_id: str | None = None,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        success_only: bool = False,
        limit: int = DEFAULT_SEARCH_LIMIT,
        offset: int = 0,
    ) -> list[CommandLogRecord]:
        statement = select(CommandLogRow)
        if instance_id:
            statement = statement.where(CommandLogRow.instance_id == instance_id)
        if action:
            statement = statement.where(CommandLogRow.action.ilike(f"%{action}%"))
        if tool_name:
            statement = statement.where(CommandLogRow.tool_name == tool_name)
        if since is not None:
            statement = statement.where(CommandLogRow.created_at >= since)
        if until is not None:
            statement = statement.where(CommandLogRow.created_at <= until)
        if success_only:
            statement = statement.where(CommandLogRow.success.is_(True))
        statement = (
            statement.order_by(CommandLogRow.created_at.desc(), CommandLogRow.id.desc())
            .limit(min(max(int(limit), 1), MAX_SEARCH_LIMIT))
            .offset(max(int(offset), 0))
        )
        async with self._database.session("search commands") as session:
            rows = (await session.scalars(statement)).all()
        return [_to_record(row) for row in rows]

    async def recent(self, instance_id: str, limit: int = RECENT_LIMIT) -> list[CommandLogRecord]:
        """Newest entries first."""

        return await self.search(instance_id, limit=limit)

    async def get(self, command_id: int) -> CommandLogRecord | None:
        async with self._database.session("get command") as session:
            row = await session.get(CommandLogRow, command_id)
        return _to_record(row) if row is not None else None

    async def stats(self, instance_id: str) -> dict[str, Any]:
        async with self._database.session("command stats") as session:
            total, successes, average = (
                await session.execute(
                    select(
                        func.count(CommandLogRow.id),
                        func.sum(case((CommandLogRow.success.is_(True), 1), else_=0)),
                        func.avg(CommandLogRow.execution_time_ms),
                    ).where(CommandLogRow.instance_id == instance_id)
                )
            ).one()
            by_tool = (
                await session.execute(
                    select(CommandLogRow.tool_name, func.count(CommandLogRow.id))
                    .where(CommandLogRow.instance_id == instance_id)
                    .group_by(CommandLogRow.tool_name)
                )
            ).all()
        total = int(total or 0)
        successes = int(successes or 0)
        return {
            "instance_id": instance_id,
            "total": total,
            "successes": successes,
            "failures": total - successes,
            "avg_execution_time_ms": round(float(average), 2) if average is not None else None,
            "by_tool": {tool or "(none)": int(count) for tool, count in by_tool},
        }

    async def delete_for_instance(self, instance_id: str) -> int:
        """Purge an instance's command log. Only for tests and cleanup tooling."""

        async with self._database.session("delete commands") as session:
            result = await session.execute(
                delete(CommandLogRow).where(CommandLogRow.instance_id == instance_id)
            )
        return int(result.rowcount or 0)


__all__ = ["CommandLogSink", "DEFAULT_SEARCH_LIMIT", "RECENT_LIMIT", "SLOW_LOG_MS"]
