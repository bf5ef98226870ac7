"""Bounded channel collecting failures from fire-and-forget writes."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class FailureRecord:
    source: str
    operation: str
    instance_id: str | None
    error: str
    occurred_at: datetime

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["occurred_at"] = self.occurred_at.isoformat()
        return data


class FailureChannel:
    """Keeps the most recent background failures so operators can alert on them.

    The channel is bounded: once ``maxsize`` records are held the oldest ones
    are dropped, while the per-source totals keep counting.
    """

    def __init__(
        self,
        maxsize: int = 100,
        *,
        alert_threshold: int = 5,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._records: deque[FailureRecord] = deque(maxlen=maxsize)
        self._totals: Counter[str] = Counter()
        self._alert_threshold = alert_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def maxsize(self) -> int:
        return self._records.maxlen or 0

    @property
    def alert_threshold(self) -> int:
        return self._alert_threshold

    @property
    def alerting(self) -> bool:
        return len(self._records) >= self._alert_threshold

    def report(
        self,
        *,
        source: str,
        operation: str,
        error: BaseException | str,
        instance_id: str | None = None,
    ) -> FailureRecord:
        record = FailureRecord(
            source=source,
            operation=operation,
            instance_id=instance_id,
            error=str(error),
            occurred_at=self._clock(),
        )
        was_alerting = self.alerting
        self._records.append(record)
        self._totals[source] += 1
        logger.warning(
            "Background %s failed: %s",
            operation,
            record.error,
            extra={"source": source, "instance_id": instance_id},
        )
        if self.alerting and not was_alerting:
            logger.warning(
                "Background failure count reached alert threshold",
                extra={"held": len(self._records), "threshold": self._alert_threshold},
            )
        return record

    def recent(self, limit: int | None = None) -> list[FailureRecord]:
        records = list(self._records)
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def totals(self) -> dict[str, int]:
        return dict(self._totals)

    def drain(self) -> list[FailureRecord]:
        records = list(self._records)
        self._records.clear()
        return records

    def __len__(self) -> int:
        return len(self._records)


class BackgroundWriter:
    """Runs writes off the caller's path and reports their failures.

    Callers get control back immediately; an exception inside the scheduled
    coroutine is logged and pushed onto the failure channel, never raised.
    """

    def __init__(self, failures: FailureChannel) -> None:
        self._failures = failures
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def failures(self) -> FailureChannel:
        return self._failures

    @property
    def pending(self) -> int:
        return len(self._pending)

    def spawn(
        self,
        coro: Awaitable[Any],
        *,
        source: str,
        operation: str,
        instance_id: str | None = None,
    ) -> asyncio.Task[Any] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            if hasattr(coro, "close"):
                coro.close()  # type: ignore[union-attr]
            self._failures.report(
                source=source,
                operation=operation,
                error="no running event loop",
                instance_id=instance_id,
            )
            return None

        async def _guarded() -> Any:
            try:
                return await coro
            except Exception as exc:
                self._failures.report(
                    source=source, operation=operation, error=exc, instance_id=instance_id
                )
                return None

        task = loop.create_task(_guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled write to finish."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["BackgroundWriter", "FailureChannel", "FailureRecord"]
