"""Turns a free-text resume hint into exactly one resumable instance."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Union

from ..errors import ActiveInstanceError
from ..instances import InstanceRegistry, parse_instance_id
from ..storage import InstanceRecord, InstanceStatus

EXACT_ID_PATTERN = re.compile(r"^[a-z0-9-]+-(PS|MS)-[a-z0-9]{6}$", re.IGNORECASE)
HASH_HINT_PATTERN = re.compile(r"^[a-z0-9]{4,6}$")
TASK_HINT_PATTERN = re.compile(r"^epic-\d+$")

DISAMBIGUATION_HINT = "Multiple instances found. Use: 'resume <id>' or specify epic"


class ResolutionStrategy(str, Enum):
    EXACT_ID = "exact_id"
    HASH_PREFIX = "hash_prefix"
    TASK_ID = "task_id"
    PROJECT = "project"
    MOST_RECENT_STALE = "most_recent_stale"


@dataclass(slots=True)
class Resolved:
    instance_id: str
    strategy: ResolutionStrategy

    def to_dict(self) -> dict[str, Any]:
        return {"instance_id": self.instance_id, "strategy": self.strategy.value}


@dataclass(slots=True)
class MultipleMatches:
    matches: list[dict[str, Any]]
    strategy: ResolutionStrategy
    hint: str = DISAMBIGUATION_HINT

    def to_dict(self) -> dict[str, Any]:
        return {"matches": list(self.matches), "strategy": self.strategy.value, "hint": self.hint}


@dataclass(slots=True)
class NoMatch:
    error: str
    searched_for: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "searched_for": self.searched_for}


Resolution = Union[Resolved, MultipleMatches, NoMatch]


def describe_candidate(record: InstanceRecord) -> dict[str, Any]:
    return {
        "instance_id": record.instance_id,
        "project": record.project,
        "current_task": record.current_task,
        "context_percent": record.context_percent,
        "last_heartbeat": record.last_heartbeat.isoformat(),
        "age_minutes": round(record.age_seconds / 60, 1),
    }


def _normalize_id(hint: str) -> str:
    project, role, digest = hint.rsplit("-", 2)
    return f"{project.lower()}-{role.upper()}-{digest.lower()}"


class InstanceResolver:
    """Applies the resolution strategies in fixed order; the first that applies wins."""

    def __init__(self, registry: InstanceRegistry) -> None:
        self._registry = registry

    async def resolve(self, hint: str | None = None) -> Resolution:
        hint = (hint or "").strip()
        if not hint:
            return await self._most_recent_stale()

        if EXACT_ID_PATTERN.match(hint):
            return await self._exact(_normalize_id(hint))

        lowered = hint.lower()
        open_instances = await self._registry.open_instances()

        strategies: list[tuple[ResolutionStrategy, Callable[[InstanceRecord], bool]]] = []
        if HASH_HINT_PATTERN.match(lowered):
            strategies.append(
                (ResolutionStrategy.HASH_PREFIX, lambda record: _hash_of(record).startswith(lowered))
            )
        if TASK_HINT_PATTERN.match(lowered):
            strategies.append(
                (
                    ResolutionStrategy.TASK_ID,
                    lambda record: (record.current_task or "").lower() == lowered,
                )
            )
        strategies.append(
            (ResolutionStrategy.PROJECT, lambda record: record.project.lower() == lowered)
        )

        for strategy, predicate in strategies:
            matching = [record for record in open_instances if predicate(record)]
            stale = [record for record in matching if record.status is InstanceStatus.STALE]
            if len(stale) == 1:
                return Resolved(instance_id=stale[0].instance_id, strategy=strategy)
            if len(stale) > 1:
                return MultipleMatches(
                    matches=[describe_candidate(record) for record in stale], strategy=strategy
                )
            if strategy is ResolutionStrategy.HASH_PREFIX and len(matching) == 1:
                raise ActiveInstanceError(matching[0].instance_id, matching[0].age_seconds)

        return NoMatch(error=f"No instance found matching '{hint}'", searched_for=hint)

    async def _exact(self, instance_id: str) -> Resolution:
        record = await self._registry.get(instance_id)
        if record is None:
            return NoMatch(error=f"No instance found with id '{instance_id}'", searched_for=instance_id)
        if record.status is InstanceStatus.CLOSED:
            return NoMatch(
                error=f"Instance {instance_id} is closed and cannot be resumed",
                searched_for=instance_id,
            )
        if record.status is InstanceStatus.ACTIVE:
            raise ActiveInstanceError(instance_id, record.age_seconds)
        return Resolved(instance_id=instance_id, strategy=ResolutionStrategy.EXACT_ID)

    async def _most_recent_stale(self) -> Resolution:
        for record in await self._registry.open_instances():
            if record.status is InstanceStatus.STALE:
                return Resolved(
                    instance_id=record.instance_id, strategy=ResolutionStrategy.MOST_RECENT_STALE
                )
        return NoMatch(error="No stale instances available to resume", searched_for=None)

    async def stale_instances(self, project: str | None = None) -> list[InstanceRecord]:
        records = await self._registry.open_instances()
        return [
            record
            for record in records
            if record.status is InstanceStatus.STALE
            and (project is None or record.project.lower() == project.lower())
        ]


def _hash_of(record: InstanceRecord) -> str:
    parsed = parse_instance_id(record.instance_id)
    return parsed.hash if parsed else ""


__all__ = [
    "DISAMBIGUATION_HINT",
    "InstanceResolver",
    "MultipleMatches",
    "NoMatch",
    "Resolution",
    "ResolutionStrategy",
    "Resolved",
    "describe_candidate",
]
