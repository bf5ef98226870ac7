"""Tiered reconstruction of what a session was doing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from ..checkpoints import (
    CheckpointManager,
    CheckpointType,
    CommandSummary,
    CurrentTask,
    Environment,
    TaskStatus,
    TaskTestResults,
    VcsStatus,
    WorkState,
    suggest_next_steps,
)
from ..commands import CommandLogSink
from ..events import EventStore, EventType, derive_markers
from ..instances import InstanceRegistry
from ..storage import InstanceRecord
from ..vcs import GitRunner
from .confidence import (
    ConfidenceResult,
    ContextSource,
    ValidityChecks,
    collect_validity,
    meets_auto_resume_threshold,
    score,
)

logger = logging.getLogger(__name__)

CHECKPOINT_MAX_AGE_MINUTES = 60
RECENT_EVENT_LIMIT = 50
RECENT_COMMAND_LIMIT = 20
DEFAULT_TIER_TIMEOUT = 10.0


@dataclass(slots=True)
class ResumeSummary:
    recent_actions: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)
    current_task: dict[str, Any] | None = None
    vcs: dict[str, Any] = field(default_factory=dict)
    checkpoint_id: str | None = None
    checkpoint_type: CheckpointType | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recent_actions": list(self.recent_actions),
            "next_steps": list(self.next_steps),
            "current_task": self.current_task,
            "vcs": dict(self.vcs),
            "checkpoint_id": self.checkpoint_id,
            "checkpoint_type": self.checkpoint_type.value if self.checkpoint_type else None,
        }


@dataclass(slots=True)
class ReconstructedContext:
    instance_id: str
    source: ContextSource
    confidence_score: int
    confidence_reason: str
    warnings: list[str]
    work_state: WorkState
    summary: ResumeSummary
    age_minutes: float

    @property
    def meets_threshold(self) -> bool:
        return meets_auto_resume_threshold(self.confidence_score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "source": self.source.value,
            "confidence_score": self.confidence_score,
            "confidence_reason": self.confidence_reason,
            "warnings": list(self.warnings),
            "meets_threshold": self.meets_threshold,
            "work_state": self.work_state.model_dump(mode="json"),
            "summary": self.summary.to_dict(),
            "age_minutes": round(self.age_minutes, 1),
        }


def _test_count(value: Any) -> int:
    """Non-negative test count from a logged result, 0 when it is not a plain count."""

    if isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip()
        if not value.isdigit():
            return 0
        return int(value)
    if isinstance(value, int):
        return max(value, 0)
    return 0


def _minutes_between(earlier: datetime | None, later: datetime) -> float:
    if earlier is None:
        return 0.0
    return max((later - earlier).total_seconds() / 60, 0.0)


class ContextReconstructor:
    """Answers "what was this instance doing?" from the best available source.

    Tiers are tried in priority order: a checkpoint younger than an hour,
    the event history, the command log, and finally the bare registry row.
    Any tier that errors or times out hands over to the next one; only a
    missing instance is fatal.
    """

    def __init__(
        self,
        registry: InstanceRegistry,
        checkpoints: CheckpointManager,
        events: EventStore,
        commands: CommandLogSink,
        *,
        git_runner: GitRunner | None = None,
        clock: Callable[[], datetime] | None = None,
        tier_timeout: float = DEFAULT_TIER_TIMEOUT,
    ) -> None:
        self._registry = registry
        self._checkpoints = checkpoints
        self._events = events
        self._commands = commands
        self._git = git_runner
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tier_timeout = tier_timeout

    async def reconstruct(self, instance_id: str) -> ReconstructedContext:
        instance = await self._registry.require(instance_id)
        tiers: list[tuple[str, Callable[[InstanceRecord], Awaitable[ReconstructedContext | None]]]] = [
            (ContextSource.CHECKPOINT.value, self._from_checkpoint),
            (ContextSource.EVENTS.value, self._from_events),
            (ContextSource.COMMANDS.value, self._from_commands),
        ]
        for name, tier in tiers:
            try:
                context = await asyncio.wait_for(tier(instance), timeout=self._tier_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Reconstruction tier timed out",
                    extra={"instance_id": instance_id, "tier": name, "timeout": self._tier_timeout},
                )
                continue
            except Exception as exc:
                logger.warning(
                    "Reconstruction tier failed",
                    extra={"instance_id": instance_id, "tier": name, "error": str(exc)},
                )
                continue
            if context is not None:
                logger.info(
                    "Reconstructed context",
                    extra={
                        "instance_id": instance_id,
                        "source": name,
                        "confidence": context.confidence_score,
                    },
                )
                return context
        return await self._from_basic(instance)

    def _build(
        self,
        instance: InstanceRecord,
        source: ContextSource,
        work_state: WorkState,
        age_minutes: float,
        result: ConfidenceResult,
        *,
        recent_actions: list[str],
        checkpoint_id: str | None = None,
        checkpoint_type: CheckpointType | None = None,
    ) -> ReconstructedContext:
        summary = ResumeSummary(
            recent_actions=recent_actions,
            next_steps=suggest_next_steps(work_state),
            current_task=(
                work_state.current_task.model_dump(mode="json") if work_state.current_task else None
            ),
            vcs=work_state.vcs_status.model_dump(mode="json"),
            checkpoint_id=checkpoint_id,
            checkpoint_type=checkpoint_type,
        )
        return ReconstructedContext(
            instance_id=instance.instance_id,
            source=source,
            confidence_score=result.score,
            confidence_reason=result.reason,
            warnings=result.warnings,
            work_state=work_state,
            summary=summary,
            age_minutes=age_minutes,
        )

    async def _from_checkpoint(self, instance: InstanceRecord) -> ReconstructedContext | None:
        checkpoint = await self._checkpoints.latest(instance.instance_id)
        if checkpoint is None:
            return None
        age = _minutes_between(checkpoint.created_at, self._clock())
        if age >= CHECKPOINT_MAX_AGE_MINUTES:
            return None
        work_state = checkpoint.work_state
        validity = await collect_validity(work_state, self._git)
        return self._build(
            instance,
            ContextSource.CHECKPOINT,
            work_state,
            age,
            score(ContextSource.CHECKPOINT, age, validity),
            recent_actions=[command.action for command in work_state.last_commands[:10]],
            checkpoint_id=checkpoint.checkpoint_id,
            checkpoint_type=checkpoint.checkpoint_type,
        )

    async def _from_events(self, instance: InstanceRecord) -> ReconstructedContext | None:
        recent = await self._events.get_latest(instance.instance_id, RECENT_EVENT_LIMIT)
        if not recent:
            return None

        history = recent
        degraded = False
        if any(event.event_type == EventType.USER_MESSAGE.value for event in recent):
            try:
                chain = await self._events.get_parent_chain(recent[-1].event_id)
                if len(chain) > 1:
                    history = chain
            except Exception as exc:
                logger.warning(
                    "Event chain walk failed, falling back to flat scan",
                    extra={"instance_id": instance.instance_id, "error": str(exc)},
                )
                degraded = True

        markers = derive_markers(history)
        current_task = None
        if markers.current_task:
            coverage = markers.coverage
            current_task = CurrentTask(
                epic_id=markers.current_task,
                feature_name=markers.current_feature,
                status=TaskStatus(markers.task_status or TaskStatus.IMPLEMENTATION.value),
                test_results=TaskTestResults(
                    passed=markers.tests_passed,
                    failed=markers.tests_failed,
                    coverage=min(max(coverage, 0.0), 100.0) if coverage is not None else None,
                ),
            )
        important: list[str] = []
        if markers.last_error:
            important.append(f"Last error: {markers.last_error}")
        if markers.last_completed_task:
            important.append(f"Last completed epic: {markers.last_completed_task}")
        if markers.last_commit:
            important.append(f"Last commit: {markers.last_commit}")

        work_state = WorkState(
            current_task=current_task,
            vcs_status=VcsStatus(branch=markers.branch),
            environment=Environment(project=instance.project, hostname=instance.host_location),
            important_context=important,
            snapshot_at=markers.latest_timestamp,
        )
        age = _minutes_between(recent[-1].timestamp, self._clock())
        validity = await collect_validity(work_state, self._git, degraded_history=degraded)
        return self._build(
            instance,
            ContextSource.EVENTS,
            work_state,
            age,
            score(ContextSource.EVENTS, age, validity),
            recent_actions=markers.recent_actions,
        )

    async def _from_commands(self, instance: InstanceRecord) -> ReconstructedContext | None:
        entries = await self._commands.recent(instance.instance_id, RECENT_COMMAND_LIMIT)
        if not entries:
            return None

        epic_id: str | None = None
        branch: str | None = None
        directory: str | None = None
        passed = failed = 0
        last_error: str | None = None
        for entry in reversed(entries):
            parameters = entry.parameters or {}
            if parameters.get("epic_id"):
                epic_id = str(parameters["epic_id"])
            if parameters.get("branch"):
                branch = str(parameters["branch"])
            cwd = parameters.get("working_directory") or parameters.get("cwd")
            if cwd:
                directory = str(cwd)
            if "test" in entry.action.lower() and isinstance(entry.result, dict):
                passed = _test_count(entry.result.get("passed"))
                failed = _test_count(entry.result.get("failed"))
            if not entry.success:
                last_error = entry.error_message or f"{entry.action} failed"

        work_state = WorkState(
            current_task=(
                CurrentTask(epic_id=epic_id, test_results=TaskTestResults(passed=passed, failed=failed))
                if epic_id
                else None
            ),
            vcs_status=VcsStatus(branch=branch),
            last_commands=[
                CommandSummary(
                    command_id=entry.id,
                    command_type=entry.command_type.value,
                    action=entry.action,
                    target=entry.tool_name,
                    timestamp=entry.timestamp,
                )
                for entry in entries
            ],
            environment=Environment(
                project=instance.project,
                working_directory=directory,
                hostname=instance.host_location,
            ),
            important_context=[f"Last error: {last_error}"] if last_error else [],
            snapshot_at=entries[0].timestamp,
        )
        age = _minutes_between(entries[0].timestamp, self._clock())
        validity = await collect_validity(work_state, self._git)
        return self._build(
            instance,
            ContextSource.COMMANDS,
            work_state,
            age,
            score(ContextSource.COMMANDS, age, validity),
            recent_actions=[entry.action for entry in entries[:10]],
        )

    async def _from_basic(self, instance: InstanceRecord) -> ReconstructedContext:
        work_state = WorkState(
            current_task=CurrentTask(epic_id=instance.current_task) if instance.current_task else None,
            environment=Environment(project=instance.project, hostname=instance.host_location),
            snapshot_at=instance.last_heartbeat,
        )
        age = _minutes_between(instance.last_heartbeat, self._clock())
        return self._build(
            instance,
            ContextSource.BASIC,
            work_state,
            age,
            score(ContextSource.BASIC, age, ValidityChecks()),
            recent_actions=[],
        )


__all__ = [
    "CHECKPOINT_MAX_AGE_MINUTES",
    "ContextReconstructor",
    "ReconstructedContext",
    "ResumeSummary",
]
