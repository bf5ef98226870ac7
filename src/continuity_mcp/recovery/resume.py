"""The ``resume <hint>`` protocol: resolve, reconstruct and brief."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..checkpoints import render_resume_instructions
from ..errors import ActiveInstanceError, InstanceNotFoundError, InvalidInputError
from ..events import EventStore, EventType
from ..storage import InstanceRecord
from .confidence import ContextSource
from .reconstructor import ContextReconstructor, ReconstructedContext
from .resolver import InstanceResolver, MultipleMatches, NoMatch, Resolved

logger = logging.getLogger(__name__)

RESUME_COMMAND_PATTERN = re.compile(r"^\s*resume(?:\s+(?P<hint>.*?))?\s*$", re.IGNORECASE | re.DOTALL)


class ResumeStatus(str, Enum):
    RESUMED = "resumed"
    DISAMBIGUATION = "disambiguation"
    NOT_FOUND = "not_found"
    ACTIVE = "active"
    INVALID_CHOICE = "invalid_choice"


@dataclass(slots=True)
class ResumeResponse:
    status: ResumeStatus
    message: str
    instance_id: str | None = None
    brief: str | None = None
    source: str | None = None
    confidence_score: int | None = None
    confidence_reason: str | None = None
    auto_resume: bool | None = None
    strategy: str | None = None
    matches: list[dict[str, Any]] = field(default_factory=list)
    searched_for: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value, "message": self.message}
        for key in (
            "instance_id",
            "brief",
            "source",
            "confidence_score",
            "confidence_reason",
            "auto_resume",
            "strategy",
            "searched_for",
        ):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        if self.matches:
            payload["matches"] = list(self.matches)
        return payload


def parse_resume_command(text: str) -> str | None:
    """Return the hint of a ``resume [hint]`` command (``None`` when omitted)."""

    match = RESUME_COMMAND_PATTERN.match(text or "")
    if match is None:
        raise InvalidInputError(f"Not a resume command: {text!r}")
    hint = match.group("hint")
    return hint.strip() if hint and hint.strip() else None


def render_brief(context: ReconstructedContext) -> str:
    if context.source is ContextSource.CHECKPOINT:
        brief = render_resume_instructions(context.work_state, context.summary.checkpoint_type)
    else:
        brief = render_resume_instructions(
            context.work_state, heading=f"reconstructed from {context.source.value}"
        )
    lines = [
        brief.rstrip("\n"),
        "",
        f"**Confidence:** {context.confidence_score}/100. {context.confidence_reason}",
    ]
    for warning in context.warnings:
        lines.append(f"- Warning: {warning}")
    if not context.meets_threshold:
        lines.append("Verify the state above before continuing; confidence is below the auto-resume threshold.")
    return "\n".join(lines) + "\n"


class ResumeService:
    """Handles resume requests from a session."""

    def __init__(
        self,
        resolver: InstanceResolver,
        reconstructor: ContextReconstructor,
        events: EventStore | None = None,
    ) -> None:
        self._resolver = resolver
        self._reconstructor = reconstructor
        self._events = events

    async def handle_command(self, text: str, choice: int | str | None = None) -> ResumeResponse:
        return await self.resume(parse_resume_command(text), choice=choice)

    async def resume(self, hint: str | None = None, choice: int | str | None = None) -> ResumeResponse:
        try:
            resolution = await self._resolver.resolve(hint)
        except ActiveInstanceError as exc:
            return ResumeResponse(
                status=ResumeStatus.ACTIVE,
                message=str(exc),
                instance_id=exc.instance_id,
                searched_for=hint,
            )

        if isinstance(resolution, NoMatch):
            return ResumeResponse(
                status=ResumeStatus.NOT_FOUND,
                message=resolution.error,
                searched_for=resolution.searched_for,
            )

        if isinstance(resolution, MultipleMatches):
            if choice is None:
                return ResumeResponse(
                    status=ResumeStatus.DISAMBIGUATION,
                    message=resolution.hint,
                    strategy=resolution.strategy.value,
                    matches=resolution.matches,
                    searched_for=hint,
                )
            chosen = _apply_choice(resolution, choice)
            if chosen is None:
                return ResumeResponse(
                    status=ResumeStatus.INVALID_CHOICE,
                    message=(
                        f"Invalid choice {choice!r}; pick 1-{len(resolution.matches)} "
                        "or one of the listed instance ids"
                    ),
                    matches=resolution.matches,
                    searched_for=hint,
                )
            resolution = Resolved(instance_id=chosen, strategy=resolution.strategy)

        return await self._restore(resolution)

    async def _restore(self, resolution: Resolved) -> ResumeResponse:
        try:
            context = await self._reconstructor.reconstruct(resolution.instance_id)
        except InstanceNotFoundError as exc:
            return ResumeResponse(
                status=ResumeStatus.NOT_FOUND,
                message=str(exc),
                searched_for=resolution.instance_id,
            )

        if context.source is ContextSource.CHECKPOINT and self._events is not None:
            self._events.emit_background(
                context.instance_id,
                EventType.CHECKPOINT_LOADED,
                {"checkpoint_id": context.summary.checkpoint_id, "loaded_by": "resume"},
            )

        logger.info(
            "Resumed instance",
            extra={
                "instance_id": context.instance_id,
                "strategy": resolution.strategy.value,
                "source": context.source.value,
                "confidence": context.confidence_score,
            },
        )
        return ResumeResponse(
            status=ResumeStatus.RESUMED,
            message=f"Resumed {context.instance_id} from {context.source.value}",
            instance_id=context.instance_id,
            brief=render_brief(context),
            source=context.source.value,
            confidence_score=context.confidence_score,
            confidence_reason=context.confidence_reason,
            auto_resume=context.meets_threshold,
            strategy=resolution.strategy.value,
        )

    async def list_stale_instances(self, project: str | None = None) -> list[InstanceRecord]:
        return await self._resolver.stale_instances(project)


def _apply_choice(resolution: MultipleMatches, choice: int | str) -> str | None:
    ids = [match["instance_id"] for match in resolution.matches]
    if isinstance(choice, bool):
        return None
    if isinstance(choice, int) or (isinstance(choice, str) and choice.strip().isdigit()):
        index = int(choice)
        return ids[index - 1] if 1 <= index <= len(ids) else None
    lowered = choice.strip().lower()
    for instance_id in ids:
        if instance_id.lower() == lowered:
            return instance_id
    return None


__all__ = [
    "ResumeResponse",
    "ResumeService",
    "ResumeStatus",
    "parse_resume_command",
    "render_brief",
]
