"""Confidence scoring for reconstructed work state.

``score`` is a pure function of the reconstruction source, the age of the
data and a set of precomputed validity checks. ``collect_validity`` is the
separate, side-effecting step that fills them in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..checkpoints import WorkState
from ..vcs import GitRunner

logger = logging.getLogger(__name__)

AUTO_RESUME_THRESHOLD = 80
VALIDITY_SAMPLE_SIZE = 5


class ContextSource(str, Enum):
    CHECKPOINT = "checkpoint"
    EVENTS = "events"
    COMMANDS = "commands"
    BASIC = "basic"


BASE_SCORES = {
    ContextSource.CHECKPOINT: 100,
    ContextSource.EVENTS: 85,
    ContextSource.COMMANDS: 70,
    ContextSource.BASIC: 40,
}

_SOURCE_PHRASES = {
    ContextSource.CHECKPOINT: "Restored from checkpoint",
    ContextSource.EVENTS: "Reconstructed from event history",
    ContextSource.COMMANDS: "Inferred from command log",
    ContextSource.BASIC: "Only basic instance information available",
}

MISSING_DIRECTORY_PENALTY = 10
MISSING_BRANCH_PENALTY = 5
MISSING_FILES_PENALTY = 5
DEGRADED_HISTORY_PENALTY = 10


@dataclass(slots=True)
class ValidityChecks:
    """Outcome of probing the referenced environment. ``None`` means not checked."""

    working_directory_exists: bool | None = None
    branch_exists: bool | None = None
    missing_files: list[str] = field(default_factory=list)
    degraded_history: bool = False


@dataclass(slots=True)
class ConfidenceResult:
    score: int
    reason: str
    warnings: list[str]
    level: str

    @property
    def meets_threshold(self) -> bool:
        return meets_auto_resume_threshold(self.score)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "reason": self.reason,
            "warnings": list(self.warnings),
            "level": self.level,
            "meets_threshold": self.meets_threshold,
        }


def confidence_level(score: int) -> str:
    if score >= 90:
        return "HIGH"
    if score >= 70:
        return "MODERATE"
    if score >= 50:
        return "LOW"
    return "VERY LOW"


def meets_auto_resume_threshold(score: int) -> bool:
    return score >= AUTO_RESUME_THRESHOLD


def _age_penalty(source: ContextSource, age_minutes: float) -> tuple[int, str | None]:
    if source is ContextSource.CHECKPOINT:
        if age_minutes <= 5:
            return 0, None
        if age_minutes <= 30:
            return 10, None
        if age_minutes <= 60:
            return 20, f"Checkpoint is {age_minutes:.0f} minutes old"
        return 30, f"Checkpoint is over an hour old ({age_minutes:.0f} minutes)"
    if source in (ContextSource.EVENTS, ContextSource.COMMANDS):
        periods = int(age_minutes // 30)
        warning = f"Latest activity was {age_minutes:.0f} minutes ago" if periods > 2 else None
        return 5 * periods, warning
    if age_minutes > 60:
        return 10, f"Last heartbeat was {age_minutes:.0f} minutes ago"
    return 0, None


def score(
    source: ContextSource | str,
    age_minutes: float,
    validity: ValidityChecks | None = None,
) -> ConfidenceResult:
    source = ContextSource(source)
    validity = validity or ValidityChecks()
    age_minutes = max(float(age_minutes), 0.0)

    penalty, age_warning = _age_penalty(source, age_minutes)
    total = BASE_SCORES[source] - penalty
    warnings: list[str] = [age_warning] if age_warning else []

    validity_warnings: list[str] = []
    if validity.working_directory_exists is False:
        total -= MISSING_DIRECTORY_PENALTY
        validity_warnings.append("Working directory no longer exists")
    if validity.branch_exists is False:
        total -= MISSING_BRANCH_PENALTY
        validity_warnings.append("Git branch no longer exists")
    if validity.missing_files:
        total -= MISSING_FILES_PENALTY
        validity_warnings.append(
            f"{len(validity.missing_files)} modified files are missing: "
            + ", ".join(validity.missing_files)
        )
    if validity.degraded_history:
        total -= DEGRADED_HISTORY_PENALTY
        validity_warnings.append("Event lineage unavailable; used a flat scan of recent events")
    warnings.extend(validity_warnings)

    total = max(0, min(100, total))
    level = confidence_level(total)
    if validity_warnings:
        count = len(validity_warnings)
        validity_phrase = f"{count} validation warning{'s' if count != 1 else ''}"
    else:
        validity_phrase = "all state valid"
    reason = (
        f"{_SOURCE_PHRASES[source]} ({age_minutes:.0f} min old), "
        f"{validity_phrase}. Confidence: {level}"
    )
    return ConfidenceResult(score=total, reason=reason, warnings=warnings, level=level)


async def collect_validity(
    work_state: WorkState,
    git_runner: GitRunner | None = None,
    *,
    degraded_history: bool = False,
) -> ValidityChecks:
    checks = ValidityChecks(degraded_history=degraded_history)
    directory = work_state.environment.working_directory
    if not directory:
        return checks

    root = Path(directory)
    checks.working_directory_exists = root.is_dir()
    if not checks.working_directory_exists:
        return checks

    branch = work_state.vcs_status.branch
    if branch and git_runner is not None:
        try:
            checks.branch_exists = await git_runner.branch_exists(root, branch)
        except Exception as exc:
            logger.debug("Branch lookup failed", extra={"branch": branch, "error": str(exc)})

    for change in work_state.files_modified[:VALIDITY_SAMPLE_SIZE]:
        if change.status == "deleted":
            continue
        if not (root / change.path).exists():
            checks.missing_files.append(change.path)
    return checks


__all__ = [
    "AUTO_RESUME_THRESHOLD",
    "BASE_SCORES",
    "ConfidenceResult",
    "ContextSource",
    "ValidityChecks",
    "collect_validity",
    "confidence_level",
    "meets_auto_resume_threshold",
    "score",
]
