from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from continuity_mcp.checkpoints import WorkState
from continuity_mcp.recovery import (
    ContextSource,
    ValidityChecks,
    collect_validity,
    confidence_level,
    meets_auto_resume_threshold,
    score,
)
from continuity_mcp.vcs import FakeGitRunner


@pytest.mark.parametrize(
    "source, age, expected",
    [
        ("checkpoint", 0, 100),
        ("checkpoint", 5, 100),
        ("checkpoint", 20, 90),
        ("checkpoint", 45, 80),
        ("checkpoint", 90, 70),
        ("events", 0, 85),
        ("events", 65, 75),
        ("commands", 30, 65),
        ("basic", 10, 40),
        ("basic", 120, 30),
    ],
)
def test_base_scores_with_age_penalty(source: str, age: float, expected: int) -> None:
    assert score(source, age).score == expected


@pytest.mark.parametrize("source", list(ContextSource))
def test_score_never_increases_with_age(source: ContextSource) -> None:
    scores = [score(source, minutes).score for minutes in range(0, 600, 7)]

    assert scores == sorted(scores, reverse=True)
    assert all(0 <= value <= 100 for value in scores)


def test_validity_penalties_and_warnings() -> None:
    validity = ValidityChecks(
        working_directory_exists=False,
        branch_exists=False,
        missing_files=["a.py", "b.py"],
        degraded_history=True,
    )

    result = score(ContextSource.EVENTS, 0, validity)

    assert result.score == 85 - 10 - 5 - 5 - 10
    assert len(result.warnings) == 4
    assert "4 validation warnings" in result.reason
    assert result.level == "LOW"
    assert result.meets_threshold is False


def test_score_clamps_at_zero() -> None:
    validity = ValidityChecks(working_directory_exists=False, branch_exists=False, missing_files=["x"])

    assert score(ContextSource.BASIC, 600, validity).score == 10
    assert score(ContextSource.EVENTS, 600, validity).score == 0


def test_reason_for_clean_state() -> None:
    result = score(ContextSource.CHECKPOINT, 2)

    assert result.reason == "Restored from checkpoint (2 min old), all state valid. Confidence: HIGH"
    assert result.warnings == []


@pytest.mark.parametrize(
    "value, level",
    [(100, "HIGH"), (90, "HIGH"), (89, "MODERATE"), (70, "MODERATE"), (69, "LOW"), (50, "LOW"), (49, "VERY LOW")],
)
def test_confidence_levels(value: int, level: str) -> None:
    assert confidence_level(value) == level


def test_auto_resume_threshold() -> None:
    assert meets_auto_resume_threshold(80)
    assert not meets_auto_resume_threshold(79)


def test_collect_validity_checks_environment(tmp_path: Path) -> None:
    (tmp_path / "present.py").write_text("", encoding="utf-8")
    state = WorkState.model_validate(
        {
            "environment": {"working_directory": str(tmp_path)},
            "git_status": {"branch": "feat/gone"},
            "files_modified": [
                {"path": "present.py"},
                {"path": "missing.py"},
                {"path": "removed.py", "status": "deleted"},
            ],
        }
    )

    checks = asyncio.run(collect_validity(state, FakeGitRunner(branches=["main"])))

    assert checks.working_directory_exists is True
    assert checks.branch_exists is False
    assert checks.missing_files == ["missing.py"]


def test_collect_validity_missing_directory(tmp_path: Path) -> None:
    state = WorkState.model_validate({"environment": {"working_directory": str(tmp_path / "gone")}})

    checks = asyncio.run(collect_validity(state, None, degraded_history=True))

    assert checks.working_directory_exists is False
    assert checks.branch_exists is None
    assert checks.degraded_history is True
