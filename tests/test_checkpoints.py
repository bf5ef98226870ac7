from __future__ import annotations

import asyncio

import pytest

from continuity_mcp.checkpoints import (
    GENERIC_BRIEF,
    CheckpointType,
    WorkState,
    render_resume_instructions,
    suggest_next_steps,
)
from continuity_mcp.errors import CheckpointNotFoundError, InstanceNotFoundError, InvalidInputError


def sample_work_state(**overrides) -> dict:
    state = {
        "current_task": {
            "epic_id": "epic-003",
            "feature_name": "OAuth login",
            "status": "implementation",
            "duration_hours": 2.5,
            "test_results": {"passed": 12, "failed": 1, "coverage": 84.0},
        },
        "files_modified": [
            {"path": f"src/auth/file_{index}.py", "status": "modified", "lines_changed": index}
            for index in range(12)
        ],
        "git_status": {"branch": "feat/oauth", "staged_files": 2, "unstaged_files": 1},
        "last_commands": [{"action": "run tests", "target": "pytest"}],
        "prd_status": {"epic-003": "in_progress"},
        "pending_tasks": ["Write token refresh"],
        "important_context": ["Provider sandbox is rate limited"],
    }
    state.update(overrides)
    return state


def _register(stack) -> str:
    return asyncio.run(stack.registry.register("odin", "PS")).instance_id


def test_create_and_get_round_trip(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        record = await stack.checkpoints.create(
            instance_id,
            "context_window",
            sample_work_state(),
            context_percent=72,
            metadata={"trigger": "context_window", "manual_note": "before refactor"},
        )
        return record, await stack.checkpoints.get(record.checkpoint_id)

    record, detail = asyncio.run(scenario())

    assert record.sequence_num == 1
    assert record.size_bytes > 0
    assert detail.checkpoint.work_state.current_task.epic_id == "epic-003"
    assert detail.checkpoint.work_state.vcs_status.branch == "feat/oauth"
    assert detail.checkpoint.work_state.external_document_status == {"epic-003": "in_progress"}
    assert detail.checkpoint.metadata["manual_note"] == "before refactor"
    assert detail.checkpoint.metadata["size_bytes"] == record.size_bytes
    brief = detail.recovery_instructions
    assert "epic-003" in brief
    assert "## Files Modified (12)" in brief
    assert "... and 2 more files" in brief
    assert "Commit progress" in brief


def test_trigger_defaults_to_checkpoint_type(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        bare = await stack.checkpoints.create(instance_id, "context_window", sample_work_state())
        noted = await stack.checkpoints.create(
            instance_id, "epic_completion", sample_work_state(), metadata={"manual_note": "epic done"}
        )
        return await stack.checkpoints.get(bare.checkpoint_id), await stack.checkpoints.get(noted.checkpoint_id)

    bare, noted = asyncio.run(scenario())

    assert bare.checkpoint.metadata["trigger"] == "context_window"
    assert noted.checkpoint.metadata["trigger"] == "epic_completion"
    assert noted.checkpoint.metadata["manual_note"] == "epic done"


def test_create_validation(stack) -> None:
    instance_id = _register(stack)

    with pytest.raises(InvalidInputError):
        asyncio.run(stack.checkpoints.create(instance_id, "nightly", sample_work_state()))
    with pytest.raises(InvalidInputError):
        asyncio.run(stack.checkpoints.create(instance_id, "manual", {"files_modified": "nope"}))
    with pytest.raises(InvalidInputError):
        asyncio.run(stack.checkpoints.create(instance_id, "manual", {}, context_percent=120))
    with pytest.raises(InstanceNotFoundError):
        asyncio.run(stack.checkpoints.create("odin-PS-000000", "manual", {}))


def test_get_missing_checkpoint(stack) -> None:
    with pytest.raises(CheckpointNotFoundError):
        asyncio.run(stack.checkpoints.get("missing"))


def test_list_latest_and_stats(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        await stack.checkpoints.create(instance_id, "manual", sample_work_state())
        stack.clock.advance(minutes=10)
        await stack.checkpoints.create(instance_id, "epic_completion", sample_work_state(current_task=None))
        stack.clock.advance(minutes=10)
        newest = await stack.checkpoints.create(instance_id, "context_window", sample_work_state())
        page = await stack.checkpoints.list_checkpoints(instance_id, limit=2)
        manual = await stack.checkpoints.list_checkpoints(instance_id, checkpoint_type="manual")
        latest = await stack.checkpoints.latest(instance_id)
        stats = await stack.checkpoints.instance_stats(instance_id)
        return newest, page, manual, latest, stats

    newest, page, manual, latest, stats = asyncio.run(scenario())

    assert [item.sequence_num for item in page.checkpoints] == [3, 2]
    assert page.total_count == 3
    assert page.has_more is True
    assert page.checkpoints[1].epic_id is None
    assert [item.checkpoint_type for item in manual.checkpoints] == [CheckpointType.MANUAL]
    assert latest.checkpoint_id == newest.checkpoint_id
    assert stats["total"] == 3
    assert stats["by_type"] == {"manual": 1, "epic_completion": 1, "context_window": 1}
    assert stats["newest"] == newest.created_at.isoformat()


def test_cleanup_removes_only_expired(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        old = await stack.checkpoints.create(instance_id, "manual", sample_work_state())
        stack.clock.advance(days=31)
        fresh = await stack.checkpoints.create(instance_id, "manual", sample_work_state())
        result = await stack.checkpoints.cleanup(30)
        page = await stack.checkpoints.list_checkpoints(instance_id)
        return old, fresh, result, page

    old, fresh, result, page = asyncio.run(scenario())

    assert result.deleted_count == 1
    assert result.freed_bytes == old.size_bytes
    assert [item.checkpoint_id for item in page.checkpoints] == [fresh.checkpoint_id]


def test_cleanup_rejects_non_positive_retention(stack) -> None:
    with pytest.raises(InvalidInputError):
        asyncio.run(stack.checkpoints.cleanup(0))


def test_work_state_caps_lists() -> None:
    state = WorkState.model_validate(
        {
            "files_modified": [{"path": f"f{index}.py"} for index in range(80)],
            "last_commands": [{"action": f"cmd {index}"} for index in range(30)],
        }
    )

    assert len(state.files_modified) == 50
    assert len(state.last_commands) == 20


def test_instructions_per_trigger() -> None:
    state = WorkState.model_validate(sample_work_state())

    completion = render_resume_instructions(state, "epic_completion")
    manual = render_resume_instructions(state, CheckpointType.MANUAL)
    reconstructed = render_resume_instructions(state, heading="reconstructed from events")

    assert "Merge PR" in completion
    assert "Resume work: continue with epic-003" in manual
    assert "**Source:** reconstructed from events" in reconstructed
    assert "## Pending Tasks" in reconstructed
    assert "Provider sandbox is rate limited" in reconstructed


def test_instructions_fall_back_to_generic_brief() -> None:
    state = WorkState.model_validate(sample_work_state())

    assert render_resume_instructions(state, "nightly") == GENERIC_BRIEF


def test_next_steps_are_bounded() -> None:
    state = WorkState.model_validate(
        sample_work_state(pending_tasks=[f"task {index}" for index in range(10)])
    )

    steps = suggest_next_steps(state)

    assert len(steps) == 5
    assert steps[0] == "Continue implementing epic-003"
    assert steps[1] == "Fix 1 failing tests"


def test_next_steps_for_empty_state() -> None:
    assert suggest_next_steps(WorkState()) == ["Review recent activity and confirm the next task"]
