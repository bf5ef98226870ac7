from __future__ import annotations

import asyncio

import pytest

from continuity_mcp.errors import EventNotFoundError, InstanceNotFoundError, InvalidEventError
from continuity_mcp.events import (
    EventCategory,
    EventType,
    UnrecognizedPayload,
    derive_markers,
    event_category,
    parse_payload,
)


def _register(stack) -> str:
    return asyncio.run(stack.registry.register("odin", "PS")).instance_id


def test_sequence_numbers_are_gap_free(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        results = []
        for index in range(5):
            results.append(
                await stack.events.emit(instance_id, "epic_started", {"epic_id": f"epic-00{index}"})
            )
        return results

    results = asyncio.run(scenario())

    assert [result.sequence_num for result in results] == [1, 2, 3, 4, 5]
    assert len({result.event_id for result in results}) == 5


def test_sequences_are_per_instance(stack) -> None:
    first = _register(stack)
    second = _register(stack)

    async def scenario():
        await stack.events.emit(first, "user_message", {"content": "hi"})
        await stack.events.emit(first, "user_message", {"content": "again"})
        return await stack.events.emit(second, "user_message", {"content": "hello"})

    assert asyncio.run(scenario()).sequence_num == 1


def test_emit_rejects_unknown_type(stack) -> None:
    instance_id = _register(stack)

    with pytest.raises(InvalidEventError) as excinfo:
        asyncio.run(stack.events.emit(instance_id, "epic_exploded", {}))

    assert "epic_started" in str(excinfo.value)


def test_emit_rejects_payload_missing_required_field(stack) -> None:
    instance_id = _register(stack)

    with pytest.raises(InvalidEventError):
        asyncio.run(stack.events.emit(instance_id, EventType.EPIC_STARTED, {"feature_name": "auth"}))


def test_emit_rejects_non_object_metadata(stack) -> None:
    instance_id = _register(stack)

    with pytest.raises(InvalidEventError):
        asyncio.run(
            stack.events.emit(
                instance_id, EventType.EPIC_STARTED, {"epic_id": "epic-003"}, metadata=["tag-a", "tag-b"]
            )
        )

    async def scenario():
        await stack.events.emit(
            instance_id, EventType.EPIC_STARTED, {"epic_id": "epic-003"}, metadata={"tags": ["tag-a"]}
        )
        return await stack.events.query(instance_id)

    page = asyncio.run(scenario())

    assert page.total_count == 1
    assert page.events[0].metadata == {"tags": ["tag-a"]}


def test_emit_rejects_unknown_instance(stack) -> None:
    with pytest.raises(InstanceNotFoundError):
        asyncio.run(stack.events.emit("odin-PS-000000", "user_message", {}))


def test_query_filters_and_paginates(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        await stack.events.emit(instance_id, "epic_started", {"epic_id": "epic-003", "feature_name": "OAuth login"})
        stack.clock.advance(minutes=1)
        midpoint = stack.clock.now
        await stack.events.emit(instance_id, "test_passed", {"test_suite": "unit", "passed": 12})
        stack.clock.advance(minutes=1)
        await stack.events.emit(instance_id, "commit_created", {"commit_hash": "abc123", "branch": "feat/oauth"})
        by_type = await stack.events.query(instance_id, event_types=["test_passed", "commit_created"])
        by_keyword = await stack.events.query(instance_id, keyword="oauth")
        since = await stack.events.query(instance_id, since=midpoint)
        paged = await stack.events.query(instance_id, limit=2, offset=0)
        return by_type, by_keyword, since, paged

    by_type, by_keyword, since, paged = asyncio.run(scenario())

    assert [event.event_type for event in by_type.events] == ["test_passed", "commit_created"]
    assert by_type.total_count == 2
    assert [event.sequence_num for event in by_keyword.events] == [1, 3]
    assert [event.sequence_num for event in since.events] == [2, 3]
    assert [event.sequence_num for event in paged.events] == [1, 2]
    assert paged.total_count == 3
    assert paged.has_more is True


def test_replay_folds_state(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        await stack.events.emit(instance_id, "epic_started", {"epic_id": "epic-001"})
        await stack.events.emit(instance_id, "checkpoint_created", {"checkpoint_id": "cp-1"})
        await stack.events.emit(instance_id, "epic_started", {"epic_id": "epic-002"})
        await stack.events.emit(instance_id, "test_passed", {"passed": 3})
        full = await stack.events.replay(instance_id)
        partial = await stack.events.replay(instance_id, 2)
        return full, partial

    full, partial = asyncio.run(scenario())

    assert full.state.last_task == "epic-002"
    assert full.state.last_event_type == "test_passed"
    assert full.state.checkpoint_state["checkpoint_id"] == "cp-1"
    assert full.events_replayed == 4
    assert partial.state.last_task == "epic-001"
    assert partial.state.last_event_type == "checkpoint_created"


def test_replay_of_empty_instance(stack) -> None:
    instance_id = _register(stack)

    result = asyncio.run(stack.events.replay(instance_id))

    assert result.events_replayed == 0
    assert result.state.last_task is None


def test_lineage_chain_and_children(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        root = await stack.events.emit(instance_id, "user_message", {"content": "add oauth"})
        with stack.events.parent_context(root.event_id):
            child = await stack.events.emit(instance_id, "assistant_start", {})
        grandchild = await stack.events.emit(
            instance_id, "tool_use", {"tool_name": "edit"}, parent_event_id=child.event_id
        )
        chain = await stack.events.get_parent_chain(grandchild.event_id)
        children = await stack.events.get_children(root.event_id)
        leaf = await stack.events.get_by_id(grandchild.event_id)
        return root, child, grandchild, chain, children, leaf

    root, child, grandchild, chain, children, leaf = asyncio.run(scenario())

    assert [event.event_id for event in chain] == [root.event_id, child.event_id, grandchild.event_id]
    assert [event.event_id for event in children] == [child.event_id]
    assert leaf.root_event_id == root.event_id
    assert leaf.depth == 2
    assert stack.events.current_parent() is None


def test_parent_chain_of_missing_event(stack) -> None:
    with pytest.raises(EventNotFoundError):
        asyncio.run(stack.events.get_parent_chain("missing"))


def test_aggregate_latest_and_delete(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        for _ in range(3):
            await stack.events.emit(instance_id, "tool_use", {"tool_name": "bash"})
        await stack.events.emit(instance_id, "error", {"message": "boom"})
        counts = await stack.events.aggregate_by_type(instance_id)
        latest = await stack.events.get_latest(instance_id, 2)
        deleted = await stack.events.delete_for_instance(instance_id)
        remaining = await stack.events.count(instance_id)
        return counts, latest, deleted, remaining

    counts, latest, deleted, remaining = asyncio.run(scenario())

    assert counts == {"tool_use": 3, "error": 1}
    assert [event.sequence_num for event in latest] == [3, 4]
    assert deleted == 4
    assert remaining == 0


def test_background_emit_failure_is_reported(stack) -> None:
    async def scenario():
        stack.events.emit_background("odin-PS-000000", "user_message", {})
        await stack.background.drain()

    asyncio.run(scenario())

    assert stack.failures.totals() == {"events": 1}


def test_unknown_stored_type_parses_as_unrecognized() -> None:
    payload = parse_payload("legacy_event", {"anything": 1})

    assert isinstance(payload, UnrecognizedPayload)
    assert payload.model_dump() == {"anything": 1}


def test_event_categories() -> None:
    assert event_category(EventType.INSTANCE_STALE) is EventCategory.LIFECYCLE
    assert event_category("epic_completed") is EventCategory.TASK
    assert event_category("validation_failed") is EventCategory.TEST
    assert event_category("pr_merged") is EventCategory.VCS
    assert event_category("tool_use") is EventCategory.SYSTEM


def test_derive_markers_tracks_task_and_tests(stack) -> None:
    instance_id = _register(stack)

    async def scenario():
        await stack.events.emit(instance_id, "epic_started", {"epic_id": "epic-003", "feature_name": "OAuth"})
        await stack.events.emit(instance_id, "test_failed", {"test_suite": "auth", "passed": 10, "failed": 2})
        await stack.events.emit(instance_id, "commit_created", {"commit_hash": "abc", "branch": "feat/oauth"})
        return await stack.events.get_latest(instance_id, 10)

    markers = derive_markers(asyncio.run(scenario()))

    assert markers.current_task == "epic-003"
    assert markers.tests_passed == 10
    assert markers.tests_failed == 2
    assert markers.branch == "feat/oauth"
    assert markers.last_error == "Tests failed in auth"
    assert markers.recent_actions[0] == "epic_started: epic-003"
