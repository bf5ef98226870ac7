from __future__ import annotations

import asyncio

import pytest

from continuity_mcp.errors import InvalidInputError
from continuity_mcp.instances import InstanceRegistry
from continuity_mcp.recovery import (
    ContextReconstructor,
    InstanceResolver,
    ResumeService,
    ResumeStatus,
    parse_resume_command,
)


@pytest.fixture
def service(stack):
    hashes = iter(["abc123", "abd456", "ffe001"])
    stack.registry = InstanceRegistry(
        stack.database,
        clock=stack.clock,
        id_factory=lambda project, role: f"{project}-{role.value}-{next(hashes)}",
    )
    reconstructor = ContextReconstructor(
        stack.registry, stack.checkpoints, stack.events, stack.commands, clock=stack.clock
    )
    return ResumeService(InstanceResolver(stack.registry), reconstructor, stack.events)


def test_resume_from_checkpoint_emits_loaded_event(stack, service) -> None:
    async def scenario():
        record = await stack.registry.register("odin", "PS")
        checkpoint = await stack.checkpoints.create(
            record.instance_id,
            "context_window",
            {"current_task": {"epic_id": "epic-003"}, "pending_tasks": ["refresh tokens"]},
        )
        stack.clock.advance(minutes=3)
        response = await service.handle_command("resume odin-PS-abc123")
        await stack.background.drain()
        loaded = await stack.events.query(record.instance_id, event_types=["checkpoint_loaded"])
        return checkpoint, response, loaded

    checkpoint, response, loaded = asyncio.run(scenario())

    assert response.status is ResumeStatus.RESUMED
    assert response.source == "checkpoint"
    assert response.confidence_score == 100
    assert response.auto_resume is True
    assert "epic-003" in response.brief
    assert "**Confidence:** 100/100" in response.brief
    assert [event.payload["checkpoint_id"] for event in loaded.events] == [checkpoint.checkpoint_id]


def test_disambiguation_then_choice(stack, service) -> None:
    async def scenario():
        await stack.registry.register("odin", "PS")
        stack.clock.advance(seconds=10)
        await stack.registry.register("odin", "MS")
        stack.clock.advance(minutes=5)
        ambiguous = await service.resume("odin")
        by_index = await service.resume("odin", choice="2")
        by_id = await service.resume("odin", choice="odin-MS-abd456")
        invalid = await service.resume("odin", choice=9)
        return ambiguous, by_index, by_id, invalid

    ambiguous, by_index, by_id, invalid = asyncio.run(scenario())

    assert ambiguous.status is ResumeStatus.DISAMBIGUATION
    assert [match["instance_id"] for match in ambiguous.matches] == ["odin-MS-abd456", "odin-PS-abc123"]
    assert by_index.status is ResumeStatus.RESUMED
    assert by_index.instance_id == "odin-PS-abc123"
    assert by_index.source == "basic"
    assert "below the auto-resume threshold" in by_index.brief
    assert by_id.instance_id == "odin-MS-abd456"
    assert invalid.status is ResumeStatus.INVALID_CHOICE


def test_active_instance_is_not_resumed(stack, service) -> None:
    async def scenario():
        await stack.registry.register("odin", "PS")
        return await service.resume("odin-PS-abc123")

    response = asyncio.run(scenario())

    assert response.status is ResumeStatus.ACTIVE
    assert response.to_dict()["instance_id"] == "odin-PS-abc123"


def test_unknown_hint_is_not_found(service) -> None:
    response = asyncio.run(service.resume("freya"))

    assert response.status is ResumeStatus.NOT_FOUND
    assert response.to_dict() == {
        "status": "not_found",
        "message": "No instance found matching 'freya'",
        "searched_for": "freya",
    }


def test_list_stale_instances(stack, service) -> None:
    async def scenario():
        await stack.registry.register("odin", "PS")
        stack.clock.advance(minutes=5)
        await stack.registry.register("thor", "PS")
        return await service.list_stale_instances()

    assert [record.instance_id for record in asyncio.run(scenario())] == ["odin-PS-abc123"]


@pytest.mark.parametrize(
    "text, hint",
    [("resume", None), ("  Resume odin ", "odin"), ("resume epic-003", "epic-003"), ("resume   ", None)],
)
def test_parse_resume_command(text: str, hint) -> None:
    assert parse_resume_command(text) == hint


def test_parse_rejects_other_text() -> None:
    with pytest.raises(InvalidInputError):
        parse_resume_command("restart odin")
