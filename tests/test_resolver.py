from __future__ import annotations

import asyncio

import pytest

from continuity_mcp.errors import ActiveInstanceError
from continuity_mcp.instances import InstanceRegistry
from continuity_mcp.recovery import (
    InstanceResolver,
    MultipleMatches,
    NoMatch,
    ResolutionStrategy,
    Resolved,
)


def scripted_registry(database, clock, hashes):
    sequence = iter(hashes)
    return InstanceRegistry(
        database,
        clock=clock,
        id_factory=lambda project, role: f"{project}-{role.value}-{next(sequence)}",
    )


@pytest.fixture
def registry(database, clock):
    return scripted_registry(database, clock, ["abc123", "abd456", "ffe001", "c0ffee", "d00d00"])


def test_ambiguous_project_lists_candidates(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        clock.advance(seconds=30)
        await registry.register("odin", "MS")
        clock.advance(minutes=5)
        return await InstanceResolver(registry).resolve("odin")

    resolution = asyncio.run(scenario())

    assert isinstance(resolution, MultipleMatches)
    assert resolution.strategy is ResolutionStrategy.PROJECT
    assert [match["instance_id"] for match in resolution.matches] == ["odin-MS-abd456", "odin-PS-abc123"]
    assert "resume <id>" in resolution.hint


def test_project_with_single_stale_instance(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        clock.advance(minutes=5)
        await registry.register("odin", "MS")
        return await InstanceResolver(registry).resolve("ODIN")

    resolution = asyncio.run(scenario())

    assert resolution == Resolved(instance_id="odin-PS-abc123", strategy=ResolutionStrategy.PROJECT)


def test_exact_id_is_case_insensitive(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        clock.advance(minutes=5)
        return await InstanceResolver(registry).resolve("ODIN-ps-ABC123")

    resolution = asyncio.run(scenario())

    assert resolution == Resolved(instance_id="odin-PS-abc123", strategy=ResolutionStrategy.EXACT_ID)


def test_exact_id_of_active_instance_is_refused(registry) -> None:
    asyncio.run(registry.register("odin", "PS"))

    with pytest.raises(ActiveInstanceError) as excinfo:
        asyncio.run(InstanceResolver(registry).resolve("odin-PS-abc123"))

    assert excinfo.value.instance_id == "odin-PS-abc123"


def test_exact_id_of_closed_instance(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        await registry.mark_closed("odin-PS-abc123")
        clock.advance(minutes=5)
        return await InstanceResolver(registry).resolve("odin-PS-abc123")

    resolution = asyncio.run(scenario())

    assert isinstance(resolution, NoMatch)
    assert "closed" in resolution.error


def test_hash_prefix_resolution(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        await registry.register("odin", "MS")
        clock.advance(minutes=5)
        resolver = InstanceResolver(registry)
        return await resolver.resolve("abc1"), await resolver.resolve("ab12")

    unique, unknown = asyncio.run(scenario())

    assert unique == Resolved(instance_id="odin-PS-abc123", strategy=ResolutionStrategy.HASH_PREFIX)
    assert isinstance(unknown, NoMatch)


def test_hash_prefix_of_active_instance_is_refused(registry) -> None:
    asyncio.run(registry.register("odin", "PS"))

    with pytest.raises(ActiveInstanceError):
        asyncio.run(InstanceResolver(registry).resolve("abc12"))


def test_task_hint_resolution(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        await registry.update_heartbeat("odin-PS-abc123", 40, "epic-003")
        await registry.register("thor", "PS")
        clock.advance(minutes=5)
        return await InstanceResolver(registry).resolve("epic-003")

    resolution = asyncio.run(scenario())

    assert resolution == Resolved(instance_id="odin-PS-abc123", strategy=ResolutionStrategy.TASK_ID)


def test_no_hint_picks_most_recent_stale(registry, clock) -> None:
    async def scenario():
        await registry.register("odin", "PS")
        clock.advance(minutes=1)
        await registry.register("thor", "PS")
        clock.advance(minutes=5)
        await registry.register("loki", "PS")
        resolver = InstanceResolver(registry)
        return await resolver.resolve(None), await resolver.stale_instances()

    resolution, stale = asyncio.run(scenario())

    assert resolution == Resolved(instance_id="thor-PS-abd456", strategy=ResolutionStrategy.MOST_RECENT_STALE)
    assert [record.instance_id for record in stale] == ["thor-PS-abd456", "odin-PS-abc123"]


def test_no_hint_without_stale_instances(registry) -> None:
    asyncio.run(registry.register("odin", "PS"))

    resolution = asyncio.run(InstanceResolver(registry).resolve(""))

    assert isinstance(resolution, NoMatch)


def test_unknown_project_reports_search(registry, clock) -> None:
    asyncio.run(registry.register("odin", "PS"))
    clock.advance(minutes=5)

    resolution = asyncio.run(InstanceResolver(registry).resolve("freya"))

    assert resolution == NoMatch(error="No instance found matching 'freya'", searched_for="freya")
