from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from continuity_mcp.checkpoints import CheckpointManager
from continuity_mcp.commands import CommandLogSink
from continuity_mcp.events import EventStore
from continuity_mcp.failures import BackgroundWriter, FailureChannel
from continuity_mcp.instances import HeartbeatManager, InstanceRegistry
from continuity_mcp.storage import Database


class FakeClock:
    """Deterministic clock shared by every component in a test."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path: Path) -> Database:
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'continuity.db'}")
    asyncio.run(db.initialize())
    return db


@pytest.fixture
def stack(database: Database, clock: FakeClock) -> SimpleNamespace:
    failures = FailureChannel(10, alert_threshold=3, clock=clock)
    background = BackgroundWriter(failures)
    registry = InstanceRegistry(database, default_host="test-host", clock=clock)
    return SimpleNamespace(
        database=database,
        clock=clock,
        failures=failures,
        background=background,
        registry=registry,
        heartbeats=HeartbeatManager(registry, background),
        events=EventStore(database, background, clock=clock),
        commands=CommandLogSink(database, background, clock=clock),
        checkpoints=CheckpointManager(database, clock=clock),
    )
