"""FastMCP server bootstrap for Continuity."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .checkpoints import CheckpointManager, WorkStateSerializer
from .commands import CommandLogSink
from .config import ContinuitySettings, get_settings
from .errors import ContinuityError
from .events import EventStore
from .failures import BackgroundWriter, FailureChannel
from .instances import HeartbeatManager, InstanceRegistry
from .recovery import ContextReconstructor, InstanceResolver, ResumeService
from .redaction import PatternLoadError, Sanitizer, SecretPatternLoader
from .storage import Database
from .tools import register_tools
from .vcs import GitNotFoundError, GitRunner


def configure_logging(level: str) -> None:
    """Configure root logging for the Continuity server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _prepare_storage(
    database: Database,
    checkpoints: CheckpointManager,
    retention_days: int | None,
) -> dict[str, Any] | None:
    try:
        await database.initialize()
        if retention_days is None:
            return None
        result = await checkpoints.cleanup(retention_days)
        return result.to_dict()
    finally:
        # connections opened here belong to the bootstrap loop
        await database.dispose()


def create_server(
    settings: Optional[ContinuitySettings] = None,
    *,
    database: Database | None = None,
    git_runner: GitRunner | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with its components wired together."""

    settings = settings or get_settings()
    log = logging.getLogger(__name__)

    database = database or Database(settings.database_url)
    failures = FailureChannel(
        settings.failure_channel_size,
        alert_threshold=settings.failure_alert_threshold,
        clock=clock,
    )
    background = BackgroundWriter(failures)

    redaction_metadata: dict[str, Any] = {
        "paths": [str(path) for path in settings.redaction_pattern_paths],
        "extra_patterns": 0,
        "error": None,
    }
    try:
        extra_patterns = SecretPatternLoader(settings.redaction_pattern_paths).load_all()
        redaction_metadata["extra_patterns"] = len(extra_patterns)
    except PatternLoadError as exc:
        log.warning("Ignoring redaction pattern files", extra={"error": str(exc)})
        redaction_metadata["error"] = str(exc)
        extra_patterns = []
    sanitizer = Sanitizer(extra_patterns)

    vcs_metadata: dict[str, Any] = {"available": git_runner is not None, "error": None}
    if git_runner is None:
        try:
            git_runner = GitRunner()
            vcs_metadata["available"] = True
        except GitNotFoundError as exc:
            vcs_metadata["error"] = str(exc)

    registry = InstanceRegistry(database, default_host=settings.host_location, clock=clock)
    heartbeats = HeartbeatManager(registry, background)
    events = EventStore(database, background, clock=clock)
    commands = CommandLogSink(database, background, sanitizer=sanitizer, clock=clock)
    checkpoints = CheckpointManager(database, clock=clock)
    serializer = WorkStateSerializer(
        commands, git_runner, clock=clock, hostname=settings.host_location
    )
    reconstructor = ContextReconstructor(
        registry,
        checkpoints,
        events,
        commands,
        git_runner=git_runner,
        clock=clock,
        tier_timeout=settings.reconstruction_tier_timeout,
    )
    resume = ResumeService(InstanceResolver(registry), reconstructor, events)

    storage_metadata: dict[str, Any] = {
        "url": database.url,
        "ready": False,
        "startup_cleanup": None,
        "error": None,
    }
    try:
        storage_metadata["startup_cleanup"] = _run_sync(
            _prepare_storage(
                database,
                checkpoints,
                settings.checkpoint_retention_days if settings.cleanup_on_start else None,
            )
        )
        storage_metadata["ready"] = True
    except ContinuityError as exc:
        log.error("Storage initialization failed", extra={"url": database.url, "error": str(exc)})
        storage_metadata["error"] = str(exc)

    server = FastMCP(
        name="Continuity MCP",
        version=__version__,
        instructions=(
            "Continuity keeps agent sessions recoverable. Register an instance first, "
            "send heartbeats with context usage, emit events and checkpoints as work "
            "progresses, and use the resume tool to restore a disconnected session."
        ),
    )

    handles = register_tools(
        server,
        registry=registry,
        heartbeats=heartbeats,
        events=events,
        commands=commands,
        checkpoints=checkpoints,
        serializer=serializer,
        reconstructor=reconstructor,
        resume=resume,
        failures=failures,
        settings=settings,
    )

    @server.resource(
        "resource://continuity/status",
        name="continuity_status",
        title="Continuity MCP Status",
        description="Provides the current runtime status for the Continuity MCP server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    async def status_resource(context: Context) -> str:
        """Return a JSON string summarizing instance liveness and background failures."""

        status_counts: dict[str, int] = {}
        instance_error: str | None = None
        try:
            for record in await registry.list_instances():
                status_counts[record.status.value] = status_counts.get(record.status.value, 0) + 1
        except ContinuityError as exc:
            instance_error = str(exc)

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "storage": storage_metadata,
            "vcs": vcs_metadata,
            "redaction": redaction_metadata,
            "instances": {
                "count": sum(status_counts.values()),
                "status_counts": status_counts,
                "error": instance_error,
            },
            "background": {
                "pending": background.pending,
                "failures": {
                    "held": len(failures),
                    "capacity": failures.maxsize,
                    "totals": failures.totals(),
                    "threshold": failures.alert_threshold,
                    "alerting": failures.alerting,
                    "recent": [record.to_dict() for record in failures.recent(5)],
                },
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "database", database)
    setattr(server, "registry", registry)
    setattr(server, "events", events)
    setattr(server, "commands", commands)
    setattr(server, "checkpoints", checkpoints)
    setattr(server, "resume_service", resume)
    setattr(server, "failures", failures)
    setattr(server, "background", background)
    setattr(server, "storage_metadata", storage_metadata)
    setattr(server, "vcs_metadata", vcs_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the Continuity MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching Continuity MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "storage_ready": getattr(server, "storage_metadata", {}).get("ready"),
            "vcs_available": getattr(server, "vcs_metadata", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()
