"""Continuity MCP diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from continuity_mcp.checkpoints import CheckpointManager
from continuity_mcp.commands import CommandLogSink
from continuity_mcp.config import ContinuitySettings
from continuity_mcp.errors import ContinuityError, StorageError
from continuity_mcp.events import EventStore
from continuity_mcp.failures import BackgroundWriter, FailureChannel
from continuity_mcp.instances import InstanceRegistry
from continuity_mcp.recovery import ContextReconstructor, InstanceResolver, ResumeService
from continuity_mcp.storage import Database
from continuity_mcp.vcs import GitNotFoundError, GitRunner


@dataclass(slots=True)
class Stack:
    database: Database
    background: BackgroundWriter
    registry: InstanceRegistry
    events: EventStore
    commands: CommandLogSink
    checkpoints: CheckpointManager
    resume: ResumeService

    async def close(self) -> None:
        await self.background.drain()
        await self.database.dispose()


def load_stack(settings: ContinuitySettings) -> Stack:
    database = Database(settings.database_url)
    background = BackgroundWriter(FailureChannel(settings.failure_channel_size))
    registry = InstanceRegistry(database, default_host=settings.host_location)
    events = EventStore(database, background)
    commands = CommandLogSink(database, background)
    checkpoints = CheckpointManager(database)
    try:
        git_runner: GitRunner | None = GitRunner()
    except GitNotFoundError:
        git_runner = None
    reconstructor = ContextReconstructor(
        registry,
        checkpoints,
        events,
        commands,
        git_runner=git_runner,
        tier_timeout=settings.reconstruction_tier_timeout,
    )
    resume = ResumeService(InstanceResolver(registry), reconstructor, events)
    return Stack(
        database=database,
        background=background,
        registry=registry,
        events=events,
        commands=commands,
        checkpoints=checkpoints,
        resume=resume,
    )


def _run(action: Callable[[Stack], Awaitable[Any]]) -> None:
    settings = ContinuitySettings()
    stack = load_stack(settings)

    async def _execute() -> Any:
        try:
            return await action(stack)
        finally:
            await stack.close()

    try:
        payload = asyncio.run(_execute())
    except StorageError as exc:
        print(f"Continuity storage unavailable: {exc}")
        raise SystemExit(1)
    except ContinuityError as exc:
        print(f"Error: {exc}")
        raise SystemExit(1)
    print(json.dumps(payload, indent=2, default=str))


def cmd_instances(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        records = await stack.registry.list_instances(args.project, active_only=args.active_only)
        return [record.to_dict() for record in records]

    _run(action)


def cmd_events(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        page = await stack.events.query(
            args.instance_id,
            event_types=args.type or None,
            keyword=args.keyword,
            limit=args.limit,
        )
        return page.to_dict()

    _run(action)


def cmd_replay(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        result = await stack.events.replay(args.instance_id, args.up_to)
        return result.to_dict()

    _run(action)


def cmd_checkpoints(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        page = await stack.checkpoints.list_checkpoints(
            args.instance_id, checkpoint_type=args.type, limit=args.limit
        )
        return page.to_dict()

    _run(action)


def cmd_cleanup(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        result = await stack.checkpoints.cleanup(args.days)
        return result.to_dict()

    _run(action)


def cmd_resume(args: argparse.Namespace) -> None:
    async def action(stack: Stack) -> Any:
        response = await stack.resume.resume(args.hint, choice=args.choice)
        return response.to_dict()

    _run(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Continuity MCP diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_instances = sub.add_parser("instances", help="List registered instances")
    p_instances.add_argument("--project")
    p_instances.add_argument("--active-only", action="store_true", help="Hide stale and closed instances")
    p_instances.set_defaults(func=cmd_instances)

    p_events = sub.add_parser("events", help="Query an instance's events")
    p_events.add_argument("instance_id")
    p_events.add_argument("--type", action="append", help="Filter by event type (repeatable)")
    p_events.add_argument("--keyword")
    p_events.add_argument("--limit", type=int, default=100)
    p_events.set_defaults(func=cmd_events)

    p_replay = sub.add_parser("replay", help="Replay an instance's events into its aggregate state")
    p_replay.add_argument("instance_id")
    p_replay.add_argument("--up-to", type=int, default=None, help="Stop at this sequence number")
    p_replay.set_defaults(func=cmd_replay)

    p_checkpoints = sub.add_parser("checkpoints", help="List checkpoints for an instance")
    p_checkpoints.add_argument("instance_id")
    p_checkpoints.add_argument("--type")
    p_checkpoints.add_argument("--limit", type=int, default=50)
    p_checkpoints.set_defaults(func=cmd_checkpoints)

    p_cleanup = sub.add_parser("cleanup", help="Delete checkpoints past the retention window")
    p_cleanup.add_argument("--days", type=int, default=30)
    p_cleanup.set_defaults(func=cmd_cleanup)

    p_resume = sub.add_parser("resume", help="Resolve a resume hint and print the recovery brief")
    p_resume.add_argument("hint", nargs="?", default=None)
    p_resume.add_argument("--choice", help="Pick one of several matches by number or id")
    p_resume.set_defaults(func=cmd_resume)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
