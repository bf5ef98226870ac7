"""Tool registration for Continuity MCP."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastmcp import Context, FastMCP

from ..checkpoints import CheckpointManager, WorkStateSerializer
from ..commands import CommandLogSink
from ..config import ContinuitySettings
from ..errors import ContinuityError, InvalidInputError, NotFoundError, error_payload
from ..events import EventStore, EventType
from ..failures import FailureChannel
from ..instances import (
    HeartbeatManager,
    InstanceRegistry,
    format_staleness_message,
    render_footer,
)
from ..recovery import ContextReconstructor, ResumeService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    register_instance: Any
    heartbeat: Any
    list_instances: Any
    instance_details: Any
    close_instance: Any
    emit_event: Any
    query_events: Any
    replay_events: Any
    log_command: Any
    create_checkpoint: Any
    get_checkpoint: Any
    list_checkpoints: Any
    cleanup_checkpoints: Any
    reconstruct_context: Any
    resume: Any
    render_footer: Any


def _parse_timestamp(value: str | None, field_name: str) -> datetime | None:
    if value is None or value == "":
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise InvalidInputError(f"{field_name} must be an ISO-8601 timestamp, got {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _failure(context: Context | None, operation: str, exc: ContinuityError) -> dict[str, Any]:
    level = "info" if isinstance(exc, NotFoundError) else "warning"
    _emit_log(context, level, f"{operation} rejected", extra={"error": exc.kind, "detail": str(exc)})
    return error_payload(exc)


def register_tools(
    server: FastMCP,
    *,
    registry: InstanceRegistry,
    heartbeats: HeartbeatManager,
    events: EventStore,
    commands: CommandLogSink,
    checkpoints: CheckpointManager,
    serializer: WorkStateSerializer,
    reconstructor: ContextReconstructor,
    resume: ResumeService,
    failures: FailureChannel,
    settings: ContinuitySettings,
) -> ToolHandles:
    """Register the continuity tools on the server."""

    async def _mark(
        context: Context | None,
        instance_id: str,
        event_type: EventType,
        payload: dict[str, Any],
    ) -> str | None:
        # the primary write is already committed; a failed marker must not undo its success
        try:
            await events.emit(instance_id, event_type, payload)
        except ContinuityError as exc:
            failures.report(
                source="events",
                operation=f"emit {event_type.value}",
                error=exc,
                instance_id=instance_id,
            )
            _emit_log(
                context,
                "warning",
                "Lifecycle event not recorded",
                extra={"instance_id": instance_id, "event_type": event_type.value, "error": str(exc)},
            )
            return f"{event_type.value} event not recorded: {exc}"
        return None

    async def _register_instance(
        project: str,
        role: str = "PS",
        host: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Register a new session instance. Must be the session's first call."""

        try:
            record = await registry.register(project, role, host)
        except ContinuityError as exc:
            return _failure(context, "register_instance", exc)
        warning = await _mark(
            context,
            record.instance_id,
            EventType.INSTANCE_REGISTERED,
            {"project": record.project, "role": record.role.value, "host_location": record.host_location},
        )

        _emit_log(
            context,
            "info",
            "Registered instance",
            extra={"instance_id": record.instance_id, "project": project},
        )
        response = {
            **record.to_dict(),
            "footer": render_footer(
                record, now=registry.now(), hint_threshold=settings.footer_hint_threshold
            ),
        }
        if warning:
            response["warning"] = warning
        return response

    async def _heartbeat(
        instance_id: str,
        context_percent: int,
        current_task: str | None = None,
        wait: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Report liveness and context usage for an instance."""

        if not wait:
            heartbeats.send_background(instance_id, context_percent, current_task)
            return {"instance_id": instance_id, "scheduled": True}
        try:
            result = await heartbeats.send(instance_id, context_percent, current_task)
        except ContinuityError as exc:
            return _failure(context, "heartbeat", exc)
        return {**result.to_dict(), "message": format_staleness_message(result)}

    async def _list_instances(
        project: str | None = None,
        active_only: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        try:
            records = await registry.list_instances(project, active_only=active_only)
        except ContinuityError as exc:
            return _failure(context, "list_instances", exc)
        _emit_log(context, "debug", "Listing instances", extra={"count": len(records)})
        return {"instances": [record.to_dict() for record in records], "count": len(records)}

    async def _instance_details(hint: str, context: Context | None = None) -> dict[str, Any]:
        """Look up an instance by exact id or unique id prefix."""

        try:
            record = await registry.get_details(hint)
            if record is None:
                return {
                    "error": "not_found",
                    "message": f"No unique instance matches '{hint}'",
                    "candidates": [item.instance_id for item in await registry.prefix_matches(hint)],
                }
            event_count = await events.count(record.instance_id)
            checkpoint_stats = await checkpoints.instance_stats(record.instance_id)
            command_stats = await commands.stats(record.instance_id)
        except ContinuityError as exc:
            return _failure(context, "instance_details", exc)
        return {
            **record.to_dict(),
            "event_count": event_count,
            "checkpoints": checkpoint_stats,
            "commands": command_stats,
        }

    async def _close_instance(instance_id: str, context: Context | None = None) -> dict[str, Any]:
        """Close an instance permanently; closed instances cannot be resumed."""

        try:
            record = await registry.mark_closed(instance_id)
        except ContinuityError as exc:
            return _failure(context, "close_instance", exc)
        warning = await _mark(
            context, instance_id, EventType.INSTANCE_CLOSED, {"reason": "closed by session"}
        )
        _emit_log(context, "info", "Closed instance", extra={"instance_id": instance_id})
        response = record.to_dict()
        if warning:
            response["warning"] = warning
        return response

    tool_register = server.tool(
        name="register_instance",
        description=(
            "Register a new session instance for a project (role PS for project "
            "supervisor, MS for meta supervisor). Returns the generated instance id."
        ),
    )(_register_instance)

    tool_heartbeat = server.tool(
        name="heartbeat",
        description=(
            "Report liveness for an instance with its context window usage (0-100). "
            "Set wait=false to fire and forget."
        ),
    )(_heartbeat)

    tool_list_instances = server.tool(
        name="list_instances",
        description="List instances with their live status (active, stale, or closed).",
    )(_list_instances)

    tool_details = server.tool(
        name="instance_details",
        description="Show an instance with event, checkpoint, and command statistics.",
    )(_instance_details)

    tool_close = server.tool(
        name="close_instance",
        description="Close an instance. This is permanent.",
    )(_close_instance)

    async def _emit_event(
        instance_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
        parent_event_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Append a structured event to the instance's log."""

        try:
            result = await events.emit(
                instance_id, event_type, payload, metadata, parent_event_id=parent_event_id
            )
        except ContinuityError as exc:
            return _failure(context, "emit_event", exc)
        _emit_log(
            context,
            "debug",
            "Recorded event",
            extra={"instance_id": instance_id, "event_type": event_type, "sequence": result.sequence_num},
        )
        return result.to_dict()

    async def _query_events(
        instance_id: str,
        event_types: list[str] | None = None,
        since: str | None = None,
        until: str | None = None,
        keyword: str | None = None,
        limit: int = 100,
        offset: int = 0,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Query an instance's events in sequence order."""

        try:
            page = await events.query(
                instance_id,
                event_types=event_types,
                since=_parse_timestamp(since, "since"),
                until=_parse_timestamp(until, "until"),
                keyword=keyword,
                limit=limit,
                offset=offset,
            )
        except ContinuityError as exc:
            return _failure(context, "query_events", exc)
        return page.to_dict()

    async def _replay_events(
        instance_id: str,
        up_to_sequence: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Fold the instance's events into an aggregate state."""

        try:
            result = await events.replay(instance_id, up_to_sequence)
        except ContinuityError as exc:
            return _failure(context, "replay_events", exc)
        return result.to_dict()

    async def _log_command(
        instance_id: str,
        action: str,
        command_type: str = "tool_call",
        tool_name: str | None = None,
        parameters: dict[str, Any] | None = None,
        result: Any = None,
        success: bool = True,
        error_message: str | None = None,
        execution_time_ms: int | None = None,
        tags: list[str] | None = None,
        wait: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a command in the sanitized command log."""

        kwargs: dict[str, Any] = {
            "command_type": command_type,
            "tool_name": tool_name,
            "parameters": parameters,
            "result": result,
            "success": success,
            "error_message": error_message,
            "execution_time_ms": execution_time_ms,
            "tags": tags,
            "source": "explicit" if command_type == "explicit" else "auto",
        }
        if not wait:
            commands.log_background(instance_id, action, **kwargs)
            return {"instance_id": instance_id, "scheduled": True}
        try:
            record = await commands.log(instance_id, action, **kwargs)
        except ContinuityError as exc:
            return _failure(context, "log_command", exc)
        return record.to_dict()

    tool_emit = server.tool(
        name="emit_event",
        description=(
            "Append an event (e.g. epic_started, test_passed, commit_created) to an "
            "instance's event log. Payload shape depends on the event type."
        ),
    )(_emit_event)

    tool_query = server.tool(
        name="query_events",
        description="Query events by type, time range, or keyword with pagination.",
    )(_query_events)

    tool_replay = server.tool(
        name="replay_events",
        description="Replay an instance's events into its last task, last event, and checkpoint markers.",
    )(_replay_events)

    tool_log_command = server.tool(
        name="log_command",
        description="Log a tool call or explicit action. Parameters and results are redacted before storage.",
    )(_log_command)

    async def _create_checkpoint(
        instance_id: str,
        checkpoint_type: str = "manual",
        work_state: dict[str, Any] | None = None,
        context_percent: int | None = None,
        working_directory: str | None = None,
        current_task: dict[str, Any] | None = None,
        pending_tasks: list[str] | None = None,
        important_context: list[str] | None = None,
        event_id: str | None = None,
        note: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Snapshot the instance's work state. Captures it automatically when omitted."""

        try:
            instance = await registry.require(instance_id)
            if work_state is None:
                captured = await serializer.capture(
                    instance_id,
                    working_directory=working_directory,
                    project=instance.project,
                    current_task=current_task,
                    pending_tasks=pending_tasks,
                    important_context=important_context,
                )
                state: Any = captured
            else:
                state = work_state
            record = await checkpoints.create(
                instance_id,
                checkpoint_type,
                state,
                context_percent=context_percent if context_percent is not None else instance.context_percent,
                metadata={"trigger": checkpoint_type, "event_id": event_id, "manual_note": note},
            )
        except ContinuityError as exc:
            return _failure(context, "create_checkpoint", exc)
        warning = await _mark(
            context,
            instance_id,
            EventType.CHECKPOINT_CREATED,
            {
                "checkpoint_id": record.checkpoint_id,
                "checkpoint_type": record.checkpoint_type.value,
                "context_percent": record.context_percent,
            },
        )

        _emit_log(
            context,
            "info",
            "Created checkpoint",
            extra={"instance_id": instance_id, "checkpoint_id": record.checkpoint_id},
        )
        response = {
            "checkpoint_id": record.checkpoint_id,
            "sequence_num": record.sequence_num,
            "size_bytes": record.size_bytes,
            "created_at": record.created_at.isoformat(),
        }
        if warning:
            response["warning"] = warning
        return response

    async def _get_checkpoint(checkpoint_id: str, context: Context | None = None) -> dict[str, Any]:
        """Fetch a checkpoint with its generated recovery instructions."""

        try:
            detail = await checkpoints.get(checkpoint_id)
        except ContinuityError as exc:
            return _failure(context, "get_checkpoint", exc)
        return detail.to_dict()

    async def _list_checkpoints(
        instance_id: str,
        checkpoint_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """List checkpoint summaries for an instance, newest first."""

        try:
            page = await checkpoints.list_checkpoints(
                instance_id, checkpoint_type=checkpoint_type, limit=limit, offset=offset
            )
        except ContinuityError as exc:
            return _failure(context, "list_checkpoints", exc)
        return page.to_dict()

    async def _cleanup_checkpoints(
        retention_days: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Delete checkpoints older than the retention window."""

        try:
            result = await checkpoints.cleanup(retention_days or settings.checkpoint_retention_days)
        except ContinuityError as exc:
            return _failure(context, "cleanup_checkpoints", exc)
        _emit_log(context, "info", "Checkpoint cleanup", extra=result.to_dict())
        return result.to_dict()

    tool_create_checkpoint = server.tool(
        name="create_checkpoint",
        description=(
            "Create a checkpoint (context_window, epic_completion, or manual). Without an "
            "explicit work_state the git status, modified files, and recent commands are captured."
        ),
    )(_create_checkpoint)

    tool_get_checkpoint = server.tool(
        name="get_checkpoint",
        description="Get a checkpoint and its Markdown recovery instructions.",
    )(_get_checkpoint)

    tool_list_checkpoints = server.tool(
        name="list_checkpoints",
        description="List checkpoints for an instance with pagination.",
    )(_list_checkpoints)

    tool_cleanup = server.tool(
        name="cleanup_checkpoints",
        description="Delete checkpoints older than the retention period (days).",
        annotations={"destructiveHint": True},
    )(_cleanup_checkpoints)

    async def _reconstruct_context(instance_id: str, context: Context | None = None) -> dict[str, Any]:
        """Reconstruct an instance's work state with a confidence score."""

        try:
            reconstructed = await reconstructor.reconstruct(instance_id)
        except ContinuityError as exc:
            return _failure(context, "reconstruct_context", exc)
        return reconstructed.to_dict()

    async def _resume(
        hint: str | None = None,
        choice: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Handle `resume <hint>`: resolve the hint and return a recovery brief."""

        try:
            response = await resume.resume(hint, choice=choice)
        except ContinuityError as exc:
            return _failure(context, "resume", exc)
        _emit_log(
            context,
            "info",
            "Resume request handled",
            extra={"hint": hint, "status": response.status.value, "instance_id": response.instance_id},
        )
        return response.to_dict()

    async def _render_footer(instance_id: str, context: Context | None = None) -> dict[str, Any]:
        """Render the status footer for an instance."""

        try:
            record = await registry.require(instance_id)
        except ContinuityError as exc:
            return _failure(context, "render_footer", exc)
        return {
            "instance_id": instance_id,
            "footer": render_footer(
                record, now=registry.now(), hint_threshold=settings.footer_hint_threshold
            ),
            "background_failures": len(failures),
        }

    tool_reconstruct = server.tool(
        name="reconstruct_context",
        description=(
            "Reconstruct what an instance was doing from its checkpoints, events, "
            "command log, or registry row, with a 0-100 confidence score."
        ),
    )(_reconstruct_context)

    tool_resume = server.tool(
        name="resume",
        description=(
            "Resume a disconnected session. The hint may be an instance id, a hash "
            "prefix, an epic id (epic-003), or a project name; omit it to resume the most "
            "recently stale instance. Pass choice to pick from multiple matches."
        ),
    )(_resume)

    tool_footer = server.tool(
        name="render_footer",
        description="Render the status footer for an instance.",
    )(_render_footer)

    return ToolHandles(
        register_instance=tool_register,
        heartbeat=tool_heartbeat,
        list_instances=tool_list_instances,
        instance_details=tool_details,
        close_instance=tool_close,
        emit_event=tool_emit,
        query_events=tool_query,
        replay_events=tool_replay,
        log_command=tool_log_command,
        create_checkpoint=tool_create_checkpoint,
        get_checkpoint=tool_get_checkpoint,
        list_checkpoints=tool_list_checkpoints,
        cleanup_checkpoints=tool_cleanup,
        reconstruct_context=tool_reconstruct,
        resume=tool_resume,
        render_footer=tool_footer,
    )


__all__ = ["register_tools", "ToolHandles"]


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)
