"""Best-effort capture of a session's work state from independent collectors."""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ..commands import CommandLogSink
from ..vcs import GitRunner
from ..vcs.utils import parse_name_status, parse_numstat, parse_porcelain_status
from .models import (
    MAX_COMMANDS_TRACKED,
    MAX_FILES_TRACKED,
    CommandSummary,
    CurrentTask,
    Environment,
    FileChange,
    VcsStatus,
    WorkState,
)

logger = logging.getLogger(__name__)

SLOW_CAPTURE_MS = 1000


class WorkStateSerializer:
    """Gathers VCS state, recent commands, modified files and environment facts.

    The collectors run concurrently and each one degrades to an empty default on
    failure, so ``capture`` always returns a (possibly partial) ``WorkState``.
    """

    def __init__(
        self,
        commands: CommandLogSink | None = None,
        git_runner: GitRunner | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        hostname: str | None = None,
    ) -> None:
        self._commands = commands
        self._git = git_runner
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._hostname = hostname

    async def capture(
        self,
        instance_id: str,
        *,
        working_directory: str | Path | None = None,
        project: str | None = None,
        current_task: CurrentTask | dict[str, Any] | None = None,
        external_document_status: dict[str, Any] | None = None,
        pending_tasks: list[str] | None = None,
        important_context: list[str] | None = None,
    ) -> WorkState:
        started = time.perf_counter()
        cwd = Path(working_directory).expanduser() if working_directory else None
        vcs, files, commands, environment = await asyncio.gather(
            self._collect_vcs(cwd),
            self._collect_files(cwd),
            self._collect_commands(instance_id),
            self._collect_environment(cwd, project),
        )
        task: CurrentTask | None
        try:
            task = (
                current_task
                if current_task is None or isinstance(current_task, CurrentTask)
                else CurrentTask.model_validate(current_task)
            )
        except ValueError as exc:
            logger.warning("Ignoring malformed current task", extra={"error": str(exc)})
            task = None

        state = WorkState(
            current_task=task,
            files_modified=files,
            vcs_status=vcs,
            last_commands=commands,
            external_document_status=dict(external_document_status or {}),
            environment=environment,
            pending_tasks=list(pending_tasks or []),
            important_context=list(important_context or []),
            snapshot_at=self._clock(),
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > SLOW_CAPTURE_MS:
            logger.warning(
                "Work state capture exceeded latency target",
                extra={"instance_id": instance_id, "elapsed_ms": round(elapsed_ms, 2)},
            )
        return state

    async def _collect_vcs(self, cwd: Path | None) -> VcsStatus:
        if self._git is None or cwd is None:
            return VcsStatus()
        try:
            status, count = await asyncio.gather(self._git.status(cwd), self._git.commit_count(cwd))
            if not status.ok:
                return VcsStatus()
            summary = parse_porcelain_status(status.stdout)
            commit_count = int(count.stdout.strip()) if count.ok and count.stdout.strip().isdigit() else 0
            return VcsStatus(commit_count=commit_count, **summary)
        except Exception as exc:
            logger.warning("VCS status unavailable", extra={"cwd": str(cwd), "error": str(exc)})
            return VcsStatus()

    async def _collect_files(self, cwd: Path | None) -> list[FileChange]:
        if self._git is None or cwd is None:
            return []
        try:
            names, numstat = await asyncio.gather(self._git.name_status(cwd), self._git.numstat(cwd))
            if not names.ok:
                return []
            kinds = parse_name_status(names.stdout)
            deltas = dict(parse_numstat(numstat.stdout)) if numstat.ok else {}
            changes: list[FileChange] = []
            for path, kind in list(kinds.items())[:MAX_FILES_TRACKED]:
                changes.append(
                    FileChange(
                        path=path,
                        status=kind,
                        lines_changed=deltas.get(path, 0),
                        last_modified=_modified_at(cwd / path),
                    )
                )
            return changes
        except Exception as exc:
            logger.warning("Modified files unavailable", extra={"cwd": str(cwd), "error": str(exc)})
            return []

    async def _collect_commands(self, instance_id: str) -> list[CommandSummary]:
        if self._commands is None:
            return []
        try:
            entries = await self._commands.recent(instance_id, MAX_COMMANDS_TRACKED)
        except Exception as exc:
            logger.warning("Recent commands unavailable", extra={"instance_id": instance_id, "error": str(exc)})
            return []
        summaries: list[CommandSummary] = []
        for entry in entries:
            parameters = entry.parameters or {}
            target = entry.tool_name or parameters.get("target") or parameters.get("path")
            summaries.append(
                CommandSummary(
                    command_id=entry.id,
                    command_type=entry.command_type.value,
                    action=entry.action,
                    target=str(target) if target is not None else None,
                    timestamp=entry.timestamp,
                )
            )
        return summaries

    async def _collect_environment(self, cwd: Path | None, project: str | None) -> Environment:
        try:
            hostname = self._hostname or socket.gethostname()
        except OSError:
            hostname = None
        directory: str | None
        if cwd is not None:
            directory = str(cwd)
        else:
            try:
                directory = os.getcwd()
            except OSError as exc:
                # the process working directory was removed underneath us
                logger.warning("Working directory unavailable", extra={"error": str(exc)})
                directory = None
        return Environment(project=project, working_directory=directory, hostname=hostname)


def _modified_at(path: Path) -> datetime | None:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


__all__ = ["SLOW_CAPTURE_MS", "WorkStateSerializer"]
