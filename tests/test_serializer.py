from __future__ import annotations

import asyncio
import os
from pathlib import Path

from continuity_mcp.checkpoints import WorkStateSerializer
from continuity_mcp.vcs import FakeGitRunner, GitExecutionResult


def ok(stdout: str) -> GitExecutionResult:
    return GitExecutionResult(args=("git",), returncode=0, stdout=stdout, stderr="")


def failed() -> GitExecutionResult:
    return GitExecutionResult(args=("git",), returncode=128, stdout="", stderr="fatal: not a git repository")


def test_capture_collects_vcs_files_and_commands(stack, tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "auth.py").write_text("print('hi')\n", encoding="utf-8")
    git = FakeGitRunner(
        {
            "status": ok("## feat/oauth...origin/feat/oauth\nM  src/auth.py\n M README.md\n?? notes.txt\n"),
            "rev-list": ok("42\n"),
            "diff": [
                ok("M\tsrc/auth.py\nA\tsrc/new.py\n"),
                ok("10\t2\tsrc/auth.py\n5\t0\tsrc/new.py\n"),
            ],
        }
    )
    instance_id = asyncio.run(stack.registry.register("odin", "PS")).instance_id
    asyncio.run(stack.commands.log(instance_id, "run tests", tool_name="bash"))
    serializer = WorkStateSerializer(stack.commands, git, clock=stack.clock, hostname="box")

    state = asyncio.run(
        serializer.capture(
            instance_id,
            working_directory=tmp_path,
            project="odin",
            current_task={"epic_id": "epic-003"},
            pending_tasks=["write docs"],
        )
    )

    assert state.vcs_status.branch == "feat/oauth"
    assert state.vcs_status.staged_files == 1
    assert state.vcs_status.unstaged_files == 1
    assert state.vcs_status.untracked_files == 1
    assert state.vcs_status.commit_count == 42
    changes = {change.path: change for change in state.files_modified}
    assert changes["src/auth.py"].lines_changed == 12
    assert changes["src/auth.py"].last_modified is not None
    assert changes["src/new.py"].status == "added"
    assert changes["src/new.py"].last_modified is None
    assert [command.action for command in state.last_commands] == ["run tests"]
    assert state.last_commands[0].target == "bash"
    assert state.current_task.epic_id == "epic-003"
    assert state.environment.hostname == "box"
    assert state.environment.working_directory == str(tmp_path)
    assert state.snapshot_at == stack.clock.now
    assert state.pending_tasks == ["write docs"]


def test_capture_degrades_outside_repository(tmp_path: Path) -> None:
    git = FakeGitRunner({"status": failed(), "diff": failed(), "rev-list": failed()})
    serializer = WorkStateSerializer(None, git)

    state = asyncio.run(serializer.capture("odin-PS-000000", working_directory=tmp_path))

    assert state.vcs_status.branch is None
    assert state.files_modified == []
    assert state.last_commands == []


def test_capture_without_git_or_commands() -> None:
    state = asyncio.run(WorkStateSerializer().capture("odin-PS-000000", current_task={"bogus": True}))

    assert state.current_task is None
    assert state.vcs_status.dirty_files == 0
    assert state.environment.working_directory


def test_capture_survives_deleted_working_directory(monkeypatch) -> None:
    def vanished() -> str:
        raise FileNotFoundError(2, "No such file or directory")

    monkeypatch.setattr(os, "getcwd", vanished)

    state = asyncio.run(WorkStateSerializer(hostname="test-host").capture("odin-PS-abc123", project="odin"))

    assert state.environment.working_directory is None
    assert state.environment.hostname == "test-host"
    assert state.environment.project == "odin"


def test_capture_survives_failing_command_log(stack, tmp_path: Path) -> None:
    class BrokenCommands:
        async def recent(self, instance_id, limit):
            raise RuntimeError("database is locked")

    serializer = WorkStateSerializer(BrokenCommands(), FakeGitRunner())

    state = asyncio.run(serializer.capture("odin-PS-000000", working_directory=tmp_path))

    assert state.last_commands == []
