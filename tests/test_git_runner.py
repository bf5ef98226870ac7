from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from continuity_mcp.vcs import FakeGitRunner, GitExecutionResult, GitNotFoundError, GitRunner
from continuity_mcp.vcs.utils import (
    parse_name_status,
    parse_numstat,
    parse_porcelain_status,
    sanitize_environment,
)


def test_git_runner_executes_script(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\necho \"$@\"\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)
    result = asyncio.run(runner.status(tmp_path))

    assert result.ok
    assert result.stdout.strip() == "status --porcelain=v1 -b"


def test_branch_exists_uses_exit_code(tmp_path: Path) -> None:
    script = tmp_path / "git"
    script.write_text("#!/bin/sh\n[ \"$4\" = \"refs/heads/main\" ]\n", encoding="utf-8")
    script.chmod(0o755)

    runner = GitRunner(script)

    assert asyncio.run(runner.branch_exists(tmp_path, "main")) is True
    assert asyncio.run(runner.branch_exists(tmp_path, "gone")) is False


def test_git_not_found(tmp_path: Path) -> None:
    with pytest.raises(GitNotFoundError):
        GitRunner(tmp_path / "missing")


def test_fake_git_runner_records_invocations(tmp_path: Path) -> None:
    fake = FakeGitRunner(
        {"rev-list": GitExecutionResult(args=("rev-list",), returncode=0, stdout="7\n", stderr="")},
        branches=["main"],
    )

    result = asyncio.run(fake.commit_count(tmp_path))
    exists = asyncio.run(fake.branch_exists(tmp_path, "main"))

    assert result.stdout == "7\n"
    assert exists is True
    assert fake.invocations == [("rev-list", "--count", "HEAD"), ("rev-parse", "main")]


def test_sanitize_environment_disables_prompts(monkeypatch) -> None:
    monkeypatch.setenv("GIT_DIR", "/elsewhere")

    env = sanitize_environment({"EXTRA": "1"})

    assert "GIT_DIR" not in env
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["EXTRA"] == "1"


def test_parse_porcelain_status_variants() -> None:
    summary = parse_porcelain_status("## No commits yet on main\nA  a.py\nMM b.py\n?? c.py\n")

    assert summary == {"branch": "main", "staged_files": 2, "unstaged_files": 1, "untracked_files": 1}
    assert parse_porcelain_status("## HEAD (no branch)\n")["branch"] == "HEAD"


def test_parse_numstat_and_name_status() -> None:
    assert parse_numstat("3\t1\ta.py\n-\t-\timage.png\n") == [("a.py", 4), ("image.png", 0)]
    assert parse_name_status("M\ta.py\nD\told.py\nR100\tx.py\ty.py\n") == {
        "a.py": "modified",
        "old.py": "deleted",
        "y.py": "modified",
    }
