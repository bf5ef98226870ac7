"""Async runner for the git CLI."""

from __future__ import annotations

import asyncio
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .utils import sanitize_environment


class GitRunnerError(RuntimeError):
    """Base class for git runner errors."""


class GitNotFoundError(GitRunnerError):
    """Raised when the git executable cannot be located."""


@dataclass(slots=True)
class GitExecutionResult:
    """Holds the outcome of a git invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class GitRunner:
    """Execute git commands asynchronously inside a working directory."""

    def __init__(self, executable: Path | None = None, *, timeout: float = 5.0) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise GitNotFoundError(f"git executable not found at {candidate}")

        binary = shutil.which("git")
        if binary is None:
            raise GitNotFoundError("git executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def status(self, cwd: Path) -> GitExecutionResult:
        return await self._invoke(cwd, "status", "--porcelain=v1", "-b")

    async def commit_count(self, cwd: Path) -> GitExecutionResult:
        return await self._invoke(cwd, "rev-list", "--count", "HEAD")

    async def name_status(self, cwd: Path) -> GitExecutionResult:
        return await self._invoke(cwd, "diff", "--name-status", "HEAD")

    async def numstat(self, cwd: Path) -> GitExecutionResult:
        return await self._invoke(cwd, "diff", "--numstat", "HEAD")

    async def branch_exists(self, cwd: Path, branch: str) -> bool:
        result = await self._invoke(
            cwd, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"
        )
        return result.ok

    async def _invoke(self, cwd: Path, *args: str) -> GitExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=sanitize_environment(),
        )
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise GitRunnerError(f"git {' '.join(args)} timed out after {self._timeout}s")
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return GitExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


class FakeGitRunner(GitRunner):
    """Test double that answers git invocations from a canned table.

    ``responses`` maps the git subcommand (``"status"``, ``"rev-list"``,
    ``"diff"``, ``"rev-parse"``) to a result; unknown subcommands succeed
    with empty output.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: dict[str, GitExecutionResult | Iterable[GitExecutionResult]] | None = None,
        *,
        branches: Iterable[str] | None = None,
    ) -> None:
        self._responses: dict[str, list[GitExecutionResult]] = {}
        for key, value in (responses or {}).items():
            self._responses[key] = [value] if isinstance(value, GitExecutionResult) else list(value)
        self._branches = set(branches or [])
        self._invocations: list[tuple[str, ...]] = []
        self._executable_path = Path("/tmp/fake-git")
        self._timeout = 5.0

    async def branch_exists(self, cwd: Path, branch: str) -> bool:  # type: ignore[override]
        self._invocations.append(("rev-parse", branch))
        return branch in self._branches

    async def _invoke(self, cwd: Path, *args: str) -> GitExecutionResult:  # type: ignore[override]
        self._invocations.append(tuple(args))
        queue = self._responses.get(args[0]) if args else None
        if queue:
            # keep the last response sticky so repeated calls see the same answer
            return queue.pop(0) if len(queue) > 1 else queue[0]
        return GitExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations


__all__ = [
    "FakeGitRunner",
    "GitExecutionResult",
    "GitNotFoundError",
    "GitRunner",
    "GitRunnerError",
]
