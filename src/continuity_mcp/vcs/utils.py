"""Utility helpers for the git runner."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
    "GIT_DIR",
    "GIT_WORK_TREE",
    "GIT_INDEX_FILE",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution.

    Git is forced into non-interactive mode so a git call can never hang on a
    credential or pager prompt.
    """

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env["GIT_TERMINAL_PROMPT"] = "0"
    env["GIT_PAGER"] = "cat"
    if additional:
        env.update(additional)
    return env


def parse_porcelain_status(output: str) -> dict[str, object]:
    """Summarize ``git status --porcelain=v1 -b`` output."""

    branch: str | None = None
    staged = unstaged = untracked = 0
    for line in output.splitlines():
        if line.startswith("## "):
            header = line[3:]
            if header.startswith("No commits yet on "):
                branch = header[len("No commits yet on ") :].strip()
            elif header.startswith("HEAD (no branch)"):
                branch = "HEAD"
            else:
                branch = header.split("...", 1)[0].split(" ", 1)[0].strip()
            continue
        if len(line) < 2:
            continue
        index_flag, worktree_flag = line[0], line[1]
        if index_flag == "?" and worktree_flag == "?":
            untracked += 1
            continue
        if index_flag not in {" ", "?"}:
            staged += 1
        if worktree_flag not in {" ", "?"}:
            unstaged += 1
    return {
        "branch": branch,
        "staged_files": staged,
        "unstaged_files": unstaged,
        "untracked_files": untracked,
    }


def parse_numstat(output: str) -> list[tuple[str, int]]:
    """Return ``(path, lines_changed)`` pairs from ``git diff --numstat``."""

    entries: list[tuple[str, int]] = []
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added, removed, path = parts[0], parts[1], parts[2]
        # binary files report "-" for both counts
        delta = (int(added) if added.isdigit() else 0) + (int(removed) if removed.isdigit() else 0)
        entries.append((path, delta))
    return entries


def parse_name_status(output: str) -> dict[str, str]:
    """Map paths to modified/added/deleted from ``git diff --name-status``."""

    kinds = {"A": "added", "D": "deleted"}
    statuses: dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 2 or not parts[0]:
            continue
        code = parts[0][0]
        path = parts[-1]
        statuses[path] = kinds.get(code, "modified")
    return statuses
