"""Markdown recovery briefs rendered from a work-state snapshot."""

from __future__ import annotations

import logging

from .models import CheckpointType, TaskStatus, WorkState

logger = logging.getLogger(__name__)

MAX_FILES_LISTED = 10
MAX_COMMANDS_LISTED = 5
MAX_NEXT_STEPS = 5

GENERIC_BRIEF = "# Error generating resume instructions\n\nPlease check the checkpoint data manually."

TRIGGER_DESCRIPTIONS = {
    CheckpointType.CONTEXT_WINDOW: "Context window checkpoint (saved before the context filled up)",
    CheckpointType.EPIC_COMPLETION: "Epic completion checkpoint",
    CheckpointType.MANUAL: "Manual checkpoint",
}

_STATUS_STEPS = {
    TaskStatus.PLANNING: "Finish planning {epic}",
    TaskStatus.IMPLEMENTATION: "Continue implementing {epic}",
    TaskStatus.VALIDATION: "Run validation for {epic}",
    TaskStatus.COMPLETE: "Open or merge the pull request for {epic}",
    TaskStatus.FAILED: "Investigate the failure in {epic}",
}


def suggest_next_steps(work_state: WorkState) -> list[str]:
    """Derive up to five concrete next steps from a work state."""

    steps: list[str] = []
    task = work_state.current_task
    if task is not None:
        steps.append(_STATUS_STEPS[task.status].format(epic=task.epic_id))
        if task.test_results.failed:
            steps.append(f"Fix {task.test_results.failed} failing tests")
    vcs = work_state.vcs_status
    if vcs.dirty_files:
        steps.append(f"Review {vcs.dirty_files} uncommitted changes on {vcs.branch or 'the current branch'}")
    for pending in work_state.pending_tasks:
        steps.append(f"Pending: {pending}")
    if not steps:
        steps.append("Review recent activity and confirm the next task")
    return steps[:MAX_NEXT_STEPS]


def _trigger_steps(checkpoint_type: CheckpointType, work_state: WorkState) -> list[str]:
    task = work_state.current_task
    epic = task.epic_id if task else "the current epic"
    if checkpoint_type is CheckpointType.CONTEXT_WINDOW:
        return [
            f"Continue development: pick up {epic} where it stopped",
            "Commit progress: save uncommitted work before doing anything new",
            "Monitor context: checkpoint again before the context window fills",
        ]
    if checkpoint_type is CheckpointType.EPIC_COMPLETION:
        return [
            f"Epic complete: {epic}",
            "Merge PR: confirm checks pass and merge",
            "Review results: compare the outcome with the acceptance criteria",
            "Plan next epic: pick the next work item",
        ]
    return [
        f"Resume work: continue with {epic}",
        "Review changes: inspect the modified files below",
        "Next action: " + (suggest_next_steps(work_state)[0]),
    ]


def _render(work_state: WorkState, checkpoint_type: CheckpointType | None, heading: str | None) -> str:
    lines: list[str] = ["# Resume Instructions", ""]
    if checkpoint_type is not None:
        lines.append(f"**Checkpoint:** {TRIGGER_DESCRIPTIONS[checkpoint_type]}")
    if heading:
        lines.append(f"**Source:** {heading}")
    if work_state.snapshot_at is not None:
        lines.append(f"**Snapshot:** {work_state.snapshot_at.isoformat()}")
    env = work_state.environment
    if env.project or env.working_directory or env.hostname:
        lines.append(
            "**Environment:** "
            + ", ".join(
                part
                for part in (
                    f"project {env.project}" if env.project else "",
                    f"directory {env.working_directory}" if env.working_directory else "",
                    f"host {env.hostname}" if env.hostname else "",
                )
                if part
            )
        )

    task = work_state.current_task
    lines += ["", "## Current Work"]
    if task is None:
        lines.append("- No active epic recorded")
    else:
        title = f"{task.epic_id} ({task.feature_name})" if task.feature_name else task.epic_id
        results = task.test_results
        tests = f"{results.passed} passed, {results.failed} failed"
        if results.coverage is not None:
            tests += f", {results.coverage:.0f}% coverage"
        lines += [
            f"- Epic: {title}",
            f"- Status: {task.status.value}",
            f"- Time spent: {task.duration_hours:.1f}h",
            f"- Tests: {tests}",
        ]

    files = work_state.files_modified
    if files:
        lines += ["", f"## Files Modified ({len(files)})"]
        for change in files[:MAX_FILES_LISTED]:
            lines.append(f"- {change.path} ({change.status}, {change.lines_changed} lines)")
        if len(files) > MAX_FILES_LISTED:
            lines.append(f"... and {len(files) - MAX_FILES_LISTED} more files")

    vcs = work_state.vcs_status
    lines += [
        "",
        "## Git Status",
        f"- Branch: {vcs.branch or 'unknown'}",
        f"- Staged: {vcs.staged_files}, Unstaged: {vcs.unstaged_files}, Untracked: {vcs.untracked_files}",
        f"- Commits: {vcs.commit_count}",
    ]

    if work_state.last_commands:
        lines += ["", "## Recent Commands"]
        for command in work_state.last_commands[:MAX_COMMANDS_LISTED]:
            target = f" -> {command.target}" if command.target else ""
            lines.append(f"- [{command.command_type}] {command.action}{target}")

    if work_state.pending_tasks:
        lines += ["", "## Pending Tasks"]
        lines += [f"- {item}" for item in work_state.pending_tasks]

    if work_state.important_context:
        lines += ["", "## Important Context"]
        lines += [f"- {item}" for item in work_state.important_context]

    steps = (
        _trigger_steps(checkpoint_type, work_state)
        if checkpoint_type is not None
        else suggest_next_steps(work_state)
    )
    lines += ["", "## Next Steps"]
    lines += [f"{index}. {step}" for index, step in enumerate(steps, start=1)]
    return "\n".join(lines) + "\n"


def render_resume_instructions(
    work_state: WorkState,
    checkpoint_type: CheckpointType | str | None = None,
    *,
    heading: str | None = None,
) -> str:
    """Render a recovery brief, falling back to a generic one on any error."""

    try:
        kind = CheckpointType(checkpoint_type) if checkpoint_type is not None else None
        return _render(work_state, kind, heading)
    except Exception:
        logger.exception("Failed to render resume instructions")
        return GENERIC_BRIEF


__all__ = [
    "GENERIC_BRIEF",
    "MAX_FILES_LISTED",
    "MAX_NEXT_STEPS",
    "render_resume_instructions",
    "suggest_next_steps",
]
