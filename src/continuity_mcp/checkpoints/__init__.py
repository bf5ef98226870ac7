"""Checkpoint snapshots and the work-state serializer."""

from .instructions import GENERIC_BRIEF, render_resume_instructions, suggest_next_steps
from .manager import CheckpointManager
from .models import (
    CheckpointDetail,
    CheckpointPage,
    CheckpointRecord,
    CheckpointSummary,
    CheckpointType,
    CleanupResult,
    CommandSummary,
    CurrentTask,
    Environment,
    FileChange,
    TaskStatus,
    TaskTestResults,
    VcsStatus,
    WorkState,
)
from .serializer import WorkStateSerializer

__all__ = [
    "CheckpointDetail",
    "CheckpointManager",
    "CheckpointPage",
    "CheckpointRecord",
    "CheckpointSummary",
    "CheckpointType",
    "CleanupResult",
    "CommandSummary",
    "CurrentTask",
    "Environment",
    "FileChange",
    "GENERIC_BRIEF",
    "TaskStatus",
    "TaskTestResults",
    "VcsStatus",
    "WorkState",
    "WorkStateSerializer",
    "render_resume_instructions",
    "suggest_next_steps",
]
