"""Work-state snapshot models and checkpoint records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

MAX_FILES_TRACKED = 50
MAX_COMMANDS_TRACKED = 20


class CheckpointType(str, Enum):
    CONTEXT_WINDOW = "context_window"
    EPIC_COMPLETION = "epic_completion"
    MANUAL = "manual"


class TaskStatus(str, Enum):
    PLANNING = "planning"
    IMPLEMENTATION = "implementation"
    VALIDATION = "validation"
    COMPLETE = "complete"
    FAILED = "failed"


class TaskTestResults(BaseModel):
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    coverage: float | None = Field(default=None, ge=0, le=100)


class CurrentTask(BaseModel):
    """The external work unit a session was on when the snapshot was taken."""

    epic_id: str
    feature_name: str | None = None
    status: TaskStatus = TaskStatus.IMPLEMENTATION
    duration_hours: float = Field(default=0.0, ge=0)
    test_results: TaskTestResults = Field(default_factory=TaskTestResults)


class FileChange(BaseModel):
    path: str
    status: Literal["modified", "added", "deleted"] = "modified"
    lines_changed: int = Field(default=0, ge=0)
    last_modified: datetime | None = None


class VcsStatus(BaseModel):
    branch: str | None = None
    staged_files: int = Field(default=0, ge=0)
    unstaged_files: int = Field(default=0, ge=0)
    untracked_files: int = Field(default=0, ge=0)
    commit_count: int = Field(default=0, ge=0)

    @property
    def dirty_files(self) -> int:
        return self.staged_files + self.unstaged_files + self.untracked_files


class CommandSummary(BaseModel):
    command_id: int | str | None = None
    command_type: str = "tool_call"
    action: str
    target: str | None = None
    timestamp: datetime | None = None


class Environment(BaseModel):
    project: str | None = None
    working_directory: str | None = None
    hostname: str | None = None


class WorkState(BaseModel):
    """Everything needed to pick a session back up."""

    model_config = ConfigDict(populate_by_name=True)

    current_task: CurrentTask | None = None
    files_modified: list[FileChange] = Field(default_factory=list)
    vcs_status: VcsStatus = Field(
        default_factory=VcsStatus,
        validation_alias=AliasChoices("vcs_status", "git_status"),
    )
    last_commands: list[CommandSummary] = Field(default_factory=list)
    external_document_status: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("external_document_status", "prd_status"),
    )
    environment: Environment = Field(default_factory=Environment)
    pending_tasks: list[str] = Field(default_factory=list)
    important_context: list[str] = Field(default_factory=list)
    snapshot_at: datetime | None = None

    @field_validator("files_modified")
    @classmethod
    def _cap_files(cls, value: list[FileChange]) -> list[FileChange]:
        return value[:MAX_FILES_TRACKED]

    @field_validator("last_commands")
    @classmethod
    def _cap_commands(cls, value: list[CommandSummary]) -> list[CommandSummary]:
        return value[:MAX_COMMANDS_TRACKED]


@dataclass(slots=True)
class CheckpointRecord:
    checkpoint_id: str
    instance_id: str
    checkpoint_type: CheckpointType
    sequence_num: int
    context_percent: int | None
    work_state: WorkState
    metadata: dict[str, Any]
    size_bytes: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "instance_id": self.instance_id,
            "checkpoint_type": self.checkpoint_type.value,
            "sequence_num": self.sequence_num,
            "context_percent": self.context_percent,
            "work_state": self.work_state.model_dump(mode="json"),
            "metadata": dict(self.metadata),
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class CheckpointDetail:
    checkpoint: CheckpointRecord
    recovery_instructions: str

    def to_dict(self) -> dict[str, Any]:
        payload = self.checkpoint.to_dict()
        payload["recovery_instructions"] = self.recovery_instructions
        return payload


@dataclass(slots=True)
class CheckpointSummary:
    checkpoint_id: str
    checkpoint_type: CheckpointType
    sequence_num: int
    context_percent: int | None
    epic_id: str | None
    size_bytes: int
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoint_id": self.checkpoint_id,
            "checkpoint_type": self.checkpoint_type.value,
            "sequence_num": self.sequence_num,
            "context_percent": self.context_percent,
            "epic_id": self.epic_id,
            "size_bytes": self.size_bytes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class CheckpointPage:
    checkpoints: list[CheckpointSummary]
    total_count: int
    has_more: bool
    limit: int
    offset: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkpoints": [item.to_dict() for item in self.checkpoints],
            "total_count": self.total_count,
            "has_more": self.has_more,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass(slots=True)
class CleanupResult:
    deleted_count: int
    freed_bytes: int
    retention_days: int
    cutoff: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "freed_bytes": self.freed_bytes,
            "retention_days": self.retention_days,
            "cutoff": self.cutoff.isoformat(),
        }


__all__ = [
    "CheckpointDetail",
    "CheckpointPage",
    "CheckpointRecord",
    "CheckpointSummary",
    "CheckpointType",
    "CleanupResult",
    "CommandSummary",
    "CurrentTask",
    "Environment",
    "FileChange",
    "MAX_COMMANDS_TRACKED",
    "MAX_FILES_TRACKED",
    "TaskStatus",
    "TaskTestResults",
    "VcsStatus",
    "WorkState",
]
