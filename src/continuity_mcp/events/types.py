"""Event kinds and their typed payloads.

Every ``EventType`` maps to one payload model; together they form a tagged
union keyed by the event type. Stored events whose type is no longer known
parse into ``UnrecognizedPayload`` so old rows stay readable.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import InvalidEventError


class EventCategory(str, Enum):
    LIFECYCLE = "lifecycle"
    TASK = "task"
    TEST = "test"
    VCS = "vcs"
    SYSTEM = "system"


class EventType(str, Enum):
    INSTANCE_REGISTERED = "instance_registered"
    INSTANCE_HEARTBEAT = "instance_heartbeat"
    INSTANCE_STALE = "instance_stale"
    INSTANCE_CLOSED = "instance_closed"
    EPIC_PLANNED = "epic_planned"
    EPIC_STARTED = "epic_started"
    EPIC_COMPLETED = "epic_completed"
    EPIC_FAILED = "epic_failed"
    FEATURE_REQUESTED = "feature_requested"
    TASK_SPAWNED = "task_spawned"
    TEST_STARTED = "test_started"
    TEST_PASSED = "test_passed"
    TEST_FAILED = "test_failed"
    VALIDATION_PASSED = "validation_passed"
    VALIDATION_FAILED = "validation_failed"
    COMMIT_CREATED = "commit_created"
    PR_CREATED = "pr_created"
    PR_MERGED = "pr_merged"
    DEPLOYMENT_STARTED = "deployment_started"
    DEPLOYMENT_COMPLETED = "deployment_completed"
    DEPLOYMENT_FAILED = "deployment_failed"
    CONTEXT_WINDOW_UPDATED = "context_window_updated"
    CHECKPOINT_CREATED = "checkpoint_created"
    CHECKPOINT_LOADED = "checkpoint_loaded"
    USER_MESSAGE = "user_message"
    ASSISTANT_START = "assistant_start"
    SPAWN_DECISION = "spawn_decision"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    ERROR = "error"


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="allow")


class InstanceLifecyclePayload(EventPayload):
    project: str | None = None
    role: str | None = None
    host_location: str | None = None
    context_percent: int | None = Field(default=None, ge=0, le=100)
    reason: str | None = None


class EpicPlannedPayload(EventPayload):
    epic_id: str
    feature_name: str | None = None
    estimated_hours: float | None = None


class EpicStartedPayload(EventPayload):
    epic_id: str
    feature_name: str | None = None
    estimated_hours: float | None = None
    spawned_by: str | None = None
    acceptance_criteria_count: int | None = None


class EpicCompletedPayload(EventPayload):
    epic_id: str
    duration_hours: float | None = None
    tests_passed: int | None = None
    pr_url: str | None = None


class EpicFailedPayload(EventPayload):
    epic_id: str
    error: str | None = None
    failed_at_stage: str | None = None


class FeatureRequestedPayload(EventPayload):
    feature_name: str
    description: str | None = None
    requested_by: str | None = None


class TaskSpawnedPayload(EventPayload):
    epic_id: str | None = None
    task_id: str | None = None
    worker: str | None = None


class SuiteStartedPayload(EventPayload):
    test_suite: str | None = None
    epic_id: str | None = None


class SuiteResultPayload(EventPayload):
    test_suite: str | None = None
    epic_id: str | None = None
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    coverage: float | None = None


class ValidationPayload(EventPayload):
    epic_id: str | None = None
    checks: list[str] = Field(default_factory=list)
    details: str | None = None


class CommitCreatedPayload(EventPayload):
    commit_hash: str | None = None
    branch: str | None = None
    message: str | None = None
    files_changed: int | None = None
    epic_id: str | None = None


class PullRequestPayload(EventPayload):
    pr_number: int | None = None
    pr_url: str | None = None
    branch: str | None = None
    title: str | None = None
    epic_id: str | None = None


class DeploymentPayload(EventPayload):
    environment: str | None = None
    version: str | None = None
    error: str | None = None


class ContextWindowPayload(EventPayload):
    context_percent: int = Field(ge=0, le=100)
    tokens_used: int | None = None


class CheckpointCreatedPayload(EventPayload):
    checkpoint_id: str
    checkpoint_type: str | None = None
    context_percent: int | None = None


class CheckpointLoadedPayload(EventPayload):
    checkpoint_id: str
    loaded_by: str | None = None


class MessagePayload(EventPayload):
    content: str | None = None


class SpawnDecisionPayload(EventPayload):
    decision: str | None = None
    reason: str | None = None
    epic_id: str | None = None


class ToolUsePayload(EventPayload):
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ToolResultPayload(EventPayload):
    tool_name: str | None = None
    success: bool = True
    result: Any = None


class ErrorPayload(EventPayload):
    message: str
    code: str | None = None
    epic_id: str | None = None


class UnrecognizedPayload(EventPayload):
    """Payload of an event type this version does not know."""


PAYLOAD_MODELS: dict[EventType, type[EventPayload]] = {
    EventType.INSTANCE_REGISTERED: InstanceLifecyclePayload,
    EventType.INSTANCE_HEARTBEAT: InstanceLifecyclePayload,
    EventType.INSTANCE_STALE: InstanceLifecyclePayload,
    EventType.INSTANCE_CLOSED: InstanceLifecyclePayload,
    EventType.EPIC_PLANNED: EpicPlannedPayload,
    EventType.EPIC_STARTED: EpicStartedPayload,
    EventType.EPIC_COMPLETED: EpicCompletedPayload,
    EventType.EPIC_FAILED: EpicFailedPayload,
    EventType.FEATURE_REQUESTED: FeatureRequestedPayload,
    EventType.TASK_SPAWNED: TaskSpawnedPayload,
    EventType.TEST_STARTED: SuiteStartedPayload,
    EventType.TEST_PASSED: SuiteResultPayload,
    EventType.TEST_FAILED: SuiteResultPayload,
    EventType.VALIDATION_PASSED: ValidationPayload,
    EventType.VALIDATION_FAILED: ValidationPayload,
    EventType.COMMIT_CREATED: CommitCreatedPayload,
    EventType.PR_CREATED: PullRequestPayload,
    EventType.PR_MERGED: PullRequestPayload,
    EventType.DEPLOYMENT_STARTED: DeploymentPayload,
    EventType.DEPLOYMENT_COMPLETED: DeploymentPayload,
    EventType.DEPLOYMENT_FAILED: DeploymentPayload,
    EventType.CONTEXT_WINDOW_UPDATED: ContextWindowPayload,
    EventType.CHECKPOINT_CREATED: CheckpointCreatedPayload,
    EventType.CHECKPOINT_LOADED: CheckpointLoadedPayload,
    EventType.USER_MESSAGE: MessagePayload,
    EventType.ASSISTANT_START: MessagePayload,
    EventType.SPAWN_DECISION: SpawnDecisionPayload,
    EventType.TOOL_USE: ToolUsePayload,
    EventType.TOOL_RESULT: ToolResultPayload,
    EventType.ERROR: ErrorPayload,
}

_CATEGORY_PREFIXES: tuple[tuple[str, EventCategory], ...] = (
    ("instance_", EventCategory.LIFECYCLE),
    ("epic_", EventCategory.TASK),
    ("feature_", EventCategory.TASK),
    ("task_", EventCategory.TASK),
    ("test_", EventCategory.TEST),
    ("validation_", EventCategory.TEST),
    ("commit_", EventCategory.VCS),
    ("pr_", EventCategory.VCS),
)


def event_category(event_type: EventType | str) -> EventCategory:
    value = event_type.value if isinstance(event_type, EventType) else str(event_type)
    for prefix, category in _CATEGORY_PREFIXES:
        if value.startswith(prefix):
            return category
    return EventCategory.SYSTEM


def coerce_event_type(value: EventType | str) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        valid = ", ".join(member.value for member in EventType)
        raise InvalidEventError(f"Invalid event type: {value!r}. Valid types: {valid}") from exc


def parse_payload(event_type: EventType | str, data: dict[str, Any]) -> EventPayload:
    """Return the typed payload for a stored or incoming event.

    Raises ``InvalidEventError`` when a known type's payload does not fit
    its model.
    """

    try:
        kind = EventType(event_type)
    except ValueError:
        return UnrecognizedPayload.model_validate(data)
    model = PAYLOAD_MODELS[kind]
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidEventError(f"Invalid payload for {kind.value}: {exc}") from exc


__all__ = [
    "CheckpointCreatedPayload",
    "CheckpointLoadedPayload",
    "CommitCreatedPayload",
    "ContextWindowPayload",
    "DeploymentPayload",
    "EpicCompletedPayload",
    "EpicFailedPayload",
    "EpicPlannedPayload",
    "EpicStartedPayload",
    "ErrorPayload",
    "EventCategory",
    "EventPayload",
    "EventType",
    "FeatureRequestedPayload",
    "InstanceLifecyclePayload",
    "MessagePayload",
    "PAYLOAD_MODELS",
    "PullRequestPayload",
    "SpawnDecisionPayload",
    "TaskSpawnedPayload",
    "SuiteResultPayload",
    "SuiteStartedPayload",
    "ToolResultPayload",
    "ToolUsePayload",
    "UnrecognizedPayload",
    "ValidationPayload",
    "coerce_event_type",
    "event_category",
    "parse_payload",
]
