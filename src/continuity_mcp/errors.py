"""Exception hierarchy shared by the continuity components."""

from __future__ import annotations


class ContinuityError(RuntimeError):
    """Base class for continuity errors."""

    kind = "error"


class NotFoundError(ContinuityError):
    """Raised when a referenced instance, event or checkpoint does not exist."""

    kind = "not_found"


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance not found: {instance_id}")
        self.instance_id = instance_id


class EventNotFoundError(NotFoundError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event not found: {event_id}")
        self.event_id = event_id


class CheckpointNotFoundError(NotFoundError):
    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(f"Checkpoint not found: {checkpoint_id}")
        self.checkpoint_id = checkpoint_id


class DuplicateInstanceError(ContinuityError):
    """Raised when a generated instance id collides with an existing row."""

    kind = "duplicate"

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Instance id already registered: {instance_id}")
        self.instance_id = instance_id


class InvalidInputError(ContinuityError, ValueError):
    """Raised for malformed caller input."""

    kind = "invalid_input"


class InvalidEventError(InvalidInputError):
    """Raised when an event type or payload is rejected."""


class ActiveInstanceError(ContinuityError):
    """Raised when resuming an instance that is still heartbeating."""

    kind = "active_instance"

    def __init__(self, instance_id: str, age_seconds: float) -> None:
        super().__init__(
            f"Cannot resume active instance {instance_id} "
            f"(last heartbeat {age_seconds:.0f}s ago)"
        )
        self.instance_id = instance_id
        self.age_seconds = age_seconds


class StorageError(ContinuityError):
    """Wraps an underlying database failure with the operation that triggered it."""

    kind = "storage_failure"

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"{operation} failed: {cause}")
        self.operation = operation
        self.cause = cause


def error_payload(exc: ContinuityError) -> dict[str, object]:
    """Render an exception as a structured tool response."""

    payload: dict[str, object] = {"error": exc.kind, "message": str(exc)}
    if isinstance(exc, ActiveInstanceError):
        payload["instance_id"] = exc.instance_id
        payload["age_seconds"] = round(exc.age_seconds, 1)
    return payload


__all__ = [
    "ActiveInstanceError",
    "CheckpointNotFoundError",
    "ContinuityError",
    "DuplicateInstanceError",
    "EventNotFoundError",
    "InstanceNotFoundError",
    "InvalidEventError",
    "InvalidInputError",
    "NotFoundError",
    "StorageError",
    "error_payload",
]
