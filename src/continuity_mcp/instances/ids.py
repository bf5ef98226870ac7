"""Generation and parsing of instance identifiers.

Identifiers look like ``{project}-{role}-{hash6}``, e.g. ``odin-PS-3f9a1c``.
The hash is the first six hex characters of a SHA-256 digest over the
timestamp, sixteen random bytes, the project and the role.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ..errors import ContinuityError, InvalidInputError
from ..storage.models import InstanceRole

INSTANCE_ID_PATTERN = re.compile(r"^[a-z0-9-]+-(PS|MS)-[a-z0-9]{6}$")
PROJECT_PATTERN = re.compile(r"^[a-z0-9-]+$")
MAX_PROJECT_LENGTH = 64
HASH_LENGTH = 6


class IdentifierFormatError(ContinuityError):
    """Raised when a generated identifier fails its own format check."""

    kind = "internal"


@dataclass(slots=True, frozen=True)
class ParsedInstanceId:
    project: str
    role: InstanceRole
    hash: str


def validate_project(project: str) -> str:
    if not project or len(project) > MAX_PROJECT_LENGTH:
        raise InvalidInputError(
            f"Project name must be 1-{MAX_PROJECT_LENGTH} characters, got {len(project or '')}"
        )
    if not PROJECT_PATTERN.match(project):
        raise InvalidInputError(
            f"Project name '{project}' must contain only lowercase letters, digits and hyphens"
        )
    return project


def coerce_role(role: InstanceRole | str) -> InstanceRole:
    try:
        return InstanceRole(role)
    except ValueError as exc:
        raise InvalidInputError(f"Unknown instance role: {role!r} (expected PS or MS)") from exc


def generate_instance_id(
    project: str,
    role: InstanceRole | str,
    *,
    clock: Callable[[], datetime] | None = None,
    random_bytes: Callable[[int], bytes] = os.urandom,
) -> str:
    validate_project(project)
    role_value = coerce_role(role).value
    now = (clock or (lambda: datetime.now(timezone.utc)))()
    material = f"{now.timestamp()}{random_bytes(16).hex()}{project}{role_value}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:HASH_LENGTH]
    instance_id = f"{project}-{role_value}-{digest}"
    if not is_valid_instance_id(instance_id):
        raise IdentifierFormatError(f"Generated malformed instance id: {instance_id}")
    return instance_id


def is_valid_instance_id(value: str) -> bool:
    return bool(value) and INSTANCE_ID_PATTERN.match(value) is not None


def parse_instance_id(value: str) -> ParsedInstanceId | None:
    """Split an identifier into its parts, or return ``None`` when malformed.

    Splitting happens from the right so hyphenated project names survive.
    """

    if not is_valid_instance_id(value):
        return None
    project, role, digest = value.rsplit("-", 2)
    return ParsedInstanceId(project=project, role=InstanceRole(role), hash=digest)


__all__ = [
    "HASH_LENGTH",
    "INSTANCE_ID_PATTERN",
    "IdentifierFormatError",
    "ParsedInstanceId",
    "coerce_role",
    "generate_instance_id",
    "is_valid_instance_id",
    "parse_instance_id",
    "validate_project",
]
