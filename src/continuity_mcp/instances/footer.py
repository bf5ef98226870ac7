"""Status footer appended to every outward-facing session response."""

from __future__ import annotations

import re
from datetime import datetime, timezone

from ..storage import InstanceRecord

FOOTER_PATTERN = re.compile(
    r"Instance: (?P<instance_id>[a-z0-9-]+-(?:PS|MS)-[a-z0-9]{6}) \| "
    r"Epic: (?P<task>\S+) \| "
    r"Context: (?P<context>\d{1,3})% \| "
    r"Active: (?P<hours>\d+\.\d)h"
)
NO_TASK = "none"


def render_footer(
    instance: InstanceRecord,
    *,
    now: datetime | None = None,
    hint_threshold: int = 30,
) -> str:
    now = now or datetime.now(timezone.utc)
    hours = max((now - instance.created_at).total_seconds(), 0.0) / 3600
    line = (
        f"Instance: {instance.instance_id} | "
        f"Epic: {instance.current_task or NO_TASK} | "
        f"Context: {instance.context_percent}% | "
        f"Active: {hours:.1f}h"
    )
    if instance.context_percent > hint_threshold:
        line += f'\n[Use "resume {instance.instance_id}" to restore this session]'
    return "---\n" + line


def parse_instance_id_from_footer(text: str) -> str | None:
    match = FOOTER_PATTERN.search(text)
    return match.group("instance_id") if match else None


def is_valid_footer(text: str) -> bool:
    match = FOOTER_PATTERN.search(text)
    return match is not None and int(match.group("context")) <= 100


__all__ = [
    "FOOTER_PATTERN",
    "is_valid_footer",
    "parse_instance_id_from_footer",
    "render_footer",
]
