"""Instance identity, registration and liveness."""

from .footer import is_valid_footer, parse_instance_id_from_footer, render_footer
from .heartbeat import HeartbeatManager, HeartbeatResult, format_staleness_message
from .ids import generate_instance_id, is_valid_instance_id, parse_instance_id
from .registry import STALE_TIMEOUT_SECONDS, InstanceRegistry, compute_status

__all__ = [
    "HeartbeatManager",
    "HeartbeatResult",
    "InstanceRegistry",
    "STALE_TIMEOUT_SECONDS",
    "compute_status",
    "format_staleness_message",
    "generate_instance_id",
    "is_valid_footer",
    "is_valid_instance_id",
    "parse_instance_id",
    "parse_instance_id_from_footer",
    "render_footer",
]
