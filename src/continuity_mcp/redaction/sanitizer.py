"""Redaction of credentials from command parameters and results."""

from __future__ import annotations

import re
from typing import Any, Iterable

from .models import DEFAULT_PATTERNS, SecretPattern

REDACTED = "[REDACTED]"

SENSITIVE_KEY_FRAGMENTS = (
    "password",
    "passwd",
    "pwd",
    "secret",
    "token",
    "api_key",
    "apikey",
    "access_key",
    "authorization",
    "bearer",
    "credential",
    "private",
    "oauth",
    "jwt",
    "session_id",
    "cookie",
)


class Sanitizer:
    """Recursively redacts sensitive keys and secret-looking substrings."""

    def __init__(
        self,
        extra_patterns: Iterable[SecretPattern] | None = None,
        *,
        include_defaults: bool = True,
        max_depth: int = 10,
    ) -> None:
        patterns = list(DEFAULT_PATTERNS) if include_defaults else []
        patterns.extend(extra_patterns or [])
        self._compiled: list[tuple[re.Pattern[str], str]] = [
            (pattern.compile(), pattern.replacement) for pattern in patterns if pattern.enabled
        ]
        self._max_depth = max_depth

    @staticmethod
    def is_sensitive_key(key: str) -> bool:
        lowered = key.lower()
        return any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS)

    def sanitize_text(self, value: str) -> str:
        for compiled, replacement in self._compiled:
            value = compiled.sub(replacement, value)
        return value

    def sanitize(self, value: Any, _depth: int = 0) -> Any:
        if _depth > self._max_depth:
            return "[TRUNCATED]"
        if isinstance(value, str):
            return self.sanitize_text(value)
        if isinstance(value, dict):
            cleaned: dict[str, Any] = {}
            for key, item in value.items():
                if isinstance(key, str) and self.is_sensitive_key(key):
                    cleaned[key] = REDACTED
                else:
                    cleaned[key] = self.sanitize(item, _depth + 1)
            return cleaned
        if isinstance(value, (list, tuple)):
            return [self.sanitize(item, _depth + 1) for item in value]
        return value


__all__ = ["REDACTED", "SENSITIVE_KEY_FRAGMENTS", "Sanitizer"]
