"""Secret pattern definitions used by the sanitizer."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator


class SecretPattern(BaseModel):
    """A named regular expression whose matches are replaced before storage."""

    name: str = Field(..., description="Stable identifier for the pattern.")
    regex: str = Field(..., description="Python regular expression matched against string values.")
    replacement: str = Field(
        default="[REDACTED]",
        description="Text substituted for each match.",
    )
    enabled: bool = Field(default=True, description="Disabled patterns are skipped.")

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Secret pattern name must not be empty")
        return normalized

    @field_validator("regex")
    @classmethod
    def _validate_regex(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid regular expression: {exc}") from exc
        return value

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.regex)


class SecretPatternFile(BaseModel):
    """Top-level document of a YAML pattern file."""

    patterns: list[SecretPattern] = Field(default_factory=list)


DEFAULT_PATTERNS: tuple[SecretPattern, ...] = (
    SecretPattern(
        name="key_value_assignment",
        regex=r"(?i)\b(api[_-]?key|password|passwd|token|secret)\s*[=:]\s*['\"]?[^\s'\"&,;]+",
        replacement=r"\1=[REDACTED]",
    ),
    SecretPattern(
        name="oauth_token_assignment",
        regex=r"(?i)\b(access_token|refresh_token)\s*[=:]\s*['\"]?[^\s'\"&,;]+",
        replacement=r"\1=[REDACTED]",
    ),
    SecretPattern(name="jwt", regex=r"\beyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
    SecretPattern(name="aws_access_key_id", regex=r"\bAKIA[0-9A-Z]{16}\b"),
    SecretPattern(
        name="bearer_header",
        regex=r"(?i)\bBearer\s+[a-zA-Z0-9._~+/=-]+",
        replacement="Bearer [REDACTED]",
    ),
    SecretPattern(
        name="url_credentials",
        regex=r"(?i)\b([a-z][a-z0-9+.-]*://)[^\s:/@]+:[^\s@/]+@",
        replacement=r"\1[REDACTED]@",
    ),
)


__all__ = ["DEFAULT_PATTERNS", "SecretPattern", "SecretPatternFile"]
