"""Secret redaction applied before command-log storage."""

from .loader import PatternLoadError, SecretPatternLoader
from .models import DEFAULT_PATTERNS, SecretPattern
from .sanitizer import REDACTED, Sanitizer

__all__ = [
    "DEFAULT_PATTERNS",
    "PatternLoadError",
    "REDACTED",
    "Sanitizer",
    "SecretPattern",
    "SecretPatternLoader",
]
