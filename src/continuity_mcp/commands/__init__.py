"""Sanitized command logging."""

from .log import CommandLogSink

__all__ = ["CommandLogSink"]
