"""Version-control queries used when capturing work state."""

from .runner import FakeGitRunner, GitExecutionResult, GitNotFoundError, GitRunner, GitRunnerError

__all__ = [
    "FakeGitRunner",
    "GitExecutionResult",
    "GitNotFoundError",
    "GitRunner",
    "GitRunnerError",
]
