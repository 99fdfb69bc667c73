"""Error hierarchy for the prompt tuner.

Fatal errors abort a workflow run and surface as a single failed result.
`ConditionEvaluationError` and `CacheError` are recovered where they occur.
"""

from __future__ import annotations


class TunerError(Exception):
    """Base class for all prompt tuner errors."""


class ConfigurationError(TunerError):
    """The workflow definition is malformed or references unknown actions."""


class HandlerNotFoundError(TunerError):
    """A step references a handler that is not registered."""

    def __init__(self, handler: str) -> None:
        super().__init__(f"Handler not found: {handler}")
        self.handler = handler


class HandlerError(TunerError):
    """A registered handler raised an unexpected exception."""

    def __init__(self, handler: str, cause: Exception) -> None:
        super().__init__(f"Handler {handler} failed: {type(cause).__name__}: {cause}")
        self.handler = handler


class RemoteCallError(TunerError):
    """An `api` action or the image generator reported a failure."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConditionEvaluationError(TunerError):
    """A guard expression could not be parsed or evaluated."""


class CacheError(TunerError):
    """The backing key-value store failed or returned a malformed record."""


class DeadlineExceededError(TunerError):
    """The run deadline passed or the run was cancelled."""
