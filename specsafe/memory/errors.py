"""Errors raised by the project memory subsystem."""

from pathlib import Path
from typing import Optional, Union


class ProjectMemoryError(Exception):
    """Base class for every project memory failure."""


class ValidationError(ProjectMemoryError):
    """
    Bad input was rejected before it reached the store.

    The in-memory aggregate is left unchanged, so callers can retry with
    corrected input.
    """


class InvalidProjectIdError(ValidationError):
    pass


class InvalidSpecIdError(ValidationError):
    pass


class EmptyFieldError(ValidationError):
    def __init__(self, field: str):
        super().__init__(f"'{field}' must be a non-empty string")
        self.field = field


class FieldTooLongError(ValidationError):
    def __init__(self, field: str, limit: int):
        super().__init__(f"'{field}' exceeds {limit} characters")
        self.field = field
        self.limit = limit


class InvalidConstraintTypeError(ValidationError):
    pass


class PathTraversalError(ValidationError):
    pass


class CorruptionError(ProjectMemoryError):
    """The memory file exists but cannot be trusted. Never retried or repaired."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        if path is not None:
            message = (
                f"{message} ({path}). Inspect the file, or remove it to start "
                "with empty project memory."
            )
        super().__init__(message)
        self.path = path


class LockTimeoutError(ProjectMemoryError):
    """The memory lock could not be acquired in time."""

    def __init__(self, path: Union[str, Path], timeout: float, holder: Optional[dict] = None):
        message = (
            f"Could not acquire memory lock {path} within {timeout:g}s"
            f" (held by {holder or 'unknown'}). If no other SpecSafe command is "
            "running, remove the lock file."
        )
        super().__init__(message)
        self.path = path
        self.timeout = timeout
        self.holder = holder


class NotLoadedError(ProjectMemoryError):
    def __init__(self, message: str = "No memory loaded. Call load() first."):
        super().__init__(message)
