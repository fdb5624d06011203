"""SpecSafe project memory - persistent store, validation and steering."""

from .errors import (
    CorruptionError,
    EmptyFieldError,
    FieldTooLongError,
    InvalidConstraintTypeError,
    InvalidProjectIdError,
    InvalidSpecIdError,
    LockTimeoutError,
    NotLoadedError,
    PathTraversalError,
    ProjectMemoryError,
    ValidationError,
)
from .validation import (
    REDACTION_MARKER,
    is_valid_project_id,
    is_valid_spec_id,
    redact_sensitive_info,
    sanitize_path,
    sanitize_string,
)
from .schema import (
    Constraint,
    Decision,
    HistoryEntry,
    Pattern,
    PatternExample,
    ProjectMemory,
    Recommendation,
    SpecContext,
    SteeringOutput,
    SteeringWarning,
    is_valid_constraint,
    is_valid_decision,
    is_valid_history_entry,
    is_valid_pattern,
    is_valid_project_memory,
    validate_project_memory,
)
from .lock import FileLock, LockBackend
from .store import MemoryStore
from .manager import ProjectMemoryManager
from .steering import DEFAULT_RULES, SteeringEngine, SteeringRules

__all__ = [
    "Constraint",
    "CorruptionError",
    "DEFAULT_RULES",
    "Decision",
    "EmptyFieldError",
    "FieldTooLongError",
    "FileLock",
    "HistoryEntry",
    "InvalidConstraintTypeError",
    "InvalidProjectIdError",
    "InvalidSpecIdError",
    "LockBackend",
    "LockTimeoutError",
    "MemoryStore",
    "NotLoadedError",
    "PathTraversalError",
    "Pattern",
    "PatternExample",
    "ProjectMemory",
    "ProjectMemoryError",
    "ProjectMemoryManager",
    "REDACTION_MARKER",
    "Recommendation",
    "SpecContext",
    "SteeringEngine",
    "SteeringOutput",
    "SteeringRules",
    "SteeringWarning",
    "ValidationError",
    "is_valid_constraint",
    "is_valid_decision",
    "is_valid_history_entry",
    "is_valid_pattern",
    "is_valid_project_id",
    "is_valid_project_memory",
    "is_valid_spec_id",
    "redact_sensitive_info",
    "sanitize_path",
    "sanitize_string",
    "validate_project_memory",
]
