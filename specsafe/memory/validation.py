"""
Validation - Input sanitization and checks for project memory

Everything that reaches the memory file passes through here first:
- Control characters and null bytes are stripped from strings
- Spec and project IDs are checked against a fixed grammar
- Secret-shaped substrings are redacted (best effort, see REDACTION_RULES)
- On-disk paths are kept inside the project root
"""

import re
from pathlib import Path
from typing import Optional, Union

from .errors import (
    EmptyFieldError,
    FieldTooLongError,
    InvalidProjectIdError,
    InvalidSpecIdError,
    PathTraversalError,
)


MAX_ID_LENGTH = 100
REDACTION_MARKER = "[REDACTED]"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_SPEC_ID = re.compile(r"[A-Za-z0-9_\-]+")

# Heuristic only: these catch common secret shapes, not all secrets.
# Overlapping or false-positive matches are accepted; over-redaction is preferred.
REDACTION_RULES: list[tuple[str, re.Pattern, str]] = [
    (
        "api_key",
        re.compile(r"""(['"`]?api[_-]?key['"`]?\s*[:=]\s*['"`]?)([a-zA-Z0-9_\-]{10,})(['"`]?)""", re.IGNORECASE),
        rf"\g<1>{REDACTION_MARKER}\g<3>",
    ),
    (
        "sk_key",
        re.compile(r"\bsk-[a-zA-Z0-9_\-]{8,}"),
        REDACTION_MARKER,
    ),
    (
        "bearer_token",
        re.compile(r"(Bearer\s+)(eyJ[a-zA-Z0-9_\-]+(?:\.[a-zA-Z0-9_\-]+){0,2})", re.IGNORECASE),
        rf"\g<1>{REDACTION_MARKER}",
    ),
    (
        "jwt",
        re.compile(r"eyJ[a-zA-Z0-9_\-]+(?:\.[a-zA-Z0-9_\-]+){0,2}"),
        REDACTION_MARKER,
    ),
    (
        "password",
        re.compile(r"""(['"`]?password['"`]?\s*[:=]\s*['"`]?)([^'"\s]+)(['"`]?)""", re.IGNORECASE),
        rf"\g<1>{REDACTION_MARKER}\g<3>",
    ),
    (
        "secret_key",
        re.compile(r"""(['"`]?secret[_-]?key['"`]?\s*[:=]\s*['"`]?)([a-zA-Z0-9_\-]{10,})(['"`]?)""", re.IGNORECASE),
        rf"\g<1>{REDACTION_MARKER}\g<3>",
    ),
]


def sanitize_string(value: str) -> str:
    """Strip null bytes and control characters (tabs/newlines kept), then trim."""
    if not isinstance(value, str):
        raise TypeError("Input must be a string")
    return _CONTROL_CHARS.sub("", value).strip()


def is_valid_spec_id(value) -> bool:
    if not isinstance(value, str):
        return False
    cleaned = sanitize_string(value)
    return 0 < len(cleaned) <= MAX_ID_LENGTH and _SPEC_ID.fullmatch(cleaned) is not None


def is_valid_project_id(value) -> bool:
    if not isinstance(value, str):
        return False
    return 0 < len(sanitize_string(value)) <= MAX_ID_LENGTH


def require_spec_id(value) -> str:
    """Return the sanitized spec ID or raise InvalidSpecIdError."""
    if not is_valid_spec_id(value):
        raise InvalidSpecIdError(
            f"Invalid spec ID {value!r}: use letters, digits, '-' or '_' (1-{MAX_ID_LENGTH} chars)"
        )
    return sanitize_string(value)


def require_project_id(value) -> str:
    """Return the sanitized project ID or raise InvalidProjectIdError."""
    if not is_valid_project_id(value):
        raise InvalidProjectIdError(
            f"Invalid project ID {value!r}: must be 1-{MAX_ID_LENGTH} printable characters"
        )
    return sanitize_string(value)


def require_text(field: str, value, limit: Optional[int] = None) -> str:
    """Sanitize a required text field, rejecting empty or oversized input."""
    if not isinstance(value, str):
        raise EmptyFieldError(field)
    cleaned = sanitize_string(value)
    if not cleaned:
        raise EmptyFieldError(field)
    if limit is not None and len(cleaned) > limit:
        raise FieldTooLongError(field, limit)
    return cleaned


def redact_sensitive_info(text: str) -> str:
    """Replace secret-shaped substrings with REDACTION_MARKER. Idempotent."""
    for _name, pattern, replacement in REDACTION_RULES:
        text = pattern.sub(replacement, text)
    return text


def sanitize_path(base: Union[str, Path], relative: Union[str, Path]) -> Path:
    """
    Resolve `relative` against `base` and refuse anything outside `base`.

    Absolute paths and '..' segments that escape the base both raise
    PathTraversalError.
    """
    base_path = Path(base).resolve()
    candidate = (base_path / relative).resolve()
    if candidate != base_path and base_path not in candidate.parents:
        raise PathTraversalError(
            f"Invalid path: attempted directory traversal detected ({relative})"
        )
    return candidate
