"""
Configuration for SpecSafe Memory

Every path and timing knob of the store is explicit configuration passed into
the store and lock constructors. Defaults match the on-disk layout used by the
rest of SpecSafe.

Environment variables:
- SPECSAFE_LOCK_TIMEOUT: Seconds to wait for the memory lock (default: 30)
- SPECSAFE_LOCK_STALE_AFTER: Age in seconds after which a lock file is
  considered abandoned and reclaimed (default: 30)
- SPECSAFE_LOCK_POLL_INTERVAL: Seconds between lock attempts (default: 0.1)
- SPECSAFE_HISTORY_LIMIT: Maximum number of history entries kept (default: 1000)
- SPECSAFE_LOG_LEVEL: Level used by configure_logging() (default: WARNING)
"""

import logging
import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".specsafe"
DEFAULT_MEMORY_FILE = "memory.json"
DEFAULT_LOCK_FILE = "memory.lock"
DEFAULT_LOCK_TIMEOUT = 30.0
DEFAULT_STALE_AFTER = 30.0
DEFAULT_POLL_INTERVAL = 0.1
DEFAULT_HISTORY_LIMIT = 1000

_ENV_VARS = {
    "lock_timeout": ("SPECSAFE_LOCK_TIMEOUT", float),
    "stale_after": ("SPECSAFE_LOCK_STALE_AFTER", float),
    "poll_interval": ("SPECSAFE_LOCK_POLL_INTERVAL", float),
    "history_limit": ("SPECSAFE_HISTORY_LIMIT", int),
}


class MemoryConfig(BaseModel):
    """Where the memory store lives and how its lock behaves."""
    state_dir: str = DEFAULT_STATE_DIR
    memory_file: str = DEFAULT_MEMORY_FILE
    lock_file: str = DEFAULT_LOCK_FILE
    lock_timeout: float = Field(default=DEFAULT_LOCK_TIMEOUT, gt=0)
    stale_after: float = Field(default=DEFAULT_STALE_AFTER, gt=0)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    history_limit: int = Field(default=DEFAULT_HISTORY_LIMIT, ge=1)

    @field_validator("memory_file", "lock_file")
    @classmethod
    def _plain_file_name(cls, value: str) -> str:
        if not value or value in (".", "..") or "/" in value or "\\" in value:
            raise ValueError(f"'{value}' must be a plain file name")
        return value

    @field_validator("state_dir")
    @classmethod
    def _relative_state_dir(cls, value: str) -> str:
        if not value or os.path.isabs(value) or ".." in value.replace("\\", "/").split("/"):
            raise ValueError(f"'{value}' must be a relative directory inside the project")
        return value

    @classmethod
    def from_env(cls, **overrides) -> "MemoryConfig":
        """
        Build a config from environment variables.

        Priority: explicit overrides > environment variables > defaults.
        Unparseable environment values are ignored.
        """
        values = {}
        for field_name, (env_name, cast) in _ENV_VARS.items():
            raw = os.environ.get(env_name)
            if not raw:
                continue
            try:
                values[field_name] = cast(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_name, raw)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for collaborators that have no setup of their own.

    The library itself never installs handlers; it only logs through
    module-level loggers.
    """
    level = level or os.environ.get("SPECSAFE_LOG_LEVEL", "WARNING")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
