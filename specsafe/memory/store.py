"""
Memory Store - Durable load/save of one project's memory

Layout under the project root:
- .specsafe/memory.json  the ProjectMemory, camelCase JSON
- .specsafe/memory.lock  ephemeral lock file (see lock.py)

Saves write a sibling temp file and rename it over memory.json, so a reader
sees either the previous file or the new one, never a partial write.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from ..config import MemoryConfig
from .errors import CorruptionError, NotLoadedError
from .lock import FileLock, LockBackend
from .schema import MAX_RATIONALE_LENGTH, ProjectMemory, validate_project_memory
from .validation import redact_sensitive_info, require_project_id, sanitize_path

logger = logging.getLogger(__name__)


class MemoryStore:
    """Reads and writes `.specsafe/memory.json` under the lock."""

    def __init__(
        self,
        project_root: Union[str, Path],
        config: Optional[MemoryConfig] = None,
        lock: Optional[LockBackend] = None,
    ):
        self.project_root = Path(project_root).resolve()
        self.config = config or MemoryConfig()
        state_dir = Path(self.config.state_dir)
        self.memory_file = sanitize_path(self.project_root, state_dir / self.config.memory_file)
        self.lock_file = sanitize_path(self.project_root, state_dir / self.config.lock_file)
        self.lock = lock or FileLock(
            self.lock_file,
            timeout=self.config.lock_timeout,
            stale_after=self.config.stale_after,
            poll_interval=self.config.poll_interval,
        )

    def exists(self) -> bool:
        return self.memory_file.exists()

    def load(self, project_id: str) -> ProjectMemory:
        """
        Load memory from disk, or a fresh default if no file exists yet.

        Raises:
            InvalidProjectIdError: project_id fails validation
            CorruptionError: empty or undecodable file, malformed JSON, invalid structure
            LockTimeoutError: lock not acquired in time
        """
        project_id = require_project_id(project_id)

        if not self.memory_file.exists():
            logger.debug("No memory file at %s, starting empty", self.memory_file)
            return ProjectMemory.empty(project_id)

        with self.lock:
            raw = self.memory_file.read_bytes()

        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptionError("Memory file is not valid UTF-8", self.memory_file) from e

        if not content.strip():
            raise CorruptionError("Memory file is empty", self.memory_file)

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptionError(f"Memory file contains malformed JSON: {e}", self.memory_file) from e

        try:
            memory = validate_project_memory(data)
        except PydanticValidationError as e:
            raise CorruptionError(
                f"Memory file has an invalid structure ({e.error_count()} errors)",
                self.memory_file,
            ) from e

        redacted = 0
        for decision in memory.decisions:
            # The marker is longer than short secrets; stay within the stored bound
            rationale = redact_sensitive_info(decision.rationale)[:MAX_RATIONALE_LENGTH].rstrip()
            alternatives = [redact_sensitive_info(a) for a in decision.alternatives]
            if rationale != decision.rationale or alternatives != decision.alternatives:
                redacted += 1
            decision.rationale = rationale
            decision.alternatives = alternatives
        if redacted:
            logger.warning("Redacted secret-like text in %d stored decision(s)", redacted)

        logger.debug(
            "Loaded memory for %s: %d specs, %d decisions, %d patterns",
            memory.project_id, len(memory.specs), len(memory.decisions), len(memory.patterns),
        )
        return memory

    def save(self, memory: Optional[ProjectMemory]) -> None:
        """
        Atomically replace the memory file with `memory`.

        Raises:
            NotLoadedError: memory is None (nothing was loaded)
            LockTimeoutError: lock not acquired in time
        """
        if memory is None:
            raise NotLoadedError()

        payload = json.dumps(memory.to_json_dict(), indent=2, ensure_ascii=False)

        with self.lock:
            self.memory_file.parent.mkdir(parents=True, exist_ok=True)
            # Temp file in the same directory so the rename stays on one volume
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.memory_file.name}.", suffix=".tmp", dir=self.memory_file.parent
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.memory_file)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()

        logger.info("Saved project memory to %s (%d bytes)", self.memory_file, len(payload))
