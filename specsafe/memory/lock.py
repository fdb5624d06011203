"""
Memory Lock - Mutual exclusion for the memory file across processes

Correctness rests on exclusive file creation (O_CREAT | O_EXCL): exactly one
process can create the lock file. Its JSON content (holder pid, acquisition
time in epoch ms) is advisory and only used in diagnostics.

A lock file older than `stale_after` seconds is presumed abandoned by a dead
process and reclaimed; one waiter at a time reclaims it.
"""

import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from ..config import DEFAULT_LOCK_TIMEOUT, DEFAULT_POLL_INTERVAL, DEFAULT_STALE_AFTER
from .errors import LockTimeoutError

logger = logging.getLogger(__name__)


class LockBackend(ABC):
    """
    Anything that can serialize access to one project's memory.

    The store only relies on acquire/release, so an OS advisory lock or a
    database row lock can stand in for FileLock.
    """

    @abstractmethod
    def acquire(self) -> None:
        ...

    @abstractmethod
    def release(self) -> None:
        ...

    def __enter__(self) -> "LockBackend":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class FileLock(LockBackend):
    """
    Lock file with bounded polling and staleness reclamation.

    Reentrant within one instance: nested acquire() calls only bump a depth
    counter and the file is removed by the outermost release(). Not safe for
    use by several threads of one process.
    """

    def __init__(
        self,
        path: Union[str, Path],
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        stale_after: float = DEFAULT_STALE_AFTER,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        self.path = Path(path)
        self.timeout = timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self._depth = 0

    @property
    def is_held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        if self._depth:
            self._depth += 1
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()

        while True:
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                if self._reclaim_if_stale():
                    continue
                if time.monotonic() - start >= self.timeout:
                    raise LockTimeoutError(self.path, self.timeout, self.holder())
                time.sleep(self.poll_interval)
                continue

            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump({"pid": os.getpid(), "timestamp": int(time.time() * 1000)}, f)
            self._depth = 1
            logger.debug("Acquired memory lock %s after %.3fs", self.path, time.monotonic() - start)
            return

    def release(self) -> None:
        if not self._depth:
            return
        self._depth -= 1
        if self._depth:
            return
        try:
            self.path.unlink()
        except OSError as e:
            # A leaked lock file is reclaimed later through staleness detection
            logger.warning("Failed to remove memory lock %s: %s", self.path, e)

    def holder(self) -> Optional[dict]:
        """Advisory metadata of the current holder, None if unreadable."""
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def _age(path: Path) -> Optional[float]:
        """Seconds since `path` was last written, None if it is gone."""
        try:
            return time.time() - path.stat().st_mtime
        except FileNotFoundError:
            return None

    def _reclaim_if_stale(self) -> bool:
        """
        Delete the lock file if it is older than stale_after. True if the
        caller should retry at once.

        The age is re-checked while holding an exclusive `<lock>.reclaim`
        file, so a fresh lock created by another waiter is never deleted.
        """
        age = self._age(self.path)
        if age is None:
            # Released between our create attempt and the stat
            return True
        if age <= self.stale_after:
            return False

        guard = self.path.with_name(self.path.name + ".reclaim")
        try:
            fd = os.open(guard, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            # Another waiter is reclaiming; a guard left by a crashed one expires too
            guard_age = self._age(guard)
            if guard_age is not None and guard_age > self.stale_after:
                guard.unlink(missing_ok=True)
            return False
        os.close(fd)

        try:
            age = self._age(self.path)
            if age is None:
                return True
            if age <= self.stale_after:
                return False
            holder = self.holder()
            self.path.unlink(missing_ok=True)
        finally:
            guard.unlink(missing_ok=True)

        logger.info("Reclaimed stale memory lock %s (age %.1fs, holder %s)", self.path, age, holder)
        return True
