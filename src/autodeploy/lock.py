"""Cross-process deployment lock.

Backed by ``flock(2)`` on a lock file, so acquisition is atomic between
overlapping scheduler ticks and the kernel drops the lock if the holding
process dies. The file exists only while a deployment is in progress.
"""

from __future__ import annotations

import fcntl
import json
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from autodeploy.logging import get_logger
from autodeploy.models import LockHolder, now_iso

log = get_logger("autodeploy.lock")


class DeploymentLock:
    """Non-blocking mutual exclusion for deployment attempts."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._handle: IO[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_held(self) -> bool:
        """True if *this* instance holds the lock."""
        return self._handle is not None

    def try_acquire(self) -> bool:
        """Take the lock without waiting. Returns False if someone else has it."""
        if self._handle is not None:
            return True

        self._path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self._path, "a+", encoding="utf-8")  # noqa: SIM115
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            log.info("lock_busy", path=str(self._path), holder=self._describe_holder())
            return False
        except OSError:
            handle.close()
            raise

        # A releasing holder unlinks the file after unlocking; if we locked
        # that orphaned inode, the path no longer points at our file.
        if not self._same_file(handle):
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()
            log.info("lock_lost_race", path=str(self._path))
            return False

        holder = LockHolder(pid=os.getpid(), acquired_at=now_iso())
        handle.seek(0)
        handle.truncate()
        handle.write(json.dumps(holder.to_dict()))
        handle.flush()

        self._handle = handle
        log.debug("lock_acquired", path=str(self._path), pid=holder.pid)
        return True

    def release(self) -> None:
        """Drop the lock and remove the file. Safe to call when not held."""
        handle = self._handle
        if handle is None:
            return
        self._handle = None
        try:
            self._path.unlink(missing_ok=True)
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            handle.close()
        log.debug("lock_released", path=str(self._path))

    @contextmanager
    def held(self) -> Iterator[bool]:
        """Scoped acquisition: yields whether the lock was taken, always releases."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()

    def holder(self) -> LockHolder | None:
        """Read the current holder record, if the lock file exists and is readable."""
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return LockHolder(pid=int(data["pid"]), acquired_at=str(data["acquired_at"]))
        except (OSError, ValueError, KeyError, TypeError):
            return None

    def _describe_holder(self) -> dict[str, object] | None:
        holder = self.holder()
        return holder.to_dict() if holder else None

    def _same_file(self, handle: IO[str]) -> bool:
        try:
            on_disk = os.stat(self._path)
        except FileNotFoundError:
            return False
        opened = os.fstat(handle.fileno())
        return (on_disk.st_dev, on_disk.st_ino) == (opened.st_dev, opened.st_ino)
