# src/tqe/storage/lock.py
from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Optional

from tqe.logging import get_logger

_LOG = get_logger(__name__)


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else.
        return True
    return True


class WorkerLock:
    """
    Exclusive, create-only marker file: at most one worker per operating mode.

    The file holds the owner's pid. Its presence is the only signal that a worker of
    this mode is alive; there is no heartbeat. A lock left behind by a crashed worker
    blocks new workers until removed, unless `reclaim_dead` is set, in which case a
    lock whose pid is no longer running on this host is removed once and
    acquisition is retried.
    """

    def __init__(self, path: Path, *, reclaim_dead: bool = False) -> None:
        self.path = path
        self._reclaim_dead = reclaim_dead
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        """
        Returns True if this process now owns the lock, False if another worker does.
        """
        if self._held:
            return True
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self._try_create():
            return True

        if self._reclaim_dead:
            owner = self.owner_pid()
            if owner is not None and not pid_alive(owner):
                _LOG.warning("Reclaiming stale lock %s left by dead pid %d", self.path, owner)
                self.path.unlink(missing_ok=True)
                return self._try_create()
        return False

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self.path.unlink(missing_ok=True)

    def owner_pid(self) -> Optional[int]:
        try:
            raw = self.path.read_text(encoding="utf-8").strip()
        except OSError:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except OSError as e:
            if e.errno == errno.EEXIST:
                return False
            raise
        try:
            os.write(fd, f"{os.getpid()}\n".encode("ascii"))
        finally:
            os.close(fd)
        self._held = True
        return True
