"""Advisory lock marking the one process that writes a project's tracking state."""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from typing import IO, Optional

from milestonecontrol.domain.tracking import StorageError

LOCK_FILENAME = "writer.lock"


class WorkspaceBusyError(StorageError):
    """Raised when another process already owns the tracking state."""

    def __init__(self, path: Path, holder: str) -> None:
        detail = f" (pid {holder})" if holder else ""
        super().__init__(f"tracking state is owned by another process{detail}; lock file {path}")
        self.path = path
        self.holder = holder


class WriterLock:
    """Non-blocking ``flock`` on ``state/writer.lock``.

    The lock file is never deleted; removing it would let two processes lock
    different inodes under the same path.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: Optional[IO[str]] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fh is not None

    def acquire(self) -> "WriterLock":
        if self._fh is not None:
            return self
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(self._path, "a+", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot open writer lock {self._path}: {exc}") from exc
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            fh.seek(0)
            holder = fh.read().strip()
            fh.close()
            raise WorkspaceBusyError(self._path, holder) from None
        except OSError as exc:
            fh.close()
            raise StorageError(f"cannot lock {self._path}: {exc}") from exc
        fh.seek(0)
        fh.truncate()
        fh.write(f"{os.getpid()}\n")
        fh.flush()
        self._fh = fh
        return self

    def release(self) -> None:
        if self._fh is None:
            return
        fh, self._fh = self._fh, None
        try:
            fh.seek(0)
            fh.truncate()
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        finally:
            fh.close()

    def __enter__(self) -> "WriterLock":
        return self.acquire()

    def __exit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["LOCK_FILENAME", "WorkspaceBusyError", "WriterLock"]
