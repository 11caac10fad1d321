"""Append-only command log used as the external control channel."""

from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

from milestonecontrol.domain.tracking import StorageError


class CommandLog:
    """UTF-8 text file with one ``verb: target`` command per line."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def ensure(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if not self._path.exists():
                self._path.write_text("", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot create command log at {self._path}: {exc}") from exc

    def size(self) -> int:
        try:
            return self._path.stat().st_size
        except FileNotFoundError:
            return 0
        except OSError as exc:
            raise StorageError(f"cannot stat command log at {self._path}: {exc}") from exc

    def append(self, command: str) -> None:
        line = " ".join(command.splitlines()).strip()
        if not line:
            raise ValueError("command must not be empty")
        self.ensure()
        try:
            with self._path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError as exc:
            raise StorageError(f"cannot append to command log at {self._path}: {exc}") from exc

    def read_from(self, offset: int) -> Tuple[List[str], int]:
        """Return complete non-empty lines after ``offset`` and the offset past them.

        A trailing fragment without a newline is not consumed, so a writer that
        is midway through a line is picked up on a later read.
        """

        try:
            with self._path.open("rb") as fh:
                fh.seek(offset)
                data = fh.read()
        except FileNotFoundError:
            return [], offset
        except OSError as exc:
            raise StorageError(f"cannot read command log at {self._path}: {exc}") from exc
        end = data.rfind(b"\n")
        if end < 0:
            return [], offset
        chunk = data[: end + 1].decode("utf-8", errors="replace")
        lines = [line.strip() for line in chunk.splitlines() if line.strip()]
        return lines, offset + end + 1

    def recent(self, limit: int = 10) -> List[str]:
        if not self._path.exists():
            return []
        try:
            content = self._path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            raise StorageError(f"cannot read command log at {self._path}: {exc}") from exc
        lines = [line.strip() for line in content.splitlines() if line.strip()]
        return lines[-limit:] if limit > 0 else []

    def clear(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text("", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot truncate command log at {self._path}: {exc}") from exc


__all__ = ["CommandLog"]
