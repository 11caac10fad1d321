"""Tails the command log and feeds new lines to a handler in file order."""

from __future__ import annotations

import json
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from milestonecontrol.domain.tracking.models import StorageError, utc_timestamp
from milestonecontrol.settings import RuntimeSettings
from milestonecontrol.utils.telemetry import record_structured_event

from .command_log import CommandLog

STATE_FILENAME = "watch.json"
DEFAULT_POLL_INTERVAL = 1.0

LineHandler = Callable[[str], Any]


class WatchCursor:
    """Byte offset into the command log, persisted between runs."""

    def __init__(self, path: Optional[Path], command_log: Path) -> None:
        self._path = path
        self._command_log = command_log

    def load(self) -> Optional[int]:
        if self._path is None or not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            return None
        if not isinstance(raw, dict) or raw.get("command_log") != str(self._command_log):
            return None
        offset = raw.get("offset")
        if not isinstance(offset, int) or offset < 0:
            return None
        return offset

    def save(self, offset: int) -> None:
        if self._path is None:
            return
        payload = {
            "command_log": str(self._command_log),
            "offset": offset,
            "updated_at": utc_timestamp(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"cannot write watch cursor {self._path}: {exc}") from exc


@dataclass
class WatchReport:
    start_offset: int
    end_offset: int
    lines: List[str] = field(default_factory=list)
    failures: int = 0
    reset: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "lines": list(self.lines),
            "failures": self.failures,
            "reset": self.reset,
        }


class CommandLogWatcher:
    def __init__(
        self,
        command_log: CommandLog,
        handler: LineHandler,
        settings: RuntimeSettings,
        *,
        cursor_path: Optional[Path] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        replay_backlog: bool = False,
    ) -> None:
        self._log = command_log
        self._handler = handler
        self._settings = settings
        self._poll_interval = max(poll_interval, 0.05)
        self._cursor_store = WatchCursor(cursor_path, command_log.path)
        stored = self._cursor_store.load()
        if stored is not None:
            self._cursor = stored
        elif replay_backlog:
            self._cursor = 0
        else:
            self._cursor = command_log.size()

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def poll_interval(self) -> float:
        return self._poll_interval

    def checkpoint(self) -> None:
        """Persist the current cursor so later runs resume from here."""

        self._cursor_store.save(self._cursor)

    def poll(self) -> WatchReport:
        """Process everything appended since the last poll."""

        size = self._log.size()
        report = WatchReport(start_offset=self._cursor, end_offset=self._cursor)
        if size < self._cursor:
            record_structured_event(
                self._settings,
                "tracking.watch.rotated",
                level="warn",
                status="reset",
                component="watcher",
                payload={"path": str(self._log.path), "cursor": self._cursor, "size": size},
            )
            self._cursor = 0
            report.start_offset = report.end_offset = 0
            report.reset = True
            self._cursor_store.save(0)
        if size == self._cursor:
            return report

        lines, new_offset = self._log.read_from(self._cursor)
        for line in lines:
            report.lines.append(line)
            try:
                self._handler(line)
            except Exception as exc:  # one bad line must not stop the rest of the batch
                report.failures += 1
                record_structured_event(
                    self._settings,
                    "tracking.watch.line_failed",
                    level="error",
                    status="error",
                    component="watcher",
                    payload={"command": line, "error": str(exc), "type": type(exc).__name__},
                )
        if new_offset != self._cursor:
            self._cursor = new_offset
            self._cursor_store.save(new_offset)
        report.end_offset = self._cursor
        return report

    def run(self, stop_event: threading.Event, *, max_iterations: int = 0) -> int:
        """Poll until ``stop_event`` is set; returns the number of polls made.

        Storage failures are recorded and the next poll retries; the in-memory
        cursor has already moved past applied lines, so they are not replayed.
        """

        executed = 0
        while not stop_event.is_set():
            start = time.perf_counter()
            try:
                report = self.poll()
            except StorageError as exc:
                record_structured_event(
                    self._settings,
                    "tracking.watch.failed",
                    level="error",
                    status="error",
                    component="watcher",
                    duration_ms=(time.perf_counter() - start) * 1000,
                    payload={"path": str(self._log.path), "cursor": self._cursor, "error": str(exc)},
                )
                report = None
            if report is not None and (report.lines or report.reset):
                record_structured_event(
                    self._settings,
                    "tracking.watch",
                    status="success" if not report.failures else "partial",
                    component="watcher",
                    duration_ms=(time.perf_counter() - start) * 1000,
                    payload={
                        "path": str(self._log.path),
                        "lines": len(report.lines),
                        "failures": report.failures,
                        "cursor": report.end_offset,
                    },
                )
            executed += 1
            if max_iterations and executed >= max_iterations:
                break
            stop_event.wait(self._poll_interval)
        return executed


__all__ = ["CommandLogWatcher", "DEFAULT_POLL_INTERVAL", "WatchCursor", "WatchReport"]
