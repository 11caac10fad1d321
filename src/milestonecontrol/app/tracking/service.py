"""Composition root wiring store, interpreter, broadcaster and command log."""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, List, Optional

from milestonecontrol.adapters.tracking import FileTrackingRepository
from milestonecontrol.domain.project import ProjectId
from milestonecontrol.domain.tracking import ParseError, StorageError, TrackingStore
from milestonecontrol.settings import RuntimeSettings
from milestonecontrol.utils.telemetry import record_structured_event

from .broadcast import StateBroadcaster
from .command_log import CommandLog
from .config import TrackingConfig, load_tracking_config
from .interpreter import CommandInterpreter
from .seed import apply_seed, load_seed
from .watch import STATE_FILENAME, CommandLogWatcher


class TrackingService:
    """One project's tracking engine.

    Commands from every entry point (watcher, HTTP, CLI) go through
    :meth:`process_line`, which is serialized so that a command's mutations,
    its broadcasts and its acknowledgement are never interleaved with another
    command's.
    """

    def __init__(
        self,
        config: TrackingConfig,
        settings: RuntimeSettings,
        *,
        store: TrackingStore | None = None,
        broadcaster: StateBroadcaster | None = None,
    ) -> None:
        self.config = config
        self.settings = settings
        self.store = store if store is not None else TrackingStore(FileTrackingRepository(config.state_dir))
        self.interpreter = CommandInterpreter(self.store, settings)
        self.broadcaster = broadcaster or StateBroadcaster(config.queue_size, config.recent_activity_limit)
        self.command_log = CommandLog(config.command_log)
        self._lock = threading.Lock()

    @classmethod
    def for_project(cls, project_id: ProjectId, settings: RuntimeSettings) -> "TrackingService":
        return cls(load_tracking_config(project_id), settings)

    # commands ---------------------------------------------------------------

    def process_line(self, line: str) -> Dict[str, Any]:
        """Interpret one command line and return its acknowledgement."""

        command = line.strip()
        with self._lock:
            start = time.perf_counter()
            try:
                result = self.interpreter.execute_line(command)
            except ParseError as exc:
                record_structured_event(
                    self.settings,
                    "tracking.command.invalid",
                    level="warn",
                    status="ignored",
                    component="service",
                    payload={"command": command, "error": str(exc)},
                )
                return self.broadcaster.acknowledge(command, error=str(exc))
            except StorageError as exc:
                record_structured_event(
                    self.settings,
                    "tracking.command.storage_failed",
                    level="error",
                    status="error",
                    component="service",
                    payload={"command": command, "error": str(exc)},
                )
                return self.broadcaster.acknowledge(command, error=str(exc))

            if result.state_changed:
                self.broadcaster.broadcast_state(self.store, result.trigger)
            record_structured_event(
                self.settings,
                "tracking.command",
                status="applied" if result.state_changed else "ignored",
                component="service",
                duration_ms=(time.perf_counter() - start) * 1000,
                payload={
                    "command": command,
                    "kind": result.command.kind.value,
                    "events": [event.id for event in result.events],
                },
            )
            return self.broadcaster.acknowledge(
                command,
                state_changed=result.state_changed,
                message=result.message,
            )

    def submit(self, line: str) -> None:
        """Append ``line`` to the command log for the watcher to pick up."""

        self.command_log.append(line)

    def recent_commands(self, limit: int = 10) -> List[str]:
        return self.command_log.recent(limit)

    # seeding ----------------------------------------------------------------

    def seed_if_empty(self) -> Dict[str, int]:
        with self._lock:
            if not self.store.is_empty():
                return {"milestones": 0, "todos": 0, "tests": 0}
            counts = apply_seed(self.store, load_seed(self.config.seed))
        record_structured_event(
            self.settings,
            "tracking.seed",
            status="success",
            component="service",
            payload={"source": self.config.seed, **counts},
        )
        if counts["milestones"]:
            self.broadcaster.broadcast_state(self.store)
        return counts

    # read surfaces ----------------------------------------------------------

    def state(self) -> Dict[str, Any]:
        return self.store.snapshot(self.config.recent_activity_limit)

    def metrics(self) -> Dict[str, int]:
        return self.store.metrics()

    def regressions(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        count = self.config.regression_limit if limit is None else limit
        if count < 0:
            raise ValueError(f"limit must be >= 0, got {count}")
        return [event.to_dict() for event in self.store.recent_regressions(count)]

    def build_watcher(self, *, poll_interval: Optional[float] = None) -> CommandLogWatcher:
        self.command_log.ensure()
        return CommandLogWatcher(
            self.command_log,
            self.process_line,
            self.settings,
            cursor_path=self.config.state_dir / STATE_FILENAME,
            poll_interval=poll_interval if poll_interval is not None else self.config.poll_interval,
            replay_backlog=self.config.replay_backlog,
        )


__all__ = ["TrackingService"]
