"""Filesystem-backed storage for the tracking store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List

from milestonecontrol.domain.tracking.models import ActivityEvent, StorageError, TrackingState
from milestonecontrol.ports.tracking_repository import TrackingRepository

STATE_FILENAME = "tracking.json"
ACTIVITY_FILENAME = "activity.jsonl"


class FileTrackingRepository(TrackingRepository):
    """Keeps entity tables in ``tracking.json`` and the activity log in ``activity.jsonl``."""

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir

    @property
    def state_path(self) -> Path:
        return self._state_dir / STATE_FILENAME

    @property
    def activity_path(self) -> Path:
        return self._state_dir / ACTIVITY_FILENAME

    def load(self) -> TrackingState:
        activity = self._load_activity()
        if not self.state_path.exists():
            return TrackingState.from_dict({}, activity)
        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StorageError(f"tracking state invalid JSON: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"cannot read tracking state at {self.state_path}: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageError("tracking state root must be an object")
        try:
            return TrackingState.from_dict(raw, activity)
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"tracking state has an invalid entry: {exc}") from exc

    def save(self, state: TrackingState) -> None:
        payload = json.dumps(state.to_dict(), ensure_ascii=False, indent=2) + "\n"
        tmp_path = self.state_path.with_suffix(".json.tmp")
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, self.state_path)
        except OSError as exc:
            raise StorageError(f"cannot write tracking state at {self.state_path}: {exc}") from exc

    def append_event(self, event: ActivityEvent) -> None:
        try:
            self._state_dir.mkdir(parents=True, exist_ok=True)
            with self.activity_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")
        except OSError as exc:
            raise StorageError(f"cannot append activity to {self.activity_path}: {exc}") from exc

    def _load_activity(self) -> List[ActivityEvent]:
        if not self.activity_path.exists():
            return []
        events: List[ActivityEvent] = []
        try:
            with self.activity_path.open("r", encoding="utf-8") as fh:
                for lineno, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        events.append(ActivityEvent.from_dict(json.loads(line)))
                    except (KeyError, TypeError, ValueError) as exc:
                        raise StorageError(
                            f"activity log line {lineno} is invalid: {exc}"
                        ) from exc
        except OSError as exc:
            raise StorageError(f"cannot read activity log at {self.activity_path}: {exc}") from exc
        events.sort(key=lambda event: event.id)
        return events


__all__ = ["FileTrackingRepository"]
