"""Project workspace layout for the tracking engine."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


PROJECT_DIR = ".milestonecontrol"
CONFIG_FILENAME = "config.yaml"
COMMAND_LOG_FILENAME = "command.log"


class ProjectNotInitialisedError(RuntimeError):
    """Raised when a path has no milestonecontrol workspace."""


@dataclass(frozen=True)
class ProjectId:
    """Identifier of a tracked project (its root path)."""

    root: Path

    @classmethod
    def for_new_project(cls, path: Path) -> "ProjectId":
        resolved = path.expanduser().resolve()
        return cls(root=resolved)

    @classmethod
    def from_existing(cls, path: Path) -> "ProjectId":
        resolved = path.expanduser().resolve()
        if (resolved / PROJECT_DIR).is_dir():
            return cls(root=resolved)
        raise ProjectNotInitialisedError(
            f"Path {resolved} has no {PROJECT_DIR}/ workspace; run 'milestonectl init' first."
        )

    @property
    def workspace_dir(self) -> Path:
        return self.root / PROJECT_DIR

    @property
    def state_dir(self) -> Path:
        return self.workspace_dir / "state"

    def config_path(self) -> Path:
        return self.workspace_dir / CONFIG_FILENAME

    def default_command_log_path(self) -> Path:
        return self.workspace_dir / COMMAND_LOG_FILENAME


__all__ = [
    "COMMAND_LOG_FILENAME",
    "CONFIG_FILENAME",
    "PROJECT_DIR",
    "ProjectId",
    "ProjectNotInitialisedError",
]
