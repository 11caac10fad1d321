"""Project configuration read from ``.milestonecontrol/config.yaml``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from milestonecontrol.domain.project import ProjectId
from milestonecontrol.domain.tracking.aggregate import DEFAULT_RECENT_ACTIVITY, DEFAULT_REGRESSION_LIMIT

from .broadcast import DEFAULT_QUEUE_SIZE
from .watch import DEFAULT_POLL_INTERVAL

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8765
DEFAULT_SEED = "default"

_KNOWN_KEYS = {
    "command_log",
    "poll_interval",
    "replay_backlog",
    "recent_activity_limit",
    "regression_limit",
    "seed",
    "queue_size",
    "web",
}

DEFAULT_CONFIG_TEXT = """\
# milestonecontrol project configuration
command_log: command.log
poll_interval: 1.0
replay_backlog: false
recent_activity_limit: 20
regression_limit: 10
queue_size: 100
# "default" uses the packaged seed, "none" disables seeding, anything else is a YAML path
seed: default
web:
  host: 127.0.0.1
  port: 8765
"""


class ConfigError(ValueError):
    """Raised when the project configuration is invalid."""


@dataclass(frozen=True)
class TrackingConfig:
    command_log: Path
    state_dir: Path
    poll_interval: float = DEFAULT_POLL_INTERVAL
    replay_backlog: bool = False
    recent_activity_limit: int = DEFAULT_RECENT_ACTIVITY
    regression_limit: int = DEFAULT_REGRESSION_LIMIT
    queue_size: int = DEFAULT_QUEUE_SIZE
    seed: str = DEFAULT_SEED
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_log": str(self.command_log),
            "state_dir": str(self.state_dir),
            "poll_interval": self.poll_interval,
            "replay_backlog": self.replay_backlog,
            "recent_activity_limit": self.recent_activity_limit,
            "regression_limit": self.regression_limit,
            "queue_size": self.queue_size,
            "seed": self.seed,
            "web": {"host": self.host, "port": self.port},
        }


def load_tracking_config(project_id: ProjectId) -> TrackingConfig:
    config_path = project_id.config_path()
    data: Dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"config {config_path} is not valid YAML: {exc}") from exc
        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"config {config_path} root must be a mapping")
        data = loaded
    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"config has unknown keys: {', '.join(unknown)}")

    command_log = Path(str(data.get("command_log") or project_id.default_command_log_path()))
    if not command_log.is_absolute():
        command_log = project_id.workspace_dir / command_log

    web = data.get("web") or {}
    if not isinstance(web, dict):
        raise ConfigError("config key 'web' must be a mapping")

    return TrackingConfig(
        command_log=command_log,
        state_dir=project_id.state_dir,
        poll_interval=_number(data, "poll_interval", DEFAULT_POLL_INTERVAL, minimum=0.05),
        replay_backlog=_flag(data, "replay_backlog", False),
        recent_activity_limit=int(_number(data, "recent_activity_limit", DEFAULT_RECENT_ACTIVITY, minimum=0)),
        regression_limit=int(_number(data, "regression_limit", DEFAULT_REGRESSION_LIMIT, minimum=1)),
        queue_size=int(_number(data, "queue_size", DEFAULT_QUEUE_SIZE, minimum=1)),
        seed=_seed_source(data.get("seed", DEFAULT_SEED), project_id),
        host=str(web.get("host", DEFAULT_HOST)),
        port=int(_number(web, "port", DEFAULT_PORT, minimum=0, key_prefix="web.")),
    )


def write_default_config(project_id: ProjectId, *, force: bool = False) -> Path:
    path = project_id.config_path()
    if path.exists() and not force:
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return path


def _number(data: Dict[str, Any], key: str, default: float, *, minimum: float, key_prefix: str = "") -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"config key '{key_prefix}{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"config key '{key_prefix}{key}' must be >= {minimum}, got {value!r}")
    return value


def _seed_source(value: Any, project_id: ProjectId) -> str:
    if value is None or value is False:
        return "none"
    source = str(value).strip()
    if source.lower() in {"", "none", "off"}:
        return "none"
    if source == DEFAULT_SEED:
        return source
    path = Path(source).expanduser()
    if not path.is_absolute():
        path = project_id.workspace_dir / path
    return str(path)


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"config key '{key}' must be true or false, got {value!r}")
    return value


__all__ = [
    "ConfigError",
    "DEFAULT_CONFIG_TEXT",
    "TrackingConfig",
    "load_tracking_config",
    "write_default_config",
]
