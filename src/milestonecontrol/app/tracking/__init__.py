"""Milestone tracking services."""

from .broadcast import BroadcastMessage, StateBroadcaster, Subscription
from .command_log import CommandLog
from .config import ConfigError, TrackingConfig, load_tracking_config, write_default_config
from .interpreter import CommandInterpreter, CommandResult
from .seed import SeedError, apply_seed, load_seed
from .service import TrackingService
from .watch import CommandLogWatcher, WatchReport
from .web import TrackingWebApp, TrackingWebConfig, load_or_create_session_token
from .writer_lock import LOCK_FILENAME, WorkspaceBusyError, WriterLock

__all__ = [
    "LOCK_FILENAME",
    "BroadcastMessage",
    "CommandInterpreter",
    "CommandLog",
    "CommandLogWatcher",
    "CommandResult",
    "ConfigError",
    "SeedError",
    "StateBroadcaster",
    "Subscription",
    "TrackingConfig",
    "TrackingService",
    "TrackingWebApp",
    "TrackingWebConfig",
    "WatchReport",
    "WorkspaceBusyError",
    "WriterLock",
    "apply_seed",
    "load_or_create_session_token",
    "load_seed",
    "load_tracking_config",
    "write_default_config",
]
