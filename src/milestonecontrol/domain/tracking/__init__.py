"""Tracking domain exports."""

from .aggregate import TrackingStore
from .commands import CommandKind, ParsedCommand, parse_command
from .models import (
    ActivityEvent,
    ActivityType,
    Milestone,
    MilestoneStatus,
    NotFoundError,
    ParseError,
    StorageError,
    Test,
    TestStatus,
    Todo,
    TodoPriority,
    TodoStatus,
    TrackingError,
    TrackingState,
)
from .regression import RegressionFinding, detect_regression

__all__ = [
    "ActivityEvent",
    "ActivityType",
    "CommandKind",
    "Milestone",
    "MilestoneStatus",
    "NotFoundError",
    "ParseError",
    "ParsedCommand",
    "RegressionFinding",
    "StorageError",
    "Test",
    "TestStatus",
    "Todo",
    "TodoPriority",
    "TodoStatus",
    "TrackingError",
    "TrackingState",
    "TrackingStore",
    "detect_regression",
    "parse_command",
]
