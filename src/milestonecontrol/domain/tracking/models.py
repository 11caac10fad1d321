"""Entities, statuses and errors of the milestone tracking domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _isoformat(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def utc_timestamp() -> str:
    return _isoformat(_utc_now())


class TrackingError(RuntimeError):
    """Base class for tracking engine failures."""


class NotFoundError(TrackingError, LookupError):
    """Raised when an id does not resolve to a stored entity."""

    def __init__(self, kind: str, entity_id: Any) -> None:
        super().__init__(f"{kind} {entity_id!r} not found")
        self.kind = kind
        self.entity_id = entity_id


class StorageError(TrackingError):
    """Raised when the persistence layer cannot read or write state."""


class ParseError(TrackingError, ValueError):
    """Raised when a command line is not of the form ``verb: target``."""


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TodoStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class TodoPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TestStatus(str, Enum):
    __test__ = False

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class ActivityType(str, Enum):
    MILESTONE_CREATED = "milestone_created"
    MILESTONE_UPDATED = "milestone_updated"
    TODO_CREATED = "todo_created"
    TODO_UPDATED = "todo_updated"
    TEST_CREATED = "test_created"
    TEST_UPDATED = "test_updated"
    REGRESSION_DETECTED = "regression_detected"


@dataclass
class Milestone:
    id: int
    name: str
    phase: int = 1
    is_golden_path: bool = True
    status: MilestoneStatus = MilestoneStatus.PENDING
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "phase": self.phase,
            "is_golden_path": self.is_golden_path,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Milestone":
        return cls(
            id=int(data["id"]),
            name=str(data["name"]),
            phase=int(data.get("phase", 1)),
            is_golden_path=bool(data.get("is_golden_path", True)),
            status=MilestoneStatus(data.get("status", MilestoneStatus.PENDING.value)),
            created_at=data.get("created_at") or utc_timestamp(),
            updated_at=data.get("updated_at") or utc_timestamp(),
        )


@dataclass
class Todo:
    id: int
    milestone_id: int
    description: str
    priority: TodoPriority = TodoPriority.MEDIUM
    status: TodoStatus = TodoStatus.PENDING
    created_at: str = field(default_factory=utc_timestamp)
    updated_at: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "milestone_id": self.milestone_id,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Todo":
        return cls(
            id=int(data["id"]),
            milestone_id=int(data["milestone_id"]),
            description=str(data["description"]),
            priority=TodoPriority(data.get("priority", TodoPriority.MEDIUM.value)),
            status=TodoStatus(data.get("status", TodoStatus.PENDING.value)),
            created_at=data.get("created_at") or utc_timestamp(),
            updated_at=data.get("updated_at") or utc_timestamp(),
        )


@dataclass
class Test:
    """A named check owned by a milestone."""

    __test__ = False

    id: int
    milestone_id: int
    name: str
    category: str = "unit"
    status: TestStatus = TestStatus.PENDING
    error_message: Optional[str] = None
    last_run: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "milestone_id": self.milestone_id,
            "name": self.name,
            "status": self.status.value,
            "category": self.category,
            "error_message": self.error_message,
            "last_run": self.last_run,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Test":
        return cls(
            id=int(data["id"]),
            milestone_id=int(data["milestone_id"]),
            name=str(data["name"]),
            category=str(data.get("category", "unit")),
            status=TestStatus(data.get("status", TestStatus.PENDING.value)),
            error_message=data.get("error_message"),
            last_run=data.get("last_run"),
        )


@dataclass(frozen=True)
class ActivityEvent:
    """Immutable record of one state change."""

    id: int
    type: ActivityType
    description: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "description": self.description,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityEvent":
        return cls(
            id=int(data["id"]),
            type=ActivityType(data["type"]),
            description=str(data.get("description", "")),
            payload=dict(data.get("payload") or {}),
            timestamp=data.get("timestamp") or utc_timestamp(),
        )


@dataclass
class TrackingState:
    """Everything the store persists apart from the activity log."""

    milestones: Dict[int, Milestone] = field(default_factory=dict)
    todos: Dict[int, Todo] = field(default_factory=dict)
    tests: Dict[int, Test] = field(default_factory=dict)
    activity: List[ActivityEvent] = field(default_factory=list)
    next_ids: Dict[str, int] = field(
        default_factory=lambda: {"milestone": 1, "todo": 1, "test": 1, "event": 1}
    )

    def allocate(self, kind: str) -> int:
        value = self.next_ids.get(kind, 1)
        self.next_ids[kind] = value + 1
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_ids": dict(self.next_ids),
            "milestones": [item.to_dict() for item in self.milestones.values()],
            "todos": [item.to_dict() for item in self.todos.values()],
            "tests": [item.to_dict() for item in self.tests.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], activity: List[ActivityEvent] | None = None) -> "TrackingState":
        state = cls()
        for item in data.get("milestones", []):
            milestone = Milestone.from_dict(item)
            state.milestones[milestone.id] = milestone
        for item in data.get("todos", []):
            todo = Todo.from_dict(item)
            state.todos[todo.id] = todo
        for item in data.get("tests", []):
            test = Test.from_dict(item)
            state.tests[test.id] = test
        state.activity = list(activity or [])
        next_ids = data.get("next_ids") or {}
        state.next_ids = {
            "milestone": max(int(next_ids.get("milestone", 1)), max(state.milestones, default=0) + 1),
            "todo": max(int(next_ids.get("todo", 1)), max(state.todos, default=0) + 1),
            "test": max(int(next_ids.get("test", 1)), max(state.tests, default=0) + 1),
            "event": max(
                int(next_ids.get("event", 1)),
                max((event.id for event in state.activity), default=0) + 1,
            ),
        }
        return state


__all__ = [
    "ActivityEvent",
    "ActivityType",
    "Milestone",
    "MilestoneStatus",
    "NotFoundError",
    "ParseError",
    "StorageError",
    "Test",
    "TestStatus",
    "Todo",
    "TodoPriority",
    "TodoStatus",
    "TrackingError",
    "TrackingState",
    "utc_timestamp",
]
