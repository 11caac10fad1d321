"""Aggregate owning milestones, todos, tests and the activity log."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any, Dict, List, Optional, TypeVar

from .matching import fuzzy_find
from .models import (
    ActivityEvent,
    ActivityType,
    Milestone,
    MilestoneStatus,
    NotFoundError,
    Test,
    TestStatus,
    Todo,
    TodoPriority,
    TodoStatus,
    TrackingState,
    utc_timestamp,
)
from .regression import detect_regression

if TYPE_CHECKING:
    from milestonecontrol.ports.tracking_repository import TrackingRepository

DEFAULT_RECENT_ACTIVITY = 20
DEFAULT_REGRESSION_LIMIT = 10

T = TypeVar("T", Milestone, Todo, Test)


def _copy(item: Optional[T]) -> Optional[T]:
    if item is None:
        return None
    return type(item).from_dict(item.to_dict())


class TrackingStore:
    """Single writer of tracking state.

    Every mutation runs under one re-entrant lock, so the position of an event
    in the activity log always matches the order in which mutations happened.
    Reads take the same lock and return copies.
    """

    def __init__(self, repository: TrackingRepository | None = None) -> None:
        self._repository = repository
        self._lock = threading.RLock()
        self._state = repository.load() if repository is not None else TrackingState()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._state.milestones

    # creation -------------------------------------------------------------

    def create_milestone(self, name: str, is_golden_path: bool = True, phase: int = 1) -> int:
        if int(phase) < 1:
            raise ValueError(f"milestone phase must be >= 1, got {phase}")
        with self._lock:
            milestone = Milestone(
                id=self._state.allocate("milestone"),
                name=name,
                phase=int(phase),
                is_golden_path=bool(is_golden_path),
            )
            self._state.milestones[milestone.id] = milestone
            self._record(
                ActivityType.MILESTONE_CREATED,
                f"Created milestone: {name}",
                {"milestoneId": milestone.id, "phase": milestone.phase},
            )
            self._persist()
            return milestone.id

    def create_todo(
        self,
        milestone_id: int,
        description: str,
        priority: TodoPriority | str = TodoPriority.MEDIUM,
    ) -> int:
        priority = TodoPriority(priority)
        with self._lock:
            self._require_milestone(milestone_id)
            todo = Todo(
                id=self._state.allocate("todo"),
                milestone_id=milestone_id,
                description=description,
                priority=priority,
            )
            self._state.todos[todo.id] = todo
            self._record(
                ActivityType.TODO_CREATED,
                f"Created todo: {description}",
                {"todoId": todo.id, "milestoneId": milestone_id},
            )
            self._persist()
            return todo.id

    def create_test(self, milestone_id: int, name: str, category: str = "unit") -> int:
        with self._lock:
            self._require_milestone(milestone_id)
            test = Test(
                id=self._state.allocate("test"),
                milestone_id=milestone_id,
                name=name,
                category=category or "unit",
            )
            self._state.tests[test.id] = test
            self._record(
                ActivityType.TEST_CREATED,
                f"Created test: {name}",
                {"testId": test.id, "milestoneId": milestone_id},
            )
            self._persist()
            return test.id

    # status updates ---------------------------------------------------------

    def set_todo_status(self, todo_id: int, status: TodoStatus | str) -> List[ActivityEvent]:
        status = TodoStatus(status)
        with self._lock:
            todo = self._require_todo(todo_id)
            previous = todo.status
            todo.status = status
            todo.updated_at = utc_timestamp()
            events = [
                self._record(
                    ActivityType.TODO_UPDATED,
                    f'Todo "{todo.description}" marked as {status.value}',
                    {
                        "todoId": todo.id,
                        "milestoneId": todo.milestone_id,
                        "status": status.value,
                        "previousStatus": previous.value,
                    },
                )
            ]
            cascade = self._recompute_completion(todo.milestone_id)
            if cascade is not None:
                events.append(cascade)
            self._persist()
            return events

    def set_test_status(
        self,
        test_id: int,
        status: TestStatus | str,
        error_message: Optional[str] = None,
    ) -> List[ActivityEvent]:
        status = TestStatus(status)
        with self._lock:
            test = self._require_test(test_id)
            previous = test.status
            test.status = status
            test.error_message = error_message
            test.last_run = utc_timestamp()
            trigger = self._record(
                ActivityType.TEST_UPDATED,
                f'Test "{test.name}" {status.value}',
                {
                    "testId": test.id,
                    "milestoneId": test.milestone_id,
                    "status": status.value,
                    "previousStatus": previous.value,
                    "errorMessage": error_message,
                },
            )
            events = [trigger]
            if status is TestStatus.FAILED:
                finding = detect_regression(self._state.activity, test, len(self._state.activity) - 1)
                if finding is not None:
                    events.append(
                        self._record(ActivityType.REGRESSION_DETECTED, finding.description(), finding.payload())
                    )
            self._persist()
            return events

    def set_milestone_status(self, milestone_id: int, status: MilestoneStatus | str) -> List[ActivityEvent]:
        status = MilestoneStatus(status)
        with self._lock:
            milestone = self._require_milestone(milestone_id)
            event = self._apply_milestone_status(milestone, status)
            self._persist()
            return [event]

    # lookups ----------------------------------------------------------------

    def get_milestone(self, milestone_id: int) -> Milestone:
        with self._lock:
            return _copy(self._require_milestone(milestone_id))

    def get_todo(self, todo_id: int) -> Todo:
        with self._lock:
            return _copy(self._require_todo(todo_id))

    def get_test(self, test_id: int) -> Test:
        with self._lock:
            return _copy(self._require_test(test_id))

    def find_todo(self, target: str) -> Optional[Todo]:
        with self._lock:
            return _copy(fuzzy_find(target, self._ordered(self._state.todos), lambda todo: todo.description))

    def find_test(self, target: str) -> Optional[Test]:
        with self._lock:
            return _copy(fuzzy_find(target, self._ordered(self._state.tests), lambda test: test.name))

    def find_milestone(self, target: str) -> Optional[Milestone]:
        with self._lock:
            return _copy(
                fuzzy_find(target, self._ordered(self._state.milestones), lambda milestone: milestone.name)
            )

    # read surfaces ----------------------------------------------------------

    def activity(self, since_id: int = 0) -> List[ActivityEvent]:
        with self._lock:
            return [event for event in self._state.activity if event.id > since_id]

    def snapshot(self, recent_limit: int = DEFAULT_RECENT_ACTIVITY) -> Dict[str, Any]:
        with self._lock:
            todos = sorted(self._state.todos.values(), key=lambda item: (item.milestone_id, item.id))
            tests = sorted(self._state.tests.values(), key=lambda item: (item.milestone_id, item.id))
            milestones = []
            for milestone in sorted(self._state.milestones.values(), key=lambda item: (item.phase, item.id)):
                own_todos = [todo for todo in todos if todo.milestone_id == milestone.id]
                own_tests = [test for test in tests if test.milestone_id == milestone.id]
                entry = milestone.to_dict()
                entry.update(
                    {
                        "completed_todos": sum(1 for todo in own_todos if todo.status is TodoStatus.COMPLETED),
                        "total_todos": len(own_todos),
                        "passed_tests": sum(1 for test in own_tests if test.status is TestStatus.PASSED),
                        "total_tests": len(own_tests),
                    }
                )
                milestones.append(entry)
            recent = self._state.activity[-recent_limit:] if recent_limit > 0 else []
            return {
                "milestones": milestones,
                "todos": [todo.to_dict() for todo in todos],
                "tests": [test.to_dict() for test in tests],
                "recentActivity": [event.to_dict() for event in reversed(recent)],
            }

    def metrics(self) -> Dict[str, int]:
        with self._lock:
            milestones = self._state.milestones.values()
            todos = self._state.todos.values()
            tests = self._state.tests.values()
            return {
                "total_milestones": len(milestones),
                "completed_milestones": sum(1 for item in milestones if item.status is MilestoneStatus.COMPLETED),
                "total_todos": len(todos),
                "completed_todos": sum(1 for item in todos if item.status is TodoStatus.COMPLETED),
                "total_tests": len(tests),
                "passed_tests": sum(1 for item in tests if item.status is TestStatus.PASSED),
                "failed_tests": sum(1 for item in tests if item.status is TestStatus.FAILED),
            }

    def recent_regressions(self, limit: int = DEFAULT_REGRESSION_LIMIT) -> List[ActivityEvent]:
        with self._lock:
            found: List[ActivityEvent] = []
            for event in reversed(self._state.activity):
                if len(found) >= limit:
                    break
                if event.type is ActivityType.REGRESSION_DETECTED:
                    found.append(event)
            return found

    # internals --------------------------------------------------------------

    def _recompute_completion(self, milestone_id: int) -> Optional[ActivityEvent]:
        milestone = self._state.milestones.get(milestone_id)
        if milestone is None:
            return None
        todos = [todo for todo in self._state.todos.values() if todo.milestone_id == milestone_id]
        if not todos:
            return None
        all_done = all(todo.status is TodoStatus.COMPLETED for todo in todos)
        if all_done and milestone.status is not MilestoneStatus.COMPLETED:
            return self._apply_milestone_status(milestone, MilestoneStatus.COMPLETED, cascade=True)
        if not all_done and milestone.status is MilestoneStatus.COMPLETED:
            return self._apply_milestone_status(milestone, MilestoneStatus.IN_PROGRESS, cascade=True)
        return None

    def _apply_milestone_status(
        self,
        milestone: Milestone,
        status: MilestoneStatus,
        *,
        cascade: bool = False,
    ) -> ActivityEvent:
        previous = milestone.status
        milestone.status = status
        milestone.updated_at = utc_timestamp()
        payload: Dict[str, Any] = {
            "milestoneId": milestone.id,
            "status": status.value,
            "previousStatus": previous.value,
        }
        if cascade:
            payload["cascade"] = True
        return self._record(
            ActivityType.MILESTONE_UPDATED,
            f'Milestone "{milestone.name}" status changed to {status.value}',
            payload,
        )

    def _record(self, activity_type: ActivityType, description: str, payload: Dict[str, Any]) -> ActivityEvent:
        event = ActivityEvent(
            id=self._state.allocate("event"),
            type=activity_type,
            description=description,
            payload=payload,
        )
        self._state.activity.append(event)
        if self._repository is not None:
            self._repository.append_event(event)
        return event

    def _persist(self) -> None:
        if self._repository is not None:
            self._repository.save(self._state)

    def _require_milestone(self, milestone_id: int) -> Milestone:
        milestone = self._state.milestones.get(milestone_id)
        if milestone is None:
            raise NotFoundError("milestone", milestone_id)
        return milestone

    def _require_todo(self, todo_id: int) -> Todo:
        todo = self._state.todos.get(todo_id)
        if todo is None:
            raise NotFoundError("todo", todo_id)
        return todo

    def _require_test(self, test_id: int) -> Test:
        test = self._state.tests.get(test_id)
        if test is None:
            raise NotFoundError("test", test_id)
        return test

    @staticmethod
    def _ordered(table: Dict[int, Any]) -> List[Any]:
        return [table[key] for key in sorted(table)]


__all__ = ["DEFAULT_RECENT_ACTIVITY", "DEFAULT_REGRESSION_LIMIT", "TrackingStore"]
