"""Was-passing, now-failing detection over the activity history."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .models import ActivityEvent, ActivityType, Test, TestStatus


@dataclass(frozen=True)
class RegressionFinding:
    test_id: int
    milestone_id: int
    test_name: str
    error_message: Optional[str]
    previous_event_id: int

    def description(self) -> str:
        return f'REGRESSION: Test "{self.test_name}" was passing but now failed'

    def payload(self) -> Dict[str, Any]:
        return {
            "testId": self.test_id,
            "milestoneId": self.milestone_id,
            "errorMessage": self.error_message,
            "previousEventId": self.previous_event_id,
            "isRegression": True,
        }


def previous_test_status(history: Sequence[ActivityEvent], test_id: int, *, before: int) -> tuple[Optional[str], int]:
    """Return the status recorded by the latest ``test_updated`` event for ``test_id`` preceding index ``before``."""

    for index in range(min(before, len(history)) - 1, -1, -1):
        event = history[index]
        if event.type is not ActivityType.TEST_UPDATED:
            continue
        if event.payload.get("testId") != test_id:
            continue
        status = event.payload.get("status")
        return (status if isinstance(status, str) else None), event.id
    return None, 0


def detect_regression(
    history: Sequence[ActivityEvent],
    test: Test,
    trigger_index: int,
) -> Optional[RegressionFinding]:
    """Inspect the history before ``trigger_index`` for a test that just failed.

    Only the single most recent prior observation of the same test counts: a
    regression is reported exactly when that observation was ``passed``.
    """

    if test.status is not TestStatus.FAILED:
        return None
    status, event_id = previous_test_status(history, test.id, before=trigger_index)
    if status != TestStatus.PASSED.value:
        return None
    return RegressionFinding(
        test_id=test.id,
        milestone_id=test.milestone_id,
        test_name=test.name,
        error_message=test.error_message,
        previous_event_id=event_id,
    )


__all__ = ["RegressionFinding", "detect_regression", "previous_test_status"]
