from __future__ import annotations

import json
from pathlib import Path

import pytest

from milestonecontrol.adapters.tracking import FileTrackingRepository
from milestonecontrol.domain.tracking import (
    ActivityType,
    MilestoneStatus,
    StorageError,
    TestStatus,
    TodoStatus,
    TrackingStore,
)


def test_state_and_activity_survive_reload(tmp_path: Path) -> None:
    repository = FileTrackingRepository(tmp_path / "state")
    store = TrackingStore(repository)
    milestone_id = store.create_milestone("Backend API Enhancement", phase=4)
    todo_id = store.create_todo(milestone_id, "Rate limiting implementation")
    test_id = store.create_test(milestone_id, "API endpoint tests")
    store.set_todo_status(todo_id, TodoStatus.COMPLETED)
    store.set_test_status(test_id, TestStatus.PASSED)

    reloaded = TrackingStore(FileTrackingRepository(tmp_path / "state"))

    assert reloaded.get_milestone(milestone_id).status is MilestoneStatus.COMPLETED
    assert reloaded.get_test(test_id).status is TestStatus.PASSED
    assert [event.id for event in reloaded.activity()] == [event.id for event in store.activity()]
    assert reloaded.snapshot() == store.snapshot()


def test_ids_continue_after_reload(tmp_path: Path) -> None:
    store = TrackingStore(FileTrackingRepository(tmp_path))
    first = store.create_milestone("One")
    last_event = store.activity()[-1].id

    reloaded = TrackingStore(FileTrackingRepository(tmp_path))
    second = reloaded.create_milestone("Two")

    assert second == first + 1
    assert reloaded.activity()[-1].id == last_event + 1


def test_regression_detection_uses_persisted_history(tmp_path: Path) -> None:
    store = TrackingStore(FileTrackingRepository(tmp_path))
    milestone_id = store.create_milestone("System Integration & Testing", phase=5)
    test_id = store.create_test(milestone_id, "Integration test suite")
    store.set_test_status(test_id, TestStatus.PASSED)

    reloaded = TrackingStore(FileTrackingRepository(tmp_path))
    events = reloaded.set_test_status(test_id, TestStatus.FAILED)

    assert events[-1].type is ActivityType.REGRESSION_DETECTED


def test_activity_log_is_append_only_jsonl(tmp_path: Path) -> None:
    repository = FileTrackingRepository(tmp_path)
    store = TrackingStore(repository)
    store.create_milestone("One")
    store.create_milestone("Two")
    lines = repository.activity_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["id"] for line in lines] == [1, 2]


def test_corrupt_state_raises_storage_error(tmp_path: Path) -> None:
    repository = FileTrackingRepository(tmp_path)
    repository.state_path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        TrackingStore(repository)


@pytest.mark.parametrize(
    "line",
    [
        '{"id": 1, "type": "bogus"}',
        '{"id": null, "type": "todo_created"}',
        '["not", "an", "object"]',
        "{truncated",
    ],
)
def test_corrupt_activity_line_raises_storage_error(tmp_path: Path, line: str) -> None:
    repository = FileTrackingRepository(tmp_path)
    repository.activity_path.write_text(line + "\n", encoding="utf-8")
    with pytest.raises(StorageError):
        repository.load()
