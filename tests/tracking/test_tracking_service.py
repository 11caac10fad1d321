from __future__ import annotations

from milestonecontrol.app.tracking import TrackingConfig, TrackingService
from milestonecontrol.app.tracking.broadcast import COMMAND_EVENT, METRICS_EVENT, STATE_EVENT
from milestonecontrol.domain.tracking import (
    ActivityEvent,
    ActivityType,
    StorageError,
    TestStatus,
    TrackingState,
    TrackingStore,
)
from milestonecontrol.ports.tracking_repository import TrackingRepository
from milestonecontrol.settings import RuntimeSettings


def test_schema_validation_regression_scenario(
    tracking_config: TrackingConfig,
    runtime_settings: RuntimeSettings,
    database_store: TrackingStore,
) -> None:
    service = TrackingService(tracking_config, runtime_settings, store=database_store)
    test = database_store.find_test("Schema validation test")
    assert test.status is TestStatus.PENDING
    before = len(database_store.activity())

    ack = service.process_line("pass_test: Schema validation")
    assert ack["success"] is True and ack["stateChanged"] is True
    assert database_store.get_test(test.id).status is TestStatus.PASSED
    added = database_store.activity()[before:]
    assert [event.type for event in added] == [ActivityType.TEST_UPDATED]

    service.process_line("fail_test: Schema validation")
    assert database_store.get_test(test.id).status is TestStatus.FAILED
    added = database_store.activity()[before + 1 :]
    assert [event.type for event in added] == [ActivityType.TEST_UPDATED, ActivityType.REGRESSION_DETECTED]
    regressions = service.regressions(1)
    assert len(regressions) == 1
    assert regressions[0]["id"] == added[-1].id


def test_changed_state_is_broadcast_before_acknowledgement(seeded_service: TrackingService) -> None:
    subscription = seeded_service.broadcaster.subscribe()

    seeded_service.process_line("complete_task: Two-way chat")

    messages = subscription.drain()
    assert [message.kind for message in messages] == [STATE_EVENT, METRICS_EVENT, COMMAND_EVENT]
    assert messages[0].payload["trigger"]["type"] == "todo_updated"
    assert messages[2].payload["stateChanged"] is True
    assert messages[2].payload["message"] == 'Marked todo as complete: "Two-way chat integration"'


def test_unmatched_command_only_acknowledges(seeded_service: TrackingService) -> None:
    subscription = seeded_service.broadcaster.subscribe()
    ack = seeded_service.process_line("pass_test: Quantum entanglement check")
    assert ack["success"] is True
    assert ack["stateChanged"] is False
    assert [message.kind for message in subscription.drain()] == [COMMAND_EVENT]


def test_malformed_command_is_acknowledged_as_failure(seeded_service: TrackingService, telemetry_events) -> None:
    subscription = seeded_service.broadcaster.subscribe()
    ack = seeded_service.process_line("this line has no separator")

    assert ack["success"] is False
    assert "verb: target" in ack["error"]
    assert [message.kind for message in subscription.drain()] == [COMMAND_EVENT]
    assert telemetry_events("tracking.command.invalid", level="warn")


def test_seed_if_empty_runs_once(service: TrackingService) -> None:
    counts = service.seed_if_empty()
    assert counts == {"milestones": 5, "todos": 20, "tests": 15}
    assert service.seed_if_empty() == {"milestones": 0, "todos": 0, "tests": 0}
    assert service.metrics()["total_milestones"] == 5


def test_state_survives_service_restart(
    seeded_service: TrackingService,
    tracking_config: TrackingConfig,
    runtime_settings: RuntimeSettings,
) -> None:
    seeded_service.process_line("pass_test: Database connection")
    restarted = TrackingService(tracking_config, runtime_settings)
    assert restarted.store.find_test("Database connection test").status is TestStatus.PASSED
    assert restarted.state()["milestones"][1]["name"] == "Database Integration & Schema"


def test_watcher_feeds_service(seeded_service: TrackingService) -> None:
    watcher = seeded_service.build_watcher()
    seeded_service.submit("start_milestone: Backend API")
    seeded_service.submit("complete_task: Security audit")

    report = watcher.poll()

    assert report.failures == 0
    assert seeded_service.store.find_milestone("Backend API Enhancement").status.value == "in_progress"
    assert seeded_service.store.find_todo("Security audit").status.value == "completed"
    assert seeded_service.recent_commands(1) == ["complete_task: Security audit"]


class FlakyRepository(TrackingRepository):
    """In-memory repository whose writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        self.failing = False
        self.saved: TrackingState | None = None
        self.events: list[ActivityEvent] = []

    def load(self) -> TrackingState:
        return TrackingState()

    def save(self, state: TrackingState) -> None:
        if self.failing:
            raise StorageError("disk full")
        self.saved = state

    def append_event(self, event: ActivityEvent) -> None:
        if self.failing:
            raise StorageError("disk full")
        self.events.append(event)


def test_storage_failure_is_acknowledged_and_processing_continues(
    tracking_config: TrackingConfig,
    runtime_settings: RuntimeSettings,
    telemetry_events,
) -> None:
    repository = FlakyRepository()
    store = TrackingStore(repository)
    milestone_id = store.create_milestone("Database Integration", phase=2)
    store.create_test(milestone_id, "Schema validation test", "integration")
    store.create_test(milestone_id, "Database connection test", "integration")
    service = TrackingService(tracking_config, runtime_settings, store=store)
    subscription = service.broadcaster.subscribe()

    repository.failing = True
    ack = service.process_line("pass_test: Schema validation")
    assert set(ack) == {"command", "success", "error", "timestamp"}
    assert ack["success"] is False
    assert ack["command"] == "pass_test: Schema validation"
    assert "disk full" in ack["error"]
    failures = telemetry_events("tracking.command.storage_failed", level="error")
    assert len(failures) == 1
    assert failures[0]["payload"]["command"] == "pass_test: Schema validation"
    assert [message.kind for message in subscription.drain()] == [COMMAND_EVENT]

    repository.failing = False
    ack = service.process_line("pass_test: Database connection")
    assert ack["success"] is True and ack["stateChanged"] is True
    assert store.find_test("Database connection test").status is TestStatus.PASSED
    assert repository.events[-1].type is ActivityType.TEST_UPDATED
