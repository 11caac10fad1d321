"""Resolves parsed commands against the store and applies them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from milestonecontrol.domain.tracking import (
    ActivityEvent,
    CommandKind,
    MilestoneStatus,
    ParsedCommand,
    TestStatus,
    TodoStatus,
    TrackingStore,
    parse_command,
)
from milestonecontrol.settings import RuntimeSettings
from milestonecontrol.utils.telemetry import record_structured_event

FAILED_VIA_COMMAND = "Test failed via command"


@dataclass(frozen=True)
class CommandResult:
    command: ParsedCommand
    state_changed: bool
    events: List[ActivityEvent] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def trigger(self) -> Optional[ActivityEvent]:
        return self.events[-1] if self.events else None


class CommandInterpreter:
    """Maps ``verb: target`` lines onto store mutations."""

    def __init__(self, store: TrackingStore, settings: RuntimeSettings) -> None:
        self._store = store
        self._settings = settings

    def execute_line(self, line: str) -> CommandResult:
        return self.execute(parse_command(line))

    def execute(self, command: ParsedCommand) -> CommandResult:
        kind = command.kind
        if kind is CommandKind.COMPLETE_TODO:
            todo = self._store.find_todo(command.target)
            if todo is None:
                return self._unmatched(command, "todo")
            events = self._store.set_todo_status(todo.id, TodoStatus.COMPLETED)
            return CommandResult(command, True, events, f'Marked todo as complete: "{todo.description}"')
        if kind is CommandKind.FAIL_TEST:
            test = self._store.find_test(command.target)
            if test is None:
                return self._unmatched(command, "test")
            events = self._store.set_test_status(test.id, TestStatus.FAILED, FAILED_VIA_COMMAND)
            return CommandResult(command, True, events, f'Marked test as failed: "{test.name}"')
        if kind is CommandKind.PASS_TEST:
            test = self._store.find_test(command.target)
            if test is None:
                return self._unmatched(command, "test")
            events = self._store.set_test_status(test.id, TestStatus.PASSED)
            return CommandResult(command, True, events, f'Marked test as passed: "{test.name}"')
        if kind is CommandKind.START_MILESTONE:
            milestone = self._store.find_milestone(command.target)
            if milestone is None:
                return self._unmatched(command, "milestone")
            events = self._store.set_milestone_status(milestone.id, MilestoneStatus.IN_PROGRESS)
            return CommandResult(command, True, events, f'Started milestone: "{milestone.name}"')
        if kind is CommandKind.UNKNOWN:
            record_structured_event(
                self._settings,
                "tracking.command.unknown",
                level="warn",
                status="ignored",
                component="interpreter",
                payload={"command": command.raw, "verb": command.verb},
            )
            return CommandResult(command, False, message=f'Unknown command: "{command.verb}"')
        raise AssertionError(f"unhandled command kind: {kind!r}")

    def _unmatched(self, command: ParsedCommand, entity: str) -> CommandResult:
        record_structured_event(
            self._settings,
            "tracking.command.unmatched",
            level="warn",
            status="ignored",
            component="interpreter",
            payload={"command": command.raw, "entity": entity, "target": command.target},
        )
        return CommandResult(command, False, message=f'{entity.capitalize()} not found: "{command.target}"')


__all__ = ["CommandInterpreter", "CommandResult", "FAILED_VIA_COMMAND"]
