"""Command vocabulary of the control channel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import ParseError


class CommandKind(str, Enum):
    COMPLETE_TODO = "complete_todo"
    FAIL_TEST = "fail_test"
    PASS_TEST = "pass_test"
    START_MILESTONE = "start_milestone"
    UNKNOWN = "unknown"


VERB_ALIASES = {
    "complete_task": CommandKind.COMPLETE_TODO,
    "complete_todo": CommandKind.COMPLETE_TODO,
    "fail_test": CommandKind.FAIL_TEST,
    "pass_test": CommandKind.PASS_TEST,
    "start_milestone": CommandKind.START_MILESTONE,
}


@dataclass(frozen=True)
class ParsedCommand:
    raw: str
    verb: str
    target: str
    kind: CommandKind


def parse_command(line: str) -> ParsedCommand:
    """Split ``verb: target`` on the first colon.

    Unrecognised verbs parse successfully as :attr:`CommandKind.UNKNOWN`; only
    malformed lines raise :class:`ParseError`.
    """

    raw = line.strip()
    if ":" not in raw:
        raise ParseError(f"command must look like 'verb: target', got {raw!r}")
    verb, target = raw.split(":", 1)
    verb = verb.strip().lower()
    target = target.strip()
    if not verb:
        raise ParseError(f"command verb is empty in {raw!r}")
    if not target:
        raise ParseError(f"command target is empty in {raw!r}")
    kind = VERB_ALIASES.get(verb, CommandKind.UNKNOWN)
    return ParsedCommand(raw=raw, verb=verb, target=target, kind=kind)


__all__ = ["CommandKind", "ParsedCommand", "VERB_ALIASES", "parse_command"]
