"""Bootstrap data for an empty store."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

from milestonecontrol.domain.tracking import TodoPriority, TrackingStore
from milestonecontrol.resources import read_resource_text

SEED_DEFAULT = "default"
SEED_DISABLED = {"none", "off", "false", ""}


class SeedError(ValueError):
    """Raised when a seed definition cannot be read or is malformed."""


@dataclass(frozen=True)
class SeedTodo:
    description: str
    priority: TodoPriority = TodoPriority.MEDIUM


@dataclass(frozen=True)
class SeedTest:
    name: str
    category: str = "unit"


@dataclass(frozen=True)
class SeedMilestone:
    name: str
    phase: int = 1
    golden_path: bool = True
    todos: List[SeedTodo] = field(default_factory=list)
    tests: List[SeedTest] = field(default_factory=list)


def load_seed(source: str, *, base_dir: Path | None = None) -> List[SeedMilestone]:
    """Resolve ``source`` (``default``, ``none`` or a YAML path) into milestones."""

    if source.strip().lower() in SEED_DISABLED:
        return []
    if source == SEED_DEFAULT:
        text = read_resource_text("seed", "default.yaml")
        origin = "packaged default seed"
    else:
        path = Path(source).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        if not path.exists():
            raise SeedError(f"seed file not found: {path}")
        text = path.read_text(encoding="utf-8")
        origin = str(path)
    try:
        payload = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise SeedError(f"{origin} is not valid YAML: {exc}") from exc
    return parse_seed(payload)


def parse_seed(payload: Any) -> List[SeedMilestone]:
    entries = payload.get("milestones", []) if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise SeedError("seed 'milestones' must be a list")
    milestones: List[SeedMilestone] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not entry.get("name"):
            raise SeedError(f"seed milestone #{index} must be a mapping with a name")
        try:
            milestones.append(
                SeedMilestone(
                    name=str(entry["name"]),
                    phase=int(entry.get("phase", index + 1)),
                    golden_path=bool(entry.get("golden_path", True)),
                    todos=[_seed_todo(item) for item in entry.get("todos") or []],
                    tests=[_seed_test(item) for item in entry.get("tests") or []],
                )
            )
        except (TypeError, ValueError) as exc:
            raise SeedError(f"seed milestone {entry.get('name')!r} is invalid: {exc}") from exc
    return milestones


def apply_seed(store: TrackingStore, milestones: List[SeedMilestone]) -> Dict[str, int]:
    counts = {"milestones": 0, "todos": 0, "tests": 0}
    for milestone in milestones:
        milestone_id = store.create_milestone(milestone.name, milestone.golden_path, milestone.phase)
        counts["milestones"] += 1
        for todo in milestone.todos:
            store.create_todo(milestone_id, todo.description, todo.priority)
            counts["todos"] += 1
        for test in milestone.tests:
            store.create_test(milestone_id, test.name, test.category)
            counts["tests"] += 1
    return counts


def _seed_todo(item: Any) -> SeedTodo:
    if isinstance(item, str):
        return SeedTodo(description=item)
    if isinstance(item, dict) and item.get("description"):
        return SeedTodo(
            description=str(item["description"]),
            priority=TodoPriority(item.get("priority", TodoPriority.MEDIUM.value)),
        )
    raise ValueError(f"todo entry must be a string or have a description: {item!r}")


def _seed_test(item: Any) -> SeedTest:
    if isinstance(item, str):
        return SeedTest(name=item)
    if isinstance(item, dict) and item.get("name"):
        return SeedTest(name=str(item["name"]), category=str(item.get("category", "unit")))
    raise ValueError(f"test entry must be a string or have a name: {item!r}")


__all__ = [
    "SeedError",
    "SeedMilestone",
    "SeedTest",
    "SeedTodo",
    "apply_seed",
    "load_seed",
    "parse_seed",
]
