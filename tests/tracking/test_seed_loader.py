from __future__ import annotations

from pathlib import Path

import pytest

from milestonecontrol.app.tracking import SeedError, apply_seed, load_seed
from milestonecontrol.domain.tracking import TodoPriority, TrackingStore


def test_packaged_seed_has_five_phased_milestones() -> None:
    milestones = load_seed("default")
    assert [milestone.phase for milestone in milestones] == [1, 2, 3, 4, 5]
    database = milestones[1]
    assert database.name == "Database Integration & Schema"
    assert [test.name for test in database.tests] == [
        "Database connection test",
        "Schema validation test",
        "Data migration test",
    ]
    assert all(milestone.golden_path for milestone in milestones)


def test_disabled_seed_is_empty() -> None:
    assert load_seed("none") == []


def test_custom_seed_file(tmp_path: Path) -> None:
    seed_path = tmp_path / "team.yaml"
    seed_path.write_text(
        "\n".join(
            [
                "milestones:",
                "  - name: Mobile Release",
                "    phase: 2",
                "    golden_path: false",
                "    todos:",
                "      - description: App store listing",
                "        priority: high",
                "      - Crash reporting",
                "    tests:",
                "      - name: Offline sync test",
                "        category: e2e",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    store = TrackingStore()

    counts = apply_seed(store, load_seed(str(seed_path)))

    assert counts == {"milestones": 1, "todos": 2, "tests": 1}
    milestone = store.find_milestone("Mobile Release")
    assert milestone.phase == 2
    assert milestone.is_golden_path is False
    assert store.find_todo("App store").priority is TodoPriority.HIGH
    assert store.find_test("Offline sync").category == "e2e"


def test_relative_seed_path_uses_base_dir(tmp_path: Path) -> None:
    (tmp_path / "seed.yaml").write_text("milestones:\n  - name: Only\n", encoding="utf-8")
    assert [milestone.name for milestone in load_seed("seed.yaml", base_dir=tmp_path)] == ["Only"]


@pytest.mark.parametrize(
    "text",
    [
        "milestones: nope\n",
        "milestones:\n  - phase: 1\n",
        "milestones:\n  - name: Bad\n    todos:\n      - 42\n",
        "milestones:\n  - name: Bad\n    todos:\n      - description: x\n        priority: urgent\n",
        "milestones: [unterminated\n",
    ],
)
def test_malformed_seed_raises(tmp_path: Path, text: str) -> None:
    seed_path = tmp_path / "bad.yaml"
    seed_path.write_text(text, encoding="utf-8")
    with pytest.raises(SeedError):
        load_seed(str(seed_path))


def test_missing_seed_file_raises(tmp_path: Path) -> None:
    with pytest.raises(SeedError):
        load_seed(str(tmp_path / "missing.yaml"))
