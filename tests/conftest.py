from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Callable, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
SANDBOX_HOME = ROOT / ".test_place" / "global-home"
os.environ.setdefault("MILESTONECONTROL_HOME", str(SANDBOX_HOME))
SANDBOX_HOME.mkdir(parents=True, exist_ok=True)
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from milestonecontrol import __version__  # noqa: E402
from milestonecontrol.app.tracking import TrackingConfig, TrackingService, load_tracking_config  # noqa: E402
from milestonecontrol.cli import main as cli_main  # noqa: E402
from milestonecontrol.domain.project import ProjectId  # noqa: E402
from milestonecontrol.domain.tracking import TrackingStore  # noqa: E402
from milestonecontrol.settings import RuntimeSettings  # noqa: E402
from milestonecontrol.utils.telemetry import iter_events  # noqa: E402
import milestonecontrol.settings as settings_module  # noqa: E402


@pytest.fixture()
def runtime_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> RuntimeSettings:
    base = tmp_path / "runtime"
    home = base / "home"
    state_dir = base / "state"
    log_dir = base / "logs"
    for directory in (home, state_dir, log_dir):
        directory.mkdir(parents=True, exist_ok=True)
    settings = RuntimeSettings(
        home_dir=home,
        state_dir=state_dir,
        log_dir=log_dir,
        cli_version=__version__,
    )
    monkeypatch.delenv("MILESTONECONTROL_TELEMETRY", raising=False)
    monkeypatch.setattr(settings_module, "SETTINGS", settings, raising=False)
    monkeypatch.setattr(cli_main, "SETTINGS", settings, raising=False)
    return settings


@pytest.fixture()
def telemetry_events(runtime_settings: RuntimeSettings) -> Callable[..., List[dict]]:
    def _read(event: str | None = None, level: str | None = None) -> List[dict]:
        return [
            record
            for record in iter_events(runtime_settings)
            if (event is None or record["event"] == event) and (level is None or record["level"] == level)
        ]

    return _read


@pytest.fixture()
def project_id(tmp_path: Path) -> ProjectId:
    root = tmp_path / "workspace"
    root.mkdir(parents=True, exist_ok=True)
    project = ProjectId.for_new_project(root)
    project.workspace_dir.mkdir(parents=True, exist_ok=True)
    return project


@pytest.fixture()
def tracking_config(project_id: ProjectId) -> TrackingConfig:
    return load_tracking_config(project_id)


@pytest.fixture()
def service(tracking_config: TrackingConfig, runtime_settings: RuntimeSettings) -> TrackingService:
    return TrackingService(tracking_config, runtime_settings)


@pytest.fixture()
def seeded_service(service: TrackingService) -> TrackingService:
    service.seed_if_empty()
    return service


@pytest.fixture()
def database_store() -> TrackingStore:
    """One phase-2 milestone with a pending schema test and two open todos."""

    store = TrackingStore()
    milestone_id = store.create_milestone("Database Integration", phase=2)
    store.create_todo(milestone_id, "PostgreSQL database setup")
    store.create_todo(milestone_id, "Schema migration scripts")
    store.create_test(milestone_id, "Schema validation test", "integration")
    return store
