from __future__ import annotations

import http.client
import json
import threading
import time
from typing import Any, Iterator, Tuple

import pytest

from milestonecontrol.app.tracking import (
    TrackingService,
    TrackingWebApp,
    TrackingWebConfig,
    load_or_create_session_token,
)
from milestonecontrol.domain.project import ProjectId


@pytest.fixture()
def web(seeded_service: TrackingService, project_id: ProjectId) -> Iterator[Tuple[int, str]]:
    token, _ = load_or_create_session_token(project_id.root)
    config = TrackingWebConfig(project_root=project_id.root, token=token, host="127.0.0.1", port=0)
    app = TrackingWebApp(seeded_service, config)
    server = app.create_server()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    time.sleep(0.1)
    port = server.server_address[1]
    try:
        yield port, token
    finally:
        app.shutdown()
        server.shutdown()
        server.server_close()
        thread.join(timeout=2)


def _request(
    port: int,
    method: str,
    path: str,
    *,
    token: str | None = None,
    body: Any = None,
) -> Tuple[int, Any]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    headers = {}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    data = None
    if body is not None:
        data = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
        headers["Content-Type"] = "application/json"
    conn.request(method, path, body=data, headers=headers)
    resp = conn.getresponse()
    raw = resp.read().decode("utf-8")
    conn.close()
    return resp.status, json.loads(raw) if raw else None


def _read_event(resp: http.client.HTTPResponse) -> Tuple[str, dict]:
    kind = ""
    while True:
        raw = resp.fp.readline()
        assert raw, "event stream closed"
        line = raw.decode("utf-8").rstrip("\n")
        if line.startswith("event: "):
            kind = line[7:]
        elif line.startswith("data: "):
            return kind, json.loads(line[6:])


def test_session_token_is_reused(project_id: ProjectId) -> None:
    first, path = load_or_create_session_token(project_id.root)
    second, _ = load_or_create_session_token(project_id.root)
    assert first == second
    assert path == project_id.state_dir / "session.json"


def test_healthz_needs_no_token(web: Tuple[int, str]) -> None:
    port, _ = web
    assert _request(port, "GET", "/healthz") == (200, {"status": "ok"})


def test_api_requires_token(web: Tuple[int, str]) -> None:
    port, token = web
    status, _ = _request(port, "GET", "/api/milestones/state")
    assert status == 401
    status, _ = _request(port, "GET", "/api/milestones/state", token="wrong")
    assert status == 401
    status, payload = _request(port, "GET", f"/api/milestones/metrics?token={token}")
    assert status == 200
    assert payload["total_milestones"] == 5


def test_state_endpoint_returns_snapshot(web: Tuple[int, str]) -> None:
    port, token = web
    status, payload = _request(port, "GET", "/api/milestones/state", token=token)
    assert status == 200
    assert [item["phase"] for item in payload["milestones"]] == [1, 2, 3, 4, 5]
    assert payload["recentActivity"]


def test_post_command_applies_and_regressions_follow(web: Tuple[int, str]) -> None:
    port, token = web
    status, ack = _request(port, "POST", "/api/commands", token=token, body={"command": "pass_test: Schema validation"})
    assert status == 200
    assert ack["success"] is True and ack["stateChanged"] is True
    _request(port, "POST", "/api/commands", token=token, body={"command": "fail_test: Schema validation"})

    status, payload = _request(port, "GET", "/api/milestones/regressions?limit=1", token=token)
    assert status == 200
    assert len(payload["regressions"]) == 1
    assert payload["regressions"][0]["payload"]["isRegression"] is True


@pytest.mark.parametrize(
    "body",
    [
        {"command": "no separator"},
        {"command": ""},
        {"text": "pass_test: x"},
        b"{broken json",
    ],
)
def test_post_command_rejects_bad_input(web: Tuple[int, str], body: Any) -> None:
    port, token = web
    status, payload = _request(port, "POST", "/api/commands", token=token, body=body)
    assert status == 400
    assert payload["error"]


def test_bad_limit_and_unknown_route(web: Tuple[int, str]) -> None:
    port, token = web
    status, _ = _request(port, "GET", "/api/milestones/regressions?limit=lots", token=token)
    assert status == 400
    status, _ = _request(port, "GET", "/api/unknown", token=token)
    assert status == 404


def test_recent_commands_endpoint(web: Tuple[int, str], seeded_service: TrackingService) -> None:
    port, token = web
    seeded_service.submit("pass_test: Performance tests")
    status, payload = _request(port, "GET", "/api/commands/recent?limit=5", token=token)
    assert status == 200
    assert payload["commands"] == ["pass_test: Performance tests"]


def test_sse_streams_state_and_acknowledgements(web: Tuple[int, str]) -> None:
    port, token = web
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    conn.request("GET", f"/sse/events?token={token}")
    resp = conn.getresponse()
    assert resp.status == 200
    kind, payload = _read_event(resp)
    assert kind == "milestone_state_update"
    assert payload["trigger"] is None

    _request(port, "POST", "/api/commands", token=token, body={"command": "complete_task: Security audit"})

    kinds = []
    while "command_processed" not in kinds:
        kind, payload = _read_event(resp)
        kinds.append(kind)
    assert kinds == ["milestone_state_update", "milestone_metrics_update", "command_processed"]
    assert payload["command"] == "complete_task: Security audit"
    conn.close()
