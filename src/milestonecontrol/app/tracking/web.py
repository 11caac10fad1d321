"""HTTP/SSE surface for the milestone tracker."""

from __future__ import annotations

import json
import secrets
import threading
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from socketserver import ThreadingMixIn
from typing import Any
from urllib.parse import parse_qs, urlparse

from milestonecontrol.domain.project import PROJECT_DIR
from milestonecontrol.domain.tracking import NotFoundError, StorageError, parse_command
from milestonecontrol.utils.telemetry import record_structured_event

from .broadcast import STATE_EVENT, BroadcastMessage
from .service import TrackingService

_SESSION_FILENAME = "session.json"
_MAX_BODY_BYTES = 64 * 1024
_HTML_TEMPLATE = """<!doctype html><html><head><meta charset='utf-8'><title>Milestone Tracker</title>
<style>
body {{ font-family: system-ui, sans-serif; margin: 2rem; background: #0c0d13; color: #fafafa; }}
pre {{ background: #161821; padding: 1rem; border-radius: 8px; overflow-x: auto; max-height: 32rem; }}
section {{ margin-bottom: 2rem; }}
code {{ background: #1e2130; padding: 0.2rem 0.4rem; border-radius: 4px; }}
</style>
</head><body>
<h1>Milestone Tracker</h1>
<p>Live milestone state for <code>{project}</code>. Token required for API calls.</p>
<section><h2>Metrics</h2><pre id="metrics">Connecting…</pre></section>
<section><h2>Milestones</h2><pre id="milestones">–</pre></section>
<section><h2>Last command</h2><pre id="command">–</pre></section>
<section>
  <h2>Send a command</h2>
  <pre>curl -X POST \
  -H 'Authorization: Bearer {token}' \
  -d '{{"command": "complete_task: Schema validation"}}' \
  http://{host}:{port}/api/commands</pre>
</section>
<script>
const token = {token_json};
const source = new EventSource(`/sse/events?token=${{token}}`);
const show = (id, value) => {{ document.getElementById(id).textContent = JSON.stringify(value, null, 2); }};
source.addEventListener('milestone_state_update', (event) => {{
  const payload = JSON.parse(event.data);
  show('milestones', payload.milestones);
}});
source.addEventListener('milestone_metrics_update', (event) => show('metrics', JSON.parse(event.data)));
source.addEventListener('command_processed', (event) => show('command', JSON.parse(event.data)));
source.onerror = () => {{
  document.getElementById('metrics').textContent = 'Connection lost. Retrying…';
}};
</script>
</body></html>"""


def _state_dir(project_root: Path) -> Path:
    return project_root / PROJECT_DIR / "state"


def load_or_create_session_token(project_root: Path) -> tuple[str, Path]:
    state_dir = _state_dir(project_root)
    state_dir.mkdir(parents=True, exist_ok=True)
    session_path = state_dir / _SESSION_FILENAME
    if session_path.exists():
        try:
            payload = json.loads(session_path.read_text(encoding="utf-8"))
            token = payload.get("token")
            if isinstance(token, str) and token:
                return token, session_path
        except json.JSONDecodeError:
            session_path.unlink(missing_ok=True)
    token = secrets.token_urlsafe(32)
    payload = {
        "token": token,
        "generated_at": time.time(),
    }
    session_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
    return token, session_path


@dataclass
class TrackingWebConfig:
    project_root: Path
    token: str
    host: str
    port: int
    keepalive: float = 15.0


class ThreadedHTTPServer(ThreadingMixIn, HTTPServer):
    daemon_threads = True


class TrackingWebApp:
    """Serves snapshots, accepts commands and streams broadcaster events."""

    def __init__(self, service: TrackingService, config: TrackingWebConfig) -> None:
        self._service = service
        self._config = config
        self._stop_event = threading.Event()

    @property
    def config(self) -> TrackingWebConfig:
        return self._config

    @property
    def service(self) -> TrackingService:
        return self._service

    def shutdown(self) -> None:
        self._stop_event.set()

    def create_server(self) -> ThreadedHTTPServer:
        app = self
        config = self._config
        service = self._service

        class Handler(BaseHTTPRequestHandler):
            def log_message(self, format: str, *args: object) -> None:  # noqa: A003 - silence default logging
                return

            def _write_json(self, status: HTTPStatus, payload: Any) -> None:
                data = json.dumps(payload, ensure_ascii=False).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json; charset=utf-8")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def _write_error(self, status: HTTPStatus, message: str) -> None:
                self._write_json(status, {"error": message, "status": status.value})

            def _require_auth(self) -> bool:
                token = self._extract_token()
                if token is None or not secrets.compare_digest(token, config.token):
                    self.send_response(HTTPStatus.UNAUTHORIZED)
                    self.send_header("WWW-Authenticate", "Bearer")
                    self.send_header("Content-Length", "0")
                    self.end_headers()
                    return False
                return True

            def _extract_token(self) -> str | None:
                auth = self.headers.get("Authorization", "")
                if auth.startswith("Bearer "):
                    return auth[7:]
                params = parse_qs(urlparse(self.path).query)
                tokens = params.get("token")
                if tokens:
                    return tokens[0]
                return None

            def _limit(self, query: dict[str, list[str]], default: int) -> int:
                raw = query.get("limit")
                if not raw:
                    return default
                value = int(raw[0])
                if value < 0:
                    raise ValueError(f"limit must be >= 0, got {value}")
                return value

            def _dispatch(self, handler: Any) -> None:
                try:
                    handler()
                except NotFoundError as exc:
                    self._write_error(HTTPStatus.NOT_FOUND, str(exc))
                except StorageError as exc:
                    record_structured_event(
                        service.settings,
                        "tracking.web.error",
                        level="error",
                        status="error",
                        component="web",
                        payload={"path": urlparse(self.path).path, "error": str(exc)},
                    )
                    self._write_error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
                except ValueError as exc:
                    self._write_error(HTTPStatus.BAD_REQUEST, str(exc))

            def do_GET(self) -> None:  # noqa: N802
                parsed = urlparse(self.path)
                query = parse_qs(parsed.query)
                if parsed.path == "/":
                    self._serve_index()
                    return
                if parsed.path == "/healthz":
                    self._write_json(HTTPStatus.OK, {"status": "ok"})
                    return
                routes = {
                    "/api/milestones/state": lambda: self._write_json(HTTPStatus.OK, service.state()),
                    "/api/milestones/metrics": lambda: self._write_json(HTTPStatus.OK, service.metrics()),
                    "/api/milestones/regressions": lambda: self._write_json(
                        HTTPStatus.OK,
                        {"regressions": service.regressions(self._limit(query, service.config.regression_limit))},
                    ),
                    "/api/commands/recent": lambda: self._write_json(
                        HTTPStatus.OK,
                        {"commands": service.recent_commands(self._limit(query, 10))},
                    ),
                    "/sse/events": self._serve_sse,
                }
                handler = routes.get(parsed.path)
                if handler is None:
                    self._write_error(HTTPStatus.NOT_FOUND, f"no route for {parsed.path}")
                    return
                if not self._require_auth():
                    return
                self._dispatch(handler)

            def do_POST(self) -> None:  # noqa: N802
                parsed = urlparse(self.path)
                if parsed.path != "/api/commands":
                    self._write_error(HTTPStatus.NOT_FOUND, f"no route for {parsed.path}")
                    return
                if not self._require_auth():
                    return
                self._dispatch(self._post_command)

            def _post_command(self) -> None:
                length = int(self.headers.get("Content-Length") or 0)
                if length <= 0 or length > _MAX_BODY_BYTES:
                    raise ValueError("request body must be a JSON object of at most 64KiB")
                body = json.loads(self.rfile.read(length).decode("utf-8"))
                command = body.get("command") if isinstance(body, dict) else None
                if not isinstance(command, str) or not command.strip():
                    raise ValueError("field 'command' must be a non-empty string")
                parse_command(command)
                ack = service.process_line(command)
                record_structured_event(
                    service.settings,
                    "tracking.web.command",
                    status="success" if ack["success"] else "error",
                    component="web",
                    payload={"command": command, "stateChanged": ack.get("stateChanged", False)},
                )
                if not ack["success"]:
                    raise StorageError(ack.get("error", "command failed"))
                self._write_json(HTTPStatus.OK, ack)

            def _serve_index(self) -> None:
                project_name = config.project_root.name or str(config.project_root)
                html = _HTML_TEMPLATE.format(
                    project=project_name,
                    token=config.token,
                    token_json=json.dumps(config.token),
                    host=config.host,
                    port=config.port,
                )
                data = html.encode("utf-8")
                self.send_response(HTTPStatus.OK)
                self.send_header("Content-Type", "text/html; charset=utf-8")
                self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            def _send_event(self, message: BroadcastMessage) -> None:
                data = json.dumps(message.payload, ensure_ascii=False)
                self.wfile.write(f"event: {message.kind}\ndata: {data}\n\n".encode("utf-8"))
                self.wfile.flush()

            def _serve_sse(self) -> None:
                subscription = service.broadcaster.subscribe()
                try:
                    self.send_response(HTTPStatus.OK)
                    self.send_header("Content-Type", "text/event-stream; charset=utf-8")
                    self.send_header("Cache-Control", "no-cache")
                    self.send_header("Connection", "keep-alive")
                    self.end_headers()
                    self._send_event(BroadcastMessage(STATE_EVENT, {**service.state(), "trigger": None}))
                    idle_since = time.monotonic()
                    while not app._stop_event.is_set():
                        message = subscription.get(timeout=0.5)
                        if message is not None:
                            self._send_event(message)
                            idle_since = time.monotonic()
                        elif time.monotonic() - idle_since >= config.keepalive:
                            self.wfile.write(b": keepalive\n\n")
                            self.wfile.flush()
                            idle_since = time.monotonic()
                except (BrokenPipeError, ConnectionResetError):
                    return
                finally:
                    service.broadcaster.unsubscribe(subscription)

        server = ThreadedHTTPServer((config.host, config.port), Handler)
        return server


__all__ = [
    "TrackingWebApp",
    "TrackingWebConfig",
    "load_or_create_session_token",
]
