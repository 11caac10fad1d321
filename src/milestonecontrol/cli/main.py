#!/usr/bin/env python3
"""Entry point for the milestonectl CLI."""

from __future__ import annotations

import argparse
import json
import os
import sys
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Dict

from milestonecontrol import __version__
from milestonecontrol.app.tracking import (
    LOCK_FILENAME,
    ConfigError,
    TrackingService,
    TrackingWebApp,
    TrackingWebConfig,
    WorkspaceBusyError,
    WriterLock,
    load_or_create_session_token,
    write_default_config,
)
from milestonecontrol.domain.project import ProjectId, ProjectNotInitialisedError
from milestonecontrol.domain.tracking import StorageError
from milestonecontrol.settings import SETTINGS
from milestonecontrol.utils.telemetry import clear as telemetry_clear
from milestonecontrol.utils.telemetry import iter_events as telemetry_iter
from milestonecontrol.utils.telemetry import record_structured_event, summarize as telemetry_summarize

HELP_OVERVIEW = """\
Track milestones, todos and tests and drive them from a text command log.

Commands are appended to .milestonecontrol/command.log one per line, e.g.
  complete_task: Schema validation
  fail_test: Database connection test
  pass_test: Database connection test
  start_milestone: Frontend Development
"""

_STATUS_MARKS = {"pending": " ", "in_progress": "~", "completed": "x"}


def _default_project_path(path_arg: str | None) -> Path:
    if path_arg:
        return Path(path_arg).expanduser().resolve()
    return Path(os.getcwd())


def _load_project(args: argparse.Namespace) -> tuple[ProjectId, TrackingService] | None:
    project_path = _default_project_path(getattr(args, "path", None))
    try:
        project_id = ProjectId.from_existing(project_path)
        return project_id, TrackingService.for_project(project_id, SETTINGS)
    except ProjectNotInitialisedError as exc:
        print(str(exc), file=sys.stderr)
    except (ConfigError, StorageError) as exc:
        print(f"Cannot open project at {project_path}: {exc}", file=sys.stderr)
    return None


def _writer_lock(project_id: ProjectId) -> WriterLock | None:
    """Claim the project's state for this process, or report who owns it."""

    lock = WriterLock(project_id.state_dir / LOCK_FILENAME)
    try:
        return lock.acquire()
    except WorkspaceBusyError as exc:
        print(f"{exc}; queue the command with 'milestonectl command' instead", file=sys.stderr)
    except StorageError as exc:
        print(str(exc), file=sys.stderr)
    return None


def _load_writer(args: argparse.Namespace) -> tuple[ProjectId, TrackingService, WriterLock] | None:
    """Like :func:`_load_project`, but state is read only after the writer lock is held."""

    project_path = _default_project_path(getattr(args, "path", None))
    try:
        project_id = ProjectId.from_existing(project_path)
    except ProjectNotInitialisedError as exc:
        print(str(exc), file=sys.stderr)
        return None
    lock = _writer_lock(project_id)
    if lock is None:
        return None
    try:
        return project_id, TrackingService.for_project(project_id, SETTINGS), lock
    except (ConfigError, StorageError) as exc:
        lock.release()
        print(f"Cannot open project at {project_path}: {exc}", file=sys.stderr)
    return None


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _init_cmd(args: argparse.Namespace) -> int:
    project_id = ProjectId.for_new_project(_default_project_path(args.path))
    start = time.perf_counter()
    lock = _writer_lock(project_id)
    if lock is None:
        return 1
    try:
        config_path = write_default_config(project_id, force=args.force)
        service = TrackingService.for_project(project_id, SETTINGS)
        service.build_watcher().checkpoint()
        counts = {"milestones": 0, "todos": 0, "tests": 0}
        if not args.no_seed:
            counts = service.seed_if_empty()
    except (ValueError, StorageError) as exc:
        print(f"Init failed: {exc}", file=sys.stderr)
        return 1
    finally:
        lock.release()
    record_structured_event(
        SETTINGS,
        "tracking.init",
        status="success",
        component="cli",
        duration_ms=(time.perf_counter() - start) * 1000,
        payload={"path": str(project_id.root), **counts},
    )
    print(f"Workspace ready at {project_id.workspace_dir}")
    print(f"  config:      {config_path}")
    print(f"  command log: {service.command_log.path}")
    if counts["milestones"]:
        print(
            f"  seeded {counts['milestones']} milestones, {counts['todos']} todos, {counts['tests']} tests"
        )
    return 0


def _status_cmd(args: argparse.Namespace) -> int:
    loaded = _load_project(args)
    if loaded is None:
        return 1
    _, service = loaded
    snapshot = service.state()
    if args.json:
        _print_json(snapshot)
        return 0
    if not snapshot["milestones"]:
        print("No milestones tracked yet")
        return 0
    failing: Dict[int, list[str]] = {}
    for test in snapshot["tests"]:
        if test["status"] == "failed":
            failing.setdefault(test["milestone_id"], []).append(test["name"])
    for milestone in snapshot["milestones"]:
        mark = _STATUS_MARKS.get(milestone["status"], "?")
        golden = "*" if milestone["is_golden_path"] else " "
        print(
            f"[{mark}]{golden} P{milestone['phase']} {milestone['name']}"
            f"  todos {milestone['completed_todos']}/{milestone['total_todos']}"
            f"  tests {milestone['passed_tests']}/{milestone['total_tests']}"
        )
        for name in failing.get(milestone["id"], []):
            print(f"      failing: {name}")
    return 0


def _metrics_cmd(args: argparse.Namespace) -> int:
    loaded = _load_project(args)
    if loaded is None:
        return 1
    _, service = loaded
    metrics = service.metrics()
    if args.json:
        _print_json(metrics)
        return 0
    print(f"Milestones: {metrics['completed_milestones']}/{metrics['total_milestones']} completed")
    print(f"Todos:      {metrics['completed_todos']}/{metrics['total_todos']} completed")
    print(
        f"Tests:      {metrics['passed_tests']} passed, {metrics['failed_tests']} failed,"
        f" {metrics['total_tests']} total"
    )
    return 0


def _regressions_cmd(args: argparse.Namespace) -> int:
    loaded = _load_project(args)
    if loaded is None:
        return 1
    _, service = loaded
    try:
        regressions = service.regressions(args.limit)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if args.json:
        _print_json(regressions)
        return 0
    if not regressions:
        print("No regressions detected")
        return 0
    for event in regressions:
        print(f"{event['timestamp']}  {event['description']}")
    return 0


def _command_cmd(args: argparse.Namespace) -> int:
    if args.apply:
        writer = _load_writer(args)
        if writer is None:
            return 1
        _, service, lock = writer
        try:
            ack = service.process_line(args.text)
        finally:
            lock.release()
        _print_json(ack)
        return 0 if ack["success"] else 1
    loaded = _load_project(args)
    if loaded is None:
        return 1
    _, service = loaded
    try:
        service.submit(args.text)
    except (ValueError, StorageError) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"Queued in {service.command_log.path}")
    return 0


def _watch_cmd(args: argparse.Namespace) -> int:
    writer = _load_writer(args)
    if writer is None:
        return 1
    _, service, lock = writer
    try:
        return _run_watch(args, service)
    finally:
        lock.release()


def _run_watch(args: argparse.Namespace, service: TrackingService) -> int:
    try:
        watcher = service.build_watcher(poll_interval=args.interval)
    except StorageError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    if args.once:
        try:
            report = watcher.poll()
        except StorageError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        if args.json:
            _print_json(report.to_dict())
        else:
            print(f"Processed {len(report.lines)} command(s); cursor at byte {report.end_offset}")
        return 0 if not report.failures else 1
    print(f"Watching {service.command_log.path} every {watcher.poll_interval:.2f}s (Ctrl+C to stop)")
    stop_event = threading.Event()
    try:
        watcher.run(stop_event, max_iterations=args.max_iterations)
    except KeyboardInterrupt:
        print("watch interrupted")
    finally:
        stop_event.set()
    return 0


def _serve_cmd(args: argparse.Namespace) -> int:
    writer = _load_writer(args)
    if writer is None:
        return 1
    project_id, service, lock = writer
    try:
        return _run_server(args, project_id, service)
    finally:
        lock.release()


def _run_server(args: argparse.Namespace, project_id: ProjectId, service: TrackingService) -> int:
    host = args.host or service.config.host
    port = service.config.port if args.port is None else args.port
    if args.token:
        token, session_path = args.token, None
    else:
        token, session_path = load_or_create_session_token(project_id.root)
    try:
        watcher = service.build_watcher()
    except StorageError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    config = TrackingWebConfig(
        project_root=project_id.root,
        token=token,
        host=host,
        port=port,
    )
    app = TrackingWebApp(service, config)
    try:
        server = app.create_server()
    except OSError as exc:
        print(f"Cannot bind {host}:{port}: {exc}", file=sys.stderr)
        return 1
    stop_event = threading.Event()
    watch_thread = threading.Thread(
        target=watcher.run,
        args=(stop_event,),
        name="milestonectl-watch",
        daemon=True,
    )
    actual_host, actual_port = server.server_address[:2]
    start = time.perf_counter()
    watch_thread.start()
    print(f"Milestone tracker listening on http://{actual_host}:{actual_port}/")
    print(f"Authorization token: {token}")
    if session_path:
        print(f"Session token saved in {session_path}")
    print(f"Watching {service.command_log.path}")
    print(
        "Endpoints: / (UI), /healthz, /api/milestones/{state,metrics,regressions},"
        " /api/commands/recent, POST /api/commands, /sse/events"
    )
    print("Press Ctrl+C to stop.")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("Stopping milestone tracker")
    finally:
        stop_event.set()
        app.shutdown()
        server.shutdown()
        server.server_close()
        watch_thread.join(timeout=max(watcher.poll_interval * 2, 1.0))
    record_structured_event(
        SETTINGS,
        "tracking.serve",
        status="success",
        component="cli",
        duration_ms=(time.perf_counter() - start) * 1000,
        payload={"bind": actual_host, "port": actual_port},
    )
    return 0


def _telemetry_cmd(args: argparse.Namespace) -> int:
    if args.telemetry_command == "summary":
        recent = getattr(args, "recent", 0)
        if recent and recent > 0:
            events = list(deque(telemetry_iter(SETTINGS), maxlen=recent))
        else:
            events = list(telemetry_iter(SETTINGS))
        _print_json(telemetry_summarize(events))
        return 0
    if args.telemetry_command == "clear":
        telemetry_clear(SETTINGS)
        print("Telemetry log cleared")
        return 0
    if args.telemetry_command == "tail":
        for evt in deque(telemetry_iter(SETTINGS), maxlen=args.limit):
            if args.level and evt.get("level") != args.level:
                continue
            print(json.dumps(evt, ensure_ascii=False))
        return 0
    print("Unsupported telemetry command", file=sys.stderr)
    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="milestonectl",
        description=HELP_OVERVIEW,
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"milestonectl {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    init_cmd = sub.add_parser("init", help="Create the workspace, default config and seed data")
    init_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    init_cmd.add_argument("--force", action="store_true", help="Overwrite an existing config.yaml")
    init_cmd.add_argument("--no-seed", action="store_true", help="Do not load seed milestones")
    init_cmd.set_defaults(func=_init_cmd)

    status_cmd = sub.add_parser("status", help="Show milestones with todo and test progress")
    status_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    status_cmd.add_argument("--json", action="store_true", help="Print the full snapshot as JSON")
    status_cmd.set_defaults(func=_status_cmd)

    metrics_cmd = sub.add_parser("metrics", help="Show aggregate counts")
    metrics_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    metrics_cmd.add_argument("--json", action="store_true", help="Print metrics as JSON")
    metrics_cmd.set_defaults(func=_metrics_cmd)

    regressions_cmd = sub.add_parser("regressions", help="List recent test regressions, newest first")
    regressions_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    regressions_cmd.add_argument("--limit", type=int, default=None, help="Maximum entries (default: config)")
    regressions_cmd.add_argument("--json", action="store_true", help="Print regressions as JSON")
    regressions_cmd.set_defaults(func=_regressions_cmd)

    command_cmd = sub.add_parser("command", help="Append a 'verb: target' command to the command log")
    command_cmd.add_argument("text", help="Command line, e.g. 'complete_task: Schema validation'")
    command_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    command_cmd.add_argument("--apply", action="store_true", help="Process now instead of queueing for the watcher")
    command_cmd.set_defaults(func=_command_cmd)

    watch_cmd = sub.add_parser("watch", help="Tail the command log and apply new commands")
    watch_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    watch_cmd.add_argument("--once", action="store_true", help="Process pending commands and exit")
    watch_cmd.add_argument("--interval", type=float, default=None, help="Polling interval in seconds")
    watch_cmd.add_argument("--max-iterations", type=int, default=0, help="Stop after N polls (0 = forever)")
    watch_cmd.add_argument("--json", action="store_true", help="With --once, print the poll report as JSON")
    watch_cmd.set_defaults(func=_watch_cmd)

    serve_cmd = sub.add_parser("serve", help="Run the watcher together with the HTTP/SSE server")
    serve_cmd.add_argument("path", nargs="?", help="Project path (default: current directory)")
    serve_cmd.add_argument("--host", default=None, help="Bind address (default: config web.host)")
    serve_cmd.add_argument("--port", type=int, default=None, help="Port (default: config web.port, 0 = random)")
    serve_cmd.add_argument("--token", default=None, help="Use this bearer token instead of the session token")
    serve_cmd.set_defaults(func=_serve_cmd)

    telemetry_cmd = sub.add_parser("telemetry", help="Inspect the structured event log")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_summary = telemetry_sub.add_parser("summary", help="Counts by event and level")
    telemetry_summary.add_argument("--recent", type=int, default=0, help="Only the last N events")
    telemetry_tail = telemetry_sub.add_parser("tail", help="Print the last events")
    telemetry_tail.add_argument("--limit", type=int, default=20)
    telemetry_tail.add_argument("--level", choices=["info", "warn", "error"], default=None)
    telemetry_sub.add_parser("clear", help="Delete the telemetry log")
    telemetry_cmd.set_defaults(func=_telemetry_cmd)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
