"""Command-line interface for opsdeck.

Provides the main entry point for running the dashboard server and
for inspecting or killing sessions on a running server.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="opsdeck",
        description="Local operations dashboard for the agent runtime",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/opsdeck.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the dashboard HTTP server")
    serve_parser.add_argument("--host", type=str, default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    subparsers.add_parser("sessions", help="List sessions on a running server")

    kill_parser = subparsers.add_parser("kill", help="Kill a session on a running server")
    kill_parser.add_argument("session", type=str, help="Session id")

    attach_parser = subparsers.add_parser(
        "attach", help="Print a session's output (replay, then live) until it ends"
    )
    attach_parser.add_argument("session", type=str, help="Session id")

    return parser.parse_args(argv)


def _base_url(settings) -> str:
    host = settings.server.host
    if host in ("0.0.0.0", "::"):
        host = "127.0.0.1"
    return f"http://{host}:{settings.server.port}"


def _list_sessions(settings) -> int:
    """Print the sessions of a running server."""
    import httpx

    try:
        resp = httpx.get(f"{_base_url(settings)}/terminal", params={"action": "list"}, timeout=5.0)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Could not reach dashboard: {e}", file=sys.stderr)
        return 1

    sessions = resp.json().get("sessions", [])
    if not sessions:
        print("No sessions")
        return 0
    print(f"{'ID':<10} {'KIND':<10} {'ALIVE':<6} {'STARTED':<20} AGE")
    for s in sessions:
        started = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(s["created_at"]))
        print(f"{s['id']:<10} {s['kind']:<10} {str(s['alive']).lower():<6} {started:<20} {s['age_seconds']}s")
    return 0


def _kill_session(settings, session_id: str) -> int:
    import httpx

    try:
        resp = httpx.post(
            f"{_base_url(settings)}/terminal",
            json={"action": "kill", "session": session_id},
            timeout=5.0,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        print(f"Could not reach dashboard: {e}", file=sys.stderr)
        return 1
    print(f"Killed {session_id}")
    return 0


def _attach_session(settings, session_id: str) -> int:
    """Follow a session's SSE stream and print its frames.

    Returns 0 when the session ended cleanly, 1 otherwise.
    """
    import httpx

    from opsdeck.domain.models import frame_adapter, is_terminal

    url = f"{_base_url(settings)}/terminal"
    try:
        with httpx.stream("GET", url, params={"session": session_id}, timeout=None) as resp:
            if resp.status_code != 200:
                print(f"Cannot attach to {session_id}: HTTP {resp.status_code}", file=sys.stderr)
                return 1
            for line in resp.iter_lines():
                if not line.startswith("data: "):
                    continue
                frame = frame_adapter.validate_json(line[len("data: "):])
                if frame.type == "output":
                    sys.stdout.write(frame.text)
                    sys.stdout.flush()
                elif frame.type in ("qr", "log"):
                    print(frame.text)
                elif frame.type == "status" and not frame.alive:
                    # Dead session: the replay already held its last frame
                    return 0
                elif is_terminal(frame):
                    if frame.text:
                        print(f"\n{frame.text}")
                    code = getattr(frame, "code", None)
                    return 0 if frame.type != "error" and code in (0, None) else 1
    except httpx.HTTPError as e:
        print(f"Could not reach dashboard: {e}", file=sys.stderr)
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the opsdeck CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return 0

    from opsdeck.config.settings import load_settings
    from opsdeck.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        if args.host:
            settings.server.host = args.host
        if args.port:
            settings.server.port = args.port
        logger.info("Starting dashboard on %s:%d", settings.server.host, settings.server.port)
        from opsdeck.endpoint.server import create_app
        import uvicorn
        uvicorn.run(
            create_app(settings),
            host=settings.server.host,
            port=settings.server.port,
        )
        return 0

    if args.command == "sessions":
        return _list_sessions(settings)

    if args.command == "kill":
        return _kill_session(settings, args.session)

    if args.command == "attach":
        return _attach_session(settings, args.session)

    return 0


if __name__ == "__main__":
    sys.exit(main())
