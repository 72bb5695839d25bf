"""Application entrypoint — start the API server or run one-off commands."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import uvicorn

from skane_engine.config import get_settings
from skane_engine.errors import ValidationFailure
from skane_engine.logger import setup_logging


def _classify(path: str) -> int:
    """Print the assessment of a snapshot JSON file (``-`` reads stdin)."""
    from skane_engine.sessions.lifecycle import create_session_manager

    if path == "-":
        payload = json.load(sys.stdin)
    else:
        with open(path, encoding="utf-8") as fh:
            payload = json.load(fh)

    manager = create_session_manager(get_settings())
    try:
        assessment = manager.assess(payload)
    except ValidationFailure as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 2
    print(assessment.model_dump_json(indent=2))
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="skane-engine",
        description="Skane session engine: scan, act, feel, score.",
    )
    sub = parser.add_subparsers(dest="command")

    # ── serve ─────────────────────────────────────────────────
    serve_parser = sub.add_parser("serve", help="Start the API server.")
    serve_parser.add_argument("--host", default=None)
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")

    # ── init-db ───────────────────────────────────────────────
    sub.add_parser("init-db", help="Create database tables.")

    # ── classify ──────────────────────────────────────────────
    classify_parser = sub.add_parser("classify", help="Assess a signal snapshot JSON file.")
    classify_parser.add_argument("file", help="Path to a snapshot JSON file, or - for stdin.")

    args = parser.parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_level)

    if args.command == "serve":
        uvicorn.run(
            "skane_engine.api.server:app",
            host=args.host or settings.api_host,
            port=args.port or settings.api_port,
            reload=args.reload,
        )
    elif args.command == "init-db":
        from skane_engine.storage.database import init_db

        asyncio.run(init_db())
        print("Database tables created.")
    elif args.command == "classify":
        sys.exit(_classify(args.file))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
