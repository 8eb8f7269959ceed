"""CLI entrypoint: run the deploy server under uvicorn."""

from __future__ import annotations

import argparse
import logging
import sys

import uvicorn
from pydantic import ValidationError

from xylo_deployer import __version__
from xylo_deployer.deployer.logging import configure_logging
from xylo_deployer.server.config import ServerSettings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xylo-deployer",
        description="Deploy the XYLO-MD bot to GitHub Actions from a web UI",
    )
    parser.add_argument("--version", action="version", version=f"xylo-deployer {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP/WebSocket server")
    serve.add_argument("--host", default=None, help="Bind address (defaults to HOST)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (defaults to PORT)")
    serve.add_argument("--log-level", default=None, help="Root log level (defaults to LOG_LEVEL)")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = ServerSettings()
    except ValidationError as e:
        # Logging isn't configured yet.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(args.log_level or settings.log_level)

    if args.command == "serve":
        host = args.host or settings.host
        port = args.port or settings.port
        logger.info("Starting server", extra={"host": host, "port": port})
        uvicorn.run(
            "xylo_deployer.server.app:create_app",
            factory=True,
            host=host,
            port=port,
            log_config=None,
        )
        return 0

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
