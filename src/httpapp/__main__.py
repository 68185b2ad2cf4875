"""
=============================================================================
HTTPAPP CLI ENTRY POINT
=============================================================================

    python -m httpapp

    python -m httpapp --address :9000

    python -m httpapp --address /run/httpapp.sock

    python -m httpapp --log-format json --hide-stacktrace

Configuration is read from the environment first (see
``AppConfig.from_env``); flags given on the command line win.

The demo application answers:

    GET /health     {"status":"ok"}
    GET /version    {"version":...,"BuildTime":...,"showStacktrace":...}

=============================================================================
"""

import argparse
import dataclasses
import logging
import sys

from . import __version__
from .app import Application
from .config import AppConfig
from .errors import ShutdownError
from .log import setup_logging


logger = logging.getLogger(__name__)


def health(ctx):
    ctx.response_with_json({"status": "ok"})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpapp",
        description="Serve an httpapp application on a unix socket or TCP address",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpapp                              # 127.0.0.1:8080
  python -m httpapp --address :9000              # all interfaces, port 9000
  python -m httpapp --address /run/httpapp.sock  # unix domain socket
  python -m httpapp --log-format json            # JSON log lines
        """,
    )

    parser.add_argument(
        "--address", "-a",
        default=None,
        help="Socket path or host:port (default: $APP_ADDRESS or 127.0.0.1:8080)",
    )

    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: $APP_LOG_LEVEL or INFO)",
    )

    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log line format (default: $APP_LOG_FORMAT or text)",
    )

    parser.add_argument(
        "--hide-stacktrace",
        action="store_true",
        help="Leave stack traces out of error responses",
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httpapp {__version__}",
    )

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = AppConfig.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    overrides = {}
    if args.address is not None:
        overrides["address"] = args.address
    if args.log_level is not None:
        overrides["log_level"] = args.log_level
    if args.log_format is not None:
        overrides["log_format"] = args.log_format
    if args.hide_stacktrace:
        overrides["show_stacktrace"] = "hide"
    config = dataclasses.replace(config, **overrides)

    setup_logging(config.log_level, config.log_format)

    try:
        app = Application(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    app.get("/health")(health)

    try:
        app.run_until_signal()
    except ShutdownError as e:
        logger.error("shutdown incomplete: %s", e)
        return 1
    except (OSError, ValueError) as e:
        logger.error("cannot serve on %s: %s", config.address, e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
