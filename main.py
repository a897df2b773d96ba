"""Command-line entry point for serving CoachBot or running one poll pass."""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING

from coachbot.api import Services
from coachbot.config import config
from coachbot.errors import CoachBotError, ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger

PROJECT_ROOT = Path(__file__).resolve().parent
APP_FACTORY = "coachbot.api:create_app"


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Serve the CoachBot API or reconcile chat messages once.",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the HTTP API (default).")
    serve.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the API server (default: 8000).",
    )
    serve.add_argument(
        "--address",
        default="127.0.0.1",
        help="Bind address for the API server (default: 127.0.0.1).",
    )
    serve.add_argument(
        "--reload",
        action="store_true",
        help="Restart the server when source files change.",
    )

    poll = subparsers.add_parser("poll", help="Answer unanswered mentions once.")
    poll.add_argument(
        "--experience-id",
        default=os.getenv("EXPERIENCE_ID", ""),
        help="Experience to poll (default: EXPERIENCE_ID environment variable).",
    )

    parser.set_defaults(command="serve", port=8000, address="127.0.0.1", reload=False)
    return parser.parse_args(argv)


def build_uvicorn_command(*, port: int, address: str, reload: bool) -> list[str]:
    """Construct the uvicorn CLI invocation."""  # noqa: DOC201
    command = [
        sys.executable,
        "-m",
        "uvicorn",
        APP_FACTORY,
        "--factory",
        "--host",
        address,
        "--port",
        str(port),
    ]
    if reload:
        command.append("--reload")
    return command


def run_server(command: Sequence[str], logger: Logger) -> int:
    """Execute the configured uvicorn command and return its exit code."""  # noqa: DOC201
    try:
        result = subprocess.run(
            command,
            check=False,
            cwd=PROJECT_ROOT,
        )
    except KeyboardInterrupt:
        logger.info("CoachBot stopped by user")
        return 0
    except OSError:
        logger.exception("Unable to launch uvicorn")
        return 1
    return result.returncode


async def poll_once(experience_id: str) -> int:
    """Run one reconciliation pass for an experience."""  # noqa: DOC201
    services = Services.from_config()
    try:
        return await services.reconciler.poll(experience_id)
    finally:
        await services.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration, then serve or poll."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ConfigurationError:
        logger.exception("Configuration invalid")
        return 1

    if args.command == "poll":
        if not args.experience_id:
            logger.error("No experience id given; use --experience-id or EXPERIENCE_ID")
            return 1
        try:
            processed = asyncio.run(poll_once(args.experience_id))
        except CoachBotError:
            logger.exception("Poll failed for experience %s", args.experience_id)
            return 1
        result = {"experience_id": args.experience_id, "processed": processed}
        print(json.dumps(result))  # noqa: T201
        return 0

    missing_optional = config.missing_optional_settings()
    if missing_optional:
        logger.warning(
            "%s not set; webhooks are parsed unverified and admin routes are disabled",
            ", ".join(missing_optional),
        )

    logger.info(
        "Starting CoachBot API at http://%s:%s (reload=%s)",
        args.address,
        args.port,
        args.reload,
    )
    return_code = run_server(
        build_uvicorn_command(port=args.port, address=args.address, reload=args.reload),
        logger,
    )
    if return_code != 0:
        logger.error("uvicorn exited with status %s", return_code)
    return return_code


if __name__ == "__main__":
    sys.exit(main())
