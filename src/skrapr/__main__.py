#!/usr/bin/env python3
"""
Run a skrapr definition against a Chrome instance with remote debugging enabled.

Start Chrome first, e.g.:
    google-chrome --remote-debugging-port=9222

Then:
    python -m skrapr definition.json
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from skrapr.cdp.session import setup_logging
from skrapr.cdp.targets import find_page_session, get_chrome_sessions
from skrapr.core.config import SkraprConfig
from skrapr.core.errors import SkraprError
from skrapr.definition import SkraprDefinition
from skrapr.devtools import SkraprDevTools
from skrapr.worker import SkraprWorker, WorkerResult, seed_worker

logger = logging.getLogger("skrapr")


async def run(config: SkraprConfig) -> WorkerResult:
    """
    Load the definition, attach to the first page target and run the worker
    until it drains.

    Raises:
        SkraprError: If the definition is invalid, Chrome is unreachable, or
            the run stops on a fatal error.
    """
    definition = SkraprDefinition.load(config.definition_path)

    sessions = await get_chrome_sessions(config.host, config.port)
    session_info = find_page_session(sessions)
    logger.info(f"Using session {session_info.id}: {session_info.title} - {session_info.url}")

    devtools = await SkraprDevTools.connect(
        session_info,
        command_timeout=config.command_timeout,
        navigation_timeout=config.navigation_timeout,
        screenshot_timeout=config.screenshot_timeout,
        debug=config.debug,
    )
    worker = SkraprWorker(devtools, definition, navigation_timeout=config.navigation_timeout)
    try:
        await seed_worker(worker, devtools, attach=config.attach)
        return await worker.start()
    finally:
        await worker.dispose()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="skrapr",
        description="Drive a Chrome tab through the DevTools protocol using a rule based definition.",
    )
    parser.add_argument("definition", help="Path to the skrapr definition JSON file.")
    parser.add_argument(
        "--host",
        default=None,
        help="Host of the DevTools endpoint (default: localhost, or SKRAPR_HOST).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Remote debugging port (default: 9222, or SKRAPR_PORT).",
    )
    parser.add_argument(
        "--attach",
        action="store_true",
        help="Continue from the tab's current page when a rule matches it.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    config = SkraprConfig.from_env(
        definition_path=args.definition,
        host=args.host,
        port=args.port,
        attach=args.attach,
        debug=args.debug,
    )
    setup_logging(debug=config.debug)

    try:
        result = asyncio.run(run(config))
    except SkraprError as e:
        logger.error(f"Skrapr run failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 1

    logger.info(f"Executed {result.tasks_executed} tasks ({result.tasks_failed} failed)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
