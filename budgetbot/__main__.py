"""Budgetbot process entry-point.

Usage:
    python -m budgetbot process
    python -m budgetbot run-now --schedule-id ID --shop-id N
    python -m budgetbot loop

``process`` is what the external cron invokes every 30 minutes.  ``run-now``
executes one schedule immediately.  ``loop`` runs ``process`` at every slot
boundary until stopped.

The JSON run summary is printed on ``stdout``; logs go to ``stderr``.  The
exit code is ``0`` when the run completed (even with per-schedule failures)
and ``1`` when it could not run at all.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from budgetbot.core import configure_logging
from budgetbot.core.exceptions import ConfigError
from budgetbot.core.models import RunSummary
from budgetbot.core.run_context import RunContext, RunMode
from budgetbot.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="budgetbot",
        description="Scheduled campaign budget changes for partner ads.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL from the environment or .env (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT from the environment or .env (text|json).",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser(
        RunMode.PROCESS.value,
        help="Execute the schedules due in the current slot and exit.",
    )

    run_now = commands.add_parser(
        RunMode.RUN_NOW.value,
        help="Execute one schedule immediately, ignoring its time window.",
    )
    run_now.add_argument("--schedule-id", required=True, help="Schedule identifier.")
    run_now.add_argument("--shop-id", required=True, type=int, help="Owning shop id.")

    commands.add_parser(
        "loop",
        help="Run 'process' at every slot boundary until stopped.",
    )
    return parser


def _emit(summary: RunSummary) -> None:
    print(json.dumps(summary.model_dump(mode="json"), ensure_ascii=False))  # noqa: T201


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"budgetbot: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    # Settings also sees .env, which the bootstrap configuration above cannot.
    configure_logging(
        level=args.log_level or settings.log_level,
        fmt=args.log_format or settings.log_format,
        force=True,
    )

    # Lazy import keeps startup fast when module is imported without running.
    from budgetbot.orchestrator.runner import run_now, run_once  # noqa: PLC0415
    from budgetbot.orchestrator.scheduler import run_continuous  # noqa: PLC0415

    try:
        if args.command == RunMode.PROCESS:
            summary = asyncio.run(run_once(RunContext(mode=RunMode.PROCESS), settings))
        elif args.command == RunMode.RUN_NOW:
            summary = asyncio.run(run_now(args.schedule_id, args.shop_id, settings))
        else:
            asyncio.run(run_continuous(settings))
            return
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        sys.exit(0)
    except asyncio.CancelledError:
        logger.info("Shutdown complete; exiting.")
        sys.exit(0)

    _emit(summary)
    sys.exit(0 if summary.ok else 1)


if __name__ == "__main__":
    main()
