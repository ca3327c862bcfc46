"""Slot-aligned continuous loop.

For deployments without an external cron, ``budgetbot loop`` runs a
``process`` run at every slot boundary (``:00`` and ``:30`` by default) in the
reference timezone.  Each run owns its own resources through
:func:`~budgetbot.orchestrator.runner.run_once`; the loop itself only tracks
the time to the next boundary.

A ``SIGTERM`` handler cancels the loop; a run in progress is cancelled at its
next ``await`` point and its resources are released by the runner's context
managers.

Typical usage::

    import asyncio
    from budgetbot.orchestrator.scheduler import run_continuous

    asyncio.run(run_continuous())
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable
from datetime import UTC, datetime, timedelta, tzinfo
from typing import NoReturn

from budgetbot.core.exceptions import OrchestratorError
from budgetbot.core.run_context import RunContext, RunMode
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.runner import run_once

__all__ = ["next_slot_start", "seconds_until_next_slot", "run_continuous"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Slot arithmetic (pure)
# ---------------------------------------------------------------------------


def next_slot_start(now: datetime, tz: tzinfo, slot_minutes: int = 30) -> datetime:
    """Return the first slot boundary strictly after *now*, in *tz*."""
    local = now.astimezone(tz)
    floor = local.replace(
        minute=local.minute - local.minute % slot_minutes,
        second=0,
        microsecond=0,
    )
    return floor + timedelta(minutes=slot_minutes)


def seconds_until_next_slot(now: datetime, tz: tzinfo, slot_minutes: int = 30) -> float:
    """Seconds from *now* to :func:`next_slot_start`."""
    return max((next_slot_start(now, tz, slot_minutes) - now).total_seconds(), 0.0)


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


def _utc_now() -> datetime:
    return datetime.now(UTC)


async def _slot_loop(settings: Settings, now: Callable[[], datetime] = _utc_now) -> NoReturn:
    while True:
        started = now()
        boundary = next_slot_start(started, settings.tz, settings.slot_minutes)
        wait = max((boundary - started).total_seconds(), 0.0)
        logger.info("Next run in %.0f s.", wait)
        await asyncio.sleep(wait)

        # An early wake-up must not match the slot that already ran.
        ctx = RunContext(mode=RunMode.PROCESS, now=max(now(), boundary))
        try:
            await run_once(ctx, settings)
        except Exception:
            logger.exception("Unhandled exception in scheduled run; waiting for next slot.")


async def run_continuous(settings: Settings | None = None) -> NoReturn:
    """Run ``process`` at every slot boundary until cancelled.

    Raises:
        asyncio.CancelledError: On shutdown (Ctrl+C or ``SIGTERM``).
    """
    if settings is None:
        settings = Settings()

    logger.info(
        "Entering continuous mode: every %d min in %s.",
        settings.slot_minutes,
        settings.scheduler_timezone,
    )

    task = asyncio.create_task(_slot_loop(settings), name="budgetbot-slot-loop")

    loop = asyncio.get_running_loop()
    shutdown_signal: list[str] = []

    def _request_graceful_shutdown(signame: str) -> None:
        if not shutdown_signal:
            shutdown_signal.append(signame)
            logger.info("Received %s; graceful shutdown requested.", signame)
        task.cancel()

    loop.add_signal_handler(signal.SIGTERM, lambda: _request_graceful_shutdown("SIGTERM"))

    try:
        await task
    except (asyncio.CancelledError, KeyboardInterrupt):
        if shutdown_signal:
            logger.info("Graceful shutdown complete (signal: %s).", shutdown_signal[0])
        else:
            logger.info("Continuous loop cancelled.")
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise
    finally:
        with contextlib.suppress(Exception):
            loop.remove_signal_handler(signal.SIGTERM)

    raise OrchestratorError("run_continuous exited unexpectedly")
