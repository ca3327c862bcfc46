"""Orchestrator entry-points: one function per run mode.

* :func:`run_once`: ``process`` mode.  Loads the active schedules, selects
  the ones due in the current slot and runs them through
  :func:`~budgetbot.orchestrator.fleet.run_fleet`.
* :func:`run_now`: ``run-now`` mode.  Executes exactly one schedule,
  identified by schedule id and shop id, bypassing the matcher.

Component wiring
----------------
Each run:

1. Sets the run id on :data:`~budgetbot.core.logging_config.RUN_ID_CTX` so
   every log line of the run carries it.
2. Opens the SQLite connection via
   :func:`~budgetbot.storage.database.open_db`.
3. Creates a fresh :class:`~budgetbot.orchestrator.credentials.CredentialCache`
   (nothing is shared between runs).
4. Enters the :class:`~budgetbot.partner.client.PartnerApiClient` and the
   :class:`~budgetbot.orchestrator.audit.AuditTrail` through one
   :class:`contextlib.AsyncExitStack`, so pending audit rows are flushed
   before the connection closes.  The flush is bounded by
   ``audit_flush_timeout_s``; a stalled audit store cannot hold up the
   summary.

Upstream failures never raise out of these functions; they are reported per
schedule in the returned :class:`~budgetbot.core.models.RunSummary`.  A
failure to read the schedule store is reported in ``RunSummary.error``.

Typical usage::

    import asyncio
    from budgetbot.core.run_context import RunContext
    from budgetbot.orchestrator.runner import run_once

    summary = asyncio.run(run_once(RunContext()))
    print(summary.format_report())
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from contextlib import AsyncExitStack

import aiosqlite
import httpx

from budgetbot.core import events
from budgetbot.core.exceptions import (
    ConfigError,
    CredentialsMissingError,
    ScheduleNotFoundError,
    StorageError,
)
from budgetbot.core.logging_config import RUN_ID_CTX
from budgetbot.core.models import RunSummary
from budgetbot.core.run_context import RunContext, RunMode
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.audit import AuditTrail
from budgetbot.orchestrator.credentials import CredentialCache
from budgetbot.orchestrator.executor import RetryingExecutor
from budgetbot.orchestrator.fleet import run_fleet
from budgetbot.orchestrator.matcher import select_due
from budgetbot.orchestrator.shop_batch import PacingPolicy, ShopBatchProcessor
from budgetbot.partner.client import PartnerApiClient
from budgetbot.storage.database import open_db
from budgetbot.storage.repository import (
    AuditRepository,
    ScheduleRepository,
    ShopRepository,
)

__all__ = ["run_once", "run_now"]

logger = logging.getLogger(__name__)

NO_SCHEDULES_MESSAGE = "No schedules for current slot"


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _elapsed_ms(t0: float, clock: Callable[[], float]) -> int:
    return int((clock() - t0) * 1000)


def _finish(summary: RunSummary) -> RunSummary:
    logger.info("%s", summary.format_report(), extra={"event": events.RUN_COMPLETE})
    return summary


async def _open(settings: Settings) -> aiosqlite.Connection:
    try:
        return await open_db(settings.database_path_resolved)
    except (aiosqlite.Error, OSError) as exc:
        raise StorageError(f"Cannot open database {settings.database_path!r}: {exc}") from exc


async def _enter_run_components(
    stack: AsyncExitStack,
    conn: aiosqlite.Connection,
    credentials: CredentialCache,
    ctx: RunContext,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None,
) -> tuple[ShopBatchProcessor, AuditTrail]:
    client = await stack.enter_async_context(PartnerApiClient(settings, transport=transport))
    audit = await stack.enter_async_context(
        AuditTrail(
            AuditRepository(conn),
            source=ctx.mode.audit_source,
            max_size=settings.audit_queue_size,
            flush_timeout_s=settings.audit_flush_timeout_s,
        )
    )
    executor = RetryingExecutor(
        client,
        max_retries=settings.max_retries,
        base_delay_s=settings.retry_base_delay_s,
    )
    processor = ShopBatchProcessor(
        credentials,
        executor,
        PacingPolicy.from_settings(settings),
        audit=audit,
    )
    return processor, audit


# ---------------------------------------------------------------------------
# process
# ---------------------------------------------------------------------------


async def run_once(
    ctx: RunContext,
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RunSummary:
    """Execute one ``process`` run.

    Args:
        ctx: Run context; ``ctx.now`` is the instant used for slot matching.
        settings: Loaded settings.  A fresh instance is read from the
            environment if ``None``.
        transport: Optional httpx transport for the partner client (tests).
        clock: Monotonic clock used for the run's wall-clock budget.

    Returns:
        The run summary.  ``processed == success + failure + skipped``.

    Raises:
        ConfigError: If *ctx* was created for another run mode.
    """
    if ctx.mode is not RunMode.PROCESS:
        raise ConfigError(f"run_once handles {RunMode.PROCESS} runs, got {ctx.mode}")
    if settings is None:
        settings = Settings()

    token = RUN_ID_CTX.set(ctx.run_id)
    t0 = clock()
    logger.info("Run started: %s", ctx, extra={"event": events.RUN_START})

    try:
        try:
            conn = await _open(settings)
        except StorageError as exc:
            logger.error("%s", exc, extra={"event": events.RUN_ABORT})
            return _finish(
                RunSummary.from_results(
                    str(ctx.mode), [], duration_ms=_elapsed_ms(t0, clock), error=str(exc)
                )
            )

        try:
            try:
                schedules = await ScheduleRepository(conn).list_active()
            except StorageError as exc:
                logger.error("Cannot load schedules: %s", exc, extra={"event": events.RUN_ABORT})
                return _finish(
                    RunSummary.from_results(
                        str(ctx.mode), [], duration_ms=_elapsed_ms(t0, clock), error=str(exc)
                    )
                )

            due = select_due(
                ctx.now,
                schedules,
                tz=settings.tz,
                max_batch_size=settings.max_campaigns_per_batch,
                slot_minutes=settings.slot_minutes,
                grace_s=settings.slot_grace_s,
            )
            logger.info("%d/%d active schedules due", len(due), len(schedules))

            if not due:
                return _finish(
                    RunSummary.from_results(
                        str(ctx.mode),
                        [],
                        duration_ms=_elapsed_ms(t0, clock),
                        message=NO_SCHEDULES_MESSAGE,
                    )
                )

            credentials = CredentialCache(ShopRepository(conn))
            async with AsyncExitStack() as stack:
                processor, audit = await _enter_run_components(
                    stack, conn, credentials, ctx, settings, transport
                )
                results = await run_fleet(
                    due,
                    processor,
                    settings,
                    audit=audit,
                    clock=clock,
                    started_at=t0,
                )

            return _finish(
                RunSummary.from_results(
                    str(ctx.mode),
                    results,
                    duration_ms=_elapsed_ms(t0, clock),
                    message=f"Processed {len(results)} schedule(s) across "
                    f"{len({r.shop_id for r in results})} shop(s)",
                )
            )
        finally:
            await conn.close()
            logger.debug("Database connection closed.")
    finally:
        RUN_ID_CTX.reset(token)


# ---------------------------------------------------------------------------
# run-now
# ---------------------------------------------------------------------------


async def run_now(
    schedule_id: str,
    shop_id: int,
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    ctx: RunContext | None = None,
) -> RunSummary:
    """Execute a single schedule immediately, bypassing the matcher.

    Args:
        schedule_id: Schedule to execute.
        shop_id: Shop the schedule must belong to.
        settings: Loaded settings, or ``None`` to read from the environment.
        transport: Optional httpx transport for the partner client (tests).
        ctx: Run context; a ``run-now`` context is created if ``None``.

    Returns:
        A summary holding exactly one result, or an ``error`` when the
        schedule or the shop's credentials cannot be found.

    Raises:
        ConfigError: If *ctx* was created for another run mode.
    """
    if ctx is None:
        ctx = RunContext(mode=RunMode.RUN_NOW)
    elif ctx.mode is not RunMode.RUN_NOW:
        raise ConfigError(f"run_now handles {RunMode.RUN_NOW} runs, got {ctx.mode}")
    if settings is None:
        settings = Settings()

    token = RUN_ID_CTX.set(ctx.run_id)
    t0 = time.monotonic()
    logger.info(
        "Manual run of schedule %s (shop %s)",
        schedule_id,
        shop_id,
        extra={"event": events.RUN_START},
    )

    def _abort(exc: Exception) -> RunSummary:
        logger.error("%s", exc, extra={"event": events.RUN_ABORT})
        return _finish(
            RunSummary.from_results(
                str(ctx.mode), [], duration_ms=_elapsed_ms(t0, time.monotonic), error=str(exc)
            )
        )

    try:
        try:
            conn = await _open(settings)
        except StorageError as exc:
            return _abort(exc)

        try:
            try:
                schedule = await ScheduleRepository(conn).get(schedule_id, shop_id)
            except StorageError as exc:
                return _abort(exc)
            if schedule is None:
                return _abort(ScheduleNotFoundError(schedule_id, shop_id))

            credentials = CredentialCache(ShopRepository(conn))
            if await credentials.resolve(shop_id) is None:
                return _abort(CredentialsMissingError(shop_id))

            async with AsyncExitStack() as stack:
                processor, _audit = await _enter_run_components(
                    stack, conn, credentials, ctx, settings, transport
                )
                outcome = await processor.process_shop(shop_id, [schedule], settings.base_delay_s)

            result = outcome.results[0]
            return _finish(
                RunSummary.from_results(
                    str(ctx.mode),
                    outcome.results,
                    duration_ms=_elapsed_ms(t0, time.monotonic),
                    message="Budget updated" if result.succeeded else result.error,
                )
            )
        finally:
            await conn.close()
    finally:
        RUN_ID_CTX.reset(token)
