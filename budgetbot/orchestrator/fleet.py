"""Wave-based dispatch of shop workers.

The due schedules are grouped by shop (first-seen order) and the shops are
processed in waves of ``max_concurrent_shops``.  Within a wave the shop
workers run concurrently via ``asyncio.gather(..., return_exceptions=True)``;
waves run one after another.

Between waves the orchestrator:

* carries the largest adaptive delay reported by the previous wave into the
  next one;
* inserts a ``max_delay_s`` cooldown while the cumulative error ratio of the
  run is above ``error_rate_threshold``;
* checks the run's wall-clock budget.  Once ``batch_timeout_s`` has elapsed,
  the schedules of every shop not yet started are reported
  ``skipped/batch_timeout``.  A wave already running is never interrupted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence

from budgetbot.core import events
from budgetbot.core.models import (
    ErrorKind,
    ExecutionResult,
    Outcome,
    Schedule,
    SkipReason,
)
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.audit import AuditTrail
from budgetbot.orchestrator.shop_batch import ShopBatchOutcome, ShopBatchProcessor

__all__ = ["group_by_shop", "run_fleet"]

logger = logging.getLogger(__name__)

BATCH_TIMEOUT_MESSAGE = "Timeout - will retry next cycle"


def group_by_shop(schedules: Iterable[Schedule]) -> dict[int, list[Schedule]]:
    """Group schedules by shop id, keeping first-seen shop order."""
    groups: dict[int, list[Schedule]] = {}
    for schedule in schedules:
        groups.setdefault(schedule.shop_id, []).append(schedule)
    return groups


def _crashed(schedules: Sequence[Schedule], exc: BaseException) -> list[ExecutionResult]:
    return [
        ExecutionResult(
            schedule_id=s.id,
            shop_id=s.shop_id,
            campaign_id=s.campaign_id,
            budget=s.budget,
            outcome=Outcome.FAILURE,
            error=f"Shop worker failed: {exc}",
            error_kind=ErrorKind.UNKNOWN_UPSTREAM_ERROR,
        )
        for s in schedules
    ]


async def run_fleet(
    due: Sequence[Schedule],
    processor: ShopBatchProcessor,
    settings: Settings,
    *,
    audit: AuditTrail | None = None,
    clock: Callable[[], float] = time.monotonic,
    started_at: float | None = None,
) -> list[ExecutionResult]:
    """Process *due* shop by shop in bounded-concurrency waves.

    Args:
        due: Schedules selected for this run.
        processor: Shop worker shared by every shop of the run.
        settings: Wave width, pacing bounds, timeout and error threshold.
        audit: Receives the ``batch_timeout`` skips and the failures of a
            crashed worker.  Other worker results are audited by the
            processor itself.
        clock: Monotonic clock in seconds.
        started_at: Run start according to *clock*; defaults to now.

    Returns:
        Exactly one result per schedule in *due*.
    """
    start = clock() if started_at is None else started_at
    shops = list(group_by_shop(due).items())
    width = settings.max_concurrent_shops

    results: list[ExecutionResult] = []
    total_errors = 0
    delay = settings.base_delay_s

    for offset in range(0, len(shops), width):
        elapsed = clock() - start
        if elapsed > settings.batch_timeout_s:
            remaining = shops[offset:]
            logger.warning(
                "Run budget of %.0f s exhausted after %.1f s; skipping %d shop(s)",
                settings.batch_timeout_s,
                elapsed,
                len(remaining),
                extra={"event": events.RUN_TIMEOUT},
            )
            for _shop_id, schedules in remaining:
                for schedule in schedules:
                    result = ExecutionResult.skipped(
                        schedule,
                        SkipReason.BATCH_TIMEOUT,
                        BATCH_TIMEOUT_MESSAGE,
                        error_kind=ErrorKind.RUN_TIMEOUT,
                    )
                    if audit is not None:
                        audit.record(schedule, result, attempted=False)
                    results.append(result)
                    total_errors += 1
            break

        wave = shops[offset : offset + width]
        logger.info(
            "Wave %d: shops %s (delay %.2f s)",
            offset // width + 1,
            [shop_id for shop_id, _ in wave],
            delay,
            extra={"event": events.WAVE_START},
        )

        outcomes = await asyncio.gather(
            *(processor.process_shop(shop_id, schedules, delay) for shop_id, schedules in wave),
            return_exceptions=True,
        )

        for (shop_id, schedules), outcome in zip(wave, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Shop %s: worker raised %s",
                    shop_id,
                    outcome,
                    exc_info=outcome,
                )
                failed = _crashed(schedules, outcome)
                if audit is not None:
                    for schedule, result in zip(schedules, failed, strict=True):
                        audit.record(schedule, result, attempted=False)
                results.extend(failed)
                total_errors += len(failed)
                continue

            batch: ShopBatchOutcome = outcome
            results.extend(batch.results)
            total_errors += batch.error_count
            delay = max(delay, batch.new_delay)

        more_waves = offset + width < len(shops)
        if more_waves and results and total_errors / len(results) > settings.error_rate_threshold:
            logger.warning(
                "Error rate %.0f%% above %.0f%%; cooling down %.1f s",
                100 * total_errors / len(results),
                100 * settings.error_rate_threshold,
                settings.max_delay_s,
                extra={"event": events.WAVE_COOLDOWN},
            )
            await asyncio.sleep(settings.max_delay_s)

    return results
