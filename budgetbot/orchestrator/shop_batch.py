"""Sequential processing of one shop's due schedules.

A shop worker:

1. resolves the shop's credentials once; without them every schedule is
   reported ``skipped/invalid_credentials`` and no upstream call is made;
2. executes the schedules one after another, sleeping the current adaptive
   delay between calls (not before the first);
3. adapts the delay AIMD-style: a rate-limited failure adds
   ``2 * delay_increment_s`` (capped at ``max_delay_s``), a success removes
   ``delay_decrement_s`` (floored at ``base_delay_s``);
4. stops at the first auth / IP-whitelist failure: that schedule and every
   remaining one are reported ``skipped`` with the matching reason.

Each result is handed to the audit trail in order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from budgetbot.core import events
from budgetbot.core.models import (
    ErrorClassification,
    ErrorKind,
    ExecutionResult,
    Outcome,
    Schedule,
    ShopCredentials,
    SkipReason,
)
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.audit import AuditTrail
from budgetbot.orchestrator.credentials import CredentialCache
from budgetbot.orchestrator.executor import RetryingExecutor

__all__ = ["PacingPolicy", "ShopBatchOutcome", "ShopBatchProcessor"]

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS_MESSAGE = "Shop has no valid access token or partner credentials"


# ---------------------------------------------------------------------------
# Pacing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PacingPolicy:
    """Bounds and steps of the adaptive inter-call delay (seconds)."""

    base_delay_s: float = 0.5
    max_delay_s: float = 5.0
    increment_s: float = 0.2
    decrement_s: float = 0.05

    @classmethod
    def from_settings(cls, settings: Settings) -> PacingPolicy:
        return cls(
            base_delay_s=settings.base_delay_s,
            max_delay_s=settings.max_delay_s,
            increment_s=settings.delay_increment_s,
            decrement_s=settings.delay_decrement_s,
        )

    def after_rate_limit(self, delay: float) -> float:
        return min(delay + 2 * self.increment_s, self.max_delay_s)

    def after_success(self, delay: float) -> float:
        return max(delay - self.decrement_s, self.base_delay_s)


@dataclass(frozen=True)
class ShopBatchOutcome:
    """What one shop worker hands back to the fleet orchestrator.

    Attributes:
        results: One result per input schedule, in input order.
        new_delay: Adaptive delay at the end of the batch.
        error_count: Results that are not successes (failures and skips).
    """

    shop_id: int
    results: list[ExecutionResult]
    new_delay: float
    error_count: int


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------


def _fatal_skip_reason(classification: ErrorClassification) -> SkipReason:
    if classification.whitelist_error:
        return SkipReason.IP_WHITELIST_ERROR
    return SkipReason.AUTH_ERROR


class ShopBatchProcessor:
    """Runs the schedules of one shop at a time.

    Shared across the workers of a run; holds no per-shop state.

    Args:
        credentials: Per-run credential cache.
        executor: Retrying executor bound to the run's API client.
        pacing: AIMD bounds.
        audit: Optional audit trail receiving every result.
    """

    def __init__(
        self,
        credentials: CredentialCache,
        executor: RetryingExecutor,
        pacing: PacingPolicy,
        audit: AuditTrail | None = None,
    ) -> None:
        self._credentials = credentials
        self._executor = executor
        self._pacing = pacing
        self._audit = audit

    def _record(
        self,
        schedule: Schedule,
        result: ExecutionResult,
        *,
        attempted: bool,
        creds: ShopCredentials | None = None,
    ) -> None:
        if self._audit is not None:
            self._audit.record(
                schedule,
                result,
                attempted=attempted,
                shop_name=creds.shop_name if creds else None,
            )

    async def process_shop(
        self,
        shop_id: int,
        schedules: Sequence[Schedule],
        current_delay: float,
    ) -> ShopBatchOutcome:
        """Execute *schedules* (all belonging to *shop_id*) sequentially.

        Args:
            shop_id: The shop being processed.
            schedules: Its due schedules, in the order they should run.
            current_delay: Adaptive delay carried over from the previous wave.

        Returns:
            A :class:`ShopBatchOutcome` with exactly one result per schedule.
        """
        creds = await self._credentials.resolve(shop_id)
        if creds is None:
            logger.warning(
                "Shop %s: no valid credentials, skipping %d schedule(s)",
                shop_id,
                len(schedules),
                extra={"event": events.SHOP_SKIPPED},
            )
            skipped: list[ExecutionResult] = []
            for schedule in schedules:
                result = ExecutionResult.skipped(
                    schedule,
                    SkipReason.INVALID_CREDENTIALS,
                    MISSING_CREDENTIALS_MESSAGE,
                    error_kind=ErrorKind.CREDENTIALS_MISSING,
                )
                self._record(schedule, result, attempted=False)
                skipped.append(result)
            return ShopBatchOutcome(
                shop_id=shop_id,
                results=skipped,
                new_delay=current_delay,
                error_count=len(skipped),
            )

        delay = current_delay
        results: list[ExecutionResult] = []

        for index, schedule in enumerate(schedules):
            if index > 0 and delay > 0:
                await asyncio.sleep(delay)

            t0 = time.monotonic()
            try:
                report = await self._executor.execute(creds, schedule)
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Shop %s: unexpected error on schedule %s: %s",
                    shop_id,
                    schedule.id,
                    exc,
                    exc_info=True,
                )
                result = ExecutionResult(
                    schedule_id=schedule.id,
                    shop_id=shop_id,
                    campaign_id=schedule.campaign_id,
                    budget=schedule.budget,
                    outcome=Outcome.FAILURE,
                    error=f"Unexpected error: {exc}",
                    error_kind=ErrorKind.UNKNOWN_UPSTREAM_ERROR,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                )
                self._record(schedule, result, attempted=True, creds=creds)
                results.append(result)
                continue

            classification = report.classification
            if classification is not None and classification.fatal_for_shop:
                results.extend(
                    self._skip_rest(schedules[index:], report.result, classification, creds)
                )
                break

            if report.result.succeeded:
                delay = self._pacing.after_success(delay)
            elif report.rate_limited:
                delay = self._pacing.after_rate_limit(delay)

            self._record(schedule, report.result, attempted=True, creds=creds)
            results.append(report.result)

        return ShopBatchOutcome(
            shop_id=shop_id,
            results=results,
            new_delay=delay,
            error_count=sum(1 for r in results if not r.succeeded),
        )

    def _skip_rest(
        self,
        remaining: Sequence[Schedule],
        failed: ExecutionResult,
        classification: ErrorClassification,
        creds: ShopCredentials,
    ) -> list[ExecutionResult]:
        """Report the failed schedule and everything after it as skipped."""
        reason = _fatal_skip_reason(classification)
        label = "IP whitelist" if classification.whitelist_error else "Auth"
        offending, rest = remaining[0], remaining[1:]

        logger.error(
            "Shop %s: %s, skipping %d remaining schedule(s)",
            offending.shop_id,
            classification.friendly_message,
            len(rest),
            extra={"event": events.SHOP_FATAL},
        )

        first = ExecutionResult.skipped(
            offending,
            reason,
            failed.error or classification.friendly_message,
            error_kind=classification.kind,
            retry_count=failed.retry_count,
            duration_ms=failed.duration_ms,
        )
        self._record(offending, first, attempted=True, creds=creds)
        skipped = [first]

        for schedule in rest:
            result = ExecutionResult.skipped(
                schedule,
                reason,
                f"Skipped - {label} error",
                error_kind=classification.kind,
            )
            self._record(schedule, result, attempted=False, creds=creds)
            skipped.append(result)
        return skipped
