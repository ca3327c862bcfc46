"""Bounded-retry execution of one budget edit.

:class:`RetryingExecutor` drives :meth:`PartnerApiClient.set_budget` through a
:class:`tenacity.AsyncRetrying` loop:

* at most ``max_retries + 1`` attempts;
* only retryable classifications (rate limit, server error, timeout) are
  retried;
* the wait before retry *n* (``n`` = 1, 2, …) is
  ``base_delay_s * 2 ** (n - 1)``, doubled when the failure that caused it was
  a rate limit.  Waits within one schedule never decrease.

Upstream failures never escape: the executor always returns an
:class:`ExecutionReport` holding the :class:`ExecutionResult` plus the
classification of the final failure, which the shop worker needs for pacing
and fatal-error handling.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from budgetbot.core import events
from budgetbot.core.exceptions import (
    PartnerApiError,
    PartnerError,
    PartnerTimeoutError,
)
from budgetbot.core.models import (
    ErrorClassification,
    ExecutionResult,
    Outcome,
    Schedule,
    ShopCredentials,
)
from budgetbot.partner.classifier import (
    classify_error,
    classify_timeout,
    classify_transport,
)
from budgetbot.partner.client import PartnerApiClient

__all__ = ["ExecutionReport", "RetryingExecutor", "backoff_delay"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableFailure(PartnerError):
    """Internal: a classified failure that tenacity should retry.

    Never escapes :meth:`RetryingExecutor.execute`.
    """

    def __init__(self, classification: ErrorClassification) -> None:
        self.classification = classification
        super().__init__(classification.friendly_message)


# ---------------------------------------------------------------------------
# Wait strategy
# ---------------------------------------------------------------------------


def backoff_delay(base_delay_s: float, retry_number: int, rate_limited: bool) -> float:
    """Wait before retry *retry_number* (1-based)."""
    delay = base_delay_s * 2 ** max(retry_number - 1, 0)
    return delay * 2 if rate_limited else delay


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


@dataclass(frozen=True)
class ExecutionReport:
    """Result of one schedule plus the classification of its final failure.

    ``classification`` is ``None`` on success.
    """

    result: ExecutionResult
    classification: ErrorClassification | None = None

    @property
    def rate_limited(self) -> bool:
        return self.classification is not None and self.classification.rate_limited

    @property
    def fatal_for_shop(self) -> bool:
        return self.classification is not None and self.classification.fatal_for_shop


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class RetryingExecutor:
    """Execute budget edits with classified, bounded retries.

    Args:
        client: An open :class:`PartnerApiClient`.
        max_retries: Retry ceiling; the first attempt is not a retry.
        base_delay_s: Base of the exponential backoff.
    """

    def __init__(
        self,
        client: PartnerApiClient,
        *,
        max_retries: int = 3,
        base_delay_s: float = 1.0,
    ) -> None:
        self._client = client
        self._max_retries = max_retries
        self._base_delay_s = base_delay_s

    def _wait(self, retry_state: RetryCallState) -> float:
        rate_limited = False
        if retry_state.outcome is not None:
            exc = retry_state.outcome.exception()
            rate_limited = isinstance(exc, _RetryableFailure) and exc.classification.rate_limited
        return backoff_delay(self._base_delay_s, retry_state.attempt_number, rate_limited)

    async def _attempt(self, creds: ShopCredentials, schedule: Schedule) -> ErrorClassification | None:
        """One call.  Returns ``None`` on success or a terminal classification."""
        try:
            await self._client.set_budget(
                creds,
                shop_id=schedule.shop_id,
                campaign_id=schedule.campaign_id,
                ad_type=schedule.ad_type,
                budget=schedule.budget,
            )
        except PartnerApiError as exc:
            classification = classify_error(exc.code, exc.message)
        except PartnerTimeoutError as exc:
            classification = classify_timeout(exc.timeout_s)
        except PartnerError as exc:
            classification = classify_transport(exc)
        else:
            return None

        if classification.retryable:
            raise _RetryableFailure(classification)
        return classification

    async def execute(self, creds: ShopCredentials, schedule: Schedule) -> ExecutionReport:
        """Apply *schedule*'s budget, retrying retryable failures.

        Returns:
            An :class:`ExecutionReport`; ``result.retry_count`` is the number
            of retries actually performed.
        """
        t0 = time.monotonic()
        max_attempts = self._max_retries + 1
        attempts = 0
        classification: ErrorClassification | None = None

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Campaign %s (shop %s): attempt %d/%d failed (%s). Retrying in %.1f s",
                schedule.campaign_id,
                schedule.shop_id,
                rs.attempt_number,
                max_attempts,
                exc,
                self._wait(rs),
                extra={"event": events.BUDGET_RETRY},
            )

        try:
            async for attempt in AsyncRetrying(
                wait=self._wait,
                stop=stop_after_attempt(max_attempts),
                retry=retry_if_exception_type(_RetryableFailure),
                reraise=True,
                before_sleep=_before_sleep,
                sleep=_sleep,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    classification = await self._attempt(creds, schedule)
        except _RetryableFailure as exc:
            classification = exc.classification

        duration_ms = int((time.monotonic() - t0) * 1000)
        retry_count = max(attempts - 1, 0)

        if classification is None:
            logger.info(
                "Budget of campaign %s (shop %s) set to %s",
                schedule.campaign_id,
                schedule.shop_id,
                schedule.budget,
                extra={"event": events.BUDGET_UPDATED},
            )
            return ExecutionReport(
                result=ExecutionResult(
                    schedule_id=schedule.id,
                    shop_id=schedule.shop_id,
                    campaign_id=schedule.campaign_id,
                    budget=schedule.budget,
                    outcome=Outcome.SUCCESS,
                    retry_count=retry_count,
                    duration_ms=duration_ms,
                )
            )

        logger.error(
            "Budget edit failed for campaign %s (shop %s) after %d retries: %s",
            schedule.campaign_id,
            schedule.shop_id,
            retry_count,
            classification.friendly_message,
            extra={"event": events.BUDGET_FAILED},
        )
        return ExecutionReport(
            result=ExecutionResult(
                schedule_id=schedule.id,
                shop_id=schedule.shop_id,
                campaign_id=schedule.campaign_id,
                budget=schedule.budget,
                outcome=Outcome.FAILURE,
                error=classification.friendly_message,
                error_kind=classification.kind,
                retry_count=retry_count,
                duration_ms=duration_ms,
            ),
            classification=classification,
        )
