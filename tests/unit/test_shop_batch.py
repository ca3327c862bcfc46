"""Unit tests for :class:`ShopBatchProcessor` and :class:`PacingPolicy`.

The executor and credential cache are mocked; the tests drive the worker's
sequencing, pacing and fatal-error handling.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from budgetbot.core.models import (
    ErrorKind,
    ExecutionResult,
    Outcome,
    Schedule,
    ShopCredentials,
    SkipReason,
)
from budgetbot.orchestrator.audit import AuditTrail
from budgetbot.orchestrator.credentials import CredentialCache
from budgetbot.orchestrator.executor import ExecutionReport, RetryingExecutor
from budgetbot.orchestrator.shop_batch import PacingPolicy, ShopBatchProcessor
from budgetbot.partner.classifier import classify_error

PACING = PacingPolicy(base_delay_s=0.5, max_delay_s=5.0, increment_s=0.2, decrement_s=0.05)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ok(schedule: Schedule) -> ExecutionReport:
    return ExecutionReport(
        result=ExecutionResult(
            schedule_id=schedule.id,
            shop_id=schedule.shop_id,
            campaign_id=schedule.campaign_id,
            budget=schedule.budget,
            outcome=Outcome.SUCCESS,
        )
    )


def failed(schedule: Schedule, code: str, message: str = "", retries: int = 0) -> ExecutionReport:
    c = classify_error(code, message)
    return ExecutionReport(
        result=ExecutionResult(
            schedule_id=schedule.id,
            shop_id=schedule.shop_id,
            campaign_id=schedule.campaign_id,
            budget=schedule.budget,
            outcome=Outcome.FAILURE,
            error=c.friendly_message,
            error_kind=c.kind,
            retry_count=retries,
        ),
        classification=c,
    )


def _processor(
    creds: ShopCredentials | None,
    reports: dict[str, ExecutionReport | Exception],
    audit: AuditTrail | None = None,
) -> tuple[ShopBatchProcessor, AsyncMock]:
    cache = MagicMock(spec=CredentialCache)
    cache.resolve = AsyncMock(return_value=creds)

    async def execute(_creds: ShopCredentials, schedule: Schedule) -> ExecutionReport:
        outcome = reports[schedule.id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    executor = MagicMock(spec=RetryingExecutor)
    executor.execute = AsyncMock(side_effect=execute)
    return ShopBatchProcessor(cache, executor, PACING, audit=audit), executor.execute


def _sleeps(mock_sleep: AsyncMock) -> list[float]:
    return [c.args[0] for c in mock_sleep.await_args_list]


@pytest.fixture()
def five(make_schedule: Callable[..., Schedule]) -> list[Schedule]:
    return [make_schedule(shop_id=1) for _ in range(5)]


# ---------------------------------------------------------------------------
# PacingPolicy
# ---------------------------------------------------------------------------


class TestPacingPolicy:
    def test_rate_limit_adds_double_increment(self) -> None:
        assert PACING.after_rate_limit(0.5) == pytest.approx(0.9)

    def test_rate_limit_capped(self) -> None:
        assert PACING.after_rate_limit(4.9) == 5.0

    def test_success_decrements(self) -> None:
        assert PACING.after_success(1.0) == pytest.approx(0.95)

    def test_success_floored(self) -> None:
        assert PACING.after_success(0.52) == 0.5


# ---------------------------------------------------------------------------
# process_shop
# ---------------------------------------------------------------------------


async def test_missing_credentials_skip_everything_without_calls(
    mock_sleep: AsyncMock, five: list[Schedule]
) -> None:
    audit = MagicMock(spec=AuditTrail)
    processor, execute = _processor(None, {}, audit=audit)

    outcome = await processor.process_shop(1, five, 0.7)

    execute.assert_not_awaited()
    assert [r.outcome for r in outcome.results] == [Outcome.SKIPPED] * 5
    assert {r.skip_reason for r in outcome.results} == {SkipReason.INVALID_CREDENTIALS}
    assert {r.error_kind for r in outcome.results} == {ErrorKind.CREDENTIALS_MISSING}
    assert outcome.error_count == 5
    assert outcome.new_delay == 0.7
    assert audit.record.call_count == 5
    assert all(c.kwargs["attempted"] is False for c in audit.record.call_args_list)


async def test_whitelist_on_second_of_five(
    mock_sleep: AsyncMock, creds: ShopCredentials, five: list[Schedule]
) -> None:
    reports: dict[str, ExecutionReport | Exception] = {s.id: ok(s) for s in five}
    reports[five[1].id] = failed(five[1], "error_param", "IP address is undeclared", retries=0)
    processor, execute = _processor(creds, reports)

    outcome = await processor.process_shop(1, five, 0.5)

    assert execute.await_count == 2
    outcomes = [r.outcome for r in outcome.results]
    assert outcomes.count(Outcome.SUCCESS) + outcomes.count(Outcome.FAILURE) == 1
    skipped = [r for r in outcome.results if r.outcome is Outcome.SKIPPED]
    assert len(skipped) == 4
    assert {r.skip_reason for r in skipped} == {SkipReason.IP_WHITELIST_ERROR}
    assert [r.schedule_id for r in outcome.results] == [s.id for s in five]
    assert "whitelisted" in (skipped[0].error or "")
    assert skipped[1].error == "Skipped - IP whitelist error"


async def test_auth_error_on_first_skips_all(
    mock_sleep: AsyncMock, creds: ShopCredentials, five: list[Schedule]
) -> None:
    reports: dict[str, ExecutionReport | Exception] = {s.id: ok(s) for s in five}
    reports[five[0].id] = failed(five[0], "error_auth", "token expired")
    processor, execute = _processor(creds, reports)

    outcome = await processor.process_shop(1, five, 0.5)

    execute.assert_awaited_once()
    assert {r.skip_reason for r in outcome.results} == {SkipReason.AUTH_ERROR}
    assert outcome.error_count == 5


async def test_fatal_keeps_retry_count_of_offending_schedule(
    mock_sleep: AsyncMock, creds: ShopCredentials, five: list[Schedule]
) -> None:
    reports: dict[str, ExecutionReport | Exception] = {
        s.id: failed(s, "error_permission", retries=2) for s in five
    }
    processor, _ = _processor(creds, reports)

    outcome = await processor.process_shop(1, five, 0.5)

    assert outcome.results[0].retry_count == 2
    assert outcome.results[1].retry_count == 0


async def test_business_error_does_not_stop_the_shop(
    mock_sleep: AsyncMock, creds: ShopCredentials, five: list[Schedule]
) -> None:
    reports: dict[str, ExecutionReport | Exception] = {s.id: ok(s) for s in five}
    reports[five[2].id] = failed(five[2], "ads.error_budget_too_low")
    processor, execute = _processor(creds, reports)

    outcome = await processor.process_shop(1, five, 0.5)

    assert execute.await_count == 5
    assert [r.outcome for r in outcome.results].count(Outcome.FAILURE) == 1
    assert outcome.error_count == 1


async def test_adaptive_delay_between_calls(
    mock_sleep: AsyncMock, creds: ShopCredentials, make_schedule: Callable[..., Schedule]
) -> None:
    a, b, c = (make_schedule() for _ in range(3))
    reports: dict[str, ExecutionReport | Exception] = {
        a.id: failed(a, "error_rate_limit", retries=3),
        b.id: ok(b),
        c.id: ok(c),
    }
    processor, _ = _processor(creds, reports)

    outcome = await processor.process_shop(1, [a, b, c], 0.5)

    assert _sleeps(mock_sleep) == [pytest.approx(0.9), pytest.approx(0.85)]
    assert outcome.new_delay == pytest.approx(0.8)


async def test_no_sleep_before_first_call(
    mock_sleep: AsyncMock, creds: ShopCredentials, make_schedule: Callable[..., Schedule]
) -> None:
    s = make_schedule()
    processor, _ = _processor(creds, {s.id: ok(s)})

    await processor.process_shop(1, [s], 2.0)

    mock_sleep.assert_not_awaited()


async def test_unexpected_exception_becomes_failure(
    mock_sleep: AsyncMock, creds: ShopCredentials, make_schedule: Callable[..., Schedule]
) -> None:
    a, b = make_schedule(), make_schedule()
    processor, _ = _processor(creds, {a.id: RuntimeError("bug"), b.id: ok(b)})

    outcome = await processor.process_shop(1, [a, b], 0.5)

    assert outcome.results[0].outcome is Outcome.FAILURE
    assert "bug" in (outcome.results[0].error or "")
    assert outcome.results[1].succeeded


async def test_audit_receives_results_in_order(
    mock_sleep: AsyncMock, creds: ShopCredentials, five: list[Schedule]
) -> None:
    audit = MagicMock(spec=AuditTrail)
    reports: dict[str, ExecutionReport | Exception] = {s.id: ok(s) for s in five}
    reports[five[3].id] = failed(five[3], "error_auth")
    processor, _ = _processor(creds, reports, audit=audit)

    await processor.process_shop(1, five, 0.5)

    recorded = [c.args[0].id for c in audit.record.call_args_list]
    attempted = [c.kwargs["attempted"] for c in audit.record.call_args_list]
    assert recorded == [s.id for s in five]
    assert attempted == [True, True, True, True, False]
    assert {c.kwargs["shop_name"] for c in audit.record.call_args_list} == {"Shop One"}
