"""Unit tests for core models, settings, run context and id helpers."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from pydantic import ValidationError

from budgetbot.core.ids import new_reference_id, new_run_id
from budgetbot.core.models import (
    ExecutionResult,
    Outcome,
    RunSummary,
    Schedule,
    ShopCredentials,
    SkipReason,
)
from budgetbot.core.run_context import RunContext, RunMode
from budgetbot.core.settings import Settings

# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class TestSchedule:
    def test_minutes_of_day(self, make_schedule: Callable[..., Schedule]) -> None:
        s = make_schedule(hour_start=9, minute_start=15, hour_end=18, minute_end=45)
        assert s.start_minute_of_day == 555
        assert s.end_minute_of_day == 1125

    def test_null_minutes_default_to_zero(self, make_schedule: Callable[..., Schedule]) -> None:
        s = make_schedule(minute_start=None, minute_end=None)
        assert s.minute_start == 0
        assert s.minute_end == 0

    @pytest.mark.parametrize("budget", [0, -1])
    def test_budget_must_be_positive(
        self, make_schedule: Callable[..., Schedule], budget: int
    ) -> None:
        with pytest.raises(ValidationError):
            make_schedule(budget=budget)

    def test_weekday_out_of_range_rejected(self, make_schedule: Callable[..., Schedule]) -> None:
        with pytest.raises(ValidationError):
            make_schedule(days_of_week=[1, 7])

    def test_specific_dates_must_be_iso(self, make_schedule: Callable[..., Schedule]) -> None:
        with pytest.raises(ValidationError):
            make_schedule(specific_dates=["01/01/2024"])

    def test_end_of_day_only_on_the_hour(self, make_schedule: Callable[..., Schedule]) -> None:
        assert make_schedule(hour_end=24, minute_end=0).end_minute_of_day == 1440
        with pytest.raises(ValidationError):
            make_schedule(hour_end=24, minute_end=30)

    def test_frozen(self, make_schedule: Callable[..., Schedule]) -> None:
        s = make_schedule()
        with pytest.raises(ValidationError):
            s.budget = 1  # type: ignore[misc]

    def test_display_name_falls_back_to_id(self, make_schedule: Callable[..., Schedule]) -> None:
        assert make_schedule(campaign_name=None, campaign_id=77).display_name == "Campaign 77"


def test_credentials_repr_hides_secrets(creds: ShopCredentials) -> None:
    text = repr(creds)
    assert "token-abc" not in text
    assert "secret-key" not in text
    assert "2001" in text


# ---------------------------------------------------------------------------
# Results / summary
# ---------------------------------------------------------------------------


class TestRunSummary:
    def _result(self, outcome: Outcome, n: int) -> ExecutionResult:
        return ExecutionResult(
            schedule_id=f"s{n}",
            shop_id=1,
            campaign_id=n,
            budget=100_000,
            outcome=outcome,
        )

    def test_counts_add_up(self) -> None:
        results = [
            self._result(Outcome.SUCCESS, 1),
            self._result(Outcome.SUCCESS, 2),
            self._result(Outcome.FAILURE, 3),
            self._result(Outcome.SKIPPED, 4),
        ]
        summary = RunSummary.from_results("process", results, duration_ms=12)
        assert summary.processed == 4
        assert summary.success_count == 2
        assert summary.failure_count == 1
        assert summary.skipped_count == 1
        assert summary.processed == (
            summary.success_count + summary.failure_count + summary.skipped_count
        )
        assert summary.ok

    def test_json_serialisable(self) -> None:
        summary = RunSummary.from_results("process", [self._result(Outcome.SUCCESS, 1)])
        dumped = json.dumps(summary.model_dump(mode="json"))
        assert '"outcome": "success"' in dumped

    def test_error_makes_summary_not_ok(self) -> None:
        summary = RunSummary.from_results("process", [], error="db down")
        assert not summary.ok
        assert "db down" in summary.format_report()

    def test_skipped_factory(self, make_schedule: Callable[..., Schedule]) -> None:
        s = make_schedule()
        r = ExecutionResult.skipped(s, SkipReason.BATCH_TIMEOUT, "later")
        assert r.outcome is Outcome.SKIPPED
        assert r.skip_reason is SkipReason.BATCH_TIMEOUT
        assert (r.schedule_id, r.campaign_id, r.budget) == (s.id, s.campaign_id, s.budget)


# ---------------------------------------------------------------------------
# Run context / ids
# ---------------------------------------------------------------------------


def test_run_context_requires_aware_now() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        RunContext(now=datetime(2024, 1, 1, 9, 0))


def test_run_mode_audit_source() -> None:
    assert RunMode.PROCESS.audit_source == "scheduled"
    assert RunMode.RUN_NOW.audit_source == "manual"
    assert RunMode("run-now") is RunMode.RUN_NOW


def test_reference_id_format() -> None:
    ref = new_reference_id(now_ms=1718000000000)
    assert re.fullmatch(r"scheduler-1718000000000-[0-9a-z]{7}", ref)
    assert new_reference_id() != new_reference_id()


def test_run_id_is_short_hex() -> None:
    assert re.fullmatch(r"[0-9a-f]{8}", new_run_id())


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_defaults(self, clean_env: None) -> None:
        s = Settings()
        assert s.request_timeout_s == 15.0
        assert s.max_retries == 3
        assert s.batch_timeout_s == 50.0
        assert s.max_concurrent_shops == 3
        assert s.max_campaigns_per_batch == 50
        assert s.error_rate_threshold == 0.5
        assert s.tz == ZoneInfo("Asia/Ho_Chi_Minh")
        assert not s.proxy_configured

    def test_env_overrides(self, clean_env: None, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SHOPEE_PROXY_URL", "https://proxy.example/fwd/")
        monkeypatch.setenv("MAX_CONCURRENT_SHOPS", "5")
        s = Settings()
        assert s.shopee_proxy_url == "https://proxy.example/fwd"
        assert s.proxy_configured
        assert s.max_concurrent_shops == 5

    def test_unknown_timezone_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(scheduler_timezone="Mars/Olympus")

    def test_base_delay_above_max_rejected(self, clean_env: None) -> None:
        with pytest.raises(ValidationError):
            Settings(base_delay_s=6.0, max_delay_s=5.0)

    def test_log_level_normalised(self, clean_env: None) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"
