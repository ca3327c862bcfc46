"""Budgetbot core domain models.

This module defines the data shapes shared by the matcher, the partner client,
the orchestrator and the storage layer:

* :class:`Schedule`: a persisted "set this campaign's budget during this
  window" rule.
* :class:`ShopCredentials`: per-shop signing material, cached per run.
* :class:`ExecutionResult`: the outcome of one schedule in one run.
* :class:`ErrorClassification`: derived view of an upstream error.
* :class:`RunSummary`: JSON-serialisable report returned to the trigger.

Typical usage::

    from budgetbot.core.models import CampaignKind, Schedule

    schedule = Schedule(
        id="a1",
        shop_id=1,
        campaign_id=100,
        ad_type=CampaignKind.AUTO,
        budget=500_000,
        hour_start=9,
        hour_end=9,
        minute_end=30,
    )
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "CampaignKind",
    "Outcome",
    "SkipReason",
    "ErrorKind",
    "Schedule",
    "ShopCredentials",
    "ErrorClassification",
    "ExecutionResult",
    "RunSummary",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CampaignKind(StrEnum):
    """Product-ads campaign flavours; each has its own edit endpoint."""

    AUTO = "auto"
    MANUAL = "manual"


class Outcome(StrEnum):
    """Terminal state of one schedule within a run."""

    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


class SkipReason(StrEnum):
    """Why a schedule was reported ``skipped`` without a (further) API call."""

    INVALID_CREDENTIALS = "invalid_credentials"
    IP_WHITELIST_ERROR = "ip_whitelist_error"
    AUTH_ERROR = "auth_error"
    BATCH_TIMEOUT = "batch_timeout"


class ErrorKind(StrEnum):
    """Runtime failure taxonomy surfaced on results and in logs."""

    TRANSPORT_TIMEOUT = "transport_timeout"
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    WHITELIST_ERROR = "whitelist_error"
    BUSINESS_ERROR = "business_error"
    SERVER_ERROR = "server_error"
    UNKNOWN_UPSTREAM_ERROR = "unknown_upstream_error"
    CREDENTIALS_MISSING = "credentials_missing"
    RUN_TIMEOUT = "run_timeout"


# ---------------------------------------------------------------------------
# Schedule
# ---------------------------------------------------------------------------


class Schedule(BaseModel):
    """A recurring budget window for one campaign.

    The window is expressed in the scheduler's reference timezone as
    ``(hour_start, minute_start)`` – ``(hour_end, minute_end)``.  Recurrence is
    narrowed by ``specific_dates`` (takes precedence) or ``days_of_week``
    (``0`` = Sunday … ``6`` = Saturday).  Empty lists mean "no restriction".

    The scheduler never mutates a schedule; the model is frozen.
    """

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    shop_id: int
    campaign_id: int
    campaign_name: str | None = None
    ad_type: CampaignKind
    budget: int = Field(..., gt=0)
    hour_start: int = Field(..., ge=0, le=23)
    minute_start: int = Field(default=0, ge=0, le=59)
    hour_end: int = Field(..., ge=0, le=24)
    minute_end: int = Field(default=0, ge=0, le=59)
    days_of_week: list[int] | None = None
    specific_dates: list[str] | None = None
    is_active: bool = True
    created_at: datetime | None = None

    @field_validator("minute_start", "minute_end", mode="before")
    @classmethod
    def _null_minute_to_zero(cls, v: object) -> object:
        """Rows created before minute support store NULL minutes."""
        return 0 if v is None else v

    @field_validator("days_of_week")
    @classmethod
    def _validate_weekdays(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return v
        for day in v:
            if not 0 <= day <= 6:
                raise ValueError(f"days_of_week entries must be 0..6, got {day!r}")
        return v

    @field_validator("specific_dates")
    @classmethod
    def _validate_dates(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        for item in v:
            date.fromisoformat(item)
        return v

    @model_validator(mode="after")
    def _validate_end_of_day(self) -> Schedule:
        if self.hour_end == 24 and self.minute_end != 0:
            raise ValueError("hour_end=24 is only valid with minute_end=0")
        return self

    @property
    def start_minute_of_day(self) -> int:
        """Minutes after local midnight at which the window opens."""
        return self.hour_start * 60 + self.minute_start

    @property
    def end_minute_of_day(self) -> int:
        """Minutes after local midnight at which the window closes."""
        return self.hour_end * 60 + self.minute_end

    @property
    def display_name(self) -> str:
        """Campaign name for humans, falling back to the numeric id."""
        return self.campaign_name or f"Campaign {self.campaign_id}"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class ShopCredentials(BaseModel):
    """Signing material for one shop.

    Secrets are excluded from ``repr`` so credentials never end up in logs.
    """

    model_config = {"frozen": True}

    shop_id: int
    access_token: str = Field(..., min_length=1, repr=False)
    partner_id: int
    partner_key: str = Field(..., min_length=1, repr=False)
    shop_name: str | None = None


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorClassification(BaseModel):
    """Derived view of an upstream error; see :mod:`budgetbot.partner.classifier`."""

    model_config = {"frozen": True}

    kind: ErrorKind
    retryable: bool = False
    rate_limited: bool = False
    auth_error: bool = False
    whitelist_error: bool = False
    business_error: bool = False
    friendly_message: str

    @property
    def fatal_for_shop(self) -> bool:
        """``True`` when every further call for the same shop must fail too."""
        return self.auth_error or self.whitelist_error


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ExecutionResult(BaseModel):
    """Outcome of one schedule within one run.  Never mutated after creation."""

    model_config = {"frozen": True}

    schedule_id: str
    shop_id: int
    campaign_id: int
    budget: int
    outcome: Outcome
    error: str | None = None
    error_kind: ErrorKind | None = None
    retry_count: int = Field(default=0, ge=0)
    skip_reason: SkipReason | None = None
    duration_ms: int = Field(default=0, ge=0)

    @classmethod
    def skipped(
        cls,
        schedule: Schedule,
        reason: SkipReason,
        error: str,
        *,
        error_kind: ErrorKind | None = None,
        retry_count: int = 0,
        duration_ms: int = 0,
    ) -> ExecutionResult:
        """Build a ``skipped`` result for *schedule*."""
        return cls(
            schedule_id=schedule.id,
            shop_id=schedule.shop_id,
            campaign_id=schedule.campaign_id,
            budget=schedule.budget,
            outcome=Outcome.SKIPPED,
            error=error,
            error_kind=error_kind,
            retry_count=retry_count,
            skip_reason=reason,
            duration_ms=duration_ms,
        )

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS


class RunSummary(BaseModel):
    """Report returned to the trigger after a ``process`` or ``run-now`` call.

    ``error`` is reserved for catastrophic conditions (e.g. the schedule store
    is unreachable); upstream failures only ever show up in ``results``.
    """

    mode: str
    processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    duration_ms: int = 0
    results: list[ExecutionResult] = Field(default_factory=list)
    message: str | None = None
    error: str | None = None

    @classmethod
    def from_results(
        cls,
        mode: str,
        results: list[ExecutionResult],
        *,
        duration_ms: int = 0,
        message: str | None = None,
        error: str | None = None,
    ) -> RunSummary:
        """Aggregate *results* into counts.

        ``processed`` always equals ``success + failure + skipped``.
        """
        return cls(
            mode=mode,
            processed=len(results),
            success_count=sum(1 for r in results if r.outcome is Outcome.SUCCESS),
            failure_count=sum(1 for r in results if r.outcome is Outcome.FAILURE),
            skipped_count=sum(1 for r in results if r.outcome is Outcome.SKIPPED),
            duration_ms=duration_ms,
            results=list(results),
            message=message,
            error=error,
        )

    @property
    def ok(self) -> bool:
        """``True`` unless the run hit a catastrophic error."""
        return self.error is None

    def format_report(self) -> str:
        """One-line human-readable summary for the run log."""
        line = (
            f"run summary [{self.mode}] processed={self.processed} "
            f"ok={self.success_count} failed={self.failure_count} "
            f"skipped={self.skipped_count} duration={self.duration_ms}ms"
        )
        if self.error:
            line += f" error={self.error!r}"
        return line
