"""Runtime configuration for budgetbot.

Every knob of the scheduler (partner endpoint, pacing, retries, wave width,
run budget, slot matching, audit backlog and logging) is a field of
:class:`Settings`.  pydantic-settings fills the fields from the process
environment first, then from ``.env`` in the working directory, then from the
defaults below.  Env-var names are the upper-cased field names
(``SHOPEE_PROXY_URL`` sets ``shopee_proxy_url``); all durations are seconds.

Typical usage::

    from budgetbot.core.settings import Settings

    settings = Settings()
    settings.tz                            # ZoneInfo('Asia/Ho_Chi_Minh')
"""

from __future__ import annotations

import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from budgetbot.core.logging_config import FORMATS, LEVELS

__all__ = ["Settings"]

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Validated scheduler configuration; see the module docstring for sources."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/budgetbot.db",
        description="SQLite file holding schedules, shops and audit logs.",
    )

    # ------------------------------------------------------------------
    # Partner API
    # ------------------------------------------------------------------
    partner_host: str = Field(
        default="https://partner.shopeemobile.com",
        description="Base URL of the partner API.",
    )
    shopee_proxy_url: str = Field(
        default="",
        description="Optional egress proxy; requests go to '<proxy>?url=<target>'.",
    )
    request_timeout_s: float = Field(
        default=15.0,
        gt=0.0,
        description="Per-call timeout for budget edits.",
    )

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------
    max_retries: int = Field(
        default=3,
        ge=0,
        description="Retry ceiling per schedule (attempts = max_retries + 1).",
    )
    retry_base_delay_s: float = Field(
        default=1.0,
        ge=0.0,
        description="Base of the exponential retry backoff.",
    )

    # ------------------------------------------------------------------
    # Adaptive pacing
    # ------------------------------------------------------------------
    base_delay_s: float = Field(
        default=0.5,
        ge=0.0,
        description="Floor of the adaptive inter-call delay.",
    )
    max_delay_s: float = Field(
        default=5.0,
        ge=0.0,
        description="Ceiling of the adaptive delay; also the high-error cooldown.",
    )
    delay_increment_s: float = Field(
        default=0.2,
        ge=0.0,
        description="Step used to grow the delay after a rate-limited call (doubled).",
    )
    delay_decrement_s: float = Field(
        default=0.05,
        ge=0.0,
        description="Step used to shrink the delay after a successful call.",
    )

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------
    batch_timeout_s: float = Field(
        default=50.0,
        gt=0.0,
        description="Wall-clock budget for one run, checked between waves.",
    )
    max_concurrent_shops: int = Field(
        default=3,
        ge=1,
        description="Number of shops processed in parallel per wave.",
    )
    max_campaigns_per_batch: int = Field(
        default=50,
        ge=1,
        description="Cap on due schedules per run; overflow waits for the next run.",
    )
    error_rate_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Cumulative error ratio above which a cooldown is inserted.",
    )

    # ------------------------------------------------------------------
    # Slot matching
    # ------------------------------------------------------------------
    scheduler_timezone: str = Field(
        default="Asia/Ho_Chi_Minh",
        description="IANA timezone in which schedule windows are expressed.",
    )
    slot_minutes: int = Field(
        default=30,
        ge=1,
        le=60,
        description="Width of the trigger slot; must match the cron cadence.",
    )
    slot_grace_s: float = Field(
        default=0.0,
        ge=0.0,
        description="An invocation this close before a slot boundary counts as the next slot.",
    )

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------
    audit_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum pending audit writes before new ones are dropped.",
    )
    audit_flush_timeout_s: float = Field(
        default=5.0,
        gt=0.0,
        description="Longest a run waits for pending audit writes before abandoning them.",
    )

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------
    log_level: str = Field(default="INFO", description="Root logger level.")
    log_format: str = Field(default="text", description="stderr layout: text or json.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("scheduler_timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"scheduler_timezone {v!r} is not a known IANA zone") from exc
        return v

    @field_validator("partner_host", "shopee_proxy_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in LEVELS:
            raise ValueError(f"LOG_LEVEL {v!r} is not one of {', '.join(LEVELS)}")
        return level

    @field_validator("log_format")
    @classmethod
    def _normalise_log_format(cls, v: str) -> str:
        layout = v.strip().lower()
        if layout not in FORMATS:
            raise ValueError(f"LOG_FORMAT {v!r} is not one of {', '.join(FORMATS)}")
        return layout

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_delays(self) -> Settings:
        """Ensure the adaptive delay floor does not exceed its ceiling."""
        if self.base_delay_s > self.max_delay_s:
            raise ValueError(
                f"base_delay_s ({self.base_delay_s}) > max_delay_s ({self.max_delay_s})"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def tz(self) -> ZoneInfo:
        """The reference timezone as a :class:`~zoneinfo.ZoneInfo`."""
        return ZoneInfo(self.scheduler_timezone)

    @property
    def database_path_resolved(self) -> Path:
        """Absolute form of ``database_path``."""
        return Path(self.database_path).expanduser().resolve()

    @property
    def proxy_configured(self) -> bool:
        """``True`` if outbound calls are routed through the egress proxy."""
        return bool(self.shopee_proxy_url)
