"""Budgetbot exception taxonomy.

Every custom exception inherits from :class:`BudgetbotError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    BudgetbotError
    ├── ConfigError
    ├── StorageError
    │   └── ScheduleNotFoundError
    ├── PartnerError
    │   ├── PartnerApiError
    │   ├── PartnerTimeoutError
    │   └── PartnerTransportError
    ├── CredentialsMissingError
    └── OrchestratorError

Partner-layer exceptions never escape the orchestrator: the retrying executor
converts them into :class:`~budgetbot.core.models.ExecutionResult` records.

Usage:

    from budgetbot.core.exceptions import PartnerApiError

    raise PartnerApiError("error_rate_limit", "Too many requests")
"""

from __future__ import annotations

import logging

__all__ = [
    "BudgetbotError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    "ScheduleNotFoundError",
    # Partner API
    "PartnerError",
    "PartnerApiError",
    "PartnerTimeoutError",
    "PartnerTransportError",
    # Credentials
    "CredentialsMissingError",
    # Orchestrator
    "OrchestratorError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class BudgetbotError(Exception):
    """Root exception for all Budgetbot errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(BudgetbotError):
    """Raised when the application configuration is invalid or incomplete."""


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(BudgetbotError):
    """Raised when a database or persistence operation fails."""


class ScheduleNotFoundError(StorageError):
    """Raised when a schedule cannot be found for the given shop.

    Args:
        schedule_id: Identifier of the requested schedule.
        shop_id: Shop the schedule was expected to belong to.
    """

    def __init__(self, schedule_id: str, shop_id: int) -> None:
        self.schedule_id = schedule_id
        self.shop_id = shop_id
        super().__init__(f"Schedule {schedule_id!r} not found for shop {shop_id}")


# ---------------------------------------------------------------------------
# Partner API layer
# ---------------------------------------------------------------------------


class PartnerError(BudgetbotError):
    """Base class for failures talking to the upstream partner API."""


class PartnerApiError(PartnerError):
    """Raised when the partner API answers with an application-level error.

    The upstream signals failure through the ``error`` field of the JSON body;
    ``message`` carries the human-readable explanation when present.

    Args:
        code: Upstream error code (e.g. ``"error_rate_limit"``).
        message: Upstream error message.  Falls back to *code* when blank.
        status_code: HTTP status of the response, if known.
    """

    def __init__(self, code: str, message: str = "", status_code: int | None = None) -> None:
        self.code = code
        self.message = message or code
        self.status_code = status_code
        super().__init__(f"Partner API error {code!r}: {self.message}")


class PartnerTimeoutError(PartnerError):
    """Raised when a partner API call exceeds its per-call timeout.

    Args:
        timeout_s: The timeout that elapsed, in seconds.
    """

    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(f"Request timeout after {timeout_s:.1f}s")


class PartnerTransportError(PartnerError):
    """Raised for non-timeout network failures (connection refused, DNS, ...)."""


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialsMissingError(BudgetbotError):
    """Raised when a shop has no usable access token / partner credentials.

    Args:
        shop_id: The shop whose credentials could not be resolved.
    """

    def __init__(self, shop_id: int) -> None:
        self.shop_id = shop_id
        super().__init__(f"Shop {shop_id} has no valid credentials")


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(BudgetbotError):
    """Raised for unrecoverable errors in the orchestration layer.

    Examples:
        - The continuous slot loop stops without being cancelled.
    """
