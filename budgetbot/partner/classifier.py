"""Classification of partner API failures.

:func:`classify_error` maps an upstream ``(error, message)`` pair onto an
:class:`~budgetbot.core.models.ErrorClassification`.  Rules are evaluated in
order and the first match wins:

1. message mentions an undeclared IP    → whitelist error (fatal for the shop)
2. ``error_rate_limit``                 → rate limited (retry, doubled backoff)
3. ``error_auth`` / ``error_permission``→ auth error (fatal for the shop)
4. ``error_server``                     → transient server fault (retry)
5. known ``ads.*`` business codes       → business error (this schedule only)
6. anything else                        → unknown, not retried

The function is pure: identical inputs always yield identical output.
"""

from __future__ import annotations

import logging
from typing import Final

from budgetbot.core.models import ErrorClassification, ErrorKind

__all__ = [
    "BUSINESS_ERRORS",
    "classify_error",
    "classify_timeout",
    "classify_transport",
]

logger = logging.getLogger(__name__)

RATE_LIMIT_CODE: Final[str] = "error_rate_limit"
AUTH_CODES: Final[frozenset[str]] = frozenset({"error_auth", "error_permission"})
SERVER_CODE: Final[str] = "error_server"

#: Business-rule rejections.  They concern one campaign only, so sibling
#: schedules of the same shop are still attempted.
BUSINESS_ERRORS: Final[dict[str, str]] = {
    "ads.error_budget_too_low": "Budget is below the minimum allowed (100,000)",
    "ads.error_budget_too_high": "Budget exceeds the maximum allowed",
    "ads.error_campaign_not_found": "Ads campaign not found",
    "ads.error_campaign_status": "Campaign status does not allow budget changes",
    "error_not_found": "Campaign not found",
}


def _is_whitelist_message(message: str) -> bool:
    lowered = message.lower()
    return "ip" in lowered and "undeclared" in lowered


def classify_error(code: str, message: str) -> ErrorClassification:
    """Classify an upstream application error.

    Args:
        code: Value of the response's ``error`` field.
        message: Value of the response's ``message`` field (may be empty).

    Returns:
        The matching :class:`ErrorClassification`.
    """
    code = code or ""
    message = message or ""

    if _is_whitelist_message(message):
        return ErrorClassification(
            kind=ErrorKind.WHITELIST_ERROR,
            whitelist_error=True,
            friendly_message="Outbound IP is not whitelisted in the partner console",
        )

    if code == RATE_LIMIT_CODE:
        return ErrorClassification(
            kind=ErrorKind.RATE_LIMITED,
            retryable=True,
            rate_limited=True,
            friendly_message="Too many requests - rate limited by upstream",
        )

    if code in AUTH_CODES:
        return ErrorClassification(
            kind=ErrorKind.AUTH_ERROR,
            auth_error=True,
            friendly_message="Authentication failed - token expired or invalid",
        )

    if code == SERVER_CODE:
        return ErrorClassification(
            kind=ErrorKind.SERVER_ERROR,
            retryable=True,
            friendly_message="Upstream server error",
        )

    if code in BUSINESS_ERRORS:
        return ErrorClassification(
            kind=ErrorKind.BUSINESS_ERROR,
            business_error=True,
            friendly_message=BUSINESS_ERRORS[code],
        )

    return ErrorClassification(
        kind=ErrorKind.UNKNOWN_UPSTREAM_ERROR,
        friendly_message=f"{message or code} (code: {code})",
    )


def classify_timeout(timeout_s: float) -> ErrorClassification:
    """Classification for a call that exceeded its timeout (retryable)."""
    return ErrorClassification(
        kind=ErrorKind.TRANSPORT_TIMEOUT,
        retryable=True,
        friendly_message=f"Request timeout after {timeout_s:g}s",
    )


def classify_transport(exc: BaseException) -> ErrorClassification:
    """Classification for a non-timeout network failure (not retried)."""
    return ErrorClassification(
        kind=ErrorKind.UNKNOWN_UPSTREAM_ERROR,
        friendly_message=f"Network error: {exc}",
    )
