"""Partner API access: request signing, the budget-edit client, error classification."""

from budgetbot.partner.classifier import (
    BUSINESS_ERRORS,
    classify_error,
    classify_timeout,
    classify_transport,
)
from budgetbot.partner.client import PartnerApiClient, api_path_for
from budgetbot.partner.signing import sanitize_params, sign, signed_query

__all__ = [
    "BUSINESS_ERRORS",
    "classify_error",
    "classify_timeout",
    "classify_transport",
    "PartnerApiClient",
    "api_path_for",
    "sanitize_params",
    "sign",
    "signed_query",
]
