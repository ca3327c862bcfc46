"""Request signing for the partner API.

Every shop-level call carries five query parameters (``partner_id``,
``timestamp``, ``access_token``, ``shop_id`` and ``sign``), where ``sign`` is
the hex-encoded HMAC-SHA256 of::

    f"{partner_id}{api_path}{timestamp}{access_token}{shop_id}"

keyed with the partner secret.  The upstream rejects a timestamp that drifts
too far from its clock, so a signature must be computed per attempt.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import Any, Final

from budgetbot.core.models import ShopCredentials

__all__ = ["base_string", "sanitize_params", "sign", "signed_query"]

logger = logging.getLogger(__name__)

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {"access_token", "refresh_token", "partner_key", "sign", "signature"}
)
_MASK: Final[str] = "***"


def base_string(partner_id: int, api_path: str, timestamp: int, access_token: str, shop_id: int) -> str:
    """Return the canonical string that is signed for a shop-level call."""
    return f"{partner_id}{api_path}{timestamp}{access_token}{shop_id}"


def sign(partner_key: str, message: str) -> str:
    """Return ``hex(HMAC-SHA256(partner_key, message))``."""
    return hmac.new(
        partner_key.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def signed_query(
    creds: ShopCredentials,
    shop_id: int,
    api_path: str,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Build the signed query-string parameters for one request.

    Args:
        creds: Credentials of the shop the call is made for.
        shop_id: Shop identifier placed in the query string.
        api_path: Path of the endpoint, e.g. ``/api/v2/ads/edit_auto_product_ads``.
        timestamp: Unix seconds; defaults to now.

    Returns:
        Mapping ready to be passed as ``params=`` to httpx.
    """
    if timestamp is None:
        timestamp = int(time.time())
    signature = sign(
        creds.partner_key,
        base_string(creds.partner_id, api_path, timestamp, creds.access_token, shop_id),
    )
    return {
        "partner_id": str(creds.partner_id),
        "timestamp": str(timestamp),
        "access_token": creds.access_token,
        "shop_id": str(shop_id),
        "sign": signature,
    }


def sanitize_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return a copy of *params* with the token and signature masked."""
    if params is None:
        return None
    return {key: _MASK if key in _SENSITIVE_KEYS else value for key, value in params.items()}
