"""Async client for the partner Ads API.

Wraps :class:`httpx.AsyncClient` with:

* **Request signing**: every attempt is signed afresh (see
  :mod:`budgetbot.partner.signing`) and carries a new reference id.
* **Egress proxy support**: when ``SHOPEE_PROXY_URL`` is configured the
  request is sent to ``<proxy>?url=<urlencoded target>`` so the upstream sees
  the proxy's whitelisted IP.  Without a proxy the upstream is called directly.
* **A hard per-call timeout**: exceeding it raises
  :class:`~budgetbot.core.exceptions.PartnerTimeoutError`, which the retrying
  executor treats as a retryable transport failure.
* **Structured error mapping**: an application error in the body raises
  :class:`~budgetbot.core.exceptions.PartnerApiError` carrying the upstream
  code and message; classification is left to
  :mod:`budgetbot.partner.classifier`.

This client performs **no retries** of its own;
:class:`~budgetbot.orchestrator.executor.RetryingExecutor` owns the retry
policy so that backoff and attempt counts are visible in one place.

Typical usage::

    async with PartnerApiClient(settings) as client:
        await client.set_budget(creds, shop_id=1, campaign_id=100,
                                ad_type=CampaignKind.AUTO, budget=500_000)
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any, Final

import httpx

from budgetbot.core.exceptions import (
    PartnerApiError,
    PartnerTimeoutError,
    PartnerTransportError,
)
from budgetbot.core.ids import new_reference_id
from budgetbot.core.models import CampaignKind, ShopCredentials
from budgetbot.core.settings import Settings
from budgetbot.partner.signing import sanitize_params, signed_query

__all__ = ["PartnerApiClient", "api_path_for", "is_error_sentinel"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_EDIT_PATHS: Final[dict[CampaignKind, str]] = {
    CampaignKind.AUTO: "/api/v2/ads/edit_auto_product_ads",
    CampaignKind.MANUAL: "/api/v2/ads/edit_manual_product_ads",
}

#: Values of the ``error`` field that mean "no error".
_NO_ERROR: Final[frozenset[str]] = frozenset({"", "-"})

EDIT_ACTION_CHANGE_BUDGET: Final[str] = "change_budget"


def api_path_for(ad_type: CampaignKind) -> str:
    """Return the edit endpoint path for a campaign kind."""
    return _EDIT_PATHS[CampaignKind(ad_type)]


def is_error_sentinel(value: object) -> bool:
    """``True`` if an ``error`` field value signals a real failure."""
    if value is None:
        return False
    return str(value).strip() not in _NO_ERROR


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class PartnerApiClient:
    """Signed, timeout-bounded client for budget edits.

    Args:
        settings: Application settings (host, proxy, timeout).
        transport: Optional httpx transport, used by tests to stub the
            network (e.g. :class:`httpx.MockTransport`).
    """

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = settings.partner_host
        self._proxy_url = settings.shopee_proxy_url
        self._via_proxy = settings.proxy_configured
        self._timeout_s = settings.request_timeout_s
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PartnerApiClient:
        self._ensure_client()
        if self._via_proxy:
            logger.info("Partner API calls routed through proxy %s", self._proxy_url)
        else:
            logger.info("No proxy configured; calling %s directly", self._host)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call repeatedly."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("PartnerApiClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_budget(
        self,
        creds: ShopCredentials,
        shop_id: int,
        campaign_id: int,
        ad_type: CampaignKind,
        budget: int,
    ) -> dict[str, Any]:
        """Change a campaign's daily budget.

        Args:
            creds: Credentials of the shop owning the campaign.
            shop_id: Shop identifier.
            campaign_id: Campaign to edit.
            ad_type: Selects the auto / manual edit endpoint.
            budget: New budget in integer currency units.

        Returns:
            The upstream ``response`` payload.

        Raises:
            PartnerApiError: The upstream reported an error, or returned no
                ``response`` payload.
            PartnerTimeoutError: The call exceeded the per-call timeout.
            PartnerTransportError: Any other network failure.
        """
        path = api_path_for(ad_type)
        body = {
            "reference_id": new_reference_id(),
            "campaign_id": campaign_id,
            "edit_action": EDIT_ACTION_CHANGE_BUDGET,
            "budget": budget,
        }
        return await self._post(path, signed_query(creds, shop_id, path), body)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_s),
                transport=self._transport,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
            )
        return self._http

    def _target(self, path: str, params: dict[str, str]) -> tuple[str, dict[str, str]]:
        """Return the (url, params) pair actually requested.

        With a proxy, the fully signed upstream URL is itself passed as the
        ``url`` query parameter of the proxy endpoint.
        """
        upstream = httpx.URL(f"{self._host}{path}", params=params)
        if self._via_proxy:
            return self._proxy_url, {"url": str(upstream)}
        return f"{self._host}{path}", params

    async def _post(
        self,
        path: str,
        params: dict[str, str],
        body: dict[str, Any],
    ) -> dict[str, Any]:
        client = self._ensure_client()
        url, request_params = self._target(path, params)

        logger.debug(
            "POST %s query=%s campaign_id=%s reference_id=%s",
            path,
            sanitize_params(params),
            body.get("campaign_id"),
            body.get("reference_id"),
        )

        try:
            async with asyncio.timeout(self._timeout_s):
                response = await client.post(url, params=request_params, json=body)
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise PartnerTimeoutError(self._timeout_s) from exc
        except httpx.TransportError as exc:
            raise PartnerTransportError(f"{type(exc).__name__}: {exc}") from exc

        logger.debug(
            "POST %s → %d (%.0f ms)",
            path,
            response.status_code,
            response.elapsed.total_seconds() * 1000 if response.elapsed else 0,
        )
        return _parse_response(response)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def _parse_response(response: httpx.Response) -> dict[str, Any]:
    """Map an upstream response to its payload or a :class:`PartnerApiError`."""
    try:
        data = response.json()
    except ValueError:
        data = None

    status = response.status_code

    if isinstance(data, dict) and is_error_sentinel(data.get("error")):
        raise PartnerApiError(
            str(data["error"]),
            str(data.get("message") or ""),
            status_code=status,
        )

    if status == 429:
        raise PartnerApiError("error_rate_limit", "HTTP 429 Too Many Requests", status_code=status)
    if status >= 500:
        raise PartnerApiError("error_server", f"HTTP {status}", status_code=status)
    if not response.is_success:
        raise PartnerApiError(f"http_{status}", response.text[:200], status_code=status)

    if not isinstance(data, dict) or data.get("response") is None:
        raise PartnerApiError(
            "empty_response",
            "Partner API returned no response payload",
            status_code=status,
        )
    payload = data["response"]
    return payload if isinstance(payload, dict) else {"value": payload}
