"""Per-run credential cache.

:class:`CredentialCache` resolves a shop's signing material from the
``shops`` table once per run.  It is created by the runner at the start of
each run and handed to every shop worker, so no credential state survives
between runs.

Concurrent first access for the same shop performs a single lookup: each shop
id gets its own :class:`asyncio.Lock`, and the value (including a negative
``None`` result) is cached under that lock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from pydantic import ValidationError

from budgetbot.core.exceptions import StorageError
from budgetbot.core.models import ShopCredentials
from budgetbot.storage.repository import ShopRepository

__all__ = ["CredentialCache", "credentials_from_row"]

logger = logging.getLogger(__name__)


def credentials_from_row(row: dict[str, Any] | None) -> ShopCredentials | None:
    """Build :class:`ShopCredentials` from a ``shops`` row.

    Returns ``None`` when the row is absent or any of the access token,
    partner id or partner key is missing or empty.
    """
    if row is None:
        return None
    if not row.get("access_token") or not row.get("partner_key") or not row.get("partner_id"):
        return None
    try:
        return ShopCredentials(
            shop_id=row["shop_id"],
            access_token=row["access_token"],
            partner_id=row["partner_id"],
            partner_key=row["partner_key"],
            shop_name=row.get("shop_name"),
        )
    except ValidationError as exc:
        logger.warning("Shop %s has malformed credentials: %s", row.get("shop_id"), exc)
        return None


class CredentialCache:
    """Read-through cache of :class:`ShopCredentials`, keyed by shop id.

    Args:
        shops: Repository used for cache misses.
    """

    def __init__(self, shops: ShopRepository) -> None:
        self._shops = shops
        self._values: dict[int, ShopCredentials | None] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    async def resolve(self, shop_id: int) -> ShopCredentials | None:
        """Return the credentials of *shop_id*, or ``None`` if unusable.

        Storage errors are logged and treated as "not found"; they never
        propagate to the caller.
        """
        if shop_id in self._values:
            return self._values[shop_id]

        lock = self._locks.setdefault(shop_id, asyncio.Lock())
        async with lock:
            if shop_id in self._values:
                return self._values[shop_id]

            try:
                row = await self._shops.get_shop(shop_id)
            except StorageError as exc:
                logger.error("Credential lookup failed for shop %s: %s", shop_id, exc)
                row = None

            creds = credentials_from_row(row)
            if creds is None:
                logger.warning("No usable credentials for shop %s", shop_id)
            self._values[shop_id] = creds
            return creds

    def __len__(self) -> int:
        return len(self._values)
