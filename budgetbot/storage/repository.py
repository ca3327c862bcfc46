"""Data-access objects for schedules, shop credentials and audit logs.

* :class:`ScheduleRepository`: the ``scheduled_ads_budget`` table.
* :class:`ShopRepository`: the ``shops`` table (credentials).
* :class:`AuditRepository`: the three append-only audit tables.

None of the repositories own the connection lifecycle; the caller supplies an
open :class:`aiosqlite.Connection` (see
:func:`~budgetbot.storage.database.open_db`) and closes it when done.

Typical usage::

    conn = await open_db()
    schedules = await ScheduleRepository(conn).list_active()
    row = await ShopRepository(conn).get_shop(1)
    await conn.close()
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

import aiosqlite
from pydantic import ValidationError

from budgetbot.core.exceptions import StorageError
from budgetbot.core.models import Schedule

__all__ = [
    "ScheduleRepository",
    "ShopRepository",
    "AuditRepository",
]

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(UTC).isoformat()


def _dump_json(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load_json_list(value: str | None) -> list[Any] | None:
    if value is None or value == "":
        return None
    loaded = json.loads(value)
    return loaded if isinstance(loaded, list) else None


def _row_to_schedule(row: aiosqlite.Row) -> Schedule:
    return Schedule(
        id=row["id"],
        shop_id=row["shop_id"],
        campaign_id=row["campaign_id"],
        campaign_name=row["campaign_name"],
        ad_type=row["ad_type"],
        hour_start=row["hour_start"],
        minute_start=row["minute_start"],
        hour_end=row["hour_end"],
        minute_end=row["minute_end"],
        budget=row["budget"],
        days_of_week=_load_json_list(row["days_of_week"]),
        specific_dates=_load_json_list(row["specific_dates"]),
        is_active=bool(row["is_active"]),
        created_at=datetime.fromisoformat(row["created_at"]),
    )


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


class ScheduleRepository:
    """Data-access object for the ``scheduled_ads_budget`` table.

    Rows are returned oldest-registered first (``created_at``, then ``id``),
    which gives the matcher a stable order when it has to cap a batch.
    """

    _SELECT = "SELECT * FROM scheduled_ads_budget"
    _ORDER = " ORDER BY created_at, id"

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def list_active(self) -> list[Schedule]:
        """Return every active schedule.

        Rows that fail validation are logged and left out rather than aborting
        the whole run.

        Raises:
            StorageError: If the table cannot be read.
        """
        try:
            cursor = await self._conn.execute(
                self._SELECT + " WHERE is_active = 1" + self._ORDER
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load active schedules: {exc}") from exc

        schedules: list[Schedule] = []
        for row in rows:
            try:
                schedules.append(_row_to_schedule(row))
            except (ValidationError, ValueError) as exc:
                logger.warning("Ignoring malformed schedule row %s: %s", row["id"], exc)
        return schedules

    async def list_for_shop(self, shop_id: int, campaign_id: int | None = None) -> list[Schedule]:
        """Return all schedules (active or not) of one shop.

        Raises:
            StorageError: If the table cannot be read.
        """
        sql = self._SELECT + " WHERE shop_id = ?"
        params: list[Any] = [shop_id]
        if campaign_id is not None:
            sql += " AND campaign_id = ?"
            params.append(campaign_id)
        try:
            cursor = await self._conn.execute(sql + " ORDER BY campaign_id, hour_start", params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to list schedules of shop {shop_id}: {exc}") from exc
        return [_row_to_schedule(row) for row in rows]

    async def get(self, schedule_id: str, shop_id: int) -> Schedule | None:
        """Return one schedule, or ``None`` if it does not belong to *shop_id*.

        Raises:
            StorageError: If the table cannot be read.
        """
        try:
            cursor = await self._conn.execute(
                self._SELECT + " WHERE id = ? AND shop_id = ? LIMIT 1",
                (schedule_id, shop_id),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load schedule {schedule_id!r}: {exc}") from exc
        return _row_to_schedule(row) if row is not None else None

    async def upsert(self, schedule: Schedule) -> Schedule:
        """Insert *schedule* or update the row sharing its natural key.

        The natural key is ``(shop_id, campaign_id, hour_start, minute_start)``;
        on conflict the existing row keeps its id and creation time.

        Returns:
            The stored schedule as read back from the table.
        """
        now = _utc_now()
        created_at = schedule.created_at.isoformat() if schedule.created_at else now
        await self._conn.execute(
            """
            INSERT INTO scheduled_ads_budget
                (id, shop_id, campaign_id, campaign_name, ad_type,
                 hour_start, minute_start, hour_end, minute_end, budget,
                 days_of_week, specific_dates, is_active, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (shop_id, campaign_id, hour_start, minute_start) DO UPDATE SET
                campaign_name  = excluded.campaign_name,
                ad_type        = excluded.ad_type,
                hour_end       = excluded.hour_end,
                minute_end     = excluded.minute_end,
                budget         = excluded.budget,
                days_of_week   = excluded.days_of_week,
                specific_dates = excluded.specific_dates,
                is_active      = excluded.is_active,
                updated_at     = excluded.updated_at
            """,
            (
                schedule.id,
                schedule.shop_id,
                schedule.campaign_id,
                schedule.campaign_name,
                str(schedule.ad_type),
                schedule.hour_start,
                schedule.minute_start,
                schedule.hour_end,
                schedule.minute_end,
                schedule.budget,
                _dump_json(schedule.days_of_week),
                _dump_json(schedule.specific_dates),
                int(schedule.is_active),
                created_at,
                now,
            ),
        )
        await self._conn.commit()

        cursor = await self._conn.execute(
            self._SELECT
            + " WHERE shop_id = ? AND campaign_id = ? AND hour_start = ? AND minute_start = ?",
            (schedule.shop_id, schedule.campaign_id, schedule.hour_start, schedule.minute_start),
        )
        row = await cursor.fetchone()
        if row is None:
            raise StorageError(f"Schedule {schedule.id!r} missing after upsert")
        return _row_to_schedule(row)

    async def set_active(self, schedule_id: str, shop_id: int, active: bool) -> bool:
        """Toggle ``is_active``.  Returns ``True`` if a row was updated."""
        try:
            cursor = await self._conn.execute(
                "UPDATE scheduled_ads_budget SET is_active = ?, updated_at = ? "
                "WHERE id = ? AND shop_id = ?",
                (int(active), _utc_now(), schedule_id, shop_id),
            )
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to update schedule {schedule_id!r}: {exc}") from exc
        return cursor.rowcount > 0

    async def delete(self, schedule_id: str, shop_id: int) -> bool:
        """Delete a schedule.  Returns ``True`` if a row was removed."""
        try:
            cursor = await self._conn.execute(
                "DELETE FROM scheduled_ads_budget WHERE id = ? AND shop_id = ?",
                (schedule_id, shop_id),
            )
            await self._conn.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to delete schedule {schedule_id!r}: {exc}") from exc
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Shops
# ---------------------------------------------------------------------------


class ShopRepository:
    """Read access to per-shop credentials."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_shop(self, shop_id: int) -> dict[str, Any] | None:
        """Return the raw ``shops`` row for *shop_id* as a dict, or ``None``.

        Raises:
            StorageError: If the table cannot be read.
        """
        try:
            cursor = await self._conn.execute(
                "SELECT shop_id, shop_name, access_token, partner_id, partner_key "
                "FROM shops WHERE shop_id = ? LIMIT 1",
                (shop_id,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StorageError(f"Failed to load shop {shop_id}: {exc}") from exc
        return dict(row) if row is not None else None

    async def upsert_shop(
        self,
        shop_id: int,
        *,
        shop_name: str | None = None,
        access_token: str | None = None,
        partner_id: int | None = None,
        partner_key: str | None = None,
    ) -> None:
        """Insert or replace a shop row (used by the auth collaborator and tests)."""
        await self._conn.execute(
            """
            INSERT INTO shops (shop_id, shop_name, access_token, partner_id, partner_key)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (shop_id) DO UPDATE SET
                shop_name    = excluded.shop_name,
                access_token = excluded.access_token,
                partner_id   = excluded.partner_id,
                partner_key  = excluded.partner_key
            """,
            (shop_id, shop_name, access_token, partner_id, partner_key),
        )
        await self._conn.commit()


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditRepository:
    """Append-only writes to the audit tables, plus simple log queries."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def insert_budget_log(
        self,
        *,
        shop_id: int,
        campaign_id: int,
        campaign_name: str | None,
        schedule_id: str,
        new_budget: int,
        status: str,
        error_message: str | None,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO ads_budget_logs
                (shop_id, campaign_id, campaign_name, schedule_id, new_budget,
                 status, error_message, executed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                shop_id,
                campaign_id,
                campaign_name,
                schedule_id,
                new_budget,
                status,
                error_message,
                _utc_now(),
            ),
        )
        await self._conn.commit()

    async def insert_api_call(
        self,
        *,
        shop_id: int | None,
        component: str,
        api_endpoint: str,
        http_method: str,
        api_category: str,
        status: str,
        error_code: str | None,
        error_message: str | None,
        duration_ms: int | None,
        request_params: dict[str, Any] | None,
        retry_count: int,
    ) -> None:
        await self._conn.execute(
            """
            INSERT INTO api_call_logs
                (shop_id, component, api_endpoint, http_method, api_category, status,
                 error_code, error_message, duration_ms, request_params, retry_count,
                 created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                shop_id,
                component,
                api_endpoint,
                http_method,
                api_category,
                status,
                error_code,
                error_message,
                duration_ms,
                _dump_json(request_params),
                retry_count,
                _utc_now(),
            ),
        )
        await self._conn.commit()

    async def insert_activity(
        self,
        *,
        shop_id: int | None,
        shop_name: str | None,
        action_type: str,
        action_category: str,
        action_description: str,
        target_type: str | None,
        target_id: str | None,
        target_name: str | None,
        request_data: dict[str, Any] | None,
        status: str,
        error_message: str | None,
        source: str,
        duration_ms: int | None,
    ) -> None:
        now = _utc_now()
        await self._conn.execute(
            """
            INSERT INTO system_activity_logs
                (shop_id, shop_name, action_type, action_category, action_description,
                 target_type, target_id, target_name, request_data, status,
                 error_message, source, duration_ms, started_at, completed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                shop_id,
                shop_name,
                action_type,
                action_category,
                action_description,
                target_type,
                target_id,
                target_name,
                _dump_json(request_data),
                status,
                error_message,
                source,
                duration_ms,
                now,
                now,
            ),
        )
        await self._conn.commit()

    async def list_budget_logs(
        self,
        shop_id: int,
        campaign_id: int | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Return the most recent budget log rows of a shop, newest first."""
        sql = "SELECT * FROM ads_budget_logs WHERE shop_id = ?"
        params: list[Any] = [shop_id]
        if campaign_id is not None:
            sql += " AND campaign_id = ?"
            params.append(campaign_id)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        cursor = await self._conn.execute(sql, params)
        return [dict(row) for row in await cursor.fetchall()]
