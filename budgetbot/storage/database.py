"""SQLite bootstrap: connection setup and schema.

:func:`open_db` returns a connection with ``Row`` results, WAL journaling and
foreign keys on, and with every table below present.  The DDL only uses
``IF NOT EXISTS``, so opening an existing file leaves its data untouched.

Tables
------
``scheduled_ads_budget``
    Budget schedules.  Written by the (external) dashboard; read by the
    scheduler, which only ever toggles ``is_active``.
``shops``
    Per-shop credentials.  Read-only from the scheduler's perspective.
``ads_budget_logs`` / ``api_call_logs`` / ``system_activity_logs``
    Audit sinks, one row per execution result.

Typical usage::

    conn = await open_db(settings.database_path_resolved)
    try:
        ...
    finally:
        await conn.close()
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
]

logger = logging.getLogger(__name__)

#: Used by :func:`open_db` when no path is given.
DEFAULT_DB_PATH: Path = Path("budgetbot.db")

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

#: days_of_week / specific_dates hold JSON arrays (NULL = no restriction).
#: The unique key mirrors the dashboard's upsert conflict target.
_DDL_SCHEDULES = """\
CREATE TABLE IF NOT EXISTS scheduled_ads_budget (
    id             TEXT     NOT NULL PRIMARY KEY,
    shop_id        INTEGER  NOT NULL,
    campaign_id    INTEGER  NOT NULL,
    campaign_name  TEXT,
    ad_type        TEXT     NOT NULL CHECK (ad_type IN ('auto', 'manual')),
    hour_start     INTEGER  NOT NULL CHECK (hour_start BETWEEN 0 AND 23),
    minute_start   INTEGER  NOT NULL DEFAULT 0 CHECK (minute_start BETWEEN 0 AND 59),
    hour_end       INTEGER  NOT NULL CHECK (hour_end BETWEEN 0 AND 24),
    minute_end     INTEGER  NOT NULL DEFAULT 0 CHECK (minute_end BETWEEN 0 AND 59),
    budget         INTEGER  NOT NULL,
    days_of_week   TEXT,
    specific_dates TEXT,
    is_active      INTEGER  NOT NULL DEFAULT 1,
    created_at     TEXT     NOT NULL,
    updated_at     TEXT     NOT NULL,
    UNIQUE (shop_id, campaign_id, hour_start, minute_start)
)"""

_DDL_SCHEDULES_INDEX = """\
CREATE INDEX IF NOT EXISTS idx_scheduled_ads_budget_active
ON scheduled_ads_budget (is_active, hour_start, minute_start)"""

_DDL_SHOPS = """\
CREATE TABLE IF NOT EXISTS shops (
    shop_id      INTEGER  NOT NULL PRIMARY KEY,
    shop_name    TEXT,
    access_token TEXT,
    partner_id   INTEGER,
    partner_key  TEXT
)"""

_DDL_BUDGET_LOGS = """\
CREATE TABLE IF NOT EXISTS ads_budget_logs (
    id            INTEGER  PRIMARY KEY AUTOINCREMENT,
    shop_id       INTEGER  NOT NULL,
    campaign_id   INTEGER  NOT NULL,
    campaign_name TEXT,
    schedule_id   TEXT,
    new_budget    INTEGER  NOT NULL,
    status        TEXT     NOT NULL,
    error_message TEXT,
    executed_at   TEXT     NOT NULL
)"""

_DDL_API_CALL_LOGS = """\
CREATE TABLE IF NOT EXISTS api_call_logs (
    id             INTEGER  PRIMARY KEY AUTOINCREMENT,
    shop_id        INTEGER,
    component      TEXT     NOT NULL,
    api_endpoint   TEXT     NOT NULL,
    http_method    TEXT     NOT NULL DEFAULT 'POST',
    api_category   TEXT     NOT NULL,
    status         TEXT     NOT NULL,
    error_code     TEXT,
    error_message  TEXT,
    duration_ms    INTEGER,
    request_params TEXT,
    retry_count    INTEGER  NOT NULL DEFAULT 0,
    created_at     TEXT     NOT NULL
)"""

_DDL_ACTIVITY_LOGS = """\
CREATE TABLE IF NOT EXISTS system_activity_logs (
    id                 INTEGER  PRIMARY KEY AUTOINCREMENT,
    shop_id            INTEGER,
    shop_name          TEXT,
    action_type        TEXT     NOT NULL,
    action_category    TEXT     NOT NULL,
    action_description TEXT     NOT NULL,
    target_type        TEXT,
    target_id          TEXT,
    target_name        TEXT,
    request_data       TEXT,
    status             TEXT     NOT NULL,
    error_message      TEXT,
    source             TEXT     NOT NULL,
    duration_ms        INTEGER,
    started_at         TEXT     NOT NULL,
    completed_at       TEXT     NOT NULL
)"""

_SCHEMA: tuple[str, ...] = (
    _DDL_SCHEDULES,
    _DDL_SCHEDULES_INDEX,
    _DDL_SHOPS,
    _DDL_BUDGET_LOGS,
    _DDL_API_CALL_LOGS,
    _DDL_ACTIVITY_LOGS,
)

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def open_db(path: Path | str | None = None) -> aiosqlite.Connection:
    """Connect to *path* (default :data:`DEFAULT_DB_PATH`) and ensure the schema.

    Missing parent directories are created.  The caller owns the returned
    connection and must close it.

    Raises:
        aiosqlite.Error: If SQLite cannot open or initialise the file.
    """
    target = Path(path) if path else DEFAULT_DB_PATH
    target.parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(target)
    conn.row_factory = aiosqlite.Row
    try:
        await _apply_pragmas(conn)
        await create_schema(conn)
    except aiosqlite.Error:
        await conn.close()
        raise

    logger.debug("Database %s ready", target)
    return conn


async def create_schema(conn: aiosqlite.Connection) -> None:
    """Run every DDL statement of the schema and commit."""
    for statement in _SCHEMA:
        await conn.execute(statement)
    await conn.commit()


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


async def _apply_pragmas(conn: aiosqlite.Connection) -> None:
    cursor = await conn.execute("PRAGMA journal_mode=WAL")
    row = await cursor.fetchone()
    journal = row[0] if row else None
    if journal != "wal":
        logger.warning("SQLite kept journal_mode=%r instead of WAL", journal)
    await conn.execute("PRAGMA foreign_keys=ON")
