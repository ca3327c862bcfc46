"""SQLite-backed storage for schedules, shop credentials and audit logs."""

from budgetbot.storage.database import DEFAULT_DB_PATH, create_schema, open_db
from budgetbot.storage.repository import (
    AuditRepository,
    ScheduleRepository,
    ShopRepository,
)

__all__ = [
    "DEFAULT_DB_PATH",
    "open_db",
    "create_schema",
    "AuditRepository",
    "ScheduleRepository",
    "ShopRepository",
]
