"""Shared pytest fixtures for the Budgetbot test suite.

Provides logging setup, an isolated environment, fast settings, a temporary
SQLite database and schedule / credential factories.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, patch

import aiosqlite
import pytest
from pydantic_settings import SettingsConfigDict

from budgetbot.core import configure_logging
from budgetbot.core.models import CampaignKind, Schedule, ShopCredentials
from budgetbot.core.settings import Settings
from budgetbot.storage.database import open_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test."""
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


_SETTINGS_ENV_VARS = {name.upper() for name in Settings.model_fields}


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every env var Settings reads and disable ``.env`` loading.

    Without the ``model_config`` patch, values from a developer's local
    ``.env`` would still reach ``Settings()``.
    """
    for key in list(os.environ):
        if key.upper() in _SETTINGS_ENV_VARS or key.startswith("BUDGETBOT_"):
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(env_file=None, extra="ignore"),
    )


@pytest.fixture()
def settings(clean_env: None, tmp_path: Path) -> Settings:
    """Settings with a temporary database and zero pacing delays."""
    return Settings(
        database_path=str(tmp_path / "budgetbot.db"),
        partner_host="https://partner.test",
        base_delay_s=0.0,
        max_delay_s=1.0,
        delay_increment_s=0.2,
        delay_decrement_s=0.05,
        retry_base_delay_s=1.0,
    )


@pytest.fixture()
def mock_sleep() -> Iterator[AsyncMock]:
    """Patch ``asyncio.sleep`` so pacing and backoff waits are recorded, not slept."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mocked:
        yield mocked


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture()
async def db(tmp_path: Path) -> AsyncIterator[aiosqlite.Connection]:
    """An open connection to a fresh database file."""
    conn = await open_db(tmp_path / "test.db")
    try:
        yield conn
    finally:
        await conn.close()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_schedule() -> Callable[..., Schedule]:
    """Return a factory building a valid :class:`Schedule` with overrides."""
    counter = {"n": 0}

    def _make(**overrides: Any) -> Schedule:
        counter["n"] += 1
        fields: dict[str, Any] = {
            "id": f"sched-{counter['n']}",
            "shop_id": 1,
            "campaign_id": 100 + counter["n"],
            "campaign_name": f"Campaign {counter['n']}",
            "ad_type": CampaignKind.AUTO,
            "budget": 500_000,
            "hour_start": 9,
            "minute_start": 0,
            "hour_end": 9,
            "minute_end": 30,
            "days_of_week": [],
        }
        fields.update(overrides)
        return Schedule(**fields)

    return _make


@pytest.fixture()
def creds() -> ShopCredentials:
    return ShopCredentials(
        shop_id=1,
        access_token="token-abc",
        partner_id=2001,
        partner_key="secret-key",
        shop_name="Shop One",
    )


@pytest.fixture()
def logger() -> logging.Logger:
    return logging.getLogger("tests")
