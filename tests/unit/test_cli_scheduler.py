"""Unit tests for the CLI entry-point and the slot-aligned loop arithmetic."""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest
from pydantic_settings import SettingsConfigDict

from budgetbot.__main__ import main
from budgetbot.core.logging_config import JsonFormatter
from budgetbot.core.models import RunSummary
from budgetbot.core.run_context import RunMode
from budgetbot.core.settings import Settings
from budgetbot.orchestrator.scheduler import _slot_loop, next_slot_start, seconds_until_next_slot

TZ = ZoneInfo("Asia/Ho_Chi_Minh")


# ---------------------------------------------------------------------------
# Slot arithmetic
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("hour", "minute", "expected"),
    [(9, 5, (9, 30)), (9, 30, (10, 0)), (9, 59, (10, 0)), (23, 45, (0, 0))],
)
def test_next_slot_start(hour: int, minute: int, expected: tuple[int, int]) -> None:
    nxt = next_slot_start(datetime(2024, 5, 6, hour, minute, tzinfo=TZ), TZ)
    assert (nxt.hour, nxt.minute) == expected


def test_seconds_until_next_slot() -> None:
    now = datetime(2024, 5, 6, 9, 29, 30, tzinfo=TZ)
    assert seconds_until_next_slot(now, TZ) == 30.0


async def test_slot_loop_runs_at_the_boundary_after_early_wake(
    settings: Settings, mock_sleep: AsyncMock
) -> None:
    boundary = datetime(2024, 5, 6, 9, 30, tzinfo=TZ)
    readings = iter([boundary - timedelta(seconds=1), boundary - timedelta(milliseconds=1)])
    run_once = AsyncMock(side_effect=asyncio.CancelledError)

    with patch("budgetbot.orchestrator.scheduler.run_once", new=run_once):
        with pytest.raises(asyncio.CancelledError):
            await _slot_loop(settings, now=lambda: next(readings))

    assert mock_sleep.await_args.args[0] == pytest.approx(1.0)
    ctx = run_once.await_args.args[0]
    assert ctx.mode is RunMode.PROCESS
    assert ctx.now == boundary


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@pytest.mark.usefixtures("clean_env")
class TestMain:
    def test_process_prints_summary(self, capsys: pytest.CaptureFixture[str]) -> None:
        summary = RunSummary.from_results("process", [], message="No schedules for current slot")

        with patch(
            "budgetbot.orchestrator.runner.run_once", new=AsyncMock(return_value=summary)
        ) as run_once:
            with pytest.raises(SystemExit) as exit_info:
                main(["--log-level", "WARNING", "process"])

        assert exit_info.value.code == 0
        ctx = run_once.await_args.args[0]
        assert ctx.mode is RunMode.PROCESS
        out = json.loads(capsys.readouterr().out)
        assert out["mode"] == "process"
        assert out["message"] == "No schedules for current slot"

    def test_run_now_passes_arguments(self, capsys: pytest.CaptureFixture[str]) -> None:
        summary = RunSummary.from_results("run-now", [], error="Schedule 'x' not found for shop 7")

        with patch(
            "budgetbot.orchestrator.runner.run_now", new=AsyncMock(return_value=summary)
        ) as run_now:
            with pytest.raises(SystemExit) as exit_info:
                main(["run-now", "--schedule-id", "x", "--shop-id", "7"])

        assert exit_info.value.code == 1
        assert run_now.await_args.args[:2] == ("x", 7)
        assert json.loads(capsys.readouterr().out)["error"]

    def test_run_now_requires_shop_id(self) -> None:
        with pytest.raises(SystemExit) as exit_info:
            main(["run-now", "--schedule-id", "x"])
        assert exit_info.value.code == 2

    def test_invalid_configuration_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SCHEDULER_TIMEZONE", "Mars/Olympus")
        with pytest.raises(SystemExit) as exit_info:
            main(["process"])
        assert exit_info.value.code == 1

    def test_log_settings_read_from_dotenv(
        self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path
    ) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("LOG_LEVEL=ERROR\nLOG_FORMAT=json\n")
        monkeypatch.setattr(
            Settings,
            "model_config",
            SettingsConfigDict(env_file=str(env_file), extra="ignore"),
        )
        summary = RunSummary.from_results("process", [], message="No schedules for current slot")

        with patch("budgetbot.orchestrator.runner.run_once", new=AsyncMock(return_value=summary)):
            with pytest.raises(SystemExit):
                main(["process"])

        root = logging.getLogger()
        assert root.level == logging.ERROR
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
