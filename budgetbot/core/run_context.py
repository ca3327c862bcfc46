"""Run modes and per-run context for Budgetbot.

The scheduler has a closed set of entry points:

process
    Triggered by the external cron (or :mod:`budgetbot.orchestrator.scheduler`)
    every 30 minutes.  Selects the schedules due in the current slot and
    executes them in waves.

run-now
    Operator-initiated "test this schedule now".  Bypasses the matcher and
    executes exactly one schedule, identified by schedule id and shop id.

Each mode maps to a dedicated entry function in
:mod:`budgetbot.orchestrator.runner`; :class:`RunContext` carries the values a
run needs that are not configuration (the mode, the reference "now", and the
correlation id shown in every log line).

Typical usage::

    from budgetbot.core.run_context import RunContext, RunMode

    ctx = RunContext(mode=RunMode.PROCESS)
    summary = await run_once(ctx, settings)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from budgetbot.core.ids import new_run_id

__all__ = ["RunMode", "RunContext"]

logger = logging.getLogger(__name__)


class RunMode(StrEnum):
    """The closed set of scheduler entry points."""

    PROCESS = "process"
    RUN_NOW = "run-now"

    @property
    def audit_source(self) -> str:
        """Value recorded in the activity log's ``source`` column."""
        return "scheduled" if self is RunMode.PROCESS else "manual"


@dataclass(frozen=True)
class RunContext:
    """Immutable per-run values.

    Attributes:
        mode: Which entry point started the run.
        now: Reference instant used for slot matching.  Must be timezone
            aware; defaults to the current UTC time.
        run_id: Short correlation id injected into every log record.
    """

    mode: RunMode = RunMode.PROCESS
    now: datetime = field(default_factory=lambda: datetime.now(UTC))
    run_id: str = field(default_factory=new_run_id)

    def __post_init__(self) -> None:
        if self.now.tzinfo is None:
            raise ValueError("RunContext.now must be timezone-aware")

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode}, run_id={self.run_id}, now={self.now.isoformat()})"
