"""Fire-and-forget audit trail for execution results.

Workers call :meth:`AuditTrail.record` which only enqueues an entry; a single
background task drains the queue into the audit tables through
:class:`~budgetbot.storage.repository.AuditRepository`.  With one consumer the
rows of a shop are written in the order they were recorded.

Audit writes never fail or block a run:

* a full queue drops the new entry (``AUDIT_DROPPED``);
* a failing write is logged (``AUDIT_WRITE_ERROR``) and the worker moves on.

:meth:`AuditTrail.close` waits for the backlog to drain before the database
connection is closed, but never longer than ``flush_timeout_s``; entries still
unwritten then are abandoned and counted as dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Final

from budgetbot.core import events
from budgetbot.core.models import ExecutionResult, Outcome, Schedule
from budgetbot.partner.client import api_path_for
from budgetbot.storage.repository import AuditRepository

__all__ = ["AuditEntry", "AuditTrail"]

logger = logging.getLogger(__name__)

COMPONENT: Final[str] = "ads-budget-scheduler"
ACTION_TYPE: Final[str] = "ads_budget_update"
ACTION_CATEGORY: Final[str] = "ads"
API_CATEGORY: Final[str] = "ads"
TARGET_TYPE: Final[str] = "campaign"

_STATUS: Final[dict[Outcome, str]] = {
    Outcome.SUCCESS: "success",
    Outcome.FAILURE: "failed",
    Outcome.SKIPPED: "skipped",
}


@dataclass(frozen=True)
class AuditEntry:
    """Everything needed to write the audit rows of one result.

    Attributes:
        attempted: ``True`` if at least one upstream call was made; only then
            is an ``api_call_logs`` row written.
    """

    schedule: Schedule
    result: ExecutionResult
    source: str
    attempted: bool = True
    shop_name: str | None = None
    request_params: dict[str, Any] = field(default_factory=dict)


class AuditTrail:
    """Bounded queue of audit entries drained by one background task.

    Args:
        repo: Destination repository.
        source: Value for the activity log's ``source`` column
            (``"scheduled"`` or ``"manual"``).
        max_size: Maximum number of pending entries.
        flush_timeout_s: Upper bound on the wait in :meth:`close`; ``None``
            waits for the whole backlog.
    """

    def __init__(
        self,
        repo: AuditRepository,
        *,
        source: str,
        max_size: int = 1000,
        flush_timeout_s: float | None = None,
    ) -> None:
        self._repo = repo
        self._source = source
        self._flush_timeout_s = flush_timeout_s
        self._queue: asyncio.Queue[AuditEntry] = asyncio.Queue(maxsize=max_size)
        self._worker: asyncio.Task[None] | None = None
        self._writing = False
        self.dropped = 0
        self.write_errors = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.create_task(self._drain(), name="budgetbot-audit")

    async def close(self) -> None:
        """Wait for pending entries to be written, then stop the worker.

        The wait is bounded by ``flush_timeout_s``.  On timeout the entry
        being written and the rest of the backlog are abandoned and added to
        :attr:`dropped`.
        """
        if self._worker is None:
            return
        try:
            async with asyncio.timeout(self._flush_timeout_s):
                await self._queue.join()
        except TimeoutError:
            unwritten = self._queue.qsize() + int(self._writing)
            self.dropped += unwritten
            logger.warning(
                "Audit flush exceeded %.1f s; abandoning %d unwritten entries",
                self._flush_timeout_s,
                unwritten,
                extra={"event": events.AUDIT_DROPPED},
            )
        finally:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

    async def __aenter__(self) -> AuditTrail:
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def record(
        self,
        schedule: Schedule,
        result: ExecutionResult,
        *,
        attempted: bool = True,
        shop_name: str | None = None,
    ) -> None:
        """Enqueue the audit rows for *result*.  Never blocks or raises."""
        entry = AuditEntry(
            schedule=schedule,
            result=result,
            source=self._source,
            attempted=attempted,
            shop_name=shop_name,
            request_params={
                "schedule_id": schedule.id,
                "campaign_id": schedule.campaign_id,
                "ad_type": str(schedule.ad_type),
                "budget": schedule.budget,
            },
        )
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "Audit queue full; dropping entry for schedule %s",
                schedule.id,
                extra={"event": events.AUDIT_DROPPED},
            )

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def _drain(self) -> None:
        while True:
            entry = await self._queue.get()
            self._writing = True
            try:
                await self.write(entry)
            except Exception:  # noqa: BLE001
                self.write_errors += 1
                logger.error(
                    "Failed to write audit rows for schedule %s",
                    entry.schedule.id,
                    exc_info=True,
                    extra={"event": events.AUDIT_WRITE_ERROR},
                )
            finally:
                self._writing = False
                self._queue.task_done()

    async def write(self, entry: AuditEntry) -> None:
        """Write the audit rows of *entry* (budget log, API call, activity)."""
        schedule, result = entry.schedule, entry.result
        status = _STATUS[result.outcome]

        await self._repo.insert_budget_log(
            shop_id=schedule.shop_id,
            campaign_id=schedule.campaign_id,
            campaign_name=schedule.campaign_name,
            schedule_id=schedule.id,
            new_budget=schedule.budget,
            status=status,
            error_message=result.error,
        )

        if entry.attempted:
            await self._repo.insert_api_call(
                shop_id=schedule.shop_id,
                component=COMPONENT,
                api_endpoint=api_path_for(schedule.ad_type),
                http_method="POST",
                api_category=API_CATEGORY,
                status="success" if result.succeeded else "failed",
                error_code=str(result.error_kind) if result.error_kind else None,
                error_message=result.error,
                duration_ms=result.duration_ms,
                request_params=entry.request_params,
                retry_count=result.retry_count,
            )

        await self._repo.insert_activity(
            shop_id=schedule.shop_id,
            shop_name=entry.shop_name,
            action_type=ACTION_TYPE,
            action_category=ACTION_CATEGORY,
            action_description=(
                f'Update budget of "{schedule.display_name}" -> {schedule.budget:,}'
            ),
            target_type=TARGET_TYPE,
            target_id=str(schedule.campaign_id),
            target_name=schedule.display_name,
            request_data=entry.request_params,
            status=status,
            error_message=result.error,
            source=entry.source,
            duration_ms=result.duration_ms,
        )
