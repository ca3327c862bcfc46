"""Selection of the schedules due in the current trigger slot.

The external trigger fires every ``slot_minutes`` (30) minutes.  A schedule
fires in the slot that contains its window start, and only if its window has
not already ended.  Because the slot moves on at the next trigger, a schedule
is never selected twice for the same window.

All comparisons are made in the reference timezone; ``now`` may be given in
any timezone.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from budgetbot.core.models import Schedule

__all__ = ["SlotWindow", "current_slot", "is_due", "select_due"]

logger = logging.getLogger(__name__)

_MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class SlotWindow:
    """The slot an invocation belongs to, in local wall-clock terms.

    Attributes:
        start_minute: First minute-of-day of the slot (inclusive).
        end_minute: Last minute-of-day of the slot (exclusive).
        now_minute: Actual local minute-of-day of the invocation.
        today: Local calendar date used for ``specific_dates``.
        weekday: Local weekday, ``0`` = Sunday … ``6`` = Saturday.
    """

    start_minute: int
    end_minute: int
    now_minute: int
    today: date
    weekday: int

    def contains(self, minute_of_day: int) -> bool:
        return self.start_minute <= minute_of_day < self.end_minute


def current_slot(
    now: datetime,
    tz: tzinfo,
    slot_minutes: int = 30,
    grace_s: float = 0.0,
) -> SlotWindow:
    """Return the slot for an invocation at *now*.

    An invocation less than *grace_s* seconds before a slot boundary is
    counted in the upcoming slot.  ``now_minute`` always reflects the real
    time.
    """
    local = now.astimezone(tz)
    slot_at = (local + timedelta(seconds=grace_s)) if grace_s > 0 else local
    if slot_at.date() != local.date():
        # never snap across midnight
        slot_at = local

    minute = slot_at.hour * 60 + slot_at.minute
    start = minute - minute % slot_minutes
    return SlotWindow(
        start_minute=start,
        end_minute=min(start + slot_minutes, _MINUTES_PER_DAY),
        now_minute=local.hour * 60 + local.minute,
        today=local.date(),
        # isoweekday: Monday=1 … Sunday=7
        weekday=local.isoweekday() % 7,
    )


def _recurs_on(schedule: Schedule, slot: SlotWindow) -> bool:
    if schedule.specific_dates:
        return slot.today.isoformat() in schedule.specific_dates
    days = schedule.days_of_week
    if days and len(set(days)) < 7:
        return slot.weekday in days
    return True


def is_due(schedule: Schedule, slot: SlotWindow) -> bool:
    """``True`` if *schedule* fires in *slot*."""
    return (
        schedule.is_active
        and slot.contains(schedule.start_minute_of_day)
        and slot.now_minute < schedule.end_minute_of_day
        and _recurs_on(schedule, slot)
    )


def select_due(
    now: datetime,
    schedules: Iterable[Schedule],
    *,
    tz: tzinfo,
    max_batch_size: int = 50,
    slot_minutes: int = 30,
    grace_s: float = 0.0,
) -> list[Schedule]:
    """Return the schedules due at *now*, in input order.

    Duplicate ids are kept once.  At most *max_batch_size* schedules are
    returned; the rest are left for the next run.
    """
    slot = current_slot(now, tz, slot_minutes, grace_s)
    seen: set[str] = set()
    due: list[Schedule] = []
    total = 0

    for schedule in schedules:
        if schedule.id in seen or not is_due(schedule, slot):
            continue
        seen.add(schedule.id)
        total += 1
        if len(due) < max_batch_size:
            due.append(schedule)

    if total > len(due):
        logger.warning(
            "%d schedules due, processing the first %d; the rest are deferred",
            total,
            len(due),
        )
    logger.debug(
        "Slot %02d:%02d-%02d:%02d on %s: %d due",
        slot.start_minute // 60,
        slot.start_minute % 60,
        slot.end_minute // 60,
        slot.end_minute % 60,
        slot.today,
        len(due),
    )
    return due
