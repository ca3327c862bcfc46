"""Structured log event name constants for the Budgetbot scheduler.

Every key transition emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value is
the top-level ``event`` key; in text mode the message is self-describing.

Usage example::

    import logging
    from budgetbot.core import events

    logger = logging.getLogger(__name__)

    logger.info("Run started", extra={"event": events.RUN_START})
"""

from __future__ import annotations

__all__ = [
    # Run lifecycle
    "RUN_START",
    "RUN_COMPLETE",
    "RUN_ABORT",
    "RUN_TIMEOUT",
    # Waves
    "WAVE_START",
    "WAVE_COOLDOWN",
    # Shops
    "SHOP_SKIPPED",
    "SHOP_FATAL",
    # Budget edits
    "BUDGET_UPDATED",
    "BUDGET_FAILED",
    "BUDGET_RETRY",
    # Audit
    "AUDIT_WRITE_ERROR",
    "AUDIT_DROPPED",
]

# ---------------------------------------------------------------------------
# Run lifecycle
# ---------------------------------------------------------------------------

#: Emitted once at the start of every ``process`` / ``run-now`` run.
RUN_START: str = "RUN_START"

#: Emitted once when the run summary has been assembled.
RUN_COMPLETE: str = "RUN_COMPLETE"

#: The run could not proceed (schedule store unreachable, schedule missing).
RUN_ABORT: str = "RUN_ABORT"

#: The wall-clock budget ran out; remaining shops are skipped.
RUN_TIMEOUT: str = "RUN_TIMEOUT"

# ---------------------------------------------------------------------------
# Waves
# ---------------------------------------------------------------------------

#: A wave of concurrently processed shops is starting.
WAVE_START: str = "WAVE_START"

#: The cumulative error ratio crossed the threshold; cooling down.
WAVE_COOLDOWN: str = "WAVE_COOLDOWN"

# ---------------------------------------------------------------------------
# Shops
# ---------------------------------------------------------------------------

#: Every schedule of a shop was skipped because credentials are missing.
SHOP_SKIPPED: str = "SHOP_SKIPPED"

#: An auth / IP-whitelist failure stopped processing for a shop.
SHOP_FATAL: str = "SHOP_FATAL"

# ---------------------------------------------------------------------------
# Budget edits
# ---------------------------------------------------------------------------

#: A campaign budget was changed successfully.
BUDGET_UPDATED: str = "BUDGET_UPDATED"

#: A campaign budget edit failed after all retries.
BUDGET_FAILED: str = "BUDGET_FAILED"

#: A retryable failure occurred; the call will be retried.
BUDGET_RETRY: str = "BUDGET_RETRY"

# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

#: An audit row could not be written; the run continues.
AUDIT_WRITE_ERROR: str = "AUDIT_WRITE_ERROR"

#: The audit queue was full and an entry was discarded.
AUDIT_DROPPED: str = "AUDIT_DROPPED"
