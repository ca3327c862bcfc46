"""Identifier helpers.

Two kinds of identifiers are generated by the scheduler:

+-----------------+------------------------------------------+-----------------------------------+
| Identifier      | Format                                   | Purpose                           |
+=================+==========================================+===================================+
| run id          | 8 hex chars (``uuid4().hex[:8]``)        | log correlation for one run       |
+-----------------+------------------------------------------+-----------------------------------+
| reference id    | ``scheduler-<epoch ms>-<7 base36 chars>``| per-attempt request reference     |
+-----------------+------------------------------------------+-----------------------------------+

A fresh reference id is generated for every HTTP attempt, so retried calls are
distinguishable upstream while carrying the same campaign / budget payload.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
import uuid

__all__ = ["REFERENCE_PREFIX", "new_reference_id", "new_run_id"]

logger = logging.getLogger(__name__)

#: Prefix of every reference id sent upstream.
REFERENCE_PREFIX: str = "scheduler"

_BASE36_ALPHABET: str = string.digits + string.ascii_lowercase
_SUFFIX_LEN: int = 7


def new_reference_id(now_ms: int | None = None) -> str:
    """Return a unique per-attempt reference id.

    Args:
        now_ms: Epoch milliseconds to embed.  Defaults to the current time.

    Returns:
        A string such as ``"scheduler-1718000000000-k3j9x0a"``.
    """
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(_SUFFIX_LEN))
    return f"{REFERENCE_PREFIX}-{now_ms}-{suffix}"


def new_run_id() -> str:
    """Return a short hex id used to correlate the log lines of one run."""
    return uuid.uuid4().hex[:8]
