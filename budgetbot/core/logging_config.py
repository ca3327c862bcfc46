"""Process-wide logging for budgetbot.

:func:`configure_logging` installs a single ``stderr`` handler on the root
logger; ``stdout`` carries only the JSON run summary printed by the CLI.
Modules log through ``logging.getLogger(__name__)`` and tag notable lines with
``extra={"event": events.X}``.

Every record is stamped with the id of the run it belongs to, taken from
:data:`RUN_ID_CTX`.  The runner sets it once per run and asyncio copies it into
every task started afterwards (wave workers, the audit writer), so concurrent
shops of one run share the id without passing it around.

Environment fallbacks, read at call time:
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any, Final

__all__ = ["configure_logging", "JsonFormatter", "RUN_ID_CTX", "RunContextFilter"]

logger = logging.getLogger(__name__)

#: Id of the run being executed; ``"-"`` outside a run.
RUN_ID_CTX: ContextVar[str] = ContextVar("run_id", default="-")

LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
FORMATS: Final[tuple[str, ...]] = ("text", "json")

_TEXT_LAYOUT: Final[str] = "%(asctime)s %(levelname)-8s run=%(run_id)s %(name)s | %(message)s"

#: Libraries that log every request or query at INFO/DEBUG.
_CHATTY_LOGGERS: Final[tuple[str, ...]] = ("httpx", "httpcore", "aiosqlite", "asyncio")

#: Attribute names every LogRecord has; anything else came from ``extra=``.
_STANDARD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None))
) | {"message", "asctime", "run_id"}


class RunContextFilter(logging.Filter):
    """Copy :data:`RUN_ID_CTX` onto each record as ``record.run_id``."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.run_id = RUN_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    """One flat JSON object per line.

    ``ts``, ``level``, ``logger``, ``run_id``, ``event`` and ``msg`` are always
    present (``event`` may be ``null``).  Other ``extra=`` keys are nested
    under ``ctx``; a traceback, if any, under ``exc``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras = {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "run_id": getattr(record, "run_id", RUN_ID_CTX.get()),
            "event": extras.pop("event", None),
            "msg": record.getMessage(),
        }
        if extras:
            payload["ctx"] = extras
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


def _resolve(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    resolved = value or os.environ.get(env_var) or default
    resolved = resolved.upper() if allowed is LEVELS else resolved.lower()
    if resolved not in allowed:
        raise ValueError(f"Unknown {env_var} {resolved!r}; expected one of {', '.join(allowed)}")
    return resolved


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install the budgetbot handler on the root logger.

    Args:
        level: Level name; falls back to ``$LOG_LEVEL`` then ``INFO``.
        fmt: ``"text"`` or ``"json"``; falls back to ``$LOG_FORMAT`` then ``text``.
        force: Replace existing root handlers.  Without it a second call only
            adjusts the level.

    Raises:
        ValueError: On an unknown level or format.
    """
    resolved_level = _resolve(level, "LOG_LEVEL", "INFO", LEVELS)
    resolved_fmt = _resolve(fmt, "LOG_FORMAT", "text", FORMATS)

    root = logging.getLogger()
    root.setLevel(resolved_level)
    if root.handlers and not force:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(RunContextFilter())
    handler.setFormatter(
        JsonFormatter() if resolved_fmt == "json" else logging.Formatter(_TEXT_LAYOUT)
    )
    root.handlers[:] = [handler]

    chatty_level = logging.DEBUG if resolved_level == "DEBUG" else logging.WARNING
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)
