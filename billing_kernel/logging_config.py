"""
Structured JSON logging shared by the kernel and the recurring engine.

Every record becomes one JSON object on one line::

    {"ts": ..., "level": ..., "logger": ..., "message": "<event name>",
     <bound context fields>, <extra fields>, <exc_* fields>}

Messages are event names (``scheduler_tick``, ``recurring_claim_won``,
``recurring_run_failed``); details travel as ``extra`` fields and are never
interpolated into the message.  Context bound with ``LogContext.bind``
(tick correlation id, profile, occurrence) is attached to every line
emitted inside the block.
"""

from __future__ import annotations

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator, Mapping
from uuid import UUID

LOGGER_NAMESPACE = "billing_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "organization_id",
    "profile_id",
    "run_at",
)

# Replaced, never mutated: each bind/set installs a new mapping.
_bound: ContextVar[Mapping[str, str]] = ContextVar("billing_log_context", default={})


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class LogContext:
    """Fields attached to every line logged in the current context.

    The scheduler binds ``correlation_id`` once per tick,
    ``profile_id`` / ``organization_id`` per candidate, and ``run_at`` while
    a claimed occurrence executes.  Bindings live in a ContextVar, so each
    thread (one per scheduler instance) sees only its own.
    """

    @staticmethod
    def _validated(fields: dict[str, Any]) -> dict[str, str]:
        unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
        if unknown:
            raise KeyError(f"Unknown log context field(s): {', '.join(unknown)}")
        return {name: str(value) for name, value in fields.items() if value is not None}

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add fields to the current context.  ``None`` values are ignored."""
        _bound.set({**_bound.get(), **cls._validated(fields)})

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Bind fields for the duration of a ``with`` block."""
        token = _bound.set({**_bound.get(), **cls._validated(fields)})
        try:
            yield
        finally:
            _bound.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # BillingKernelError subclasses keep their context as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record.

    Precedence on key clashes: envelope, then bound context, then ``extra``.
    UUIDs and Decimals render as strings, datetimes as ISO-8601, enums as
    their value; anything else falls back to ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and key not in payload
        }
        payload.update(extra)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``billing_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ``billing_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.  ``level``
    may be a name (``"info"``, ``"WARNING"``).  Records do not propagate to
    the root logger.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return

        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        namespace = logging.getLogger(LOGGER_NAMESPACE)
        namespace.setLevel(level.upper() if isinstance(level, str) else level)
        namespace.propagate = False
        namespace.addHandler(target)
        _installed_handler = target


def reset_logging() -> None:
    """Remove the handler installed by ``configure_logging``.  Tests only."""
    global _installed_handler
    with _setup_lock:
        namespace = logging.getLogger(LOGGER_NAMESPACE)
        if _installed_handler is not None:
            namespace.removeHandler(_installed_handler)
            _installed_handler = None
        namespace.setLevel(logging.WARNING)
