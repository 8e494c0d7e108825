"""
Structured JSON logging for the tax and payroll engine.

Every record under the ``farmbook`` logger is one JSON object per line:
``ts``, ``level``, ``logger`` and ``message``, then the computation context
(batch, entity, period, rule), then the ``extra`` fields of the call.  When
an exception is attached, its type, message, ``code`` and public attributes
are flattened into ``exc_*`` keys.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

_CONTEXT_FIELDS = frozenset({"correlation_id", "batch_id", "entity_id", "period", "rule_code"})

_context: ContextVar[Mapping[str, str]] = ContextVar("farmbook_log_context", default={})


class LogContext:
    """Computation-scoped fields copied onto every record."""

    @staticmethod
    def _merged(fields: Mapping[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - _CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields; None leaves a field as it is."""
        _context.set(cls._merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @classmethod
    def bind(cls, **fields: str | None):
        """
        Set fields for the duration of a ``with`` block.

        Unknown field names raise ValueError here, before the block runs.
        """
        return _bound(cls._merged(fields))


@contextmanager
def _bound(fields: dict[str, str]) -> Iterator[type[LogContext]]:
    token = _context.set(fields)
    try:
        yield LogContext
    finally:
        _context.reset(token)


_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


def _json_value(obj: Any) -> Any:
    match obj:
        case Decimal():
            return str(obj)
        case datetime() | date():
            return obj.isoformat()
        case Enum():
            return obj.value
        case _:
            return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"exc_type": type(exc).__name__, "exc_message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_value)


_ROOT = "farmbook"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """``farmbook.<name>``, e.g. ``get_logger("engines.vat")``."""
    return logging.getLogger(f"{_ROOT}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``farmbook`` logger.

    Only the first call has any effect until ``reset_logging`` runs.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT)
    root.setLevel(level)
    root.propagate = False
    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
