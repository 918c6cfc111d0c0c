"""
Structured JSON logging for the workflow kernel.

Every record under the ``workflow_kernel`` logger is emitted as one JSON
object per line.  Fields come from three places, in priority order:

1. the envelope (``ts``, ``level``, ``logger``, ``message``)
2. the ambient workflow context bound with ``LogContext``
3. ``extra={...}`` passed at the call site

Kernel errors attached via ``exc_info`` are flattened into ``exc_*``
fields so a refused transition can be filtered on ``exc_code`` without
parsing tracebacks.
"""

__all__ = [
    "CONTEXT_FIELDS",
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
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, TextIO
from uuid import UUID

LOGGER_NAMESPACE = "workflow_kernel"

# Fields a caller may bind for the duration of a workflow command.
CONTEXT_FIELDS: frozenset[str] = frozenset({
    "correlation_id",
    "request_id",
    "actor_id",
    "actor_role",
    "kind",
})

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("workflow_log_context", default=_EMPTY)


def _merged(**fields: str | None) -> Mapping[str, str]:
    current = dict(_context.get())
    for name, value in fields.items():
        if name in CONTEXT_FIELDS and value is not None:
            current[name] = str(value)
    return MappingProxyType(current)


class LogContext:
    """
    Ambient fields attached to every log line in the current thread or task.

    Backed by a single ``ContextVar`` holding a read-only mapping, so a
    ``bind`` block restores exactly what was there before, including
    "unset".  Names outside ``CONTEXT_FIELDS`` are ignored.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Overwrite the given fields; ``None`` leaves a field untouched."""
        _context.set(_merged(**fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    def bind(**fields: str | None) -> "_BoundContext":
        """Context manager: apply ``fields`` on entry, restore on exit."""
        return _BoundContext(fields)


class _BoundContext:

    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set(_merged(**self._fields))
        return LogContext

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _context.reset(self._token)
            self._token = None


# LogRecord attributes that are never treated as caller extras.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_safe(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        fields["exc_retryable"] = bool(getattr(exc, "retryable", False))
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = _json_safe(value)
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())

        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, _json_safe(value))

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=lambda v: str(_json_safe(v)))


def get_logger(name: str) -> logging.Logger:
    """Logger for a kernel component, e.g. ``get_logger("services.transition")``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``workflow_kernel`` logger.

    Only the first call has any effect until ``reset_logging()``.  Records
    do not propagate to the root logger, so host applications that
    configure logging themselves do not see duplicate lines.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True

        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        namespace = logging.getLogger(LOGGER_NAMESPACE)
        namespace.setLevel(level)
        namespace.propagate = False
        namespace.addHandler(target)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` again (tests only)."""
    global _configured
    with _configure_lock:
        _configured = False
        namespace = logging.getLogger(LOGGER_NAMESPACE)
        for h in list(namespace.handlers):
            namespace.removeHandler(h)
        namespace.setLevel(logging.WARNING)
