"""
Structured JSON logging for the procurement core.

Every record is one JSON object per line:

    {"ts": "...", "level": "INFO", "logger": "procurement.services.purge",
     "message": "lines_purged", "basket_id": "...", "purged_count": 2}

Messages are snake_case event names; structured data goes through
``extra=``.  Request-scoped identifiers (basket, purchase request,
correlation) live in ``LogContext`` and are merged into every record
emitted while they are bound, including records emitted by batch worker
threads that were started with a copy of the caller's context.
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
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "basket_id",
    "request_id",
    "trace_id",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"procurement_log_{name}", default=None)
    for name in _CONTEXT_FIELDS
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise TypeError(
            f"Unknown log context field {name!r}; expected one of {_CONTEXT_FIELDS}"
        ) from None


class LogContext:
    """
    Request-scoped log fields, safe across threads and tasks.

    Values are stored as strings, so UUIDs can be bound directly:

        with LogContext.bind(basket_id=basket.id):
            logger.info("basket_transition_started")
    """

    FIELDS = _CONTEXT_FIELDS

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields.  ``None`` values leave a field untouched."""
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                var.set(str(value))

    @classmethod
    def get(cls, name: str) -> str | None:
        return _context_var(name).get()

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """The fields currently set, in declaration order."""
        return {
            name: value
            for name, value in ((n, _CONTEXT_VARS[n].get()) for n in _CONTEXT_FIELDS)
            if value is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of the block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for name, value in fields.items():
            var = _context_var(name)
            if value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    """Render domain values (ids, instants, quantities, statuses)."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Public attributes of ProcurementError subclasses (basket_id, step, ...)
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, then context, then ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory and initialization
# ---------------------------------------------------------------------------

_ROOT_LOGGER = "procurement"

_installed_handler: logging.Handler | None = None
_configure_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the ``procurement`` hierarchy."""
    return logging.getLogger(f"{_ROOT_LOGGER}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``procurement`` logger.

    Only the first call has an effect until ``reset_logging``.
    """
    global _installed_handler
    with _configure_lock:
        if _installed_handler is not None:
            return
        handler = handler or logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        _installed_handler = handler

    root = logging.getLogger(_ROOT_LOGGER)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Remove the handler ``configure_logging`` installed and allow it again.

    Handlers attached by anything else are left in place.  Tests only.
    """
    global _installed_handler
    with _configure_lock:
        handler, _installed_handler = _installed_handler, None
    root = logging.getLogger(_ROOT_LOGGER)
    if handler is not None:
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
