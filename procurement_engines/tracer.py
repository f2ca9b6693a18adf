"""
procurement_engines.tracer -- ``@traced_engine`` for pure engine calls.

Each decorated call logs one ``PROCUREMENT_ENGINE_TRACE`` record carrying
the engine name and version, a fingerprint of the arguments named in
``fingerprint_fields``, the duration and the outcome.  Arguments are
resolved against the function signature, so positional and keyword calls
of the same inputs produce the same fingerprint.

The decorator only logs.  It never changes the arguments or the result,
and an exception raised by the engine is logged with ``outcome="error"``
and re-raised unchanged.

    @traced_engine("twin_reconciler", "1.0", fingerprint_fields=("basket",))
    def validate_for_finalization(self, basket, all_baskets):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from procurement_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_TYPE = "PROCUREMENT_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (str, int, float, Decimal, UUID)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonical(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(_canonical(v) for v in value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """16-hex-digit SHA-256 prefix over the named arguments.

    A name missing from ``arguments`` hashes the same as an explicit ``None``.
    """
    canonical = "|".join(
        f"{name}={_canonical(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Wrap an engine entry point with a trace record per call.

    Args:
        engine_name: Engine identifier, e.g. ``"status_mapping"``.
        engine_version: Version of the engine's rules, e.g. ``"1.0"``.
        fingerprint_fields: Parameter names hashed into ``input_fingerprint``.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        def _fingerprint(args: tuple, kwargs: dict) -> str:
            if not fingerprint_fields:
                return ""
            try:
                bound = signature.bind_partial(*args, **kwargs)
            except TypeError:
                # The call itself will fail with the real error.
                return ""
            return compute_input_fingerprint(fingerprint_fields, bound.arguments)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = _fingerprint(args, kwargs)
            outcome = "ok"
            started = time.monotonic()
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                outcome = "error"
                error_type = type(exc).__name__
                raise
            finally:
                trace = {
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "outcome": outcome,
                }
                if outcome == "error":
                    trace["error_type"] = error_type
                _logger.info(TRACE_TYPE, extra=trace)

        return wrapper

    return decorator
