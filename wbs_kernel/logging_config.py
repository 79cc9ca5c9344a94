"""
Module: wbs_kernel.logging_config
Responsibility:
    One JSON object per log line for everything under the ``wbs_kernel``
    logger namespace, enriched with the project-scoped context the caller
    bound (which project, which measurement, which engine operation).

Architecture position:
    Kernel -- imported by every engine. Never configures the root logger;
    an application opts in with ``configure_logging()``.

Invariants enforced:
    - Payload values are JSON-safe: Decimals keep their exact digits as
      strings, enums log their value, sets log as sorted lists.
    - Context never leaks: ``LogContext.bind`` restores the previous
      values on exit, including on error.

Usage:
    from wbs_kernel.logging_config import LogContext, get_logger

    logger = get_logger("engines.aggregator")
    with LogContext.bind(project_id="p-17", measurement_number=3):
        forest = compute_wbs(items, bdi)
"""

from __future__ import annotations

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "log_diagnostics",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any

from wbs_kernel.domain.diagnostics import Diagnostic, Severity

_LOGGER_PREFIX = "wbs_kernel"

# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

_EMPTY: Mapping[str, Any] = MappingProxyType({})
_context: ContextVar[Mapping[str, Any]] = ContextVar("wbs_log_context", default=_EMPTY)


class LogContext:
    """
    Request-scoped fields copied onto every record.

    ``project_id`` and ``measurement_number`` are bound by the caller;
    ``operation`` is bound by ``traced_engine`` around each engine call.
    """

    FIELDS: frozenset[str] = frozenset({
        "correlation_id",
        "project_id",
        "measurement_number",
        "operation",
    })

    @classmethod
    def _check(cls, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - cls.FIELDS
        if unknown:
            raise ValueError(f"Unknown log context fields: {', '.join(sorted(unknown))}")

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Merge fields into the current context; None values are ignored."""
        cls._check(fields)
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        _context.set(MappingProxyType(merged))

    @classmethod
    def get_all(cls) -> dict[str, Any]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type[LogContext]]:
        """Set fields for the duration of a ``with`` block."""
        cls._check(fields)
        merged = dict(_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield cls
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STDLIB_KEYS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            # WbsKernelError carries a code and its structured fields
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
                payload.update(
                    (f"exc_{key}", value)
                    for key, value in vars(exc).items()
                    if not key.startswith("_")
                )
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``wbs_kernel`` namespace, e.g. ``wbs_kernel.engines.reorder``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def log_diagnostics(
    logger: logging.Logger,
    event: str,
    diagnostics: Iterable[Diagnostic],
) -> None:
    """Emit one record per diagnostic, at the level its severity names."""
    for diagnostic in diagnostics:
        level = logging.INFO if diagnostic.severity is Severity.INFO else logging.WARNING
        logger.log(level, event, extra={
            **diagnostic.as_log_extra(),
            "detail": diagnostic.message,
        })


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``wbs_kernel`` logger. Later calls are no-ops."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    package_logger = logging.getLogger(_LOGGER_PREFIX)
    package_logger.setLevel(level)
    package_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    package_logger.addHandler(target)


def reset_logging() -> None:
    """Undo ``configure_logging``. For tests."""
    global _configured
    with _lock:
        _configured = False
    package_logger = logging.getLogger(_LOGGER_PREFIX)
    package_logger.handlers.clear()
    package_logger.setLevel(logging.WARNING)
    package_logger.propagate = True
