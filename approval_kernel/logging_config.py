"""
approval_kernel.logging_config -- JSON-lines logging for the approval kernel.

Responsibility:
    Every kernel logger lives under the ``approval_kernel`` namespace and
    emits one JSON object per record.  Request-scoped fields (request id,
    acting user, workflow, page) are bound once through ``LogContext`` and
    appear on every record emitted while they are bound.

Architecture position:
    Kernel -- infrastructure.  Imported by services, config bridges and
    scripts; imports nothing from the rest of the kernel.

Invariants enforced:
    - Bound fields are held in a single ``ContextVar``, so threads and
      asyncio tasks each see their own binding.
    - ``LogContext.bind`` restores the exact previous binding on exit,
      including on exception.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

_NAMESPACE = "approval_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "request_id",
    "actor_id",
    "workflow_id",
    "page",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default=_EMPTY)


def _merged(current: Mapping[str, str], updates: Mapping[str, Any]) -> Mapping[str, str]:
    unknown = set(updates) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
    merged = dict(current)
    merged.update({k: str(v) for k, v in updates.items() if v is not None})
    return MappingProxyType(merged)


class LogContext:
    """Request-scoped fields attached to every formatted record.

    An action processed on behalf of a UI call can be followed end to end
    by filtering the log stream on ``request_id``.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Bind fields for the rest of the current context. None values are ignored."""
        _bound.set(_merged(_bound.get(), fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound.get())

    @staticmethod
    def clear() -> None:
        _bound.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields inside a ``with`` block; the previous binding comes back on exit."""
        token = _bound.set(_merged(_bound.get(), fields))
        try:
            yield LogContext
        finally:
            _bound.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten an exception into ``exc_*`` keys.

    Kernel errors expose their structured context (request id, step order,
    required vs. resolved counts) as public attributes; those are copied
    so a log query does not have to parse the message.
    """
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name in ("args", "code"):
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: envelope, bound context, extras, exception."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_bound.get(),
        }
        out.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in out
        )
        if record.exc_info and record.exc_info[1] is not None:
            out.update(_exception_fields(record.exc_info[1]))
            out["traceback"] = self.formatException(record.exc_info)
        return json.dumps(out, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """Logger named ``approval_kernel.<name>``."""
    return logging.getLogger(f"{_NAMESPACE}.{name}")


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the kernel namespace.

    Only the first call has any effect; later calls (from scripts, the
    engine factory, tests) leave the existing handler in place.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        ns_logger = logging.getLogger(_NAMESPACE)
        ns_logger.setLevel(level)
        ns_logger.propagate = False
        ns_logger.addHandler(handler)
        _installed_handler = handler


def reset_logging() -> None:
    """Remove the installed handler so the next ``configure_logging`` applies. Tests only."""
    global _installed_handler
    with _setup_lock:
        ns_logger = logging.getLogger(_NAMESPACE)
        ns_logger.handlers.clear()
        ns_logger.setLevel(logging.WARNING)
        _installed_handler = None
