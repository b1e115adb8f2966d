"""
Structured JSON logging for the voucher engine.

Every record under the ``voucher_kernel`` logger namespace is rendered as
one JSON object per line:

    {"ts": "...", "level": "INFO", "logger": "voucher_kernel.batch.processor",
     "message": "batch_chunk_finished", "batch_id": "...", "succeeded": 500}

Request-scoped fields (correlation id, actor, batch, voucher, operation)
come from ``LogContext`` and are attached to every line emitted while they
are bound.  Engine exceptions logged with ``exc_info`` contribute their
``code`` and public attributes as ``exc_*`` fields; any other exception only
contributes its type, message and traceback.

Values whose key names a credential (``secret``, ``password``, share
tokens and the like) are replaced with ``"<redacted>"`` before
serialization, wherever they appear in the record.
"""

__all__ = [
    "REDACTED",
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
from typing import Any, Iterable, Iterator
from uuid import UUID

from voucher_kernel.exceptions import VoucherEngineError

REDACTED = "<redacted>"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = ("correlation_id", "actor_id", "batch_id", "voucher_id", "operation")

# Never mutated in place: every change installs a fresh dict.
_log_context: ContextVar[dict[str, str]] = ContextVar("voucher_log_context", default={})


class LogContext:
    """Request-scoped log fields, isolated per thread and per asyncio task.

    Worker threads started through ``contextvars.copy_context()`` inherit the
    fields bound by the thread that submitted them.
    """

    @staticmethod
    def _merged(fields: dict[str, str | None]) -> dict[str, str]:
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(_log_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set context fields. ``None`` values leave the field unchanged."""
        _log_context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_log_context.get())

    @classmethod
    def clear(cls) -> None:
        _log_context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block."""
        token = _log_context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _log_context.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

DEFAULT_REDACT_KEYS: frozenset[str] = frozenset({
    "secret",
    "secret_key",
    "signing_secret",
    "dev_secret",
    "share_token",
    "password",
    "authorization",
})


class _JSONEncoder(json.JSONEncoder):
    """Handle UUID, datetime, date and enums in log payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line.

    Args:
        redact_keys: Field names whose values are never written.  A field
            also counts as secret when its name ends in ``_secret`` or
            ``_password``.  Matching ignores case and an ``exc_`` prefix.
    """

    def __init__(self, *args: Any, redact_keys: Iterable[str] = DEFAULT_REDACT_KEYS, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._redact_keys = frozenset(k.lower() for k in redact_keys)

    def _is_secret(self, key: str) -> bool:
        name = key.lower().removeprefix("exc_")
        return (
            name in self._redact_keys
            or name.endswith("_secret")
            or name.endswith("_password")
        )

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        for key in payload:
            if self._is_secret(key):
                payload[key] = REDACTED

        return json.dumps(payload, cls=_JSONEncoder, default=str)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        if isinstance(exc, VoucherEngineError):
            fields["exc_code"] = exc.code
            for k, v in vars(exc).items():
                if not k.startswith("_") and k != "code":
                    fields[f"exc_{k}"] = v
        return fields


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "voucher_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the voucher_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the voucher_kernel logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    if not isinstance(h.formatter, StructuredFormatter):
        h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Drop handlers and configuration state. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
