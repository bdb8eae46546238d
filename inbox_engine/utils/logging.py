"""
Single-line JSON logs carrying the request's correlation id.

The CorrelationIdMiddleware stores an id per request in a contextvar; every
record emitted while handling that request picks it up. Inbound-specific
identifiers passed via `extra=` (thread, message, contact, channel, ...) are
lifted into top-level JSON keys so log search can filter on them.
"""
import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

_correlation_id: ContextVar[Optional[str]] = ContextVar("inbox_correlation_id", default=None)

EXTRA_KEYS = ("thread_id", "message_id", "contact_id", "channel", "provider", "error_code")

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx")


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


def set_correlation_id(cid: str) -> None:
    _correlation_id.set(cid)


def generate_correlation_id() -> str:
    """32-char hex id."""
    return uuid.uuid4().hex


def mask_address(value: Optional[str]) -> str:
    """
    Mask a phone number, email or handle for log output.

    +14045551234      -> +14045***
    dana@example.com  -> da***@example.com
    """
    if not value:
        return "unknown"
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:2]}***@{domain}"
    return value[:6] + "***"


class StructuredJsonFormatter(logging.Formatter):
    """{"timestamp", "level", "correlation_id", "module", "message", [exception], [extra keys]}"""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        payload.update({
            key: getattr(record, key)
            for key in EXTRA_KEYS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Route the root logger through one JSON stream handler. Call once at startup."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
