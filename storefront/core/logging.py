"""
Structured logging with checkout attempt correlation.

Features:
- JSON logs in production, pretty logs in development.
- Context-bound attempt_id so every record emitted while a checkout
  attempt is running can be correlated.
- log_event helper for consistent structured logs with safe truncation.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional

attempt_id_ctx_var: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)


def get_attempt_id(default: Optional[str] = None) -> Optional[str]:
    """Fetch the current checkout attempt id from context (if any)."""
    aid = attempt_id_ctx_var.get()
    return aid if aid is not None else default


@contextmanager
def bind_attempt_id(attempt_id: str) -> Iterator[str]:
    token = attempt_id_ctx_var.set(attempt_id)
    try:
        yield attempt_id
    finally:
        attempt_id_ctx_var.reset(token)


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z')


class AttemptIdFilter(logging.Filter):
    """Inject attempt_id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "attempt_id", None) is None:
            record.attempt_id = get_attempt_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "attempt_id": getattr(record, "attempt_id", None),
        }
        for key in ("product_id", "event_type", "error_code"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = [
            f"{name}={value}"
            for name, value in (
                ("attempt", getattr(record, "attempt_id", None)),
                ("product", getattr(record, "product_id", None)),
                ("code", getattr(record, "error_code", None)),
            )
            if value
        ]
        tag_part = f" [{' '.join(tags)}]" if tags else ""
        return f"{_format_timestamp(record)} {record.levelname} [storefront]{tag_part} {record.getMessage()}"


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Configure structured logging based on environment."""
    logger = logging.getLogger("storefront")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter: logging.Formatter
    if env.lower() == "production":
        formatter = JsonFormatter()
    else:
        formatter = PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(AttemptIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _safe_truncate(value, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    attempt_id: Optional[str] = None,
    product_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Structured logging helper with safe truncation and attempt correlation."""

    logger = logging.getLogger("storefront")
    if not logger.handlers:
        # Ensure logging configured in edge cases (tests)
        configure_logging(os.getenv("ENV", "development"))

    payload = {
        "attempt_id": attempt_id or get_attempt_id(),
        "product_id": product_id,
    }
    if event_type:
        payload["event_type"] = event_type
    if error_code:
        payload["error_code"] = error_code
    if extra:
        for k, v in extra.items():
            payload[k] = _safe_truncate(v)

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload)
