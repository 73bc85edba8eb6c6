"""
Structured logging with request ID support.

- JSON lines in production, one readable line per record elsewhere.
- The request id lives in a ContextVar set by RequestIdMiddleware.
- log_event() for support and wiki actions; extra values are clipped.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

LOGGER_NAME = "family_helper"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Attributes every LogRecord has; anything else came in through `extra=`.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

_LATENCY_BUCKETS = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

MAX_FIELD_CHARS = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label, so log queries can group requests."""
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class _ContextFormatter(logging.Formatter):
    """Shared pieces: UTC timestamp and the fields passed through `extra=`."""

    @staticmethod
    def timestamp(record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        return stamp.isoformat().replace("+00:00", "Z")

    @staticmethod
    def extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
        fields = {}
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key == "request_id" or key.startswith("_"):
                continue
            fields[key] = value
        return fields


class JsonFormatter(_ContextFormatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", None),
            "message": record.getMessage(),
            **self.extra_fields(record),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PrettyFormatter(_ContextFormatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [self.timestamp(record), record.levelname, f"[{record.name}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{k}={v}" for k, v in sorted(self.extra_fields(record).items()))
        line = " ".join(parts)
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development") -> None:
    """Install one stdout handler on the app logger; JSON when env is production."""
    formatter = JsonFormatter() if env.lower() == "production" else PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(formatter)

    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(logging.INFO)
    app_logger.handlers = [handler]
    app_logger.propagate = True

    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def _clip(value: Any) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) > MAX_FIELD_CHARS:
        return f"{text[:MAX_FIELD_CHARS]}...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    group_id: Optional[str] = None,
    target_user_id: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Log an action with its ids attached as structured fields."""
    app_logger = logging.getLogger(LOGGER_NAME)
    if not app_logger.handlers:
        # Scripts and tests can log before main.py configured anything
        configure_logging(os.getenv("ENV", "development"))

    ids = {
        "user_id": user_id,
        "group_id": group_id,
        "target_user_id": target_user_id,
        "error_code": error_code,
    }
    fields: Dict[str, Any] = {"request_id": request_id or get_request_id()}
    fields.update({k: v for k, v in ids.items() if v})
    for key, value in (extra or {}).items():
        fields[key] = _clip(value)

    getattr(app_logger, level, app_logger.info)(msg, extra=fields)
