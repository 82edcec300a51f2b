"""
Structured logging for the metering service.

JSON lines in production, one readable line in development. Every record
carries the request_id bound by RequestIdMiddleware, plus whichever
metering fields (user, bucket, plan, counts, error code) the caller attached.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes copied into JSON output when present
METERING_FIELDS = (
    "user_email",
    "bucket",
    "plan",
    "used",
    "limit",
    "reason",
    "event_type",
    "error_code",
    "operation",
    "session_id",
    "retry_after",
    "method",
    "path",
    "status",
    "latency_bucket",
)


def get_request_id() -> Optional[str]:
    return request_id_ctx_var.get()


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    # Provider calls dominate; buckets are sized for multi-second generations
    if latency_ms is None:
        return "unknown"
    if latency_ms < 100:
        return "<100ms"
    if latency_ms < 1000:
        return "100-1000ms"
    if latency_ms < 10000:
        return "1-10s"
    if latency_ms < 60000:
        return "10-60s"
    return ">=60s"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            {key: getattr(record, key) for key in METERING_FIELDS if getattr(record, key, None) is not None}
        )
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        tags = []
        rid = getattr(record, "request_id", None)
        if rid:
            tags.append(f"rid={rid}")
        for key in ("user_email", "bucket"):
            value = getattr(record, key, None)
            if value:
                tags.append(f"{key}={value}")
        tag_part = f" [{' '.join(tags)}]" if tags else ""
        return f"{record.levelname:<7} {record.name}{tag_part} {record.getMessage()}"


def configure_logging(env: str = "development") -> None:
    """Install the guidechat handler; JSON in production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger = logging.getLogger("guidechat")
    logger.setLevel(logging.INFO)
    logger.handlers = [handler]
    logger.propagate = True


def log_event(
    level: str,
    msg: str,
    *,
    user_email: Optional[str] = None,
    bucket: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    **fields,
) -> None:
    """Log one metering event on the guidechat logger with flat structured fields."""
    payload = {"user_email": user_email, "bucket": bucket, "event_type": event_type, "error_code": error_code}
    payload.update(fields)
    logger = logging.getLogger("guidechat")
    getattr(logger, level, logger.info)(msg, extra=payload)
