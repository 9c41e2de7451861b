"""
Structured JSON logging for the gateway.

One JSON object per line: timestamp, level, correlation_id, module, message,
plus the ingestion fields listed in EXTRA_FIELDS when a call passes them via
`extra=`. The correlation ID lives in a ContextVar set by the request
middleware and is copied onto every audit record opened during the request.

Forwarding credentials travel as the `access_token` query parameter, so any
URL that reaches a log line (httpx debug output, exception text) has that
value masked by the formatter.
"""
import json
import logging
import re
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Width of audit_records.correlation_id; longer inbound ids are replaced
MAX_CORRELATION_ID_LENGTH = 64

EXTRA_FIELDS = (
    "identity_token",
    "event_name",
    "audit_record_id",
    "error_category",
    "channel",
    "duration_ms",
)

_ACCESS_TOKEN_PATTERN = re.compile(r"(access_token=)[^&\s\"']+")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def resolve_correlation_id(inbound: Optional[str]) -> str:
    """Keep a caller-supplied X-Correlation-ID if it fits the audit column, else mint one."""
    if inbound:
        inbound = inbound.strip()
    if not inbound or len(inbound) > MAX_CORRELATION_ID_LENGTH:
        return generate_correlation_id()
    return inbound


def mask_access_tokens(text: str) -> str:
    return _ACCESS_TOKEN_PATTERN.sub(r"\1***", text)


class StructuredJsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": mask_access_tokens(record.getMessage()),
        }

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = mask_access_tokens(self.formatException(record.exc_info))

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger. Called once from create_app()."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    # httpx logs every request URL at INFO, credential included
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
