"""JSON logging configuration for the TeeTime API.

Message bodies never reach the log stream: any ``body``/``message_body``
value found in a record's context is replaced by a short sha256 digest.
"""

import hashlib
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

SCRUBBED_CONTEXT_KEYS = frozenset({"body", "message_body", "raw_body"})

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "twilio.http_client")


def _digest(value: Any) -> str:
    return "sha256:" + hashlib.sha256(str(value).encode("utf-8")).hexdigest()[:12]


def scrub_context(context: dict[str, Any]) -> dict[str, Any]:
    scrubbed = {}
    for key, value in context.items():
        if key in SCRUBBED_CONTEXT_KEYS and value:
            scrubbed[key] = _digest(value)
        elif isinstance(value, dict):
            scrubbed[key] = scrub_context(value)
        else:
            scrubbed[key] = value
    return scrubbed


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            log_data["context"] = scrub_context(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"teetime.{name}")


class LoggerAdapter(logging.LoggerAdapter):
    """Attaches a fixed request context (member, provider message id) to every record.

    Per-call ``context={...}`` is merged over the fixed context.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            kwargs["extra"] = {"context": {**self.extra, **(context or {})}}
        return msg, kwargs

    def bind(self, **context: Any) -> "LoggerAdapter":
        return LoggerAdapter(self.logger, {**self.extra, **context})
