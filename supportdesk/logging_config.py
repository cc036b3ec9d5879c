"""JSON logging configuration for the support desk API."""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional


# Context keys that carry customer phone numbers.
PHONE_KEYS = frozenset({"phone", "phone_number"})


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and record.context:
            log_data["context"] = masked_context(record.context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Install the JSON handler on the root logger."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"supportdesk.{name}")


def mask_phone(phone: Optional[str]) -> str:
    """Keep the last four digits of a phone number for log context."""
    if not phone:
        return ""
    if len(phone) <= 4:
        return phone
    return "*" * (len(phone) - 4) + phone[-4:]


def masked_context(context: Any) -> Any:
    """Mask phone numbers under PHONE_KEYS, including nested mappings."""
    if not isinstance(context, dict):
        return context
    masked = {}
    for key, value in context.items():
        if key in PHONE_KEYS and isinstance(value, str):
            masked[key] = mask_phone(value)
        else:
            masked[key] = masked_context(value)
    return masked


class LoggerAdapter(logging.LoggerAdapter):
    """Merges bound context (phone, ticket, channel) into every record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = kwargs.pop("context", None)
        if context or self.extra:
            combined_context = {**self.extra, **(context or {})}
            kwargs["extra"] = {"context": combined_context}
        return msg, kwargs


def bind_phone(logger: logging.Logger, phone: str, **extra: Any) -> LoggerAdapter:
    return LoggerAdapter(logger, {"phone": mask_phone(phone), **extra})
