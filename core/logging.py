"""
Structured logging for the checkout service

JSON lines in deployed environments, plain text locally. Every handler
carries a redaction filter so client secrets, processor keys and payment
tokens never reach a log sink, whichever module logged them.
"""
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from core.config import settings

JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

REDACTED = "[REDACTED]"

# Record attributes that hold credentials or payment secrets
SECRET_FIELDS = frozenset(
    {
        "client_secret",
        "payment_token",
        "api_key",
        "secret_key",
        "webhook_secret",
        "authorization",
        "signature",
    }
)

# Processor key and client-secret shapes that can turn up inside messages
SECRET_PATTERN = re.compile(r"\b(sk|rk|whsec)_(test|live)?_?[A-Za-z0-9]{6,}|\bpi_[A-Za-z0-9]+_secret_[A-Za-z0-9]+")


def redact(text: str) -> str:
    return SECRET_PATTERN.sub(REDACTED, text)


class SecretRedactionFilter(logging.Filter):
    """Masks secret-bearing record attributes and secret-shaped substrings"""

    def filter(self, record: logging.LogRecord) -> bool:
        for field in SECRET_FIELDS:
            if getattr(record, field, None):
                setattr(record, field, REDACTED)
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter stamping every record with service identity"""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["app"] = settings.app_name
        log_record["environment"] = settings.environment
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["event"] = record.getMessage()

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record.pop("message", None)
        log_record.pop("msg", None)


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return CustomJsonFormatter(JSON_FORMAT, timestamp=True)
    return logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger"""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (log_level or settings.log_level).upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(log_format or settings.log_format))
    handler.addFilter(SecretRedactionFilter())
    root_logger.addHandler(handler)

    # SDK request logs echo headers and bodies
    for name in ("uvicorn", "httpx", "stripe"):
        logging.getLogger(name).setLevel(logging.WARNING)


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that merges bound context under each call's own extra"""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs

    def with_context(self, **context) -> "LoggerAdapter":
        """Adapter with extra bound context, leaving this one unchanged"""
        return LoggerAdapter(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger carrying bound context

    Example:
        logger = get_logger(__name__, domain="d2", processor="stripe")
        logger.info("Intent created", extra={"payment_intent_id": "pi_123"})
    """
    return LoggerAdapter(logging.getLogger(name), context)


setup_logging()
