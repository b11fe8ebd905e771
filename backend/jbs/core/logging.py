"""
Structured logging configuration.

Provides JSON-structured logging with request IDs for production.
Standard ``logging`` records are routed through structlog's processor chain
so redaction applies to every module logger, not just structlog ones.
"""
import logging
import re
import sys
from typing import Any

import structlog

from jbs.core.config import settings

SENSITIVE_FIELDS = (
    "password",
    "token",
    "secret",
    "session_id",
    "authorization",
    "cookie",
    "reset",
)

_EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")


def setup_logging() -> None:
    """
    Configure structured logging for the application.

    In production: JSON format with timestamps and request IDs
    In development: Readable text format
    """
    log_level = getattr(logging, settings.LOG_LEVEL)

    if settings.DEBUG:
        configure_development_logging(log_level)
    else:
        configure_production_logging(log_level)


def configure_development_logging(level: int) -> None:
    """Configure logging for development (readable format)."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
    )

    # Silence noisy SQLAlchemy engine logs
    for name in ('sqlalchemy.engine', 'sqlalchemy.pool', 'sqlalchemy.dialects', 'sqlalchemy.orm'):
        logging.getLogger(name).setLevel(logging.WARNING)


def configure_production_logging(level: int) -> None:
    """Configure logging for production (JSON format)."""
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, structlog.stdlib.ExtraAdder()],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            # Sensitive data redaction
            redact_sensitive_data,
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)


def redact_sensitive_data(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """
    Redact sensitive data from logs.

    Removes or masks:
    - Passwords, tokens and secrets
    - Session identifiers, cookies and authorization headers
    - E-mail addresses and long opaque strings in values
    """
    # Create a copy to avoid mutating original
    redacted = event_dict.copy()

    for key, value in redacted.items():
        if isinstance(key, str):
            key_lower = key.lower()
            if any(sensitive in key_lower for sensitive in SENSITIVE_FIELDS):
                redacted[key] = "***REDACTED***"
            elif isinstance(value, str):
                redacted[key] = redact_string(value)

    return redacted


def redact_string(value: str) -> str:
    """
    Redact sensitive patterns from strings.

    Patterns:
    - Email addresses (keep first character and domain)
    - API keys, JWTs and reset tokens (long opaque strings)
    """
    value = _EMAIL_PATTERN.sub(r"\1***@\2", value)

    if len(value) > 20 and value.replace('_', '').replace('-', '').replace('.', '').isalnum() and ' ' not in value:
        return f"{value[:8]}...{value[-4:]}"

    return value


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class LogHelper:
    """
    Helper for consistent structured logging.

    Usage:
        logger = LogHelper(__name__)
        logger.info("Login succeeded", user_id=str(user.id), risk_score=20)
        logger.warning("Login failed", reason="invalid_password")
    """

    def __init__(self, name: str):
        self.logger = get_logger(name)
        self.name = name

    def _add_context(self, **kwargs: Any) -> dict[str, Any]:
        """Add standard context to all log entries."""
        context = {
            "service": "jbs-backend",
            "logger_name": self.name,
        }
        context.update(kwargs)
        return context

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._add_context(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._add_context(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._add_context(**kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._add_context(**kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, extra=self._add_context(**kwargs))
