"""
Structured logging configuration.

structlog renders every event as one JSON line. Card data never reaches the
output: sensitive keys are masked and stray card numbers inside string
values are cut down to their last four digits.
"""
import logging
import re
import sys
from typing import Any

import structlog
from pythonjsonlogger import jsonlogger

from config import get_settings

SENSITIVE_KEYS = frozenset({"card_number", "cvv", "smtp_password", "api_key"})
CARD_NUMBER_PATTERN = re.compile(r"\b\d{9,15}(\d{4})\b")
REDACTED = "[REDACTED]"

QUIET_LOGGERS = ("aiosqlite", "asyncio", "uvicorn.access")


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Stamp each event with the service name and environment."""
    settings = get_settings()
    event_dict["app_name"] = settings.app_name
    event_dict["app_env"] = settings.app_env
    return event_dict


def redact_card_data(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Mask sensitive fields before rendering.

    Keys in SENSITIVE_KEYS are replaced outright; any 13-19 digit run in a
    string value keeps only its last four digits.
    """
    for key, value in event_dict.items():
        if key in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = CARD_NUMBER_PATTERN.sub(r"****\1", value)
    return event_dict


def setup_logging() -> None:
    """
    Configure structlog and the stdlib root logger.

    Application events go through the structlog chain below; third-party
    stdlib records are formatted by python-json-logger on the same stdout
    handler.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_app_context,
            redact_card_data,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(level)

    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.log_level,
        app_env=settings.app_env,
    )
