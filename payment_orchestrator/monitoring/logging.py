"""
Structured logging configuration.

Events are rendered as JSON through structlog, with ids bound via
``structlog.contextvars`` merged in. Card data never reaches a log line:
primary account numbers are cut to their last four digits and security
codes are dropped before rendering.
"""
import logging
import sys
from typing import Any, Dict, Optional, TextIO

import structlog
from pythonjsonlogger import jsonlogger

from payment_orchestrator.config import Settings, get_settings

PAN_FIELDS = frozenset({"card_number", "pan"})
SECRET_FIELDS = frozenset({"cvv", "cvc", "webhook_secret", "api_key"})

NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite")


def mask_pan(value: Any) -> str:
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    return f"****{digits[-4:]}" if len(digits) >= 4 else "****"


def _scrub(value: Any) -> Any:
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if key in SECRET_FIELDS:
                continue
            cleaned[key] = mask_pan(item) if key in PAN_FIELDS else _scrub(item)
        return cleaned
    if isinstance(value, list):
        return [_scrub(item) for item in value]
    return value


def mask_card_data(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor removing card secrets, including inside nested payloads."""
    return _scrub(event_dict)


def add_app_context(settings: Settings):
    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("app_name", settings.app_name)
        event_dict.setdefault("app_env", settings.app_env)
        return event_dict

    return processor


def setup_logging(settings: Optional[Settings] = None, stream: Optional[TextIO] = None) -> None:
    """
    Configure structlog and the root logger.

    Args:
        settings: Settings to read level and app context from
        stream: Where log lines go; the CLI passes stderr so stdout stays
            reserved for command output
    """
    settings = settings or get_settings()
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.debug and not settings.is_production and stream is None
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            add_app_context(settings),
            mask_card_data,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "@timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(settings.log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )

    structlog.get_logger(__name__).info(
        "logging_configured", log_level=settings.log_level, app_env=settings.app_env
    )
