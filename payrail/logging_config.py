"""
Structured logging configuration.

structlog renders every event as a single line (JSON in deployed
environments, coloured key/value output locally) through the standard library
root handler, so uvicorn and SQLAlchemy logs end up in the same stream.

Usage:
    from payrail.logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("payment_initiated", transaction_id=str(txn.id), provider="pesapal")

Never pass credentials, tokens or raw webhook secrets as log fields.
"""

import logging
import sys
from typing import Any

import structlog

from payrail.config import settings


def add_app_context(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["app_name"] = settings.APP_NAME
    event_dict["app_version"] = settings.APP_VERSION
    return event_dict


def setup_logging() -> None:
    """Configure structlog and the stdlib root logger. Safe to call repeatedly."""
    if settings.LOG_FORMAT == "console":
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_app_context,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)

    # httpx logs every request line at INFO, including query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "logging_configured",
        log_level=settings.LOG_LEVEL,
        log_format=settings.LOG_FORMAT,
    )


def get_logger(name: str) -> Any:
    return structlog.get_logger(name)
