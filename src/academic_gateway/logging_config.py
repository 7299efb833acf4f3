"""Structured logging configuration.

JSON output for production, colored console for development/testing.
Call configure_logging() once at application startup; gateway modules
only ever call structlog.get_logger().
"""

import logging
import sys

import structlog

from academic_gateway.config import Settings

SERVICE_NAME = "academic_gateway"

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {"api_key", "credential", "password", "secret", "token", "authorization"}
)


def _redact_sensitive_keys(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Redact values of sensitive keys (and any *_api_key) in log events."""
    for key in event_dict:
        lowered = key.lower()
        if lowered in SENSITIVE_KEYS or lowered.endswith("_api_key"):
            event_dict[key] = "***REDACTED***"
    return event_dict


def _add_service(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(
    settings: Settings | None = None,
    *,
    environment: str | None = None,
    log_level: str | None = None,
) -> None:
    """Configure structlog processor chain and stdlib root logger.

    Explicit arguments win over ``settings``; without either the
    defaults are development console output at INFO.

    Args:
        settings: Gateway settings providing environment and log_level.
        environment: 'production' for JSON output, anything else
            for colored console output.
        log_level: Python log level name (DEBUG, INFO, WARNING, etc.).
    """
    if environment is None:
        environment = settings.environment if settings else "development"
    if log_level is None:
        log_level = settings.log_level if settings else "INFO"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_service,
        _redact_sensitive_keys,
    ]

    if environment == "production":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    # SDK transports log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("google_genai").setLevel(logging.WARNING)
