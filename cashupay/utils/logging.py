"""
Structured logging configuration using structlog.

- JSON logging for production, colored console output in development
- Correlation IDs for request tracking
- Secret and seed material filtering
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

# Context variable for tracking correlation IDs across async boundaries
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "api_key",
        "secret",
        "token",
        "key",
        "internal_key",
        "cron_key",
        "seed_phrase",
        "coingecko_api_key",
    }
)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: Custom correlation ID. If None, generates a new UUID.

    Returns:
        The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID from context."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from context."""
    _correlation_id_var.set(None)


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add correlation ID to all log entries.

    Lets a single request be followed through conversion, polling and delivery.
    """
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def filter_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact webhook secrets, internal keys and seed material from logs."""
    for key in SENSITIVE_KEYS:
        if key in event_dict:
            event_dict[key] = "***REDACTED***"

    if "event" in event_dict and isinstance(event_dict["event"], dict):
        for key in SENSITIVE_KEYS:
            if key in event_dict["event"]:
                event_dict["event"][key] = "***REDACTED***"

    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to every log entry."""
    from cashupay import __version__

    event_dict["app"] = "cashupay"
    event_dict["version"] = __version__
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    dev_mode: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to output JSON logs (recommended for production)
        dev_mode: Whether to use development-friendly output
    """
    shared_processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
        add_app_context,
        filter_sensitive_data,
    ]

    if dev_mode:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    elif json_logs:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def configure_from_settings(settings: Any) -> None:
    """Configure logging from a Settings instance."""
    configure_logging(
        log_level="DEBUG" if settings.debug else settings.log_level,
        json_logs=settings.json_logs,
        dev_mode=settings.debug or not settings.json_logs,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("invoice_created", invoice_id="inv_...", amount="10.00")
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


# Audit logging helpers
def log_invoice_transition(
    logger: structlog.stdlib.BoundLogger,
    invoice_id: str,
    store_id: str,
    from_status: str,
    to_status: str,
    source: str,
) -> None:
    """Log an invoice status transition for the audit trail."""
    logger.info(
        "invoice_transition",
        action="transition",
        resource="invoice",
        invoice_id=invoice_id,
        store_id=store_id,
        from_status=from_status,
        to_status=to_status,
        source=source,
    )


def log_webhook_delivery(
    logger: structlog.stdlib.BoundLogger,
    delivery_id: str,
    webhook_id: str,
    event_type: str,
    status_code: int,
    is_redelivery: bool = False,
) -> None:
    """Log a webhook delivery attempt for the audit trail."""
    log = logger.info if 200 <= status_code < 300 else logger.warning
    log(
        "webhook_delivered" if 200 <= status_code < 300 else "webhook_delivery_failed",
        action="deliver",
        resource="webhook",
        delivery_id=delivery_id,
        webhook_id=webhook_id,
        event_type=event_type,
        status_code=status_code,
        is_redelivery=is_redelivery,
    )


# Initialize logging on module import
configure_logging()
