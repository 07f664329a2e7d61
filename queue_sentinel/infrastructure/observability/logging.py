"""
Structured logging setup for the mail queue sentinel.
Provides JSON-formatted logs with consistent fields for the poll cycles.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_context,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every entry with the service name."""
    event_dict.setdefault("service", "queue_sentinel")
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


# Convenience functions for common log patterns
def log_verdict(verdict) -> None:
    """Log a sender classification with consistent fields."""
    logger = get_logger("classification")

    log_data = {
        "sender": verdict.sender,
        "count": verdict.count,
        "origin_ip": verdict.origin_ip,
        "country": verdict.country,
        "is_foreign": verdict.is_foreign,
        "is_known_service": verdict.is_known_service,
        "is_new_ip": verdict.is_new_ip,
        "exceeds_threshold": verdict.exceeds_threshold,
        "is_monitored_domain": verdict.is_monitored_domain,
    }

    if verdict.should_remediate:
        logger.warning("Sender flagged for remediation", **log_data)
    else:
        logger.info("Sender classified", **log_data)


def log_cycle_summary(metrics: dict[str, Any]) -> None:
    """Log the outcome of a queue poll cycle."""
    logger = get_logger("cycle")

    if metrics.get("cycle_error"):
        logger.error("Queue cycle failed", **metrics)
    else:
        logger.info("Queue cycle completed", **metrics)
