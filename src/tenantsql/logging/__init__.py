"""Structured logging for tenantsql.

Loggers carry correlation IDs and bound context, redact connection-string
credentials, and time database round trips.

Example:
    >>> from tenantsql.logging import get_logger, get_performance_logger
    >>> logger = get_logger("tenantsql.service")
    >>> logger.info("Insert requested", tenant_key="3f0c", table="users")
    >>>
    >>> perf_logger = get_performance_logger("executor")
    >>> with perf_logger.measure("statement"):
    ...     pass
"""

from .factory import (
    LoggerFactory,
    configure_logging,
    get_factory,
    get_logger,
    get_performance_logger,
    shutdown_logging,
)
from .formatters import JSONFormatter, TextFormatter, get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import OperationStats, PerformanceLogger, TimingContext
from .structured import LogContext, StructuredLogger, redact_secrets

__all__ = [
    # Factory and configuration
    "LoggerFactory",
    "configure_logging",
    "get_factory",
    "get_logger",
    "get_performance_logger",
    "shutdown_logging",

    # Formatters
    "JSONFormatter",
    "TextFormatter",
    "get_formatter",

    # Handlers
    "ConsoleHandler",
    "RotatingFileHandler",

    # Timing
    "OperationStats",
    "PerformanceLogger",
    "TimingContext",

    # Structured logging
    "StructuredLogger",
    "LogContext",
    "redact_secrets",
]
