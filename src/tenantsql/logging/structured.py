"""Structured logging implementation for tenantsql.

This module provides structured logging with context management and
correlation IDs, so every line emitted while serving one request can be
tied back to its tenant and caller.

Classes:
    StructuredLogger: Main structured logging interface
    LogContext: Task-local context for log correlation

Functions:
    redact_secrets: structlog processor that masks credentials

Example:
    >>> logger = StructuredLogger("tenantsql.registry")
    >>> with logger.context(tenant_key="3f0c", operation="insert"):
    ...     logger.info("Pool created", max_size=5)
"""

import contextvars
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Generator, Optional

import structlog

from ..core.exceptions import TenantSQLException
from ..core.utils import StringUtils

_SECRET_KEYS = frozenset({"password", "secret", "token", "api_key"})
_CONNECTION_KEYS = frozenset({"connection_string", "dsn", "database_url"})

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "tenantsql_log_context"
)


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credentials in an event before it is rendered.

    Connection strings keep everything but their password; other secret
    keys are replaced outright.
    """
    for key, value in list(event_dict.items()):
        if key in _CONNECTION_KEYS and isinstance(value, str):
            event_dict[key] = StringUtils.mask_connection_string(value)
        elif key in _SECRET_KEYS and value is not None:
            event_dict[key] = "***"
    return event_dict


class LogContext:
    """Task-local context for log correlation and metadata.

    Values live in a ``contextvars.ContextVar`` so concurrent requests on
    the same event loop never see each other's context.

    Example:
        >>> context = LogContext()
        >>> context.set("tenant_key", "3f0c")
        >>> context.get_all()
        {'tenant_key': '3f0c'}
    """

    def _current(self) -> Dict[str, Any]:
        try:
            return _log_context.get()
        except LookupError:
            values: Dict[str, Any] = {}
            _log_context.set(values)
            return values

    def set(self, key: str, value: Any) -> None:
        """Set context value."""
        values = dict(self._current())
        values[key] = value
        _log_context.set(values)

    def get(self, key: str, default: Any = None) -> Any:
        """Get context value."""
        return self._current().get(key, default)

    def get_all(self) -> Dict[str, Any]:
        """Get a copy of all context values."""
        return dict(self._current())

    def clear(self) -> None:
        """Clear all context values."""
        _log_context.set({})

    def update(self, context: Dict[str, Any]) -> None:
        """Update context with multiple values."""
        values = dict(self._current())
        values.update(context)
        _log_context.set(values)


class StructuredLogger:
    """Structured logger with context management and correlation.

    Attributes:
        name: Logger name

    Example:
        >>> logger = StructuredLogger("tenantsql.executor")
        >>> logger.set_level("DEBUG")
        >>> with logger.context(tenant_key="3f0c"):
        ...     logger.info("Batch started", operations=3)
    """

    def __init__(
        self,
        name: str,
        *,
        level: str = "INFO",
        enable_correlation: bool = True,
        bound: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Initialize structured logger.

        Args:
            name: Logger name (typically module name)
            level: Initial log level
            enable_correlation: Whether to attach a correlation ID to every event
            bound: Context permanently attached to this logger
        """
        self.name = name
        self._enable_correlation = enable_correlation
        self._bound: Dict[str, Any] = dict(bound or {})

        self._logger = structlog.get_logger(name)
        self._context = LogContext()

        self._stdlib_logger = logging.getLogger(name)
        self._stdlib_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    def _ensure_correlation_id(self) -> str:
        correlation_id = self._context.get("correlation_id")
        if not correlation_id:
            correlation_id = str(uuid.uuid4())
            self._context.set("correlation_id", correlation_id)
        return correlation_id

    def _prepare_event_dict(self, **kwargs: Any) -> Dict[str, Any]:
        event_dict: Dict[str, Any] = {}
        event_dict.update(self._context.get_all())
        event_dict.update(self._bound)

        if self._enable_correlation:
            event_dict["correlation_id"] = self._ensure_correlation_id()

        event_dict.update(kwargs)
        return event_dict

    @contextmanager
    def context(self, **context_data: Any) -> Generator[None, None, None]:
        """Context manager for adding temporary context data.

        Example:
            >>> with logger.context(tenant_key="3f0c", user_id="u-1"):
            ...     logger.info("Insert requested")
        """
        token = _log_context.set({**self._context.get_all(), **context_data})
        try:
            yield
        finally:
            _log_context.reset(token)

    def bind(self, **context_data: Any) -> "StructuredLogger":
        """Create new logger instance with bound context.

        Example:
            >>> tenant_logger = logger.bind(tenant_key="3f0c")
            >>> tenant_logger.info("Schema refreshed")
        """
        return StructuredLogger(
            self.name,
            level=self.get_level(),
            enable_correlation=self._enable_correlation,
            bound={**self._bound, **context_data},
        )

    def set_level(self, level: str) -> None:
        """Set logging level.

        Raises:
            TenantSQLException: If the level name is unknown
        """
        log_level = getattr(logging, str(level).upper(), None)
        if not isinstance(log_level, int):
            raise TenantSQLException(
                f"Unknown log level: {level}",
                code="UNKNOWN_LOG_LEVEL",
            )

        self._stdlib_logger.setLevel(log_level)

    def get_level(self) -> str:
        """Get current logging level name."""
        return logging.getLevelName(self._stdlib_logger.getEffectiveLevel())

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **self._prepare_event_dict(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **self._prepare_event_dict(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **self._prepare_event_dict(**kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **self._prepare_event_dict(**kwargs))

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(message, **self._prepare_event_dict(**kwargs))

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error with the active exception's traceback."""
        self._logger.error(message, exc_info=True, **self._prepare_event_dict(**kwargs))

    def set_correlation_id(self, correlation_id: str) -> None:
        """Set correlation ID for the current context."""
        if self._enable_correlation:
            self._context.set("correlation_id", correlation_id)

    def get_correlation_id(self) -> Optional[str]:
        """Get current correlation ID, if any."""
        if not self._enable_correlation:
            return None
        return self._context.get("correlation_id")

    def get_context(self) -> Dict[str, Any]:
        """Get current context data including bound values."""
        return {**self._context.get_all(), **self._bound}

    def __repr__(self) -> str:
        return (
            f"StructuredLogger("
            f"name={self.name!r}, "
            f"level={self.get_level()!r}, "
            f"correlation={self._enable_correlation})"
        )
