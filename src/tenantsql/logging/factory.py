"""Logger factory and global logging setup for tenantsql.

One ``LoggerFactory`` owns the process-wide handler and structlog
configuration and hands out cached ``StructuredLogger`` and
``PerformanceLogger`` instances. Components normally go through the
module-level helpers:

    >>> from tenantsql.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", format="json")
    >>> logger = get_logger("tenantsql.registry")
    >>> logger.info("Pool created", tenant_key="3f0c")
"""

import logging
from typing import Any, Dict, List, Optional

import structlog

from ..config.models import LoggingConfig
from ..core.exceptions import ValidationError
from .formatters import get_formatter
from .handlers import ConsoleHandler, RotatingFileHandler
from .performance import PerformanceLogger
from .structured import StructuredLogger, redact_secrets

_SHARED_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
    redact_secrets,
]


class LoggerFactory:
    """Creates tenantsql loggers and installs the logging configuration.

    Attributes:
        config: Active logging settings
        initialized: Whether handlers and structlog have been configured

    Example:
        >>> factory = LoggerFactory()
        >>> factory.configure(service_config.logging)
        >>> logger = factory.get_logger("tenantsql.executor")
    """

    def __init__(self, config: Optional[LoggingConfig] = None) -> None:
        self.config = config or LoggingConfig()
        self.initialized = False
        self._loggers: Dict[str, StructuredLogger] = {}
        self._performance_loggers: Dict[str, PerformanceLogger] = {}

    def configure(self, config: Optional[LoggingConfig] = None, **settings: Any) -> None:
        """Install root handlers and the structlog processor chain.

        Args:
            config: Settings to apply; the current settings when omitted
            **settings: Individual ``LoggingConfig`` fields to override

        Raises:
            pydantic.ValidationError: If an override is not a valid setting
        """
        config = config or self.config
        if settings:
            config = LoggingConfig(**{**config.model_dump(), **settings})
        self.config = config

        self._install_handlers()
        self._install_structlog()
        self.initialized = True

    def _build_handlers(self) -> List[logging.Handler]:
        handlers: List[logging.Handler] = []
        if self.config.console_output:
            handlers.append(ConsoleHandler())
        if self.config.file_path is not None:
            handlers.append(RotatingFileHandler(
                self.config.file_path,
                maxBytes=self.config.max_file_size,
                backupCount=self.config.backup_count,
            ))
        return handlers

    def _install_handlers(self) -> None:
        level = getattr(logging, self.config.level)
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(level)

        formatter = get_formatter(self.config.format)
        for handler in self._build_handlers():
            handler.setLevel(level)
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)

    def _install_structlog(self) -> None:
        if self.config.format == "json":
            renderer = structlog.processors.JSONRenderer()
        else:
            renderer = structlog.dev.ConsoleRenderer(colors=False)

        structlog.configure(
            processors=[*_SHARED_PROCESSORS, renderer],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            context_class=dict,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str, *, enable_correlation: bool = True) -> StructuredLogger:
        """Return the cached structured logger for ``name``."""
        cache_key = f"{name}:{enable_correlation}"
        if cache_key not in self._loggers:
            self._loggers[cache_key] = StructuredLogger(
                name=name,
                level=self.config.level,
                enable_correlation=enable_correlation,
            )
        return self._loggers[cache_key]

    def get_performance_logger(self, name: str, *, track_metrics: bool = True) -> PerformanceLogger:
        """Return the cached performance logger for ``name``.

        Timings are reported through the structured logger ``perf.<name>``.
        """
        cache_key = f"{name}:{track_metrics}"
        if cache_key not in self._performance_loggers:
            self._performance_loggers[cache_key] = PerformanceLogger(
                name=name,
                track_metrics=track_metrics,
                logger=self.get_logger(f"perf.{name}"),
            )
        return self._performance_loggers[cache_key]

    def set_level(self, level: str) -> None:
        """Change the level of the root logger and every cached logger.

        Raises:
            ValidationError: If the level name is unknown
        """
        level = level.upper()
        if not isinstance(getattr(logging, level, None), int):
            raise ValidationError(f"Invalid log level: {level}")

        self.config = self.config.model_copy(update={"level": level})
        logging.getLogger().setLevel(getattr(logging, level))
        for logger in self._loggers.values():
            logger.set_level(level)

    def shutdown(self) -> None:
        """Flush root handlers and forget cached loggers."""
        for handler in logging.getLogger().handlers:
            handler.flush()
        self._loggers.clear()
        self._performance_loggers.clear()
        self.initialized = False

    def __repr__(self) -> str:
        return (
            f"LoggerFactory(level={self.config.level!r}, "
            f"format={self.config.format!r}, initialized={self.initialized})"
        )


_global_factory = LoggerFactory()


def configure_logging(config: Optional[LoggingConfig] = None, **settings: Any) -> None:
    """Configure tenantsql logging process-wide.

    Example:
        >>> configure_logging(level="DEBUG", format="text", file_path="/var/log/tenantsql.log")
        >>> configure_logging(service_config.logging)
    """
    _global_factory.configure(config, **settings)


def get_logger(name: str, *, enable_correlation: bool = True) -> StructuredLogger:
    """Get a structured logger from the global factory."""
    return _global_factory.get_logger(name, enable_correlation=enable_correlation)


def get_performance_logger(name: str, *, track_metrics: bool = True) -> PerformanceLogger:
    """Get a performance logger from the global factory.

    Example:
        >>> perf_logger = get_performance_logger("executor")
        >>> with perf_logger.measure("statement", tenant_key="3f0c"):
        ...     ...
    """
    return _global_factory.get_performance_logger(name, track_metrics=track_metrics)


def get_factory() -> LoggerFactory:
    return _global_factory


def shutdown_logging() -> None:
    _global_factory.shutdown()
