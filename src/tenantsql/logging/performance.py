"""Operation timing for tenantsql.

Pools, the introspector and the executor time their round trips through a
``PerformanceLogger``. Each logger keeps per-operation aggregates (call
count, failures, average/median/p95 duration) that can be logged on
shutdown.

Example:
    >>> perf_logger = PerformanceLogger("introspection")
    >>> with perf_logger.measure("describe", tenant_key="3f0c") as timer:
    ...     tables = await introspector.describe(pool)
    >>> timer.duration_ms
    1.92
"""

import statistics
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional

from ..core.utils import FormatUtils
from .structured import StructuredLogger


@dataclass
class OperationStats:
    """Aggregated timings for one operation name.

    Attributes:
        operation: Operation name
        calls: Number of recorded calls
        failures: Number of calls that raised
        durations: Every recorded duration, in seconds
    """
    operation: str
    calls: int = 0
    failures: int = 0
    durations: List[float] = field(default_factory=list, repr=False)

    def add(self, duration: float, success: bool = True) -> None:
        self.calls += 1
        if not success:
            self.failures += 1
        self.durations.append(duration)

    @property
    def total_duration(self) -> float:
        return sum(self.durations)

    @property
    def avg_duration(self) -> Optional[float]:
        return statistics.mean(self.durations) if self.durations else None

    @property
    def median_duration(self) -> Optional[float]:
        return statistics.median(self.durations) if self.durations else None

    @property
    def p95_duration(self) -> Optional[float]:
        if not self.durations:
            return None
        ordered = sorted(self.durations)
        return ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]

    @property
    def success_rate(self) -> float:
        """Share of successful calls as a percentage (0-100)."""
        if self.calls == 0:
            return 0.0
        return (self.calls - self.failures) / self.calls * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "calls": self.calls,
            "failures": self.failures,
            "success_rate": self.success_rate,
            "total_duration": self.total_duration,
            "avg_duration": self.avg_duration,
            "median_duration": self.median_duration,
            "p95_duration": self.p95_duration,
        }


class TimingContext:
    """Times one operation and logs its outcome.

    Successful operations are logged at debug level; failures at warning
    level with the error text. Exceptions are never suppressed.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[StructuredLogger] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.operation = operation
        self.logger = logger
        self.metadata = metadata or {}
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.success = True
        self.error: Optional[str] = None

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def duration_ms(self) -> Optional[float]:
        duration = self.duration
        return duration * 1000 if duration is not None else None

    def __enter__(self) -> "TimingContext":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.end_time = time.perf_counter()
        self.success = exc_type is None
        self.error = str(exc_val) if exc_val is not None else None

        if self.logger is None:
            return
        if self.success:
            self.logger.debug(
                "Operation completed",
                operation=self.operation,
                duration_ms=self.duration_ms,
                **self.metadata,
            )
        else:
            self.logger.warning(
                "Operation failed",
                operation=self.operation,
                duration_ms=self.duration_ms,
                error=self.error,
                **self.metadata,
            )


class PerformanceLogger:
    """Collects operation timings under one logger name.

    Example:
        >>> perf_logger = PerformanceLogger("pool")
        >>> with perf_logger.measure("pool_create", tenant_key="3f0c"):
        ...     await pool.initialize()
        >>> perf_logger.get_metrics("pool_create").calls
        1
    """

    def __init__(
        self,
        name: str,
        *,
        track_metrics: bool = True,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.name = name
        self.track_metrics = track_metrics
        self.logger = logger or StructuredLogger(f"perf.{name}")
        self._metrics: Dict[str, OperationStats] = {}

    @contextmanager
    def measure(self, operation: str, **metadata: Any) -> Generator[TimingContext, None, None]:
        """Time the enclosed block and add it to the operation's aggregates."""
        timer = TimingContext(operation, self.logger, metadata)
        try:
            with timer:
                yield timer
        finally:
            if timer.duration is not None:
                self._add(operation, timer.duration, timer.success)

    def record_timing(self, operation: str, duration: float, success: bool = True) -> None:
        """Add a duration measured elsewhere, in seconds."""
        self._add(operation, duration, success)

    def _add(self, operation: str, duration: float, success: bool) -> None:
        if not self.track_metrics:
            return
        if operation not in self._metrics:
            self._metrics[operation] = OperationStats(operation)
        self._metrics[operation].add(duration, success)

    def get_metrics(self, operation: str) -> OperationStats:
        return self._metrics.get(operation, OperationStats(operation))

    def summary(self) -> Dict[str, Any]:
        calls = sum(m.calls for m in self._metrics.values())
        failures = sum(m.failures for m in self._metrics.values())
        return {
            "calls": calls,
            "failures": failures,
            "total_duration": sum(m.total_duration for m in self._metrics.values()),
            "operations": {name: m.to_dict() for name, m in self._metrics.items()},
        }

    def log_summary(self) -> None:
        summary = self.summary()
        if summary["calls"] == 0:
            return
        self.logger.info(
            "Performance summary",
            calls=summary["calls"],
            failures=summary["failures"],
            total_duration=FormatUtils.format_duration(summary["total_duration"]),
            operations=sorted(summary["operations"]),
        )

    def __repr__(self) -> str:
        return f"PerformanceLogger(name={self.name!r}, operations={len(self._metrics)})"
