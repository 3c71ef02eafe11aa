"""In-memory stand-ins for tenant pools used across the test suite."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence

from tenantsql.core.exceptions import ExecutionError
from tenantsql.database.models import QueryResult


class FakePool:
    """Stand-in for TenantPool that records statements instead of sending them.

    ``handler(sql, params)`` decides the outcome of each ``execute``: return a
    QueryResult, or raise. By default every statement succeeds with one row.
    """

    def __init__(
        self,
        key: str = "tenant-1",
        *,
        handler: Optional[Callable[[str, List[Any]], QueryResult]] = None,
        fetch_rows: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        self.key = key
        self.handler = handler
        self.fetch_rows = fetch_rows or []
        self.executed: List[str] = []
        self.params: List[List[Any]] = []
        self.fetched: List[tuple] = []
        self.closed = False

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        args = list(params or [])
        self.executed.append(sql)
        self.params.append(args)
        if self.handler is not None:
            return self.handler(sql, args)
        return QueryResult(rows=[{"id": 1}], row_count=1, columns=["id"], execution_time=0.001)

    async def fetch(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        self.fetched.append((sql, args))
        return list(self.fetch_rows)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        self.fetched.append((sql, args))
        return len(self.fetch_rows)

    async def close(self) -> None:
        self.closed = True


class FakeTenantPool(FakePool):
    """FakePool shaped like a registry ``pool_factory`` product.

    Counts constructions so tests can assert single creation per key.
    """

    created = 0
    expired = False
    age = 0.0

    def __init__(self, descriptor, config=None, *, init_delay: float = 0.01, **kwargs: Any) -> None:
        super().__init__(key=descriptor.key, **kwargs)
        self.descriptor = descriptor
        self.config = config
        self.init_delay = init_delay
        self.initialized = False
        type(self).created += 1

    async def initialize(self) -> None:
        await asyncio.sleep(self.init_delay)
        self.initialized = True

    def is_expired(self, ttl_seconds=None) -> bool:
        return self.expired

    def stats(self):
        return {"key": self.key, "open": not self.closed}


def result(rows: Optional[List[Dict[str, Any]]] = None, row_count: Optional[int] = None) -> QueryResult:
    """Build a QueryResult for FakePool handlers."""
    rows = rows or []
    return QueryResult(
        rows=rows,
        row_count=len(rows) if row_count is None else row_count,
        columns=list(rows[0].keys()) if rows else [],
        execution_time=0.002,
    )


def fail_when(fragment: str, message: str = "syntax error at or near \"INVALID\"") -> Callable:
    """FakePool handler that rejects statements containing ``fragment``."""
    def handler(sql: str, params: List[Any]) -> QueryResult:
        if fragment in sql:
            raise ExecutionError(message, sqlstate="42601")
        return result([], row_count=1)
    return handler
