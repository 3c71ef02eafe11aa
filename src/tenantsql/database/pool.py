"""Tenant connection pool built on asyncpg.

A :class:`TenantPool` owns one ``asyncpg.Pool`` for one tenant database
and is the only place statements reach the driver. Driver failures are
translated into the tenantsql exception hierarchy here.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import asyncpg
from asyncpg.exceptions._base import DataError as ArgumentDataError

from ..config.models import PoolConfig, TenantDescriptor
from ..core import AsyncComponent
from ..core.exceptions import (
    DatabaseConnectionError,
    ErrorCodes,
    ExecutionError,
    TenantSQLException,
)
from ..core.utils import SQLUtils
from ..logging import get_logger, get_performance_logger
from .models import QueryResult

SYNTAX_ERROR_SQLSTATE = "42601"

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, OSError)

# Date/time values are bound as their text literals (see TypeCoercionEngine)
_TEXT_CODEC_TYPES = ("timestamptz", "timestamp", "date", "time")


async def _init_connection(conn: asyncpg.Connection) -> None:
    for typename in _TEXT_CODEC_TYPES:
        await conn.set_type_codec(
            typename,
            schema="pg_catalog",
            encoder=str,
            decoder=str,
            format="text",
        )


def _row_count_from_status(status: Optional[str]) -> int:
    """Extract the affected-row count from a command tag like ``INSERT 0 3``."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class TenantPool(AsyncComponent[PoolConfig]):
    """Connection pool for one tenant database.

    Attributes:
        key: Tenant key this pool serves
        created_at: Wall-clock creation time (UTC)
    """

    component_name = "TenantPool"

    def __init__(self, descriptor: TenantDescriptor, config: Optional[PoolConfig] = None) -> None:
        super().__init__(config or PoolConfig())
        self.descriptor = descriptor
        self.key = descriptor.key
        self.created_at = datetime.now(timezone.utc)
        self._created_monotonic = time.monotonic()
        self._pool: Optional[asyncpg.Pool] = None

        self.logger = get_logger(f"pool.{descriptor.key}")
        self.perf_logger = get_performance_logger("pool")

    @property
    def underlying(self) -> Optional[asyncpg.Pool]:
        """The wrapped asyncpg pool, or None before initialization."""
        return self._pool

    @property
    def age(self) -> float:
        """Seconds since this pool object was created."""
        return time.monotonic() - self._created_monotonic

    def is_expired(self, ttl_seconds: Optional[float] = None) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else self.config.pool_ttl_seconds
        return self.age >= ttl

    async def _async_initialize(self) -> None:
        self.logger.info(
            "Creating tenant pool",
            tenant_key=self.key,
            connection_string=self.descriptor.masked_connection_string,
            max_size=self.config.max_size,
        )

        try:
            with self.perf_logger.measure("pool_create", tenant_key=self.key):
                self._pool = await asyncpg.create_pool(
                    dsn=self.descriptor.dsn,
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                    command_timeout=self.config.command_timeout,
                    max_inactive_connection_lifetime=self.config.max_inactive_connection_lifetime,
                    timeout=self.config.connect_timeout,
                    ssl=self.config.ssl,
                    init=_init_connection,
                )
        except asyncpg.InvalidAuthorizationSpecificationError as e:
            raise DatabaseConnectionError(
                f"Authentication failed for tenant {self.key}: {e}",
                code=ErrorCodes.AUTH_FAILED,
                context={"tenant_key": self.key},
                cause=e,
            ) from e
        except asyncio.TimeoutError as e:
            raise DatabaseConnectionError(
                f"Connection timeout for tenant {self.key}",
                code=ErrorCodes.CONNECTION_TIMEOUT,
                context={"tenant_key": self.key, "timeout": self.config.connect_timeout},
                cause=e,
            ) from e
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(
                f"Failed to create pool for tenant {self.key}: {e}",
                code=ErrorCodes.CONNECTION_REFUSED,
                context={"tenant_key": self.key},
                cause=e,
            ) from e

    async def _async_cleanup(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self.logger.info("Tenant pool closed", tenant_key=self.key)

    async def close(self) -> None:
        """Close the pool; in-flight connections are waited for."""
        await self.cleanup()

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise DatabaseConnectionError(
                f"Pool for tenant {self.key} is not open",
                code=ErrorCodes.POOL_CLOSED,
                context={"tenant_key": self.key},
            )
        return self._pool

    def _translate(self, error: Exception) -> TenantSQLException:
        sqlstate = getattr(error, "sqlstate", None)
        if isinstance(error, asyncio.TimeoutError):
            return ExecutionError(
                f"Statement timed out for tenant {self.key}",
                code=ErrorCodes.STATEMENT_TIMEOUT,
                context={"tenant_key": self.key, "timeout": self.config.command_timeout},
                cause=error,
            )
        if sqlstate == SYNTAX_ERROR_SQLSTATE:
            return ExecutionError(
                f"SQL Syntax Error: {error}. Please check your query syntax.",
                sqlstate=sqlstate,
                code=ErrorCodes.SQL_SYNTAX_ERROR,
                context={"tenant_key": self.key},
                cause=error,
            )
        # ArgumentDataError: a bound parameter the driver could not encode
        if isinstance(error, (asyncpg.PostgresError, ArgumentDataError)):
            return ExecutionError(
                str(error),
                sqlstate=sqlstate,
                context={"tenant_key": self.key},
                cause=error,
            )
        return DatabaseConnectionError(
            f"Connection error for tenant {self.key}: {error}",
            code=ErrorCodes.CONNECTION_REFUSED,
            context={"tenant_key": self.key},
            cause=error,
        )

    async def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Validate and run one statement.

        Statements that return rows (SELECT or ``RETURNING``) are fetched;
        anything else runs as a plain command and reports its command tag.

        Raises:
            ValidationError: If the statement is empty or visibly incomplete
            ExecutionError: If the database rejects the statement
            DatabaseConnectionError: If the pool or connection is unusable
        """
        SQLUtils.validate_statement(sql)
        pool = self._require_pool()
        args = list(params or [])

        returns_rows = (
            SQLUtils.detect_query_type(sql) == "SELECT"
            or " RETURNING " in f" {SQLUtils.normalize_whitespace(sql).upper()} "
        )

        start = time.perf_counter()
        try:
            async with pool.acquire() as conn:
                if returns_rows:
                    records = await conn.fetch(sql, *args)
                    status = None
                else:
                    records = []
                    status = await conn.execute(sql, *args)
        except _DRIVER_ERRORS as e:
            self.logger.warning(
                "Statement failed",
                tenant_key=self.key,
                sqlstate=getattr(e, "sqlstate", None),
                error=str(e),
            )
            raise self._translate(e) from e

        elapsed = time.perf_counter() - start
        rows = [dict(record) for record in records]
        row_count = len(rows) if returns_rows else _row_count_from_status(status)

        self.perf_logger.record_timing("statement", elapsed)

        return QueryResult(
            rows=rows,
            row_count=row_count,
            columns=list(rows[0].keys()) if rows else [],
            execution_time=elapsed,
            status=status,
        )

    async def fetch(self, sql: str, *args: Any) -> List[Dict[str, Any]]:
        """Run a row-returning statement and return plain dict rows."""
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                records = await conn.fetch(sql, *args)
        except _DRIVER_ERRORS as e:
            raise self._translate(e) from e
        return [dict(record) for record in records]

    async def fetchval(self, sql: str, *args: Any) -> Any:
        pool = self._require_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetchval(sql, *args)
        except _DRIVER_ERRORS as e:
            raise self._translate(e) from e

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "key": self.key,
            "created_at": self.created_at.isoformat(),
            "age_seconds": round(self.age, 3),
            "min_size": self.config.min_size,
            "max_size": self.config.max_size,
            "open": self._pool is not None,
        }
        if self._pool is not None:
            stats["size"] = self._pool.get_size()
            stats["idle"] = self._pool.get_idle_size()
        return stats


async def wait_until_ready(
    pool: TenantPool,
    *,
    attempts: int = 4,
    delay: float = 1.0,
) -> None:
    """Poll a freshly provisioned database with ``SELECT 1`` until it answers.

    The wait before attempt ``n + 1`` is ``delay * n`` seconds.

    Raises:
        DatabaseConnectionError: If the last attempt still fails
    """
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            await pool.fetchval("SELECT 1")
            pool.logger.info("Database ready", tenant_key=pool.key, attempt=attempt)
            return
        except TenantSQLException as e:
            last_error = e
            pool.logger.warning(
                "Database not ready",
                tenant_key=pool.key,
                attempt=attempt,
                attempts=attempts,
                error=str(e),
            )
            if attempt < attempts:
                await asyncio.sleep(delay * attempt)

    raise DatabaseConnectionError(
        f"Database for tenant {pool.key} not ready after {attempts} attempts",
        code=ErrorCodes.DATABASE_NOT_READY,
        context={"tenant_key": pool.key, "attempts": attempts},
        cause=last_error,
    )
