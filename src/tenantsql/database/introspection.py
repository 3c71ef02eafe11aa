"""Schema introspection for tenant databases.

Reads ``information_schema`` to build a :class:`TableSchema` per user
table, with optional short-lived caching per tenant.
"""

import time
from typing import Any, Dict, List, Optional, Tuple

from ..config.models import SchemaCacheConfig
from ..core.exceptions import ErrorCodes, SchemaFetchFailed, TableNotFound
from ..logging import get_logger, get_performance_logger
from .models import ColumnMetadata, TableSchema
from .pool import TenantPool

SCHEMA_QUERY = """
    SELECT
        t.table_name,
        c.column_name,
        c.data_type,
        c.is_nullable,
        c.column_default,
        tc.constraint_type,
        ccu.table_name AS foreign_table,
        ccu.column_name AS foreign_column
    FROM information_schema.tables t
    LEFT JOIN information_schema.columns c
        ON c.table_schema = t.table_schema AND c.table_name = t.table_name
    LEFT JOIN information_schema.key_column_usage kcu
        ON kcu.table_schema = t.table_schema
        AND kcu.table_name = t.table_name
        AND kcu.column_name = c.column_name
    LEFT JOIN information_schema.table_constraints tc
        ON tc.constraint_schema = kcu.constraint_schema
        AND tc.constraint_name = kcu.constraint_name
    LEFT JOIN information_schema.constraint_column_usage ccu
        ON tc.constraint_type = 'FOREIGN KEY'
        AND ccu.constraint_schema = tc.constraint_schema
        AND ccu.constraint_name = tc.constraint_name
    WHERE t.table_schema = $1 AND t.table_type = 'BASE TABLE'
    ORDER BY t.table_name, c.ordinal_position
"""

# When a column takes part in several constraints, the first listed wins
_CONSTRAINT_PRECEDENCE = ("PRIMARY KEY", "FOREIGN KEY", "UNIQUE")


def _rank(constraint: Optional[str]) -> int:
    try:
        return _CONSTRAINT_PRECEDENCE.index(constraint)
    except ValueError:
        return len(_CONSTRAINT_PRECEDENCE)


def build_tables(rows: List[Dict[str, Any]]) -> List[TableSchema]:
    """Fold catalog rows into table schemas, one column entry per column."""
    tables: Dict[str, TableSchema] = {}
    columns: Dict[Tuple[str, str], ColumnMetadata] = {}

    for row in rows:
        table_name = row["table_name"]
        table = tables.get(table_name)
        if table is None:
            table = tables[table_name] = TableSchema(name=table_name)

        column_name = row.get("column_name")
        if not column_name:
            continue

        constraint = row.get("constraint_type")
        existing = columns.get((table_name, column_name))
        if existing is None:
            existing = ColumnMetadata(
                name=column_name,
                data_type=row["data_type"],
                nullable=row["is_nullable"] == "YES",
                default=row.get("column_default"),
                constraint=constraint,
            )
            columns[(table_name, column_name)] = existing
            table.columns.append(existing)
        elif _rank(constraint) < _rank(existing.constraint):
            existing.constraint = constraint

        if constraint == "FOREIGN KEY" and row.get("foreign_table"):
            existing.foreign_table = row["foreign_table"]
            existing.foreign_column = row.get("foreign_column")

    return list(tables.values())


def find_table(tables: List[TableSchema], name: str) -> TableSchema:
    """Return the schema for ``name``.

    Raises:
        TableNotFound: If no introspected table has that name
    """
    for table in tables:
        if table.name == name:
            return table
    raise TableNotFound(str(name))


class SchemaIntrospector:
    """Produces table/column metadata snapshots for tenant databases.

    Example:
        >>> introspector = SchemaIntrospector(SchemaCacheConfig(ttl_seconds=300))
        >>> tables = await introspector.describe(pool)
        >>> [t.name for t in tables]
        ['orders', 'users']
    """

    def __init__(
        self,
        config: Optional[SchemaCacheConfig] = None,
        *,
        schema: str = "public",
    ) -> None:
        self.config = config or SchemaCacheConfig()
        self.schema = schema
        self._cache: Dict[str, Tuple[float, List[TableSchema]]] = {}
        self.perf_logger = get_performance_logger("introspection")

    def _cached(self, key: str) -> Optional[List[TableSchema]]:
        if not self.config.enabled:
            return None
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, tables = entry
        if time.monotonic() - stored_at >= self.config.ttl_seconds:
            del self._cache[key]
            return None
        return tables

    async def describe(self, pool: TenantPool, *, force_refresh: bool = False) -> List[TableSchema]:
        """Return every user table of the tenant with its columns.

        A tenant with no tables yields an empty list.

        Raises:
            SchemaFetchFailed: If the catalog query fails
        """
        logger = get_logger(f"introspection.{pool.key}")

        if not force_refresh:
            cached = self._cached(pool.key)
            if cached is not None:
                return cached

        try:
            with self.perf_logger.measure("describe", tenant_key=pool.key):
                rows = await pool.fetch(SCHEMA_QUERY, self.schema)
        except Exception as e:
            logger.error("Schema fetch failed", tenant_key=pool.key, error=str(e))
            raise SchemaFetchFailed(
                f"Failed to fetch schema for tenant {pool.key}: {e}",
                code=ErrorCodes.SCHEMA_FETCH_FAILED,
                context={"tenant_key": pool.key, "schema": self.schema},
                cause=e,
            ) from e

        tables = build_tables(rows)
        if self.config.enabled:
            self._cache[pool.key] = (time.monotonic(), tables)

        logger.debug("Schema fetched", tenant_key=pool.key, table_count=len(tables))
        return tables

    async def get_table(
        self, pool: TenantPool, name: str, *, force_refresh: bool = False
    ) -> TableSchema:
        """Describe the tenant and return one table.

        Raises:
            TableNotFound: If the table does not exist
            SchemaFetchFailed: If the catalog query fails
        """
        tables = await self.describe(pool, force_refresh=force_refresh)
        return find_table(tables, name)

    def invalidate(self, key: str) -> None:
        """Drop the cached schema for one tenant."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()
