"""
tenantsql database layer.

Dynamic, multi-tenant statement execution over PostgreSQL (asyncpg):

- Tenant pool lifecycle keyed by tenant (registry, TTL, eviction)
- Catalog introspection with an optional short-lived cache
- Type coercion of caller values against declared column types
- Parameterized INSERT/UPDATE/DELETE building from introspected metadata
- Sequential batch execution with a configurable stop policy
- Best-effort query history
"""

from .models import (
    BatchReport,
    BatchState,
    ColumnMetadata,
    ExecutionResult,
    ExecutionStatus,
    Operation,
    QueryHistoryRecord,
    QueryResult,
    Statement,
    TableSchema,
)

from .coercion import ColumnTypeClass, TypeCoercionEngine, cast_suffix, normalize_date
from .pool import TenantPool, wait_until_ready
from .registry import ConnectionPoolRegistry
from .introspection import SchemaIntrospector
from .builder import UNSET, DynamicQueryBuilder
from .history import (
    HistorySink,
    InMemoryHistorySink,
    PostgresHistorySink,
    QueryHistoryLogger,
)
from .executor import BatchExecutor, StopPolicy
from .tenants import PostgresTenantRegistry, StaticTenantRegistry, TenantRegistry

__all__ = [
    # Models
    "QueryResult",
    "ColumnMetadata",
    "TableSchema",
    "Statement",
    "Operation",
    "ExecutionStatus",
    "ExecutionResult",
    "BatchState",
    "BatchReport",
    "QueryHistoryRecord",

    # Coercion
    "ColumnTypeClass",
    "TypeCoercionEngine",
    "cast_suffix",
    "normalize_date",

    # Pools
    "TenantPool",
    "wait_until_ready",
    "ConnectionPoolRegistry",

    # Schema and statements
    "SchemaIntrospector",
    "DynamicQueryBuilder",
    "UNSET",

    # History
    "HistorySink",
    "InMemoryHistorySink",
    "PostgresHistorySink",
    "QueryHistoryLogger",

    # Batches
    "BatchExecutor",
    "StopPolicy",

    # Tenants
    "TenantRegistry",
    "PostgresTenantRegistry",
    "StaticTenantRegistry",
]
