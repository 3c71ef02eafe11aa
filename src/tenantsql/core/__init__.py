"""tenantsql core infrastructure.

This package provides the foundational pieces shared by every other
package: the component lifecycle base, the exception hierarchy and SQL
and formatting helpers.

Modules:
    base: Async component lifecycle
    exceptions: Exception hierarchy
    utils: Utility functions

Example:
    >>> from tenantsql.core import SQLUtils, MissingRequiredColumns
    >>> SQLUtils.detect_query_type("ALTER TABLE users ADD COLUMN age int")
    'ALTER'
"""

from .base import AsyncComponent
from .exceptions import (
    BatchValidationError,
    CoercionError,
    ColumnNotFound,
    ConfigurationError,
    ConnectionError,
    ConnectionPoolError,
    DatabaseConnectionError,
    ErrorCodes,
    ExecutionError,
    HistoryWriteFailure,
    InvalidDateFormat,
    MissingRequiredColumns,
    OptimisticLockConflict,
    PrimaryKeyNotFound,
    SchemaFetchFailed,
    TableNotFound,
    TenantNotFound,
    TenantSQLException,
    ValidationError,
)
from .utils import (
    FormatUtils,
    SQLUtils,
    StringUtils,
    TimerContext,
    ValidationUtils,
    measure_time,
)

__all__ = [
    # Base classes
    "AsyncComponent",

    # Exceptions
    "TenantSQLException",
    "ConfigurationError",
    "ValidationError",
    "TenantNotFound",
    "TableNotFound",
    "ColumnNotFound",
    "PrimaryKeyNotFound",
    "MissingRequiredColumns",
    "CoercionError",
    "InvalidDateFormat",
    "BatchValidationError",
    "OptimisticLockConflict",
    "ConnectionError",
    "DatabaseConnectionError",
    "ConnectionPoolError",
    "SchemaFetchFailed",
    "ExecutionError",
    "HistoryWriteFailure",
    "ErrorCodes",

    # Utilities
    "ValidationUtils",
    "StringUtils",
    "SQLUtils",
    "FormatUtils",
    "TimerContext",
    "measure_time",
]
