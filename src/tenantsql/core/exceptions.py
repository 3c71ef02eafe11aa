"""tenantsql exception hierarchy.

This module defines the exception hierarchy for tenant database operations,
providing structured error handling with context and error codes so the
request handler can turn any failure into a precise response.

Classes:
    TenantSQLException: Base exception for all tenantsql operations
    ValidationError: Request errors that are resolved before touching the database
    ConnectionError: Tenant connection and pool errors
    ExecutionError: Driver-level failures while running a statement
    HistoryWriteFailure: Audit-trail write failures (logged, never raised)

Example:
    >>> try:
    ...     statement = builder.build_insert(schema, "users", payload)
    ... except MissingRequiredColumns as e:
    ...     logger.error("Insert rejected", error_code=e.code, missing=e.missing)
"""

from typing import Any, Dict, List, Optional


class TenantSQLException(Exception):
    """Base exception for all tenantsql operations.

    Attributes:
        code: Unique error code for categorization
        context: Additional context information about the error
        cause: Original exception that caused this error (if any)
        status: HTTP-like status the request handler reports for this error
    """

    status: int = 500

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """Initialize tenantsql exception.

        Args:
            message: Human-readable error description
            code: Unique error code for categorization (defaults to class name)
            context: Additional context information
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message: str = message
        self.code: str = code or self.__class__.__name__
        self.context: Dict[str, Any] = context or {}
        self.cause: Optional[Exception] = cause

    def __str__(self) -> str:
        """Return formatted error message with code."""
        return f"{self.code}: {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation of the exception."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"context={self.context!r}, "
            f"cause={self.cause!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for serialization.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(TenantSQLException):
    """Configuration related errors."""
    pass


class ValidationError(TenantSQLException):
    """Request validation errors.

    Raised before any statement reaches the database, with enough detail
    for the caller to fix the request.
    """

    status = 400


class TenantNotFound(ValidationError):
    """No active tenant record exists for the requested key."""

    status = 404

    def __init__(self, key: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.TENANT_NOT_FOUND)
        kwargs.setdefault("context", {"tenant_key": key})
        super().__init__(f"Tenant not found: {key}", **kwargs)
        self.key = key


class TableNotFound(ValidationError):
    """Target table is not present in the tenant schema."""

    status = 404

    def __init__(self, table: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.TABLE_NOT_FOUND)
        kwargs.setdefault("context", {"table": table})
        super().__init__(f"Table '{table}' not found", **kwargs)
        self.table = table


class ColumnNotFound(ValidationError):
    """Target column is not present in the table metadata."""

    def __init__(self, table: str, column: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.COLUMN_NOT_FOUND)
        kwargs.setdefault("context", {"table": table, "column": column})
        super().__init__(f"Column '{column}' not found in table '{table}'", **kwargs)
        self.table = table
        self.column = column


class PrimaryKeyNotFound(ValidationError):
    """Primary key column could not be determined for an update."""

    def __init__(self, table: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.PRIMARY_KEY_NOT_FOUND)
        kwargs.setdefault("context", {"table": table})
        super().__init__(
            f"Primary key column could not be determined for table '{table}'", **kwargs
        )
        self.table = table


class MissingRequiredColumns(ValidationError):
    """Non-nullable columns without a default were not supplied."""

    def __init__(self, table: str, missing: List[str], **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.MISSING_REQUIRED_COLUMNS)
        kwargs.setdefault("context", {"table": table, "missing": list(missing)})
        super().__init__("Missing required columns", **kwargs)
        self.table = table
        self.missing = list(missing)


class CoercionError(ValidationError):
    """A value could not be converted to its column's declared type."""

    def __init__(
        self,
        reason: str,
        *,
        column: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("code", ErrorCodes.COERCION_FAILED)
        kwargs.setdefault("context", {"column": column, "value": repr(value)})
        super().__init__(reason, **kwargs)
        self.column = column
        self.reason = reason
        self.value = value


class InvalidDateFormat(CoercionError):
    """A date/time value matched none of the accepted formats."""

    def __init__(self, value: Any, *, column: Optional[str] = None) -> None:
        super().__init__(
            f"Invalid date format: {value}",
            column=column,
            value=value,
            code=ErrorCodes.INVALID_DATE_FORMAT,
        )


class BatchValidationError(ValidationError):
    """A batch request is malformed and nothing was executed."""
    pass


class OptimisticLockConflict(TenantSQLException):
    """Zero rows matched an update: the row is gone or its value changed."""

    status = 409

    def __init__(self, table: str, column: str, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.OPTIMISTIC_LOCK_CONFLICT)
        kwargs.setdefault("context", {"table": table, "column": column})
        super().__init__("Update failed (row not found or value mismatch)", **kwargs)
        self.table = table
        self.column = column


class ConnectionError(TenantSQLException):
    """Tenant database connection related errors."""
    pass


class DatabaseConnectionError(ConnectionError):
    """Unable to establish or use a tenant database connection."""
    pass


class ConnectionPoolError(ConnectionError):
    """Connection pool management errors."""
    pass


class SchemaFetchFailed(TenantSQLException):
    """Catalog queries against a tenant database failed."""
    pass


class ExecutionError(TenantSQLException):
    """A statement was rejected by the database driver.

    Attributes:
        sqlstate: Driver SQLSTATE code when the driver reports one
    """

    status = 400

    def __init__(self, message: str, *, sqlstate: Optional[str] = None, **kwargs: Any) -> None:
        kwargs.setdefault("code", ErrorCodes.QUERY_EXECUTION_FAILED)
        super().__init__(message, **kwargs)
        self.sqlstate = sqlstate


class HistoryWriteFailure(TenantSQLException):
    """Writing a query history record failed.

    Always recovered locally by the history logger.
    """
    pass


class ErrorCodes:
    """Common error codes for tenantsql exceptions."""

    # Configuration errors
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_MISSING = "CONFIG_MISSING"
    INIT_FAILED = "INIT_FAILED"

    # Tenant and connection errors
    TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    CONNECTION_TIMEOUT = "CONNECTION_TIMEOUT"
    AUTH_FAILED = "AUTH_FAILED"
    POOL_CLOSED = "POOL_CLOSED"
    DATABASE_NOT_READY = "DATABASE_NOT_READY"

    # Schema errors
    SCHEMA_FETCH_FAILED = "SCHEMA_FETCH_FAILED"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    PRIMARY_KEY_NOT_FOUND = "PRIMARY_KEY_NOT_FOUND"

    # Request validation errors
    MISSING_REQUIRED_COLUMNS = "MISSING_REQUIRED_COLUMNS"
    NO_VALID_COLUMNS = "NO_VALID_COLUMNS"
    MISSING_KEY_VALUE = "MISSING_KEY_VALUE"
    COERCION_FAILED = "COERCION_FAILED"
    INVALID_DATE_FORMAT = "INVALID_DATE_FORMAT"
    INVALID_QUERY = "INVALID_QUERY"
    INVALID_BATCH = "INVALID_BATCH"

    # Execution errors
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    STATEMENT_TIMEOUT = "STATEMENT_TIMEOUT"
    SQL_SYNTAX_ERROR = "SQL_SYNTAX_ERROR"
    OPTIMISTIC_LOCK_CONFLICT = "OPTIMISTIC_LOCK_CONFLICT"
    HISTORY_WRITE_FAILED = "HISTORY_WRITE_FAILED"
