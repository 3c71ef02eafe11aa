"""Unit tests for the tenantsql exception hierarchy.

This module tests the exception classes to ensure proper error reporting,
context management and the status each error maps to.
"""

import pytest

from tenantsql.core.exceptions import (
    BatchValidationError,
    CoercionError,
    ColumnNotFound,
    ConnectionError,
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


class TestTenantSQLException:
    """Test base exception class."""

    def test_basic_exception_creation(self):
        exc = TenantSQLException("Test error message")

        assert str(exc) == "TenantSQLException: Test error message"
        assert exc.message == "Test error message"
        assert exc.code == "TenantSQLException"
        assert exc.context == {}
        assert exc.cause is None
        assert exc.status == 500

    def test_exception_with_custom_code(self):
        exc = TenantSQLException("Test error", code="CUSTOM_ERROR")

        assert exc.code == "CUSTOM_ERROR"
        assert str(exc) == "CUSTOM_ERROR: Test error"

    def test_exception_with_cause(self):
        original_error = ValueError("Original error")
        exc = TenantSQLException("Wrapped error", cause=original_error)

        assert exc.cause is original_error

    def test_to_dict(self):
        exc = TenantSQLException(
            "Serialization test",
            code="SERIAL_ERROR",
            context={"tenant_key": "3f0c"},
            cause=RuntimeError("boom"),
        )

        assert exc.to_dict() == {
            "error_type": "TenantSQLException",
            "message": "Serialization test",
            "code": "SERIAL_ERROR",
            "context": {"tenant_key": "3f0c"},
            "cause": "boom",
        }

    def test_repr_contains_fields(self):
        exc = TenantSQLException("Repr test", code="R")
        assert "message='Repr test'" in repr(exc)
        assert "code='R'" in repr(exc)


class TestValidationErrors:
    """Test request-fixable errors and their statuses."""

    def test_tenant_not_found(self):
        exc = TenantNotFound("tenant-x")

        assert isinstance(exc, ValidationError)
        assert exc.status == 404
        assert exc.code == ErrorCodes.TENANT_NOT_FOUND
        assert exc.key == "tenant-x"
        assert exc.context == {"tenant_key": "tenant-x"}

    def test_table_not_found(self):
        exc = TableNotFound("orders")

        assert exc.status == 404
        assert exc.message == "Table 'orders' not found"
        assert exc.code == ErrorCodes.TABLE_NOT_FOUND

    def test_column_not_found(self):
        exc = ColumnNotFound("users", "nickname")

        assert exc.status == 400
        assert exc.column == "nickname"
        assert exc.code == ErrorCodes.COLUMN_NOT_FOUND

    def test_primary_key_not_found(self):
        exc = PrimaryKeyNotFound("logs")
        assert exc.code == ErrorCodes.PRIMARY_KEY_NOT_FOUND
        assert "logs" in exc.message

    def test_missing_required_columns_lists_names(self):
        exc = MissingRequiredColumns("users", ["email", "role"])

        assert exc.message == "Missing required columns"
        assert exc.missing == ["email", "role"]
        assert exc.context["missing"] == ["email", "role"]

    def test_coercion_error(self):
        exc = CoercionError("Expected an integer", column="age", value="abc")

        assert exc.reason == "Expected an integer"
        assert exc.column == "age"
        assert exc.value == "abc"
        assert exc.code == ErrorCodes.COERCION_FAILED

    def test_invalid_date_format_is_coercion_error(self):
        exc = InvalidDateFormat("not a date", column="birthday")

        assert isinstance(exc, CoercionError)
        assert exc.message == "Invalid date format: not a date"
        assert exc.code == ErrorCodes.INVALID_DATE_FORMAT

    def test_batch_validation_error(self):
        exc = BatchValidationError("Operations must be a non-empty array", code=ErrorCodes.INVALID_BATCH)
        assert exc.status == 400


class TestRuntimeErrors:
    """Test conflict, execution and connection errors."""

    def test_optimistic_lock_conflict(self):
        exc = OptimisticLockConflict("users", "email")

        assert exc.status == 409
        assert exc.message == "Update failed (row not found or value mismatch)"
        assert not isinstance(exc, ValidationError)

    def test_execution_error_carries_sqlstate(self):
        exc = ExecutionError("duplicate key value", sqlstate="23505")

        assert exc.sqlstate == "23505"
        assert exc.code == ErrorCodes.QUERY_EXECUTION_FAILED
        assert exc.status == 400

    def test_connection_hierarchy(self):
        assert issubclass(DatabaseConnectionError, ConnectionError)
        assert issubclass(ConnectionError, TenantSQLException)

    def test_schema_fetch_failed_is_server_error(self):
        assert SchemaFetchFailed("catalog query failed").status == 500

    def test_history_write_failure(self):
        exc = HistoryWriteFailure("insert failed", code=ErrorCodes.HISTORY_WRITE_FAILED)
        assert exc.code == "HISTORY_WRITE_FAILED"

    def test_exceptions_can_be_raised_and_caught(self):
        with pytest.raises(ValidationError):
            raise MissingRequiredColumns("users", ["email"])
