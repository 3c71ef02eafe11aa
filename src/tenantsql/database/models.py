"""Database models for tenantsql."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class QueryResult:
    """Result of one statement executed against a tenant pool."""
    rows: List[Dict[str, Any]]
    row_count: int
    columns: List[str]
    execution_time: float
    status: Optional[str] = None

    @property
    def execution_time_ms(self) -> int:
        return int(round(self.execution_time * 1000))

    @property
    def first_row(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None


@dataclass
class ColumnMetadata:
    """Introspected column information.

    ``constraint`` holds the constraint type the column takes part in
    (``PRIMARY KEY``, ``FOREIGN KEY``, ``UNIQUE``) or None.
    """
    name: str
    data_type: str
    nullable: bool
    default: Optional[str] = None
    constraint: Optional[str] = None
    foreign_table: Optional[str] = None
    foreign_column: Optional[str] = None

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def is_primary_key(self) -> bool:
        return self.constraint == "PRIMARY KEY"

    @property
    def is_required(self) -> bool:
        """Non-nullable with no default: an insert must supply it."""
        return not self.nullable and not self.has_default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.data_type,
            "nullable": self.nullable,
            "default": self.default,
            "constraint": self.constraint,
            "foreign_table": self.foreign_table,
            "foreign_column": self.foreign_column,
        }


@dataclass
class TableSchema:
    """Introspected table with its columns in ordinal order."""
    name: str
    columns: List[ColumnMetadata] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    @property
    def primary_key_columns(self) -> List[ColumnMetadata]:
        return [column for column in self.columns if column.is_primary_key]

    @property
    def required_columns(self) -> List[ColumnMetadata]:
        return [column for column in self.columns if column.is_required]

    def get_column(self, name: str) -> Optional[ColumnMetadata]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "columns": [c.to_dict() for c in self.columns]}


@dataclass(frozen=True)
class Statement:
    """A parameterized statement ready for the driver.

    Attributes:
        sql: Statement text with ``$n`` placeholders
        params: Coerced values, positionally matching the placeholders
        table: Schema-validated target table
        columns: Schema-validated columns the statement writes or matches on
    """
    sql: str
    params: List[Any]
    table: str
    columns: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Operation:
    """An externally proposed statement to run as part of a batch.

    ``type`` is the planner's operation type (``insert``, ``create_table``,
    ...); ``risk_level`` is carried through untouched.
    """
    index: int
    sql: str
    type: Optional[str] = None
    target: Optional[str] = None
    risk_level: Optional[str] = None

    @classmethod
    def from_dict(cls, index: int, data: Dict[str, Any]) -> "Operation":
        return cls(
            index=index,
            sql=data.get("sql"),
            type=data.get("type"),
            target=data.get("target"),
            risk_level=data.get("risk_level", data.get("riskLevel")),
        )


class ExecutionStatus(str, Enum):
    """Per-operation outcome within a batch run."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ExecutionResult:
    """Outcome of one batch operation."""
    operation_index: int
    status: ExecutionStatus
    sql: str
    type: Optional[str] = None
    target: Optional[str] = None
    row_count: Optional[int] = None
    execution_time_ms: int = 0
    error: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "operationIndex": self.operation_index,
            "type": self.type or "unknown",
            "target": self.target or "unknown",
            "sql": self.sql,
            "status": self.status.value,
        }
        if self.status is ExecutionStatus.SUCCESS:
            data["rowCount"] = self.row_count
            data["executionTime"] = self.execution_time_ms
        elif self.status is ExecutionStatus.FAILED:
            data["error"] = self.error
            data["executionTime"] = self.execution_time_ms
        else:
            data["reason"] = self.reason
        return data


class BatchState(str, Enum):
    """Lifecycle of one batch run. The last three states are terminal."""
    PENDING = "pending"
    RUNNING = "running"
    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL = "partial"
    ALL_FAILED = "all_failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchState.ALL_SUCCEEDED, BatchState.PARTIAL, BatchState.ALL_FAILED)


BATCH_MESSAGES = {
    BatchState.ALL_SUCCEEDED: "All operations executed successfully",
    BatchState.PARTIAL: "Some operations failed. Review the results.",
    BatchState.ALL_FAILED: "All operations failed",
}


@dataclass
class BatchReport:
    """Aggregated outcome of a batch run."""
    state: BatchState
    results: List[ExecutionResult]
    elapsed_ms: int = 0

    def _count(self, status: ExecutionStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def outcome(self) -> BatchState:
        return self.state

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def successful(self) -> int:
        return self._count(ExecutionStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(ExecutionStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(ExecutionStatus.SKIPPED)

    @property
    def success(self) -> bool:
        return self.state is BatchState.ALL_SUCCEEDED

    @property
    def errors(self) -> List[ExecutionResult]:
        return [r for r in self.results if r.status is ExecutionStatus.FAILED]

    @property
    def message(self) -> str:
        return BATCH_MESSAGES.get(self.state, self.state.value)

    @property
    def http_status(self) -> int:
        """200 when everything succeeded, 207 for partial success, else 400."""
        if self.state is BatchState.ALL_SUCCEEDED:
            return 200
        if self.state is BatchState.PARTIAL:
            return 207
        return 400

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "outcome": self.state.value,
            "message": self.message,
            "totalOperations": self.total,
            "successfulOperations": self.successful,
            "failedOperations": self.failed,
            "skippedOperations": self.skipped,
            "totalExecutionTime": self.elapsed_ms,
            "results": [r.to_dict() for r in self.results],
            "errors": [r.to_dict() for r in self.errors],
        }


@dataclass
class QueryHistoryRecord:
    """One audit-trail entry for an attempted statement."""
    project_id: str
    user_id: str
    query_text: str
    query_type: str
    execution_time_ms: int
    success: bool
    natural_language_input: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "query_text": self.query_text,
            "query_type": self.query_type,
            "natural_language_input": self.natural_language_input,
            "execution_time_ms": self.execution_time_ms,
            "success": self.success,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
