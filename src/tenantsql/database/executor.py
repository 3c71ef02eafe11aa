"""Sequential batch execution with partial-failure semantics.

Operations run one at a time in submitted order, each auto-committing on
its own. There is no transaction spanning the batch: when a batch stops
partway, the operations that already succeeded stay applied.
"""

from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence, Union

from ..config.models import DEFAULT_CRITICAL_TYPES, ExecutorConfig
from ..core.exceptions import BatchValidationError, ErrorCodes, TenantSQLException
from ..core.utils import SQLUtils, measure_time
from ..logging import get_logger
from .history import QueryHistoryLogger
from .introspection import SchemaIntrospector
from .models import (
    BatchReport,
    BatchState,
    ExecutionResult,
    ExecutionStatus,
    Operation,
)
from .pool import TenantPool

SKIP_REASON = "Previous operation failed"

# Statement classes after which a cached schema is stale
_SCHEMA_CHANGING = {"CREATE", "ALTER", "DROP", "TRUNCATE"}


class StopPolicy(str, Enum):
    """When a failed operation halts the rest of the batch."""
    CRITICAL_ONLY = "critical_only"
    FIRST_FAILURE = "first_failure"


def final_state(results: Sequence[ExecutionResult]) -> BatchState:
    """Derive the terminal state from per-operation results."""
    failed = sum(1 for r in results if r.status is ExecutionStatus.FAILED)
    succeeded = sum(1 for r in results if r.status is ExecutionStatus.SUCCESS)
    if failed == 0:
        return BatchState.ALL_SUCCEEDED
    if succeeded > 0:
        return BatchState.PARTIAL
    return BatchState.ALL_FAILED


class BatchExecutor:
    """Runs an ordered list of externally proposed statements against one tenant.

    Example:
        >>> executor = BatchExecutor(history=history, introspector=introspector)
        >>> report = await executor.run(pool, operations, project_id=pid, user_id=uid)
        >>> report.outcome
        <BatchState.PARTIAL: 'partial'>
    """

    def __init__(
        self,
        history: Optional[QueryHistoryLogger] = None,
        introspector: Optional[SchemaIntrospector] = None,
        *,
        stop_policy: Union[StopPolicy, str] = StopPolicy.CRITICAL_ONLY,
        critical_types: Optional[Iterable[str]] = None,
    ) -> None:
        self.history = history
        self.introspector = introspector
        self.stop_policy = StopPolicy(stop_policy)
        self.critical_types = frozenset(
            t.lower() for t in (critical_types if critical_types is not None else DEFAULT_CRITICAL_TYPES)
        )
        self.logger = get_logger("executor")

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        *,
        history: Optional[QueryHistoryLogger] = None,
        introspector: Optional[SchemaIntrospector] = None,
    ) -> "BatchExecutor":
        return cls(
            history=history,
            introspector=introspector,
            stop_policy=config.stop_policy,
            critical_types=config.critical_types,
        )

    def is_critical(self, operation: Operation) -> bool:
        return (operation.type or "").lower() in self.critical_types

    def _halts(self, operation: Operation) -> bool:
        if self.stop_policy is StopPolicy.FIRST_FAILURE:
            return True
        return self.is_critical(operation)

    @staticmethod
    def validate(operations: Any) -> List[Operation]:
        """Check a batch request and normalize it to :class:`Operation` objects.

        Accepts operations as mappings (``{"sql", "type", "target"}``) or as
        ready-made :class:`Operation` instances.

        Raises:
            BatchValidationError: If the list is empty or an entry has no SQL
        """
        if not isinstance(operations, (list, tuple)) or not operations:
            raise BatchValidationError(
                "Operations must be a non-empty array",
                code=ErrorCodes.INVALID_BATCH,
            )

        normalized: List[Operation] = []
        for index, item in enumerate(operations):
            if isinstance(item, Operation):
                op = item
            elif isinstance(item, dict):
                op = Operation.from_dict(index, item)
            else:
                raise BatchValidationError(
                    f"Operation {index} must be an object",
                    code=ErrorCodes.INVALID_BATCH,
                    context={"operation_index": index},
                )

            if not isinstance(op.sql, str) or not op.sql.strip():
                raise BatchValidationError(
                    f"Operation {index} has no SQL statement",
                    code=ErrorCodes.INVALID_BATCH,
                    context={"operation_index": index},
                )
            normalized.append(op)

        return normalized

    async def run(
        self,
        pool: TenantPool,
        operations: Any,
        *,
        project_id: str,
        user_id: str,
        natural_language_input: Optional[str] = None,
    ) -> BatchReport:
        """Execute ``operations`` in order and report per-operation outcomes.

        Args:
            pool: Pool of the tenant the batch targets
            operations: Operation mappings or :class:`Operation` objects
            project_id: Tenant/project id recorded in history
            user_id: Requesting user recorded in history
            natural_language_input: Planner prompt the batch came from

        Returns:
            BatchReport with one result per submitted operation

        Raises:
            BatchValidationError: If the request is malformed; nothing runs
        """
        ops = self.validate(operations)

        results: List[ExecutionResult] = []
        halted_at: Optional[int] = None

        self.logger.info(
            "Batch started",
            tenant_key=pool.key,
            operation_count=len(ops),
            stop_policy=self.stop_policy.value,
        )

        with measure_time() as batch_timer:
            for position, op in enumerate(ops):
                if halted_at is not None:
                    results.append(
                        ExecutionResult(
                            operation_index=op.index,
                            status=ExecutionStatus.SKIPPED,
                            sql=op.sql,
                            type=op.type,
                            target=op.target,
                            reason=SKIP_REASON,
                        )
                    )
                    continue

                result = await self._run_one(
                    pool, op,
                    project_id=project_id,
                    user_id=user_id,
                    natural_language_input=natural_language_input,
                )
                results.append(result)

                if result.status is ExecutionStatus.FAILED and self._halts(op):
                    halted_at = op.index
                    self.logger.warning(
                        "Batch halted",
                        tenant_key=pool.key,
                        operation_index=op.index,
                        operation_type=op.type,
                        remaining=len(ops) - position - 1,
                    )

        report = BatchReport(
            state=final_state(results), results=results, elapsed_ms=batch_timer.duration_ms
        )

        self.logger.info(
            "Batch finished",
            tenant_key=pool.key,
            outcome=report.outcome.value,
            successful=report.successful,
            failed=report.failed,
            skipped=report.skipped,
            elapsed_ms=report.elapsed_ms,
        )
        return report

    async def _run_one(
        self,
        pool: TenantPool,
        op: Operation,
        *,
        project_id: str,
        user_id: str,
        natural_language_input: Optional[str],
    ) -> ExecutionResult:
        detected = SQLUtils.detect_query_type(op.sql)
        error: Optional[str] = None
        row_count = 0

        with measure_time() as timer:
            try:
                result = await pool.execute(op.sql)
                row_count = result.row_count
            except TenantSQLException as e:
                error = e.message
                self.logger.warning(
                    "Batch operation failed",
                    tenant_key=pool.key,
                    operation_index=op.index,
                    operation_type=op.type,
                    error_code=e.code,
                    error=e.message,
                )

        if self.history is not None:
            await self.history.record_statement(
                project_id=project_id,
                user_id=user_id,
                query_text=op.sql,
                query_type=op.type or detected,
                natural_language_input=natural_language_input,
                execution_time_ms=timer.duration_ms,
                success=error is None,
                error_message=error,
            )

        if error is not None:
            return ExecutionResult(
                operation_index=op.index,
                status=ExecutionStatus.FAILED,
                sql=op.sql,
                type=op.type,
                target=op.target,
                execution_time_ms=timer.duration_ms,
                error=error,
            )

        if self.introspector is not None and (detected in _SCHEMA_CHANGING or self.is_critical(op)):
            self.introspector.invalidate(pool.key)

        return ExecutionResult(
            operation_index=op.index,
            status=ExecutionStatus.SUCCESS,
            sql=op.sql,
            type=op.type,
            target=op.target,
            row_count=row_count,
            execution_time_ms=timer.duration_ms,
        )
