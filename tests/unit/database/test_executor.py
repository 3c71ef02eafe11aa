"""Tests for sequential batch execution."""

import asyncio

import pytest

from fakes import FakePool, fail_when, result
from tenantsql.config.models import ExecutorConfig
from tenantsql.core.exceptions import BatchValidationError, ErrorCodes
from tenantsql.core.utils import SQLUtils
from tenantsql.database.executor import SKIP_REASON, BatchExecutor, StopPolicy, final_state
from tenantsql.database.history import InMemoryHistorySink, QueryHistoryLogger
from tenantsql.database.introspection import SchemaIntrospector
from tenantsql.database.models import (
    BatchState,
    ExecutionResult,
    ExecutionStatus,
    Operation,
)

CREATE = {"sql": "CREATE TABLE items (id serial primary key)", "type": "create_table", "target": "items"}
BROKEN_CREATE = {"sql": "CREATE TABLE INVALID SYNTAX", "type": "create_table", "target": "bad"}
INSERT = {"sql": "INSERT INTO items DEFAULT VALUES", "type": "insert", "target": "items"}
BROKEN_INSERT = {"sql": "INSERT INTO INVALID VALUES", "type": "insert", "target": "bad"}


@pytest.fixture
def sink():
    return InMemoryHistorySink()


@pytest.fixture
def executor(sink):
    return BatchExecutor(history=QueryHistoryLogger(sink))


async def run(executor, pool, operations, **kwargs):
    kwargs.setdefault("project_id", "3f0c")
    kwargs.setdefault("user_id", "u-1")
    return await executor.run(pool, operations, **kwargs)


class TestValidation:
    """Malformed batches are rejected before anything runs."""

    @pytest.mark.parametrize("operations", [None, [], {}, "SELECT 1"])
    def test_not_a_non_empty_list(self, operations):
        with pytest.raises(BatchValidationError) as exc_info:
            BatchExecutor.validate(operations)

        assert exc_info.value.code == ErrorCodes.INVALID_BATCH
        assert exc_info.value.message == "Operations must be a non-empty array"
        assert exc_info.value.status == 400

    def test_entry_not_an_object(self):
        with pytest.raises(BatchValidationError) as exc_info:
            BatchExecutor.validate([INSERT, "DROP TABLE users"])

        assert exc_info.value.message == "Operation 1 must be an object"

    @pytest.mark.parametrize("entry", [{"type": "insert"}, {"sql": "   "}, {"sql": 42}])
    def test_entry_without_sql(self, entry):
        with pytest.raises(BatchValidationError) as exc_info:
            BatchExecutor.validate([INSERT, entry])

        assert exc_info.value.message == "Operation 1 has no SQL statement"
        assert exc_info.value.context["operation_index"] == 1

    def test_normalizes_entries(self):
        ready = Operation(index=1, sql="SELECT 1")

        ops = BatchExecutor.validate([{"sql": "SELECT 2", "riskLevel": "low"}, ready])

        assert ops[0] == Operation(index=0, sql="SELECT 2", risk_level="low")
        assert ops[1] is ready

    @pytest.mark.asyncio
    async def test_invalid_batch_sends_nothing(self, executor, sink):
        pool = FakePool()

        with pytest.raises(BatchValidationError):
            await run(executor, pool, [INSERT, {"type": "insert"}])

        assert pool.executed == []
        assert sink.records == []


class TestRun:
    """Test cases for per-operation outcomes and stop rules."""

    @pytest.mark.asyncio
    async def test_all_succeeded(self, executor):
        pool = FakePool(handler=lambda sql, params: result([], row_count=3))

        report = await run(executor, pool, [CREATE, INSERT])

        assert report.outcome is BatchState.ALL_SUCCEEDED
        assert report.successful == 2
        assert report.http_status == 200
        assert [r.row_count for r in report.results] == [3, 3]
        assert report.state.is_terminal

    @pytest.mark.asyncio
    async def test_failed_critical_operation_skips_the_rest(self, executor):
        pool = FakePool(handler=fail_when("INVALID"))
        later_insert = {"sql": "INSERT INTO items (id) VALUES (2)", "type": "insert", "target": "items"}

        report = await run(executor, pool, [INSERT, BROKEN_CREATE, later_insert])

        assert report.outcome is BatchState.PARTIAL
        assert (report.successful, report.failed, report.skipped) == (1, 1, 1)
        statuses = [r.status for r in report.results]
        assert statuses == [ExecutionStatus.SUCCESS, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED]
        assert report.results[1].error == 'syntax error at or near "INVALID"'
        assert report.results[2].reason == SKIP_REASON
        assert later_insert["sql"] not in pool.executed
        assert pool.executed == [INSERT["sql"], BROKEN_CREATE["sql"]]

    @pytest.mark.asyncio
    async def test_non_critical_failure_continues(self, executor):
        pool = FakePool(handler=fail_when("INVALID"))

        report = await run(executor, pool, [BROKEN_INSERT, INSERT, CREATE])

        assert [r.status for r in report.results] == [
            ExecutionStatus.FAILED, ExecutionStatus.SUCCESS, ExecutionStatus.SUCCESS,
        ]
        assert report.outcome is BatchState.PARTIAL
        assert len(pool.executed) == 3

    @pytest.mark.asyncio
    async def test_first_failure_policy(self, sink):
        executor = BatchExecutor(QueryHistoryLogger(sink), stop_policy="first_failure")
        pool = FakePool(handler=fail_when("INVALID"))

        report = await run(executor, pool, [INSERT, BROKEN_INSERT, INSERT, CREATE])

        assert executor.stop_policy is StopPolicy.FIRST_FAILURE
        assert [r.status for r in report.results] == [
            ExecutionStatus.SUCCESS, ExecutionStatus.FAILED,
            ExecutionStatus.SKIPPED, ExecutionStatus.SKIPPED,
        ]
        assert len(pool.executed) == 2

    @pytest.mark.asyncio
    async def test_all_failed(self, executor):
        pool = FakePool(handler=fail_when("INVALID"))

        report = await run(executor, pool, [BROKEN_CREATE, INSERT])

        assert report.outcome is BatchState.ALL_FAILED
        assert report.skipped == 1
        assert report.http_status == 400
        assert report.success is False

    @pytest.mark.asyncio
    async def test_custom_critical_types(self, sink):
        executor = BatchExecutor(QueryHistoryLogger(sink), critical_types=["INSERT"])
        pool = FakePool(handler=fail_when("INVALID"))

        report = await run(executor, pool, [BROKEN_INSERT, CREATE])

        assert executor.is_critical(Operation(index=0, sql="x", type="insert"))
        assert report.results[1].status is ExecutionStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_incomplete_statement_fails_like_any_other(self, executor):
        class ValidatingPool(FakePool):
            async def execute(self, sql, params=None):
                SQLUtils.validate_statement(sql)
                return await super().execute(sql, params)

        pool = ValidatingPool()

        report = await run(executor, pool, [{"sql": "INSERT INTO items (a,", "type": "insert"}, INSERT])

        assert report.results[0].status is ExecutionStatus.FAILED
        assert report.results[0].error.startswith("Invalid query")
        assert report.results[1].status is ExecutionStatus.SUCCESS

    def test_from_config(self):
        executor = BatchExecutor.from_config(
            ExecutorConfig(stop_policy="first_failure", critical_types=["Drop_Table"])
        )

        assert executor.stop_policy is StopPolicy.FIRST_FAILURE
        assert executor.critical_types == frozenset({"drop_table"})

    @pytest.mark.asyncio
    async def test_concurrent_batches_report_independently(self, executor):
        class SlowPool(FakePool):
            async def execute(self, sql, params=None):
                await asyncio.sleep(0.01)
                return await super().execute(sql, params)

        healthy = SlowPool("3f0c")
        broken = SlowPool("77aa", handler=fail_when("INVALID"))

        succeeded, failed = await asyncio.gather(
            run(executor, healthy, [CREATE, INSERT]),
            run(executor, broken, [BROKEN_CREATE, INSERT]),
        )

        assert succeeded.outcome is BatchState.ALL_SUCCEEDED
        assert failed.outcome is BatchState.ALL_FAILED
        assert [r.status for r in failed.results] == [ExecutionStatus.FAILED, ExecutionStatus.SKIPPED]


class TestSideEffects:
    """History and schema-cache effects of a batch."""

    @pytest.mark.asyncio
    async def test_every_executed_operation_is_recorded(self, executor, sink):
        pool = FakePool(handler=fail_when("INVALID"))

        await run(
            executor, pool, [CREATE, BROKEN_CREATE, INSERT],
            natural_language_input="add an items table",
        )

        assert [(r.query_type, r.success) for r in sink.records] == [
            ("create_table", True), ("create_table", False),
        ]
        assert sink.records[1].error_message == 'syntax error at or near "INVALID"'
        assert all(r.natural_language_input == "add an items table" for r in sink.records)

    @pytest.mark.asyncio
    async def test_untyped_operation_records_detected_type(self, executor, sink):
        await run(executor, FakePool(), [{"sql": "update items set a = 1"}])

        assert sink.records[0].query_type == "UPDATE"

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_batch(self):
        class BrokenSink(InMemoryHistorySink):
            async def write(self, record):
                raise RuntimeError("control database unavailable")

        executor = BatchExecutor(history=QueryHistoryLogger(BrokenSink()))

        report = await run(executor, FakePool(), [CREATE, INSERT])

        assert report.outcome is BatchState.ALL_SUCCEEDED

    @pytest.mark.asyncio
    async def test_schema_change_invalidates_cache(self):
        catalog = [{"table_name": "items", "column_name": None}]
        pool = FakePool(fetch_rows=catalog)
        introspector = SchemaIntrospector()
        executor = BatchExecutor(introspector=introspector)

        await introspector.describe(pool)
        await run(executor, pool, [INSERT])
        await introspector.describe(pool)
        assert len(pool.fetched) == 1

        await run(executor, pool, [{"sql": "ALTER TABLE items ADD COLUMN b int"}])
        await introspector.describe(pool)
        assert len(pool.fetched) == 2


class TestReport:
    """Test cases for the batch report shape."""

    @pytest.mark.asyncio
    async def test_partial_response(self, executor):
        pool = FakePool(handler=fail_when("INVALID"))

        report = await run(executor, pool, [CREATE, BROKEN_CREATE, INSERT])
        body = report.to_response()

        assert report.http_status == 207
        assert body["success"] is False
        assert body["outcome"] == "partial"
        assert body["message"] == "Some operations failed. Review the results."
        assert (body["totalOperations"], body["successfulOperations"],
                body["failedOperations"], body["skippedOperations"]) == (3, 1, 1, 1)
        assert body["totalExecutionTime"] >= 0
        assert [e["operationIndex"] for e in body["errors"]] == [1]

        success, failure, skipped = body["results"]
        assert set(success) == {"operationIndex", "type", "target", "sql", "status", "rowCount", "executionTime"}
        assert failure["error"] == 'syntax error at or near "INVALID"'
        assert skipped == {
            "operationIndex": 2,
            "type": "insert",
            "target": "items",
            "sql": INSERT["sql"],
            "status": "skipped",
            "reason": "Previous operation failed",
        }

    def test_missing_type_and_target_default_to_unknown(self):
        data = ExecutionResult(
            operation_index=0, status=ExecutionStatus.SUCCESS, sql="SELECT 1", row_count=1
        ).to_dict()

        assert data["type"] == "unknown"
        assert data["target"] == "unknown"

    @pytest.mark.parametrize("statuses,expected", [
        ([ExecutionStatus.SUCCESS], BatchState.ALL_SUCCEEDED),
        ([ExecutionStatus.SUCCESS, ExecutionStatus.FAILED], BatchState.PARTIAL),
        ([ExecutionStatus.FAILED, ExecutionStatus.SKIPPED], BatchState.ALL_FAILED),
        ([ExecutionStatus.FAILED], BatchState.ALL_FAILED),
    ])
    def test_final_state(self, statuses, expected):
        results = [ExecutionResult(i, status, "x") for i, status in enumerate(statuses)]

        state = final_state(results)

        assert state is expected
        assert state.is_terminal
