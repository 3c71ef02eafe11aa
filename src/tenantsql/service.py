"""Request handling over the tenant data layer.

:class:`TenantDataService` wires the registry, introspector, builder,
executor and history logger together. Its operation methods raise
:class:`TenantSQLException` subclasses; :meth:`TenantDataService.dispatch`
is the single place where those are turned into status/payload responses.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as RequestModelError

from .config.models import ServiceConfig, TenantDescriptor
from .core.exceptions import (
    ConfigurationError,
    ErrorCodes,
    MissingRequiredColumns,
    OptimisticLockConflict,
    TenantSQLException,
)
from .core.utils import measure_time
from .database.builder import UNSET, DynamicQueryBuilder
from .database.executor import BatchExecutor
from .database.history import (
    HistorySink,
    InMemoryHistorySink,
    PostgresHistorySink,
    QueryHistoryLogger,
)
from .database.introspection import SchemaIntrospector
from .database.models import QueryResult, Statement
from .database.pool import TenantPool
from .database.registry import ConnectionPoolRegistry
from .database.tenants import PostgresTenantRegistry, TenantRegistry
from .logging import configure_logging, get_logger


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InsertRequest(_Request):
    table: str = Field(..., min_length=1)
    values: Dict[str, Any] = Field(default_factory=dict)


class UpdateRequest(_Request):
    table: str = Field(..., min_length=1)
    column: str = Field(..., min_length=1)
    pk_value: Any = Field(..., alias="pkValue")
    new_value: Any = Field(None, alias="newValue")
    pk_column: Optional[str] = Field(None, alias="pkColumn")
    old_value: Any = Field(None, alias="oldValue")


class DeleteRequest(_Request):
    table: str = Field(..., min_length=1)
    pk_columns: List[str] = Field(..., alias="pkColumns")
    pk_values: List[Dict[str, Any]] = Field(..., alias="pkValues")


class BatchRequest(_Request):
    operations: Any = None
    natural_language_input: Optional[str] = Field(None, alias="naturalLanguageInput")


class RowsRequest(_Request):
    table: str = Field(..., min_length=1)
    limit: Optional[int] = None


class HistoryRequest(_Request):
    limit: int = Field(50, ge=1, le=500)
    offset: int = Field(0, ge=0)


@dataclass
class ServiceResponse:
    """Transport-neutral response: an HTTP-like status and a JSON-able body."""
    status: int
    body: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def error_response(error: TenantSQLException) -> ServiceResponse:
    """Map an exception to the caller-facing error payload."""
    body: Dict[str, Any] = {"error": error.message, "code": error.code}
    if isinstance(error, MissingRequiredColumns):
        body["missing"] = error.missing
    return ServiceResponse(status=error.status, body=body)


class TenantDataService:
    """Single-record CRUD, batch execution and history for tenant projects.

    Callers are expected to have verified that ``user_id`` owns
    ``project_id`` before calling in.

    Example:
        >>> service = await TenantDataService.create(ServiceConfig.from_file("tenantsql.yaml"))
        >>> response = await service.dispatch("insert", pid, uid, {"table": "users", "values": {...}})
        >>> response.status
        200
    """

    def __init__(
        self,
        registry: ConnectionPoolRegistry,
        tenants: TenantRegistry,
        *,
        introspector: Optional[SchemaIntrospector] = None,
        builder: Optional[DynamicQueryBuilder] = None,
        history: Optional[QueryHistoryLogger] = None,
        executor: Optional[BatchExecutor] = None,
        control_pool: Optional[TenantPool] = None,
    ) -> None:
        self.registry = registry
        self.tenants = tenants
        self.introspector = introspector or SchemaIntrospector()
        self.builder = builder or DynamicQueryBuilder()
        self.history = history or QueryHistoryLogger(InMemoryHistorySink())
        self.executor = executor or BatchExecutor(
            history=self.history, introspector=self.introspector
        )
        self.control_pool = control_pool
        self.logger = get_logger("service")

        self._handlers: Dict[str, Callable[[str, str, Dict[str, Any]], Awaitable[ServiceResponse]]] = {
            "insert": self._handle_insert,
            "update": self._handle_update,
            "delete": self._handle_delete,
            "batch": self._handle_batch,
            "rows": self._handle_rows,
            "schema": self._handle_schema,
            "history": self._handle_history,
        }

    @classmethod
    async def create(
        cls,
        config: ServiceConfig,
        *,
        tenants: Optional[TenantRegistry] = None,
        history_sink: Optional[HistorySink] = None,
    ) -> "TenantDataService":
        """Build a service from configuration.

        Opens the control database pool when ``control_database_url`` is set
        and uses it for tenant lookup and history storage unless overrides
        are given.

        Raises:
            ConfigurationError: If no tenant registry can be constructed
        """
        configure_logging(config.logging)

        control_pool: Optional[TenantPool] = None
        if config.control_database_url is not None:
            control_pool = TenantPool(
                TenantDescriptor(
                    key="control",
                    connection_string=config.control_database_url.get_secret_value(),
                ),
                config.control_pool,
            )
            await control_pool.initialize()

        if tenants is None:
            if control_pool is None:
                raise ConfigurationError(
                    "A control database URL or a tenant registry is required",
                    code=ErrorCodes.CONFIG_INVALID,
                )
            tenants = PostgresTenantRegistry(control_pool)

        if history_sink is None:
            history_sink = (
                PostgresHistorySink(control_pool, config.history.table_name)
                if control_pool is not None
                else InMemoryHistorySink()
            )

        introspector = SchemaIntrospector(config.schema_cache)
        history = QueryHistoryLogger(history_sink, config.history)

        return cls(
            ConnectionPoolRegistry(config.tenant_pool),
            tenants,
            introspector=introspector,
            history=history,
            executor=BatchExecutor.from_config(
                config.executor, history=history, introspector=introspector
            ),
            control_pool=control_pool,
        )

    async def close(self) -> None:
        await self.registry.close_all()
        if self.control_pool is not None:
            await self.control_pool.close()

    async def pool_for(self, project_id: str) -> TenantPool:
        """Return the pool of a tenant, creating it on first use."""
        return await self.registry.get_or_create(str(project_id), self.tenants.resolve)

    async def _execute_recorded(
        self,
        pool: TenantPool,
        statement: Statement,
        *,
        project_id: str,
        user_id: str,
    ) -> QueryResult:
        """Run one built statement and write its history entry either way."""
        with measure_time() as timer:
            try:
                result = await pool.execute(statement.sql, statement.params)
            except TenantSQLException as e:
                failure: Optional[TenantSQLException] = e
            else:
                failure = None

        await self.history.record_statement(
            project_id=project_id,
            user_id=user_id,
            query_text=statement.sql,
            execution_time_ms=timer.duration_ms,
            success=failure is None,
            error_message=failure.message if failure is not None else None,
        )
        if failure is not None:
            raise failure
        return result

    async def describe(self, project_id: str, *, force_refresh: bool = False) -> List[Dict[str, Any]]:
        pool = await self.pool_for(project_id)
        tables = await self.introspector.describe(pool, force_refresh=force_refresh)
        return [table.to_dict() for table in tables]

    async def insert_row(
        self, project_id: str, user_id: str, table: str, values: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Insert one row; unknown keys in ``values`` are ignored."""
        pool = await self.pool_for(project_id)
        schema = await self.introspector.get_table(pool, table)
        statement = self.builder.build_insert(schema, values)

        result = await self._execute_recorded(
            pool, statement, project_id=project_id, user_id=user_id
        )
        self.logger.info(
            "Row inserted", tenant_key=pool.key, table=schema.name, columns=statement.columns
        )
        return {"table": schema.name, "providedColumns": statement.columns, "row": result.first_row}

    async def update_row(
        self,
        project_id: str,
        user_id: str,
        table: str,
        *,
        column: str,
        pk_value: Any,
        new_value: Any,
        pk_column: Optional[str] = None,
        old_value: Any = UNSET,
    ) -> Dict[str, Any]:
        """Update one column of one row.

        Raises:
            OptimisticLockConflict: If no row matched the key (and old value)
        """
        pool = await self.pool_for(project_id)
        schema = await self.introspector.get_table(pool, table)
        statement = self.builder.build_update(
            schema,
            column=column,
            pk_value=pk_value,
            new_value=new_value,
            pk_column=pk_column,
            old_value=old_value,
        )

        result = await self._execute_recorded(
            pool, statement, project_id=project_id, user_id=user_id
        )
        if result.row_count == 0:
            self.logger.warning(
                "Update matched no rows",
                tenant_key=pool.key,
                table=schema.name,
                column=column,
                optimistic=old_value is not UNSET,
            )
            raise OptimisticLockConflict(schema.name, column)

        return {"row": result.first_row}

    async def delete_rows(
        self,
        project_id: str,
        user_id: str,
        table: str,
        pk_columns: List[str],
        pk_values: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Delete every row matching one of the key tuples in a single statement."""
        pool = await self.pool_for(project_id)
        schema = await self.introspector.get_table(pool, table)
        statement = self.builder.build_delete(schema, pk_columns, pk_values)

        result = await self._execute_recorded(
            pool, statement, project_id=project_id, user_id=user_id
        )
        self.logger.info(
            "Rows deleted", tenant_key=pool.key, table=schema.name, row_count=result.row_count
        )
        return {"success": True, "rowCount": result.row_count}

    async def read_rows(
        self, project_id: str, table: str, *, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        pool = await self.pool_for(project_id)
        schema = await self.introspector.get_table(pool, table)
        statement = self.builder.build_select(schema, limit=limit)
        result = await pool.execute(statement.sql, statement.params)
        return {"table": schema.name, "columns": schema.column_names, "rows": result.rows}

    async def run_batch(
        self,
        project_id: str,
        user_id: str,
        operations: Any,
        *,
        natural_language_input: Optional[str] = None,
    ) -> ServiceResponse:
        BatchExecutor.validate(operations)
        pool = await self.pool_for(project_id)
        report = await self.executor.run(
            pool,
            operations,
            project_id=project_id,
            user_id=user_id,
            natural_language_input=natural_language_input,
        )
        return ServiceResponse(status=report.http_status, body=report.to_response())

    async def list_history(
        self, project_id: str, user_id: str, *, limit: int = 50, offset: int = 0
    ) -> Dict[str, Any]:
        page = await self.history.list(project_id, user_id, limit=limit, offset=offset)
        return {**page, "records": [record.to_dict() for record in page["records"]]}

    async def _handle_insert(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = InsertRequest.model_validate(payload)
        body = await self.insert_row(project_id, user_id, request.table, request.values)
        return ServiceResponse(status=200, body=body)

    async def _handle_update(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = UpdateRequest.model_validate(payload)
        body = await self.update_row(
            project_id,
            user_id,
            request.table,
            column=request.column,
            pk_value=request.pk_value,
            new_value=request.new_value,
            pk_column=request.pk_column,
            old_value=request.old_value if "old_value" in request.model_fields_set else UNSET,
        )
        return ServiceResponse(status=200, body=body)

    async def _handle_delete(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = DeleteRequest.model_validate(payload)
        body = await self.delete_rows(
            project_id, user_id, request.table, request.pk_columns, request.pk_values
        )
        return ServiceResponse(status=200, body=body)

    async def _handle_batch(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = BatchRequest.model_validate(payload)
        return await self.run_batch(
            project_id,
            user_id,
            request.operations,
            natural_language_input=request.natural_language_input,
        )

    async def _handle_rows(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = RowsRequest.model_validate(payload)
        body = await self.read_rows(project_id, request.table, limit=request.limit)
        return ServiceResponse(status=200, body=body)

    async def _handle_schema(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        tables = await self.describe(project_id, force_refresh=bool(payload.get("refresh")))
        return ServiceResponse(status=200, body={"tables": tables})

    async def _handle_history(self, project_id: str, user_id: str, payload: Dict[str, Any]) -> ServiceResponse:
        request = HistoryRequest.model_validate(payload)
        body = await self.list_history(
            project_id, user_id, limit=request.limit, offset=request.offset
        )
        return ServiceResponse(status=200, body=body)

    async def dispatch(
        self,
        action: str,
        project_id: str,
        user_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> ServiceResponse:
        """Run one request and map any failure to an error response.

        Args:
            action: One of insert, update, delete, batch, rows, schema, history
            project_id: Tenant key
            user_id: Verified requesting user
            payload: Request body

        Returns:
            ServiceResponse for any TenantSQLException or malformed payload;
            unexpected exceptions propagate to the caller
        """
        handler = self._handlers.get(action)
        if handler is None:
            return ServiceResponse(
                status=404,
                body={"error": f"Unknown action: {action}", "code": ErrorCodes.INVALID_QUERY},
            )

        with self.logger.context(
            correlation_id=str(uuid.uuid4()),
            tenant_key=str(project_id),
            action=action,
        ):
            try:
                return await handler(str(project_id), str(user_id), payload or {})
            except RequestModelError as e:
                self.logger.info("Malformed request", errors=e.error_count())
                return ServiceResponse(
                    status=400,
                    body={"error": "Invalid request body", "code": ErrorCodes.INVALID_QUERY,
                          "details": e.errors(include_url=False, include_context=False)},
                )
            except TenantSQLException as e:
                log = self.logger.warning if e.status < 500 else self.logger.error
                log("Request failed", error_code=e.code, error=e.message, status=e.status)
                return error_response(e)
