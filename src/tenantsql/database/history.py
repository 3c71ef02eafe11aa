"""Query history: an append-only audit trail of attempted statements.

:class:`QueryHistoryLogger` never lets a failed history write reach the
caller; the failure goes to the operational log instead.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from ..config.models import HistoryConfig
from ..core.exceptions import ErrorCodes, HistoryWriteFailure
from ..core.utils import SQLUtils
from ..logging import get_logger
from .models import QueryHistoryRecord
from .pool import TenantPool


@runtime_checkable
class HistorySink(Protocol):
    """Storage backend for history records."""

    async def write(self, record: QueryHistoryRecord) -> None:
        ...

    async def read(
        self, project_id: str, user_id: str, *, limit: int, offset: int
    ) -> Tuple[List[QueryHistoryRecord], int]:
        ...


class PostgresHistorySink:
    """Stores history in the controlling application's database."""

    def __init__(self, pool: TenantPool, table_name: str = "query_history") -> None:
        self.pool = pool
        self.table = SQLUtils.escape_identifier(table_name)

    async def write(self, record: QueryHistoryRecord) -> None:
        await self.pool.execute(
            f"INSERT INTO {self.table} ("
            "project_id, user_id, query_text, query_type, natural_language_input, "
            "execution_time_ms, success, error_message"
            ") VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
            [
                record.project_id,
                record.user_id,
                record.query_text,
                record.query_type,
                record.natural_language_input,
                record.execution_time_ms,
                record.success,
                record.error_message,
            ],
        )

    async def read(
        self, project_id: str, user_id: str, *, limit: int, offset: int
    ) -> Tuple[List[QueryHistoryRecord], int]:
        rows = await self.pool.fetch(
            "SELECT id, project_id, user_id, query_text, query_type, natural_language_input, "
            "execution_time_ms, success, error_message, created_at "
            f"FROM {self.table} WHERE project_id = $1 AND user_id = $2 "
            "ORDER BY created_at DESC LIMIT $3 OFFSET $4",
            project_id, user_id, limit, offset,
        )
        total = await self.pool.fetchval(
            f"SELECT COUNT(*) FROM {self.table} WHERE project_id = $1 AND user_id = $2",
            project_id, user_id,
        )
        return [self._to_record(row) for row in rows], int(total or 0)

    @staticmethod
    def _to_record(row: Dict[str, Any]) -> QueryHistoryRecord:
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace(" ", "T"))
        return QueryHistoryRecord(
            id=row.get("id"),
            project_id=str(row["project_id"]),
            user_id=str(row["user_id"]),
            query_text=row["query_text"],
            query_type=row["query_type"],
            natural_language_input=row.get("natural_language_input"),
            execution_time_ms=row.get("execution_time_ms") or 0,
            success=bool(row["success"]),
            error_message=row.get("error_message"),
            created_at=created_at,
        )


class InMemoryHistorySink:
    """Keeps history in process memory; for development and tests."""

    def __init__(self) -> None:
        self.records: List[QueryHistoryRecord] = []

    async def write(self, record: QueryHistoryRecord) -> None:
        record.id = len(self.records) + 1
        self.records.append(record)

    async def read(
        self, project_id: str, user_id: str, *, limit: int, offset: int
    ) -> Tuple[List[QueryHistoryRecord], int]:
        matching = [
            r for r in reversed(self.records)
            if r.project_id == project_id and r.user_id == user_id
        ]
        return matching[offset:offset + limit], len(matching)


class QueryHistoryLogger:
    """Best-effort recorder of statement outcomes.

    Example:
        >>> history = QueryHistoryLogger(PostgresHistorySink(control_pool))
        >>> await history.record(QueryHistoryRecord(...))
    """

    def __init__(self, sink: HistorySink, config: Optional[HistoryConfig] = None) -> None:
        self.sink = sink
        self.config = config or HistoryConfig()
        self.logger = get_logger("history")

    async def record(self, entry: QueryHistoryRecord) -> bool:
        """Append one record.

        Returns:
            True if the record was written; False if history is disabled or
            the write failed
        """
        if not self.config.enabled:
            return False

        if entry.created_at is None:
            entry.created_at = datetime.now(timezone.utc)

        try:
            await self.sink.write(entry)
        except Exception as e:
            failure = HistoryWriteFailure(
                f"Failed to record query history: {e}",
                code=ErrorCodes.HISTORY_WRITE_FAILED,
                context={"project_id": entry.project_id, "query_type": entry.query_type},
                cause=e,
            )
            self.logger.error(
                "Failed to record query history",
                error_code=failure.code,
                project_id=entry.project_id,
                query_type=entry.query_type,
                error=str(e),
            )
            return False
        return True

    async def record_statement(
        self,
        *,
        project_id: str,
        user_id: str,
        query_text: str,
        execution_time_ms: int,
        success: bool,
        query_type: Optional[str] = None,
        natural_language_input: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Convenience wrapper building the record from plain facts."""
        return await self.record(
            QueryHistoryRecord(
                project_id=str(project_id),
                user_id=str(user_id),
                query_text=query_text,
                query_type=query_type or SQLUtils.detect_query_type(query_text),
                natural_language_input=natural_language_input,
                execution_time_ms=execution_time_ms,
                success=success,
                error_message=error_message,
            )
        )

    async def list(
        self,
        project_id: str,
        user_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Return a page of records for one project and user, newest first."""
        records, total = await self.sink.read(
            str(project_id), str(user_id), limit=limit, offset=offset
        )
        return {
            "records": records,
            "total": total,
            "limit": limit,
            "offset": offset,
        }
