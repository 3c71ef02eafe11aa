"""Dynamic statement builder for tenant tables.

Builds parameterized INSERT, UPDATE, DELETE and SELECT statements for
tables whose shape is only known from introspection. Identifiers in the
generated text always come from :class:`TableSchema` metadata and pass
through :meth:`SQLUtils.escape_identifier`; values are bound as
parameters after coercion.

Example:
    >>> builder = DynamicQueryBuilder()
    >>> stmt = builder.build_insert(users, {"email": "a@b.c", "bogus": 1})
    >>> stmt.sql
    'INSERT INTO "users" ("email") VALUES ($1) RETURNING *'
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..core.exceptions import (
    ColumnNotFound,
    ErrorCodes,
    MissingRequiredColumns,
    PrimaryKeyNotFound,
    ValidationError,
)
from ..core.utils import SQLUtils
from ..logging import get_logger
from .coercion import ColumnTypeClass, TypeCoercionEngine, cast_suffix
from .models import ColumnMetadata, Statement, TableSchema

quote = SQLUtils.escape_identifier


class _Unset:
    """Marker for an omitted optional argument where None is meaningful."""

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _placeholder(position: int, column: ColumnMetadata) -> str:
    if ColumnTypeClass.classify(column.data_type).is_temporal:
        return f"${position}{cast_suffix(column.data_type)}"
    return f"${position}"


class DynamicQueryBuilder:
    """Builds one parameterized statement per request.

    All methods are pure: they raise a ValidationError subclass for a bad
    request and never touch the database.
    """

    def __init__(self, coercion: Optional[TypeCoercionEngine] = None) -> None:
        self.coercion = coercion or TypeCoercionEngine()
        self.logger = get_logger("builder")

    def _column(self, schema: TableSchema, name: str) -> ColumnMetadata:
        column = schema.get_column(name)
        if column is None:
            raise ColumnNotFound(schema.name, str(name))
        return column

    def build_insert(self, schema: TableSchema, values: Mapping[str, Any]) -> Statement:
        """Build ``INSERT ... RETURNING *`` for the known subset of ``values``.

        Keys that are not columns of the table are dropped. Non-nullable
        columns without a default must be present, not None and not blank.

        Raises:
            ValidationError: If no provided key is a column
            MissingRequiredColumns: If required columns are absent
            CoercionError: If a value does not fit its column
        """
        provided = [schema.get_column(key) for key in values if schema.get_column(key) is not None]
        if not provided:
            raise ValidationError(
                "No valid columns provided",
                code=ErrorCodes.NO_VALID_COLUMNS,
                context={"table": schema.name},
            )

        supplied = {column.name for column in provided if not _is_blank(values[column.name])}
        missing = [c.name for c in schema.required_columns if c.name not in supplied]
        if missing:
            raise MissingRequiredColumns(schema.name, missing)

        dropped = [key for key in values if schema.get_column(key) is None]
        if dropped:
            self.logger.debug("Dropping unknown insert keys", table=schema.name, dropped=dropped)

        params = [self.coercion.coerce(values[column.name], column) for column in provided]
        placeholders = [_placeholder(i, column) for i, column in enumerate(provided, start=1)]
        names = [column.name for column in provided]

        sql = (
            f"INSERT INTO {quote(schema.name)} ({', '.join(quote(n) for n in names)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        return Statement(sql=sql, params=params, table=schema.name, columns=names)

    def resolve_primary_key(self, schema: TableSchema, hint: Optional[str] = None) -> ColumnMetadata:
        """Return the key column named by ``hint`` or the first PRIMARY KEY column.

        Raises:
            PrimaryKeyNotFound: If no key column can be determined
        """
        if hint:
            column = schema.get_column(hint)
            if column is None:
                raise PrimaryKeyNotFound(schema.name, context={"table": schema.name, "hint": hint})
            return column

        keys = schema.primary_key_columns
        if not keys:
            raise PrimaryKeyNotFound(schema.name)
        return keys[0]

    def build_update(
        self,
        schema: TableSchema,
        *,
        column: str,
        pk_value: Any,
        new_value: Any,
        pk_column: Optional[str] = None,
        old_value: Any = UNSET,
    ) -> Statement:
        """Build a single-column update addressed by primary key.

        When ``old_value`` is given (None included) the row only matches if
        its stored value is still ``old_value``; zero returned rows then
        signals an optimistic-concurrency conflict.

        Raises:
            PrimaryKeyNotFound: If the key column cannot be determined
            ColumnNotFound: If ``column`` is not in the table
            CoercionError: If a value does not fit its column
        """
        key = self.resolve_primary_key(schema, pk_column)
        target = self._column(schema, column)

        params: List[Any] = [
            self.coercion.coerce(new_value, target),
            self.coercion.coerce_value(pk_value, key.data_type, nullable=False, column=key.name),
        ]
        sql = (
            f"UPDATE {quote(schema.name)} SET {quote(target.name)} = {_placeholder(1, target)} "
            f"WHERE {quote(key.name)} = {_placeholder(2, key)}"
        )

        if old_value is not UNSET:
            params.append(
                self.coercion.coerce_value(
                    old_value, target.data_type, nullable=True, column=target.name
                )
            )
            sql += f" AND ({quote(target.name)} IS NOT DISTINCT FROM {_placeholder(3, target)})"

        sql += " RETURNING *"
        return Statement(sql=sql, params=params, table=schema.name, columns=[target.name, key.name])

    def build_delete(
        self,
        schema: TableSchema,
        pk_columns: Sequence[str],
        pk_values: Sequence[Mapping[str, Any]],
    ) -> Statement:
        """Build one ``DELETE ... WHERE (keys) IN (VALUES ...)`` for many rows.

        Raises:
            ValidationError: If no key columns or rows are given, or a row
                lacks a key value
            ColumnNotFound: If a key column is not in the table
            CoercionError: If a key value does not fit its column
        """
        if not pk_columns:
            raise ValidationError(
                "At least one primary key column is required",
                code=ErrorCodes.INVALID_QUERY,
                context={"table": schema.name},
            )
        if not pk_values:
            raise ValidationError(
                "At least one row to delete is required",
                code=ErrorCodes.INVALID_QUERY,
                context={"table": schema.name},
            )

        keys = [self._column(schema, name) for name in pk_columns]
        casts: Dict[str, str] = {key.name: cast_suffix(key.data_type) for key in keys}

        params: List[Any] = []
        tuples: List[str] = []
        for row_index, row in enumerate(pk_values):
            placeholders = []
            for key in keys:
                if key.name not in row or row[key.name] is None:
                    raise ValidationError(
                        f"Missing pk value for column '{key.name}'",
                        code=ErrorCodes.MISSING_KEY_VALUE,
                        context={"table": schema.name, "column": key.name, "row": row_index},
                    )
                params.append(self.coercion.coerce(row[key.name], key))
                placeholders.append(f"${len(params)}{casts[key.name]}")
            tuples.append(f"({', '.join(placeholders)})")

        key_list = ", ".join(quote(key.name) for key in keys)
        sql = (
            f"DELETE FROM {quote(schema.name)} "
            f"WHERE ({key_list}) IN (VALUES {', '.join(tuples)})"
        )
        return Statement(sql=sql, params=params, table=schema.name, columns=[k.name for k in keys])

    def build_select(self, schema: TableSchema, *, limit: Optional[int] = None) -> Statement:
        """Build ``SELECT *`` over a table with an optional positive LIMIT."""
        sql = f"SELECT * FROM {quote(schema.name)}"
        params: List[Any] = []

        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
                raise ValidationError(
                    "Limit must be a positive integer",
                    code=ErrorCodes.INVALID_QUERY,
                    context={"limit": limit},
                )
            params.append(limit)
            sql += " LIMIT $1"

        return Statement(sql=sql, params=params, table=schema.name, columns=schema.column_names)
