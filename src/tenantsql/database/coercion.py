"""Type coercion for values bound into tenant statements.

Every caller-supplied value passes through :class:`TypeCoercionEngine`
before it reaches the driver. Declared column types are classified once
into a closed :class:`ColumnTypeClass`; each class has exactly one
coercion function.

Example:
    >>> engine = TypeCoercionEngine()
    >>> engine.coerce_value("1", "boolean", nullable=False)
    True
    >>> engine.coerce_value("5:12:1990", "date")
    '1990-12-05'
"""

import json
import math
import re
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from ..core.exceptions import CoercionError, InvalidDateFormat
from ..core.utils import ValidationUtils
from .models import ColumnMetadata


class ColumnTypeClass(str, Enum):
    """Closed set of type classes a declared column type maps onto."""
    INTEGER = "integer"
    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    JSON = "json"
    TIMESTAMPTZ = "timestamptz"
    TIMESTAMP = "timestamp"
    DATE = "date"
    TIME = "time"
    UUID = "uuid"
    TEXT = "text"

    @property
    def is_temporal(self) -> bool:
        return self in _TEMPORAL_CLASSES

    @classmethod
    def classify(cls, data_type: Optional[str]) -> "ColumnTypeClass":
        """Map an information_schema ``data_type`` onto a type class.

        Example:
            >>> ColumnTypeClass.classify("timestamp with time zone")
            <ColumnTypeClass.TIMESTAMPTZ: 'timestamptz'>
        """
        t = (data_type or "").strip().lower()

        if "timestamp" in t:
            if "with time zone" in t or t == "timestamptz":
                return cls.TIMESTAMPTZ
            return cls.TIMESTAMP
        if t == "date":
            return cls.DATE
        if t.startswith("time"):
            return cls.TIME
        if t in _INTEGER_TYPES or t.endswith("serial"):
            return cls.INTEGER
        if t in _NUMERIC_TYPES or t.startswith(("numeric", "decimal")):
            return cls.NUMERIC
        if t in ("boolean", "bool"):
            return cls.BOOLEAN
        if t in ("json", "jsonb"):
            return cls.JSON
        if t == "uuid":
            return cls.UUID
        return cls.TEXT


_TEMPORAL_CLASSES = frozenset({
    ColumnTypeClass.TIMESTAMPTZ,
    ColumnTypeClass.TIMESTAMP,
    ColumnTypeClass.DATE,
    ColumnTypeClass.TIME,
})
_INTEGER_TYPES = frozenset({"integer", "smallint", "bigint", "int", "int2", "int4", "int8"})
_NUMERIC_TYPES = frozenset({"numeric", "decimal", "real", "double precision", "float4", "float8"})
_EXACT_NUMERIC_TYPES = ("numeric", "decimal")
_BIGINT_TYPES = frozenset({"bigint", "int8", "bigserial"})
_SMALLINT_TYPES = frozenset({"smallint", "int2", "smallserial"})

_COLON_DATE_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{1,2}):(\d{4})\s*$")

# Tried in order after ISO-8601; the first format that parses wins.
DATE_FORMATS: Tuple[str, ...] = (
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%m-%d-%Y",
    "%b %d %Y",
    "%d %b %Y",
    "%Y/%m/%d %H:%M",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M:%S",
)

_TRUE_VALUES = (True, "true", "1", 1)
_FALSE_VALUES = (False, "false", "0", 0)


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_iso(text: str) -> Optional[datetime]:
    candidate = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(candidate)
    except ValueError:
        pass
    try:
        return datetime.combine(date.fromisoformat(candidate), time.min)
    except ValueError:
        return None


def normalize_date(value: Any, *, column: Optional[str] = None) -> Optional[datetime]:
    """Turn a loosely formatted date/time value into an aware datetime.

    An explicit offset in the input is kept; naive input is taken as UTC.
    Blank input yields None. The ambiguous ``A:B:YYYY`` form is resolved to
    day/month by whichever number exceeds 12, first-is-day otherwise.

    Raises:
        InvalidDateFormat: If no accepted format matches
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return _as_aware(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        raise InvalidDateFormat(value, column=column)

    text = value.strip()
    if not text:
        return None

    match = _COLON_DATE_PATTERN.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if first > 12:
            day, month = first, second
        elif second > 12:
            day, month = second, first
        else:
            day, month = first, second
        text = f"{day:02d}/{month:02d}/{year:04d}"

    parsed = _parse_iso(text)
    if parsed is not None:
        return _as_aware(parsed)

    for fmt in DATE_FORMATS:
        try:
            return _as_aware(datetime.strptime(text, fmt))
        except ValueError:
            continue

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        parsed = None
    if parsed is None:
        raise InvalidDateFormat(value, column=column)
    return _as_aware(parsed)


def format_temporal(value: datetime, type_class: ColumnTypeClass) -> str:
    """Render a normalized datetime in the literal form its column expects."""
    if type_class is ColumnTypeClass.TIMESTAMPTZ:
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    if type_class is ColumnTypeClass.TIMESTAMP:
        return value.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    if type_class is ColumnTypeClass.DATE:
        return value.strftime("%Y-%m-%d")
    return value.strftime("%H:%M:%S")


def cast_suffix(data_type: Optional[str]) -> str:
    """Explicit SQL cast for a placeholder bound to a column of this type.

    Example:
        >>> cast_suffix("bigint")
        '::bigint'
    """
    type_class = ColumnTypeClass.classify(data_type)
    t = (data_type or "").strip().lower()

    if type_class is ColumnTypeClass.INTEGER:
        return "::bigint" if t in ("bigint", "int8", "bigserial") else (
            "::smallint" if t in ("smallint", "int2") else "::integer"
        )
    if type_class is ColumnTypeClass.JSON:
        return "::jsonb" if t == "jsonb" else "::json"
    return "::" + type_class.value


class TypeCoercionEngine:
    """Converts caller-supplied values into values legal for a column type.

    One method per :class:`ColumnTypeClass`; :meth:`coerce_value` selects
    it through a single dispatch table.
    """

    def __init__(self) -> None:
        self._dispatch: Dict[ColumnTypeClass, Callable[..., Any]] = {
            ColumnTypeClass.INTEGER: self._coerce_integer,
            ColumnTypeClass.NUMERIC: self._coerce_numeric,
            ColumnTypeClass.BOOLEAN: self._coerce_boolean,
            ColumnTypeClass.JSON: self._coerce_json,
            ColumnTypeClass.TIMESTAMPTZ: self._coerce_temporal,
            ColumnTypeClass.TIMESTAMP: self._coerce_temporal,
            ColumnTypeClass.DATE: self._coerce_temporal,
            ColumnTypeClass.TIME: self._coerce_temporal,
            ColumnTypeClass.UUID: self._coerce_uuid,
            ColumnTypeClass.TEXT: self._coerce_text,
        }

    def coerce(self, value: Any, column: ColumnMetadata) -> Any:
        """Coerce a value for an introspected column."""
        return self.coerce_value(
            value, column.data_type, nullable=column.nullable, column=column.name
        )

    def coerce_value(
        self,
        value: Any,
        data_type: Optional[str],
        *,
        nullable: bool = True,
        column: Optional[str] = None,
    ) -> Any:
        """Coerce a value for a declared column type.

        Args:
            value: Caller-supplied value
            data_type: Declared column type as reported by the catalog
            nullable: Whether the column accepts NULL
            column: Column name, used in error reports

        Returns:
            A value the driver can bind for that type, or None

        Raises:
            CoercionError: If the value is not legal for the type
        """
        type_class = ColumnTypeClass.classify(data_type)

        if value is None or (isinstance(value, str) and value == "" and nullable):
            return self._null(nullable, column)

        coerced = self._dispatch[type_class](value, type_class, data_type, column)
        if coerced is None:
            return self._null(nullable, column)
        return coerced

    @staticmethod
    def _null(nullable: bool, column: Optional[str]) -> None:
        if not nullable:
            raise CoercionError("Value is required", column=column, value=None)
        return None

    def _coerce_integer(self, value: Any, type_class: ColumnTypeClass,
                        data_type: Optional[str], column: Optional[str]) -> int:
        if isinstance(value, bool):
            raise CoercionError("Expected an integer", column=column, value=value)
        if isinstance(value, int):
            number = value
        else:
            try:
                parsed = Decimal(value.strip() if isinstance(value, str) else str(value))
            except (InvalidOperation, ValueError):
                raise CoercionError("Expected an integer", column=column, value=value) from None
            if not parsed.is_finite() or parsed != parsed.to_integral_value():
                raise CoercionError("Expected an integer", column=column, value=value)
            number = int(parsed)

        t = (data_type or "").strip().lower()
        bits = 64 if t in _BIGINT_TYPES else 16 if t in _SMALLINT_TYPES else 32
        if not -(2 ** (bits - 1)) <= number < 2 ** (bits - 1):
            raise CoercionError(f"Value out of range for {t}", column=column, value=value)
        return number

    def _coerce_numeric(self, value: Any, type_class: ColumnTypeClass,
                        data_type: Optional[str], column: Optional[str]) -> Any:
        if isinstance(value, bool):
            raise CoercionError("Expected a number", column=column, value=value)
        try:
            number = float(value.strip() if isinstance(value, str) else value)
        except (TypeError, ValueError):
            raise CoercionError("Expected a number", column=column, value=value) from None
        if math.isnan(number) or math.isinf(number):
            raise CoercionError("Expected a finite number", column=column, value=value)

        if (data_type or "").lower().startswith(_EXACT_NUMERIC_TYPES):
            return Decimal(str(value).strip()) if isinstance(value, str) else Decimal(str(number))
        return number

    def _coerce_boolean(self, value: Any, type_class: ColumnTypeClass,
                        data_type: Optional[str], column: Optional[str]) -> bool:
        # bool is an int subclass; compare on type so 1.0 and True/1 stay distinct
        candidate = value.strip() if isinstance(value, str) else value
        if any(candidate == v and type(candidate) is type(v) for v in _TRUE_VALUES):
            return True
        if any(candidate == v and type(candidate) is type(v) for v in _FALSE_VALUES):
            return False
        raise CoercionError("Expected a boolean", column=column, value=value)

    def _coerce_json(self, value: Any, type_class: ColumnTypeClass,
                     data_type: Optional[str], column: Optional[str]) -> str:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                raise CoercionError("Invalid JSON", column=column, value=value) from None
        try:
            return json.dumps(value)
        except (TypeError, ValueError):
            raise CoercionError("Value is not JSON serializable", column=column, value=value) from None

    def _coerce_temporal(self, value: Any, type_class: ColumnTypeClass,
                         data_type: Optional[str], column: Optional[str]) -> Optional[str]:
        if type_class is ColumnTypeClass.TIME:
            if isinstance(value, time):
                return value.strftime("%H:%M:%S")
            if isinstance(value, str):
                try:
                    return time.fromisoformat(value.strip()).strftime("%H:%M:%S")
                except ValueError:
                    pass

        normalized = normalize_date(value, column=column)
        if normalized is None:
            return None
        return format_temporal(normalized, type_class)

    def _coerce_uuid(self, value: Any, type_class: ColumnTypeClass,
                     data_type: Optional[str], column: Optional[str]) -> str:
        text = str(value).strip()
        if not ValidationUtils.validate_uuid(text):
            raise CoercionError("Invalid UUID", column=column, value=value)
        return text

    def _coerce_text(self, value: Any, type_class: ColumnTypeClass,
                     data_type: Optional[str], column: Optional[str]) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (dict, list)):
            return json.dumps(value)
        return str(value)
