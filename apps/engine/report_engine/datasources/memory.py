from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping, Sequence

from report_engine.errors import RetrievalError
from report_engine.schemas import ReportSorting
from report_engine.services.dates import as_utc, parse_iso_datetime
from report_engine.services.filter_compiler import FilterConstraint


def _like_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    index = 0
    while index < len(pattern):
        char = pattern[index]
        if char == "\\" and index + 1 < len(pattern):
            parts.append(re.escape(pattern[index + 1]))
            index += 2
            continue
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
        index += 1
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _as_datetimes(left: Any, right: Any) -> tuple[datetime, datetime] | None:
    left_dt = parse_iso_datetime(left)
    right_dt = parse_iso_datetime(right)
    if left_dt is None or right_dt is None:
        return None
    return as_utc(left_dt), as_utc(right_dt)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _comparable(left: Any, right: Any) -> tuple[Any, Any]:
    """Operands for gt/lt/gte/lte; ISO strings compare as timestamps like a Postgres date column."""
    if _is_number(left) and _is_number(right):
        return float(left), float(right)
    if isinstance(left, (datetime, date, str)) and isinstance(right, (datetime, date, str)):
        pair = _as_datetimes(left, right)
        if pair is not None:
            return pair
    return left, right


def _equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return float(left) == float(right)
    # Text compares exactly; only a stored date or timestamp coerces the other side.
    if isinstance(left, (datetime, date)) or isinstance(right, (datetime, date)):
        pair = _as_datetimes(left, right)
        if pair is not None:
            return pair[0] == pair[1]
    return left == right


def _matches(row: Mapping[str, Any], constraint: FilterConstraint) -> bool:
    value = row.get(constraint.field)
    kind = constraint.kind

    if kind == "is_null":
        return value is None
    if kind == "is_not_null":
        return value is not None
    if value is None:
        return False

    if kind == "eq":
        return constraint.value is not None and _equals(value, constraint.value)
    if kind == "neq":
        return constraint.value is not None and not _equals(value, constraint.value)
    if kind == "ilike":
        return bool(_like_regex(str(constraint.value)).match(_text(value)))
    if kind == "not_ilike":
        return not _like_regex(str(constraint.value)).match(_text(value))
    if kind == "in":
        return any(_equals(value, item) for item in constraint.value)
    if kind == "not_in":
        return not any(_equals(value, item) for item in constraint.value)

    left, right = _comparable(value, constraint.value)
    try:
        if kind == "gt":
            return left > right
        if kind == "lt":
            return left < right
        if kind == "gte":
            return left >= right
        if kind == "lte":
            return left <= right
    except TypeError as exc:
        raise RetrievalError(
            status_code=400,
            message=f"Cannot compare field '{constraint.field}' with {constraint.value!r}",
        ) from exc
    raise RetrievalError(status_code=500, message=f"Unsupported constraint '{kind}'")


def _sort_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, (datetime, date)):
        return as_utc(parse_iso_datetime(value)).timestamp()
    return value


def _sort_key(name: str) -> Callable[[Mapping[str, Any]], tuple[bool, Any]]:
    def key(row: Mapping[str, Any]) -> tuple[bool, Any]:
        value = row.get(name)
        if value is None:
            return True, 0
        return False, _sort_value(value)

    return key


def _sort_rows(rows: list[dict[str, Any]], sorting: Sequence[ReportSorting]) -> list[dict[str, Any]]:
    ordered = list(rows)
    # Stable sorts from the last key to the first; nulls compare greater than any value.
    for item in reversed(sorting):
        ordered.sort(key=_sort_key(item.field), reverse=item.direction == "desc")
    return ordered


class InMemoryRetrievalAdapter:
    """Serves fixture rows with the same constraint semantics as the Postgres adapter."""

    def __init__(
        self,
        records: Mapping[str, Iterable[Mapping[str, Any]]],
        *,
        scope_column: str = "organization_id",
    ) -> None:
        self._records = {entity: [dict(row) for row in rows] for entity, rows in records.items()}
        self._scope_column = scope_column

    async def fetch(
        self,
        *,
        entity: str,
        columns: Sequence[str],
        constraints: Sequence[FilterConstraint],
        sorting: Sequence[ReportSorting],
        limit: int | None,
        scope_id: str,
    ) -> tuple[list[dict[str, Any]], int]:
        rows = [
            row
            for row in self._records.get(entity, [])
            if row.get(self._scope_column) == scope_id and all(_matches(row, item) for item in constraints)
        ]
        total = len(rows)
        rows = _sort_rows(rows, sorting)
        if limit is not None:
            rows = rows[: max(1, int(limit))]
        if columns:
            rows = [{column: row.get(column) for column in columns} for row in rows]
        else:
            rows = [dict(row) for row in rows]
        return rows, total
