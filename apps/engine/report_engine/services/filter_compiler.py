from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Literal, Sequence

from report_engine.errors import ExecutionError
from report_engine.schemas import DateRange, ReportFilter
from report_engine.services.dates import is_date_only, next_day

ConstraintKind = Literal[
    "eq",
    "neq",
    "ilike",
    "not_ilike",
    "gt",
    "lt",
    "gte",
    "lte",
    "in",
    "not_in",
    "is_null",
    "is_not_null",
]


@dataclass(frozen=True, slots=True)
class FilterConstraint:
    """A single retrieval predicate understood by every retrieval adapter.

    ``ilike``/``not_ilike`` values are LIKE patterns: ``%`` and ``_`` are
    wildcards and a backslash escapes them.
    """

    field: str
    kind: ConstraintKind
    value: Any = None


def escape_like(value: Any) -> str:
    text = str(value)
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    return [value]


def compile_filter(item: ReportFilter) -> list[FilterConstraint]:
    field = item.field
    op = item.operator
    value = item.value

    if op == "equals":
        return [FilterConstraint(field, "eq", value)]
    if op == "not_equals":
        return [FilterConstraint(field, "neq", value)]
    if op == "contains":
        return [FilterConstraint(field, "ilike", f"%{escape_like(value)}%")]
    if op == "not_contains":
        return [FilterConstraint(field, "not_ilike", f"%{escape_like(value)}%")]
    if op == "starts_with":
        return [FilterConstraint(field, "ilike", f"{escape_like(value)}%")]
    if op == "ends_with":
        return [FilterConstraint(field, "ilike", f"%{escape_like(value)}")]
    if op == "greater_than":
        return [FilterConstraint(field, "gt", value)]
    if op == "less_than":
        return [FilterConstraint(field, "lt", value)]
    if op == "greater_than_or_equal":
        return [FilterConstraint(field, "gte", value)]
    if op == "less_than_or_equal":
        return [FilterConstraint(field, "lte", value)]
    if op == "between":
        low, high = value
        return [FilterConstraint(field, "gte", low), FilterConstraint(field, "lte", high)]
    if op == "in":
        return [FilterConstraint(field, "in", _as_list(value))]
    if op == "not_in":
        return [FilterConstraint(field, "not_in", _as_list(value))]
    if op == "is_null":
        return [FilterConstraint(field, "is_null")]
    if op == "is_not_null":
        return [FilterConstraint(field, "is_not_null")]
    raise ExecutionError(code="unsupported_operator", message=f"Unsupported filter operator '{op}'")


def compile_filters(filters: Sequence[ReportFilter]) -> list[FilterConstraint]:
    constraints: list[FilterConstraint] = []
    for item in filters:
        constraints.extend(compile_filter(item))
    return constraints


def resolve_preset(preset: str, *, today: date) -> tuple[date, date] | None:
    if preset == "today":
        return today, today
    if preset == "yesterday":
        day = today - timedelta(days=1)
        return day, day
    if preset == "last_7_days":
        return today - timedelta(days=6), today
    if preset == "last_30_days":
        return today - timedelta(days=29), today
    if preset == "this_month":
        return today.replace(day=1), today
    if preset == "last_month":
        last_prev = today.replace(day=1) - timedelta(days=1)
        return last_prev.replace(day=1), last_prev
    if preset == "this_year":
        return today.replace(month=1, day=1), today
    if preset == "last_year":
        return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)
    if preset == "all_time":
        return None
    raise ExecutionError(code="unsupported_operator", message=f"Unsupported date range preset '{preset}'")


def compile_date_range(date_range: DateRange | None, *, today: date) -> list[FilterConstraint]:
    if date_range is None:
        return []
    field = date_range.field

    if date_range.preset is not None:
        bounds = resolve_preset(date_range.preset, today=today)
        if bounds is None:
            return []
        first, last = bounds
        return [
            FilterConstraint(field, "gte", first.isoformat()),
            FilterConstraint(field, "lt", (last + timedelta(days=1)).isoformat()),
        ]

    constraints: list[FilterConstraint] = []
    if date_range.start:
        constraints.append(FilterConstraint(field, "gte", date_range.start))
    if date_range.end:
        if is_date_only(date_range.end):
            constraints.append(FilterConstraint(field, "lt", next_day(date_range.end)))
        else:
            constraints.append(FilterConstraint(field, "lte", date_range.end))
    return constraints
