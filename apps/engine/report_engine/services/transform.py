"""Grouping and aggregation over raw retrieval rows.

Rows are bucketed by a tuple of group-by values (date fields optionally
truncated to a period label) and every requested aggregation keeps its own
accumulator per bucket. Output rows are assembled only once all input rows
have been consumed, in order of first appearance of each bucket.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal
from datetime import tzinfo
from typing import Any, Hashable, Iterable, Mapping, Sequence

from report_engine.errors import ExecutionError
from report_engine.schemas import ReportAggregation, ReportConfiguration, ReportGrouping
from report_engine.services.dates import bucket_date

logger = logging.getLogger(__name__)


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return None if math.isnan(value) else value
    if isinstance(value, Decimal):
        return float(value)
    return None


class _Accumulator:
    def add(self, value: Any) -> None:
        raise NotImplementedError

    def result(self) -> Any:
        raise NotImplementedError


class _Count(_Accumulator):
    def __init__(self) -> None:
        self._count = 0

    def add(self, value: Any) -> None:
        self._count += 1

    def result(self) -> int:
        return self._count


class _Sum(_Accumulator):
    def __init__(self) -> None:
        self._total: int | float = 0

    def add(self, value: Any) -> None:
        self._total += _as_number(value) or 0

    def result(self) -> int | float:
        return self._total


class _Average(_Accumulator):
    def __init__(self) -> None:
        self._total: int | float = 0
        self._count = 0

    def add(self, value: Any) -> None:
        self._total += _as_number(value) or 0
        self._count += 1

    def result(self) -> int | float:
        if self._count == 0:
            return 0
        return self._total / self._count


class _Min(_Accumulator):
    def __init__(self) -> None:
        self._current: int | float = math.inf

    def add(self, value: Any) -> None:
        number = _as_number(value)
        if number is not None and number < self._current:
            self._current = number

    def result(self) -> int | float | None:
        return None if self._current == math.inf else self._current


class _Max(_Accumulator):
    def __init__(self) -> None:
        self._current: int | float = -math.inf

    def add(self, value: Any) -> None:
        number = _as_number(value)
        if number is not None and number > self._current:
            self._current = number

    def result(self) -> int | float | None:
        return None if self._current == -math.inf else self._current


class _CountDistinct(_Accumulator):
    def __init__(self) -> None:
        self._seen: set[Hashable] = set()

    def add(self, value: Any) -> None:
        if value is not None:
            self._seen.add(_freeze(value))

    def result(self) -> int:
        return len(self._seen)


_ACCUMULATORS: dict[str, type[_Accumulator]] = {
    "count": _Count,
    "sum": _Sum,
    "avg": _Average,
    "min": _Min,
    "max": _Max,
    "count_distinct": _CountDistinct,
}


def _freeze(value: Any) -> Hashable:
    if isinstance(value, dict):
        return ("__dict__", tuple(sorted((str(k), _freeze(v)) for k, v in value.items())))
    if isinstance(value, (list, tuple)):
        return ("__seq__", tuple(_freeze(item) for item in value))
    if isinstance(value, set):
        return ("__set__", tuple(sorted(repr(_freeze(item)) for item in value)))
    # bool is an int subclass; keep True apart from 1 inside a key
    return (type(value).__name__, value) if isinstance(value, bool) else value


@dataclass(slots=True)
class _Group:
    values: tuple[Any, ...]
    accumulators: list[_Accumulator] = field(default_factory=list)


def _group_value(row: Mapping[str, Any], grouping: ReportGrouping, tz: tzinfo | None) -> Any:
    value = row.get(grouping.field)
    if grouping.date_grouping is None or value is None:
        return value
    label = bucket_date(value, grouping.date_grouping, tz=tz)
    if label is None:
        logger.warning(
            "report.transform.unparseable_date | %s",
            {"field": grouping.field, "date_grouping": grouping.date_grouping},
        )
        return value
    return label


def _output_columns(group_by: Sequence[ReportGrouping], aggregations: Sequence[ReportAggregation]) -> list[str]:
    columns = [grouping.field for grouping in group_by] + [aggregation.output_key for aggregation in aggregations]
    if len(set(columns)) != len(columns):
        raise ExecutionError(code="column_conflict", message="Grouped output columns are not unique")
    return columns


def group_rows(
    rows: Iterable[Mapping[str, Any]],
    *,
    group_by: Sequence[ReportGrouping],
    aggregations: Sequence[ReportAggregation],
    tz: tzinfo | None = None,
) -> list[dict[str, Any]]:
    columns = _output_columns(group_by, aggregations)
    factories = [_ACCUMULATORS[aggregation.function] for aggregation in aggregations]
    groups: dict[tuple[Hashable, ...], _Group] = {}

    for row in rows:
        values = tuple(_group_value(row, grouping, tz) for grouping in group_by)
        key = tuple(_freeze(value) for value in values)
        group = groups.get(key)
        if group is None:
            group = _Group(values=values, accumulators=[factory() for factory in factories])
            groups[key] = group
        for aggregation, accumulator in zip(aggregations, group.accumulators):
            accumulator.add(None if aggregation.field == "*" else row.get(aggregation.field))

    output: list[dict[str, Any]] = []
    for group in groups.values():
        cells = list(group.values) + [accumulator.result() for accumulator in group.accumulators]
        output.append(dict(zip(columns, cells)))
    return output


def transform_rows(
    rows: Sequence[Mapping[str, Any]],
    configuration: ReportConfiguration,
    *,
    tz: tzinfo | None = None,
) -> list[dict[str, Any]]:
    if not configuration.group_by:
        return [dict(row) for row in rows]
    return group_rows(rows, group_by=configuration.group_by, aggregations=configuration.aggregations, tz=tz)
