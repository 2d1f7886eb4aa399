from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping

from pydantic import ValidationError

from report_engine import registry
from report_engine.errors import ConfigurationError
from report_engine.registry import ReportField
from report_engine.schemas import (
    MEMBERSHIP_OPERATORS,
    NULL_OPERATORS,
    ORDERED_OPERATORS,
    TEXT_OPERATORS,
    ReportConfiguration,
    ReportFilter,
)
from report_engine.services.dates import parse_iso_datetime

_NUMERIC_AGGREGATIONS = frozenset({"sum", "avg", "min", "max"})


def parse_configuration(payload: Mapping[str, Any] | ReportConfiguration) -> ReportConfiguration:
    if isinstance(payload, ReportConfiguration):
        return payload
    try:
        return ReportConfiguration.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        detail = first.get("msg", "invalid value")
        raise ConfigurationError(
            code="invalid_configuration",
            message=f"Invalid report configuration at '{location}': {detail}" if location else detail,
        ) from exc


def _require_field(entity: str, name: str) -> ReportField:
    field = registry.get_field(entity, name)
    if field is None:
        raise ConfigurationError(code="unknown_field", message=f"Unknown field '{name}' for entity '{entity}'")
    return field


def _validate_enum_values(field: ReportField, values: list[Any]) -> None:
    if field.enum_values is None:
        return
    for value in values:
        if value not in field.enum_values:
            raise ConfigurationError(
                code="invalid_filter_value",
                message=f"Value '{value}' is not in the domain of field '{field.name}'",
            )


def _validate_typed_values(field: ReportField, values: list[Any]) -> None:
    if field.value_type == "number":
        for value in values:
            if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                raise ConfigurationError(
                    code="invalid_filter_value",
                    message=f"Field '{field.name}' expects a number, got {value!r}",
                )
    elif field.value_type == "date":
        for value in values:
            if parse_iso_datetime(value) is None:
                raise ConfigurationError(
                    code="invalid_filter_value",
                    message=f"Field '{field.name}' expects an ISO-8601 date, got {value!r}",
                )


def _validate_filter(entity: str, item: ReportFilter) -> None:
    field = _require_field(entity, item.field)
    if not field.filterable:
        raise ConfigurationError(code="filter_not_allowed", message=f"Field '{field.name}' is not filterable")
    if item.logical_operator == "OR":
        raise ConfigurationError(
            code="unsupported_logical_operator",
            message="Only AND combination of filters is supported",
        )

    op = item.operator
    value = item.value
    if op in NULL_OPERATORS:
        return
    if op in ORDERED_OPERATORS and not field.is_ordered:
        raise ConfigurationError(
            code="operator_not_allowed",
            message=f"Operator '{op}' requires a number or date field, '{field.name}' is {field.value_type}",
        )

    if op in MEMBERSHIP_OPERATORS:
        if not isinstance(value, list):
            raise ConfigurationError(code="invalid_filter_value", message=f"Operator '{op}' requires a list value")
        _validate_enum_values(field, value)
        _validate_typed_values(field, value)
        return
    if op == "between":
        if not isinstance(value, list) or len(value) != 2 or any(part is None for part in value):
            raise ConfigurationError(code="invalid_filter_value", message="between filter requires [start, end]")
        _validate_typed_values(field, value)
        return
    if value is None or isinstance(value, (list, dict)):
        raise ConfigurationError(
            code="invalid_filter_value",
            message=f"Operator '{op}' on field '{field.name}' requires a scalar value",
        )
    if op in ("equals", "not_equals"):
        _validate_enum_values(field, [value])
    if op not in TEXT_OPERATORS:
        _validate_typed_values(field, [value])


def validate_configuration(configuration: ReportConfiguration) -> None:
    """Check every reference in the configuration against the field registry.

    Runs once per execution, before anything is fetched. Raises
    :class:`ConfigurationError` on the first problem found.
    """
    entity = configuration.entity
    if not registry.has_entity(entity):
        raise ConfigurationError(code="unknown_entity", message=f"Unknown report entity '{entity}'")

    for name in configuration.fields:
        _require_field(entity, name)

    for item in configuration.filters:
        _validate_filter(entity, item)

    output_columns: list[str] = []
    for grouping in configuration.group_by:
        field = _require_field(entity, grouping.field)
        if not field.groupable:
            raise ConfigurationError(code="group_not_allowed", message=f"Field '{field.name}' is not groupable")
        if grouping.date_grouping is not None and field.value_type != "date":
            raise ConfigurationError(
                code="invalid_date_grouping",
                message=f"Date grouping requires a date field, '{field.name}' is {field.value_type}",
            )
        output_columns.append(grouping.field)

    if configuration.group_by and not configuration.aggregations:
        raise ConfigurationError(
            code="missing_aggregations",
            message="Grouped reports require at least one aggregation",
        )

    for aggregation in configuration.aggregations:
        if aggregation.field == "*":
            if aggregation.function != "count":
                raise ConfigurationError(
                    code="aggregation_not_allowed",
                    message=f"Aggregation '{aggregation.function}' requires a field",
                )
        else:
            field = _require_field(entity, aggregation.field)
            if aggregation.function in _NUMERIC_AGGREGATIONS and not field.aggregatable:
                raise ConfigurationError(
                    code="aggregation_not_allowed",
                    message=f"Field '{field.name}' does not support '{aggregation.function}'",
                )
        output_columns.append(aggregation.output_key)

    seen: set[str] = set()
    for column in output_columns:
        if column in seen:
            raise ConfigurationError(code="duplicate_column", message=f"Output column '{column}' is defined twice")
        seen.add(column)

    for sort in configuration.sorting:
        field = _require_field(entity, sort.field)
        if not field.sortable:
            raise ConfigurationError(code="sort_not_allowed", message=f"Field '{field.name}' is not sortable")

    date_range = configuration.date_range
    if date_range is not None:
        field = _require_field(entity, date_range.field)
        if not field.filterable or field.value_type != "date":
            raise ConfigurationError(
                code="filter_not_allowed",
                message=f"Date range requires a filterable date field, got '{field.name}'",
            )
        for bound in (date_range.start, date_range.end):
            if bound and parse_iso_datetime(bound) is None:
                raise ConfigurationError(code="invalid_filter_value", message=f"Invalid date range bound '{bound}'")
