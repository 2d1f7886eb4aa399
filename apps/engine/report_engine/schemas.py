from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

ValueType = Literal["string", "number", "date", "boolean", "enum"]
FilterOperator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "greater_than",
    "less_than",
    "greater_than_or_equal",
    "less_than_or_equal",
    "between",
    "in",
    "not_in",
    "is_null",
    "is_not_null",
]
LogicalOperator = Literal["AND", "OR"]
AggregationFunction = Literal["count", "sum", "avg", "min", "max", "count_distinct"]
DateGrouping = Literal["day", "week", "month", "quarter", "year"]
SortDirection = Literal["asc", "desc"]
ChartType = Literal["bar", "line", "pie", "area", "scatter", "table"]
DateRangePreset = Literal[
    "today",
    "yesterday",
    "last_7_days",
    "last_30_days",
    "this_month",
    "last_month",
    "this_year",
    "last_year",
    "all_time",
]
ExportFormat = Literal["csv", "xlsx", "pdf"]

ORDERED_OPERATORS: frozenset[str] = frozenset(
    {"greater_than", "less_than", "greater_than_or_equal", "less_than_or_equal", "between"}
)
MEMBERSHIP_OPERATORS: frozenset[str] = frozenset({"in", "not_in"})
NULL_OPERATORS: frozenset[str] = frozenset({"is_null", "is_not_null"})
TEXT_OPERATORS: frozenset[str] = frozenset({"contains", "not_contains", "starts_with", "ends_with"})


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReportFilter(_CamelModel):
    id: str | None = None
    field: str
    operator: FilterOperator
    value: Any | None = None
    logical_operator: LogicalOperator | None = Field(default=None, alias="logicalOperator")


class ReportGrouping(_CamelModel):
    field: str
    date_grouping: DateGrouping | None = Field(default=None, alias="dateGrouping")


class ReportAggregation(_CamelModel):
    field: str
    function: AggregationFunction
    label: str | None = None

    @property
    def output_key(self) -> str:
        if self.label:
            return self.label
        if self.field == "*":
            return self.function
        return self.field


class ReportSorting(_CamelModel):
    field: str
    direction: SortDirection = "asc"


class DateRange(_CamelModel):
    field: str = "created_at"
    start: str | None = None
    end: str | None = None
    preset: DateRangePreset | None = None


class ReportConfiguration(_CamelModel):
    id: str | None = None
    name: str | None = None
    description: str | None = None
    entity: str
    fields: list[str] = Field(default_factory=list)
    filters: list[ReportFilter] = Field(default_factory=list)
    group_by: list[ReportGrouping] = Field(default_factory=list, alias="groupBy")
    aggregations: list[ReportAggregation] = Field(default_factory=list)
    sorting: list[ReportSorting] = Field(default_factory=list)
    chart_type: ChartType = Field(default="table", alias="chartType")
    date_range: DateRange | None = Field(default=None, alias="dateRange")
    limit: int | None = Field(default=None, ge=1)


class ReportResults(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    data: list[dict[str, Any]] = Field(default_factory=list)
    total_rows: int = Field(alias="totalRows")
    generated_at: datetime = Field(alias="generatedAt")
    configuration: ReportConfiguration
    execution_time: int = Field(alias="executionTime")


class ReportFieldOut(_CamelModel):
    entity: str
    name: str
    label: str
    value_type: ValueType = Field(alias="type")
    filterable: bool
    groupable: bool
    sortable: bool
    aggregatable: bool
    enum_values: list[str] | None = Field(default=None, alias="enumValues")


class ReportExecuteRequest(_CamelModel):
    configuration: ReportConfiguration


class EntityList(BaseModel):
    items: list[str] = Field(default_factory=list)


class ReportExportRequest(_CamelModel):
    configuration: ReportConfiguration
    chart_image: str | None = Field(default=None, alias="chartImage")
