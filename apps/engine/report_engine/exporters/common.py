from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Sequence

from report_engine.errors import ExportError
from report_engine.schemas import ReportResults

FORMULA_PREFIXES = ("=", "+", "-", "@")


def format_header(key: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in key.split("_") if part)


def _format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return f"{value:,}"
    text = f"{float(value):,.3f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float, Decimal)):
        return _format_number(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def sanitize_formula_cell(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.lstrip()
        if stripped.startswith(FORMULA_PREFIXES):
            if stripped[0] in {"-", "+"} and len(stripped) > 1 and stripped[1].isdigit():
                return value
            return "'" + value
    return value


def result_columns(results: ReportResults) -> list[str]:
    """Column keys in first-seen order across all rows."""
    if not results.data:
        raise ExportError(code="no_data", message="No data to export")
    columns: dict[str, None] = {}
    for row in results.data:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)


def report_title(results: ReportResults) -> str:
    return results.configuration.name or f"{format_header(results.configuration.entity)} Report"


def table_rows(results: ReportResults, columns: Sequence[str]) -> list[list[str]]:
    return [[format_cell(row.get(column)) for column in columns] for row in results.data]
