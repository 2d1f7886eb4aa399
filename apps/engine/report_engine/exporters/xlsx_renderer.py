from __future__ import annotations

import io
from decimal import Decimal
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from report_engine.exporters.common import (
    format_cell,
    format_header,
    report_title,
    result_columns,
    sanitize_formula_cell,
)
from report_engine.schemas import ReportResults

_HEADER_FONT = Font(bold=True, color="FFFFFF")
_HEADER_FILL = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
_MAX_COLUMN_WIDTH = 50
_INTEGER_FORMAT = "#,##0"
_DECIMAL_FORMAT = "#,##0.###"


def _xlsx_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return format_cell(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    return sanitize_formula_cell(format_cell(value))


def _apply_number_formats(worksheet: Worksheet) -> None:
    for row in worksheet.iter_rows(min_row=2):
        for cell in row:
            if isinstance(cell.value, bool):
                continue
            if isinstance(cell.value, int):
                cell.number_format = _INTEGER_FORMAT
            elif isinstance(cell.value, float):
                cell.number_format = _INTEGER_FORMAT if cell.value.is_integer() else _DECIMAL_FORMAT


def _auto_adjust_columns(worksheet: Worksheet) -> None:
    for column in worksheet.columns:
        max_length = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        letter = get_column_letter(column[0].column)
        worksheet.column_dimensions[letter].width = min(max_length + 2, _MAX_COLUMN_WIDTH)


def render_xlsx(results: ReportResults) -> bytes:
    columns = result_columns(results)
    configuration = results.configuration

    workbook = Workbook()
    data_sheet = workbook.active
    data_sheet.title = "Data"
    data_sheet.append([format_header(column) for column in columns])
    for cell in data_sheet[1]:
        cell.font = _HEADER_FONT
        cell.fill = _HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
    for row in results.data:
        data_sheet.append([_xlsx_value(row.get(column)) for column in columns])
    _apply_number_formats(data_sheet)
    _auto_adjust_columns(data_sheet)

    info_sheet = workbook.create_sheet("Info")
    info_rows = [
        ("Report Name", report_title(results)),
        ("Description", configuration.description or ""),
        ("Generated At", results.generated_at.isoformat()),
        ("Total Rows", results.total_rows),
        ("Execution Time", f"{results.execution_time}ms"),
        ("Data Source", format_header(configuration.entity)),
        ("Chart Type", configuration.chart_type),
    ]
    for label, value in info_rows:
        info_sheet.append([label, sanitize_formula_cell(value)])
    for cell in info_sheet["A"]:
        cell.font = Font(bold=True)
    _auto_adjust_columns(info_sheet)

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()
