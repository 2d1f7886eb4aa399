from __future__ import annotations

import csv
import io

from report_engine.exporters.common import format_header, result_columns, sanitize_formula_cell, table_rows
from report_engine.schemas import ReportResults


def render_csv(results: ReportResults) -> str:
    columns = result_columns(results)
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([format_header(column) for column in columns])
    for cells in table_rows(results, columns):
        writer.writerow([sanitize_formula_cell(cell) for cell in cells])
    return buffer.getvalue()
