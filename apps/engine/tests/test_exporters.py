import base64
import io
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from openpyxl import load_workbook

from report_engine.errors import ExportError
from report_engine.exporters.common import format_cell, format_header, sanitize_formula_cell
from report_engine.exporters.csv_renderer import render_csv
from report_engine.exporters.pdf_renderer import check_chart_image, render_pdf
from report_engine.exporters.service import render_export
from report_engine.exporters.xlsx_renderer import render_xlsx
from report_engine.schemas import ReportConfiguration, ReportResults

# 1x1 transparent PNG
_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


def _results(data, **configuration) -> ReportResults:
    payload = {"entity": "invoices", "name": "Monthly Revenue", "chartType": "bar"}
    payload.update(configuration)
    return ReportResults(
        data=data,
        total_rows=len(data),
        generated_at=datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc),
        configuration=ReportConfiguration.model_validate(payload),
        execution_time=12,
    )


_DATA = [
    {"customer_name": "Acme", "total_cents": 1234567, "is_active": True, "notes": None},
    {"customer_name": "=1+2", "total_cents": 87.5, "is_active": False, "notes": "-5 credit"},
]


def test_format_header_title_cases_keys() -> None:
    assert format_header("total_cents") == "Total Cents"
    assert format_header("Invoice Count") == "Invoice Count"
    assert format_header("count") == "Count"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (None, ""),
        (True, "Yes"),
        (False, "No"),
        (1234567, "1,234,567"),
        (1234.5, "1,234.5"),
        (2.0, "2"),
        ("text", "text"),
    ],
)
def test_format_cell(value, expected: str) -> None:
    assert format_cell(value) == expected


def test_sanitize_formula_cell() -> None:
    assert sanitize_formula_cell("=SUM(A1)") == "'=SUM(A1)"
    assert sanitize_formula_cell("@cmd") == "'@cmd"
    assert sanitize_formula_cell("-5") == "-5"
    assert sanitize_formula_cell(5) == 5


def test_render_csv() -> None:
    lines = render_csv(_results(_DATA)).splitlines()
    assert lines[0] == "Customer Name,Total Cents,Is Active,Notes"
    assert lines[1] == 'Acme,"1,234,567",Yes,'
    assert lines[2].startswith("'=1+2,")
    assert lines[2].endswith(",87.5,No,-5 credit")


def test_render_csv_uses_union_of_row_keys() -> None:
    text = render_csv(_results([{"a": 1}, {"a": 2, "b": 3}]))
    assert text.splitlines() == ["A,B", "1,", "2,3"]


def test_render_xlsx_has_data_and_info_sheets() -> None:
    workbook = load_workbook(io.BytesIO(render_xlsx(_results(_DATA, description="Paid invoices"))))
    assert workbook.sheetnames == ["Data", "Info"]

    data = workbook["Data"]
    assert [cell.value for cell in data[1]] == ["Customer Name", "Total Cents", "Is Active", "Notes"]
    assert data["B2"].value == 1234567
    assert data["C2"].value == "Yes"
    assert data["A3"].value.startswith("'=")
    assert data.column_dimensions["A"].width == len("Customer Name") + 2
    assert data.column_dimensions["B"].width == len("Total Cents") + 2

    info = {row[0].value: row[1].value for row in workbook["Info"].iter_rows()}
    assert info["Report Name"] == "Monthly Revenue"
    assert info["Description"] == "Paid invoices"
    assert info["Total Rows"] == 2
    assert info["Execution Time"] == "12ms"
    assert info["Data Source"] == "Invoices"
    assert info["Chart Type"] == "bar"


def test_render_xlsx_caps_column_width() -> None:
    workbook = load_workbook(io.BytesIO(render_xlsx(_results([{"long": "x" * 200}]))))
    assert workbook["Data"].column_dimensions["A"].width == 50


def test_render_pdf_produces_document() -> None:
    rows = [{"id": index, "amount": index * 10.5} for index in range(120)]
    content = render_pdf(_results(rows, description="Many rows"), chart_image=_PNG)
    assert content.startswith(b"%PDF")
    assert b"/Count" in content


def test_render_pdf_skips_chart_for_tables() -> None:
    content = render_pdf(_results(_DATA, chartType="table"), chart_image=b"not an image")
    assert content.startswith(b"%PDF")


@pytest.mark.parametrize("renderer", [render_csv, render_xlsx, render_pdf])
def test_renderers_refuse_empty_results(renderer) -> None:
    with pytest.raises(ExportError) as exc_info:
        renderer(_results([]))
    assert exc_info.value.code == "no_data"


def test_render_export_dispatch() -> None:
    artifact = render_export(_results(_DATA), "csv")
    assert artifact.media_type.startswith("text/csv")
    assert artifact.filename == "monthly_revenue_20240315.csv"
    assert artifact.content.startswith(b"Customer Name")

    with pytest.raises(ExportError) as exc_info:
        render_export(_results(_DATA), "docx")
    assert exc_info.value.code == "unsupported_format"


def test_render_xlsx_keeps_numbers_numeric_with_formats() -> None:
    rows = [*_DATA, {"customer_name": "Initech", "total_cents": Decimal("42.125"), "is_active": True, "notes": None}]
    data = load_workbook(io.BytesIO(render_xlsx(_results(rows))))["Data"]
    assert data["B2"].number_format == "#,##0"
    assert data["B3"].value == 87.5
    assert data["B3"].number_format == "#,##0.###"
    assert data["B4"].value == 42.125
    assert data["B4"].number_format == "#,##0.###"
    assert data["C2"].number_format == "General"


def test_check_chart_image() -> None:
    assert check_chart_image(_PNG) == _PNG
    with pytest.raises(ExportError) as exc_info:
        check_chart_image(b"not an image")
    assert exc_info.value.code == "invalid_chart_image"
    assert exc_info.value.status_code == 400
