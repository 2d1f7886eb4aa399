from __future__ import annotations

import io
import xml.sax.saxutils as saxutils
from typing import Any

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from report_engine.errors import ExportError
from report_engine.exporters.common import format_header, report_title, result_columns, table_rows
from report_engine.schemas import ReportResults

_PAGE_SIZE = landscape(A4)
_MARGIN = 1.5 * cm


def _styles() -> Any:
    styles = getSampleStyleSheet()
    styles.add(
        ParagraphStyle(
            name="ReportTitle",
            parent=styles["Heading1"],
            fontSize=18,
            spaceAfter=0.3 * cm,
            alignment=TA_CENTER,
            textColor=colors.HexColor("#2c3e50"),
        )
    )
    styles.add(
        ParagraphStyle(
            name="ReportSubTitle",
            parent=styles["Normal"],
            fontSize=10,
            spaceAfter=0.6 * cm,
            alignment=TA_CENTER,
            textColor=colors.HexColor("#7f8c8d"),
        )
    )
    return styles


def check_chart_image(data: bytes) -> bytes:
    try:
        width, height = ImageReader(io.BytesIO(data)).getSize()
    except Exception as exc:
        raise ExportError(code="invalid_chart_image", message="Chart image is not a readable image") from exc
    if width <= 0 or height <= 0:
        raise ExportError(code="invalid_chart_image", message="Chart image is empty")
    return data


def _numbered_canvas(footer_text: str) -> type[canvas.Canvas]:
    """Canvas class that defers page output until the page count is known."""

    class _NumberedCanvas(canvas.Canvas):
        def __init__(self, *args: Any, **kwargs: Any) -> None:
            super().__init__(*args, **kwargs)
            self._saved_page_states: list[dict[str, Any]] = []

        def showPage(self) -> None:  # noqa: N802
            self._saved_page_states.append(dict(self.__dict__))
            self._startPage()

        def save(self) -> None:
            page_count = len(self._saved_page_states)
            for state in self._saved_page_states:
                self.__dict__.update(state)
                self._draw_footer(page_count)
                super().showPage()
            super().save()

        def _draw_footer(self, page_count: int) -> None:
            width, _height = self._pagesize
            self.saveState()
            self.setFont("Helvetica", 8)
            self.setStrokeColor(colors.HexColor("#e2e8f0"))
            self.line(_MARGIN, 1.5 * cm, width - _MARGIN, 1.5 * cm)
            self.drawString(_MARGIN, 1 * cm, footer_text)
            self.drawRightString(width - _MARGIN, 1 * cm, f"Page {self._pageNumber} of {page_count}")
            self.restoreState()

    return _NumberedCanvas


def _data_table(results: ReportResults) -> Table:
    columns = result_columns(results)
    table_data = [[format_header(column) for column in columns], *table_rows(results, columns)]
    available_width = _PAGE_SIZE[0] - 2 * _MARGIN
    table = Table(table_data, hAlign="LEFT", colWidths=[available_width / len(columns)] * len(columns), repeatRows=1)
    commands: list[tuple[Any, ...]] = [
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#366092")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "LEFT"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#e2e8f0")),
    ]
    for index in range(2, len(table_data), 2):
        commands.append(("BACKGROUND", (0, index), (-1, index), colors.HexColor("#f5f5f5")))
    table.setStyle(TableStyle(commands))
    return table


def render_pdf(results: ReportResults, chart_image: bytes | None = None) -> bytes:
    """Render results as a landscape A4 document.

    ``chart_image`` is a PNG/JPEG snapshot of the report chart; it is left out
    for table-only reports.
    """
    table = _data_table(results)
    configuration = results.configuration
    title = report_title(results)
    styles = _styles()

    story: list[Any] = [Paragraph(saxutils.escape(title), styles["ReportTitle"])]
    if configuration.description:
        story.append(Paragraph(saxutils.escape(configuration.description), styles["Normal"]))
        story.append(Spacer(1, 0.3 * cm))
    generated = results.generated_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
    story.append(
        Paragraph(f"Generated: {generated} | Total rows: {results.total_rows:,}", styles["ReportSubTitle"])
    )
    if chart_image and configuration.chart_type != "table":
        image = Image(io.BytesIO(check_chart_image(chart_image)), width=22 * cm, height=10 * cm, kind="proportional")
        image.hAlign = "CENTER"
        story.append(image)
        story.append(Spacer(1, 0.5 * cm))
    story.append(table)

    buffer = io.BytesIO()
    document = SimpleDocTemplate(
        buffer,
        pagesize=_PAGE_SIZE,
        rightMargin=_MARGIN,
        leftMargin=_MARGIN,
        topMargin=_MARGIN,
        bottomMargin=2 * cm,
        title=title,
    )
    document.build(story, canvasmaker=_numbered_canvas(title))
    return buffer.getvalue()
