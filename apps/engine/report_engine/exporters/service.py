from __future__ import annotations

from dataclasses import dataclass

from report_engine.errors import ExportError
from report_engine.exporters.csv_renderer import render_csv
from report_engine.exporters.pdf_renderer import render_pdf
from report_engine.exporters.xlsx_renderer import render_xlsx
from report_engine.schemas import ReportResults

_MEDIA_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pdf": "application/pdf",
}


@dataclass(slots=True)
class ExportArtifact:
    content: bytes
    media_type: str
    filename: str


def _file_stem(results: ReportResults) -> str:
    name = results.configuration.name or results.configuration.entity
    stem = "".join(char if char.isalnum() else "_" for char in name.lower()).strip("_")
    return f"{stem or 'report'}_{results.generated_at.strftime('%Y%m%d')}"


def render_export(results: ReportResults, export_format: str, *, chart_image: bytes | None = None) -> ExportArtifact:
    if export_format == "csv":
        content = render_csv(results).encode("utf-8")
    elif export_format == "xlsx":
        content = render_xlsx(results)
    elif export_format == "pdf":
        content = render_pdf(results, chart_image=chart_image)
    else:
        raise ExportError(code="unsupported_format", message=f"Unsupported export format '{export_format}'")
    return ExportArtifact(
        content=content,
        media_type=_MEDIA_TYPES[export_format],
        filename=f"{_file_stem(results)}.{export_format}",
    )
