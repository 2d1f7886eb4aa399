from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from time import perf_counter
from typing import Awaitable, Callable, TypeVar

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import Response

from report_engine import registry
from report_engine.datasources.postgres import PostgresRetrievalAdapter
from report_engine.errors import ConfigurationError, ExportError, ReportEngineError
from report_engine.exporters.pdf_renderer import check_chart_image
from report_engine.exporters.service import render_export
from report_engine.schemas import (
    EntityList,
    ExportFormat,
    ReportConfiguration,
    ReportExecuteRequest,
    ReportExportRequest,
    ReportFieldOut,
    ReportResults,
)
from report_engine.security import ServiceAuthContext, require_service_auth
from report_engine.services.executor import ReportExecutor
from report_engine.services.presets import get_preset, list_presets
from report_engine.settings import get_settings

router = APIRouter()
logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")


def get_executor() -> ReportExecutor:
    settings = get_settings()
    adapter = PostgresRetrievalAdapter(
        settings.records_db_url,
        timeout_seconds=settings.query_timeout_seconds,
        scope_column=settings.scope_column,
    )
    return ReportExecutor(adapter, settings=settings)


def _sanitize_error_message(message: str) -> str:
    lowered = message.lower()
    if "password" in lowered or "postgresql://" in lowered:
        return "Internal processing error"
    return message


def _audit_log(
    *,
    context: ServiceAuthContext,
    entity: str,
    operation: str,
    status: str,
    duration_ms: int,
    error_code: str | None = None,
    correlation_id: str | None = None,
) -> None:
    logger.info(
        "report.audit.execution | %s",
        {
            "organization_id": context.organization_id,
            "actor_user_id": context.actor_user_id,
            "entity": entity,
            "operation": operation,
            "status": status,
            "duration_ms": duration_ms,
            "error_code": error_code,
            "correlation_id": correlation_id,
        },
    )


async def _audited(
    *,
    context: ServiceAuthContext,
    entity: str,
    operation: str,
    correlation_id: str | None,
    call: Callable[[], Awaitable[T]],
) -> T:
    started = perf_counter()

    def _elapsed() -> int:
        return max(0, int((perf_counter() - started) * 1000))

    try:
        result = await asyncio.wait_for(call(), timeout=get_settings().execution_timeout_seconds)
    except TimeoutError as exc:
        _audit_log(
            context=context,
            entity=entity,
            operation=operation,
            status="timeout",
            duration_ms=_elapsed(),
            error_code="execution_timeout",
            correlation_id=correlation_id,
        )
        raise ReportEngineError(status_code=504, code="execution_timeout", message="Report execution timed out") from exc
    except ReportEngineError as exc:
        _audit_log(
            context=context,
            entity=entity,
            operation=operation,
            status="error",
            duration_ms=_elapsed(),
            error_code=exc.code,
            correlation_id=correlation_id,
        )
        raise
    except Exception as exc:
        _audit_log(
            context=context,
            entity=entity,
            operation=operation,
            status="error",
            duration_ms=_elapsed(),
            error_code="internal_error",
            correlation_id=correlation_id,
        )
        raise ReportEngineError(
            status_code=500,
            code="internal_error",
            message=_sanitize_error_message(str(exc)),
        ) from exc

    _audit_log(
        context=context,
        entity=entity,
        operation=operation,
        status="ok",
        duration_ms=_elapsed(),
        correlation_id=correlation_id,
    )
    return result


def _decode_chart_image(value: str | None) -> bytes | None:
    if not value:
        return None
    _, _, encoded = value.rpartition(",")
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ExportError(code="invalid_chart_image", message="Chart image must be base64 encoded") from exc
    return check_chart_image(data)


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "report-engine"}


@router.get("/entities", response_model=EntityList)
async def entities(_auth: ServiceAuthContext = Depends(require_service_auth)) -> EntityList:
    return EntityList(items=registry.list_entities())


@router.get("/entities/{entity}/fields", response_model=list[ReportFieldOut])
async def entity_fields(
    entity: str,
    _auth: ServiceAuthContext = Depends(require_service_auth),
) -> list[ReportFieldOut]:
    if not registry.has_entity(entity):
        raise ConfigurationError(code="unknown_entity", message=f"Unknown report entity '{entity}'")
    return [field.to_schema() for field in registry.get_entity_fields(entity)]


@router.get("/presets", response_model=list[ReportConfiguration])
async def presets(_auth: ServiceAuthContext = Depends(require_service_auth)) -> list[ReportConfiguration]:
    return list_presets()


@router.get("/presets/{preset_id}", response_model=ReportConfiguration)
async def preset_detail(
    preset_id: str,
    _auth: ServiceAuthContext = Depends(require_service_auth),
) -> ReportConfiguration:
    preset = get_preset(preset_id)
    if preset is None:
        raise ReportEngineError(status_code=404, code="preset_not_found", message=f"Unknown preset '{preset_id}'")
    return preset


@router.post("/reports/execute", response_model=ReportResults)
async def reports_execute(
    payload: ReportExecuteRequest,
    x_correlation_id: str | None = Header(default=None),
    auth: ServiceAuthContext = Depends(require_service_auth),
    executor: ReportExecutor = Depends(get_executor),
) -> ReportResults:
    return await _audited(
        context=auth,
        entity=payload.configuration.entity,
        operation="reports.execute",
        correlation_id=x_correlation_id,
        call=lambda: executor.execute(payload.configuration, scope_id=auth.organization_id),
    )


@router.post("/reports/export")
async def reports_export(
    payload: ReportExportRequest,
    export_format: ExportFormat = Query(default="csv", alias="format"),
    x_correlation_id: str | None = Header(default=None),
    auth: ServiceAuthContext = Depends(require_service_auth),
    executor: ReportExecutor = Depends(get_executor),
) -> Response:
    chart_image = _decode_chart_image(payload.chart_image)
    results = await _audited(
        context=auth,
        entity=payload.configuration.entity,
        operation=f"reports.export.{export_format}",
        correlation_id=x_correlation_id,
        call=lambda: executor.execute(payload.configuration, scope_id=auth.organization_id),
    )
    artifact = render_export(results, export_format, chart_image=chart_image)
    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
