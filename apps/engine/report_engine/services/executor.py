from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from report_engine import registry
from report_engine.datasources.base import RetrievalAdapter
from report_engine.errors import (
    ExecutionCancelledError,
    ExecutionError,
    ReportEngineError,
    RetrievalError,
)
from report_engine.schemas import ReportConfiguration, ReportResults
from report_engine.services.filter_compiler import FilterConstraint, compile_date_range, compile_filters
from report_engine.services.transform import transform_rows
from report_engine.services.validator import parse_configuration, validate_configuration
from report_engine.settings import Settings, get_settings

logger = logging.getLogger("uvicorn.error")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def projection_columns(configuration: ReportConfiguration) -> list[str]:
    """Columns the adapter must return so both passthrough and grouping see every value they read."""
    selected = list(configuration.fields) or [field.name for field in registry.get_entity_fields(configuration.entity)]
    selected.extend(grouping.field for grouping in configuration.group_by)
    selected.extend(item.field for item in configuration.aggregations if item.field != "*")
    return list(dict.fromkeys(selected))


def effective_limit(limit: int | None, rows_max: int) -> int:
    if limit is None:
        return rows_max
    return min(limit, rows_max)


class ReportExecutor:
    """Runs one report configuration end to end: validate, compile, fetch, transform.

    Holds no per-execution state, so one instance can serve any number of
    concurrent calls as long as the injected adapter supports concurrent reads.
    """

    def __init__(
        self,
        adapter: RetrievalAdapter,
        *,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._adapter = adapter
        self._settings = settings or get_settings()
        self._clock = clock
        self._tz = ZoneInfo(self._settings.report_timezone)

    @staticmethod
    def _check_cancelled(cancel_event: asyncio.Event | None, stage: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ExecutionCancelledError(stage=stage)

    def compile_constraints(self, configuration: ReportConfiguration) -> list[FilterConstraint]:
        today = self._clock().astimezone(self._tz).date()
        constraints = compile_filters(configuration.filters)
        constraints.extend(compile_date_range(configuration.date_range, today=today))
        return constraints

    async def execute(
        self,
        configuration: Mapping[str, Any] | ReportConfiguration,
        *,
        scope_id: str,
        cancel_event: asyncio.Event | None = None,
    ) -> ReportResults:
        started = perf_counter()
        entity = configuration.entity if isinstance(configuration, ReportConfiguration) else configuration.get("entity")
        try:
            self._check_cancelled(cancel_event, "validate")
            config = parse_configuration(configuration)
            validate_configuration(config)

            self._check_cancelled(cancel_event, "compile")
            constraints = self.compile_constraints(config)

            self._check_cancelled(cancel_event, "fetch")
            rows, total_rows = await self._fetch(config, constraints, scope_id=scope_id)

            self._check_cancelled(cancel_event, "transform")
            data = self._transform(rows, config)
        except ReportEngineError as exc:
            logger.info(
                "report.execute.failed | %s",
                {
                    "entity": entity,
                    "scope_id": scope_id,
                    "error_code": exc.code,
                    "error_id": exc.error_id,
                    "duration_ms": max(0, int((perf_counter() - started) * 1000)),
                },
            )
            raise

        execution_time = max(0, int((perf_counter() - started) * 1000))
        logger.info(
            "report.execute.completed | %s",
            {
                "entity": config.entity,
                "scope_id": scope_id,
                "constraint_count": len(constraints),
                "fetched_rows": len(rows),
                "total_rows": total_rows,
                "output_rows": len(data),
                "duration_ms": execution_time,
            },
        )
        return ReportResults(
            data=data,
            total_rows=total_rows,
            generated_at=self._clock(),
            configuration=config,
            execution_time=execution_time,
        )

    async def _fetch(
        self,
        configuration: ReportConfiguration,
        constraints: list[FilterConstraint],
        *,
        scope_id: str,
    ) -> tuple[list[dict[str, Any]], int]:
        try:
            rows, total_rows = await self._adapter.fetch(
                entity=configuration.entity,
                columns=projection_columns(configuration),
                constraints=constraints,
                sorting=configuration.sorting,
                limit=effective_limit(configuration.limit, self._settings.report_rows_max),
                scope_id=scope_id,
            )
        except ReportEngineError:
            raise
        except Exception as exc:
            raise RetrievalError(message=f"Retrieval adapter failed: {exc.__class__.__name__}") from exc
        return list(rows), int(total_rows)

    def _transform(self, rows: list[dict[str, Any]], configuration: ReportConfiguration) -> list[dict[str, Any]]:
        try:
            return transform_rows(rows, configuration, tz=self._tz)
        except ReportEngineError:
            raise
        except Exception as exc:
            raise ExecutionError(message=f"Report transform failed: {exc.__class__.__name__}") from exc
