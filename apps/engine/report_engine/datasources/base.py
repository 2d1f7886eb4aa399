from __future__ import annotations

from typing import Any, Protocol, Sequence

from report_engine.schemas import ReportSorting
from report_engine.services.filter_compiler import FilterConstraint


class RetrievalAdapter(Protocol):
    async def fetch(
        self,
        *,
        entity: str,
        columns: Sequence[str],
        constraints: Sequence[FilterConstraint],
        sorting: Sequence[ReportSorting],
        limit: int | None,
        scope_id: str,
    ) -> tuple[list[dict[str, Any]], int]: ...
