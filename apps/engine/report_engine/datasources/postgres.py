from __future__ import annotations

import asyncio
import logging
from typing import Any, Sequence

from psycopg import AsyncConnection

from report_engine.errors import RetrievalError
from report_engine.schemas import ReportSorting
from report_engine.services.filter_compiler import FilterConstraint

logger = logging.getLogger(__name__)

TOTAL_COUNT_COLUMN = "__total_count"

_COMPARISONS: dict[str, str] = {
    "eq": "=",
    "neq": "<>",
    "gt": ">",
    "lt": "<",
    "gte": ">=",
    "lte": "<=",
}


def _quote_ident(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _qualified_name(name: str) -> str:
    parts = [part for part in name.split(".") if part]
    return ".".join(_quote_ident(part) for part in parts)


def redact_url(database_url: str) -> str:
    if "://" not in database_url or "@" not in database_url:
        return database_url
    scheme, remainder = database_url.split("://", 1)
    credentials, location = remainder.rsplit("@", 1)
    if not credentials:
        return database_url
    if ":" in credentials:
        username, _password = credentials.split(":", 1)
        return f"{scheme}://{username}:***@{location}"
    return f"{scheme}://***@{location}"


def _constraint_sql(constraint: FilterConstraint, params: list[Any]) -> str:
    column = _quote_ident(constraint.field)
    kind = constraint.kind

    if kind in _COMPARISONS:
        params.append(constraint.value)
        return f"{column} {_COMPARISONS[kind]} %s"
    if kind == "ilike":
        params.append(constraint.value)
        return f"{column}::text ILIKE %s"
    if kind == "not_ilike":
        params.append(constraint.value)
        return f"NOT ({column}::text ILIKE %s)"
    if kind == "in":
        params.append(list(constraint.value))
        return f"{column} = ANY(%s)"
    if kind == "not_in":
        params.append(list(constraint.value))
        return f"{column} <> ALL(%s)"
    if kind == "is_null":
        return f"{column} IS NULL"
    if kind == "is_not_null":
        return f"{column} IS NOT NULL"
    raise RetrievalError(code="retrieval_failed", status_code=500, message=f"Unsupported constraint '{kind}'")


def build_fetch_sql(
    *,
    entity: str,
    columns: Sequence[str],
    constraints: Sequence[FilterConstraint],
    sorting: Sequence[ReportSorting],
    limit: int | None,
    scope_column: str,
    scope_id: str,
) -> tuple[str, list[Any]]:
    select_parts = [_quote_ident(column) for column in columns] or ["*"]
    select_parts.append(f"COUNT(*) OVER () AS {_quote_ident(TOTAL_COUNT_COLUMN)}")

    params: list[Any] = [scope_id]
    where_parts = [f"{_quote_ident(scope_column)} = %s"]
    for constraint in constraints:
        where_parts.append(_constraint_sql(constraint, params))

    query_parts = [
        f"SELECT {', '.join(select_parts)}",
        f"FROM {_qualified_name(entity)}",
        "WHERE " + " AND ".join(where_parts),
    ]
    if sorting:
        order_parts = [
            f"{_quote_ident(item.field)} {'ASC' if item.direction == 'asc' else 'DESC'}" for item in sorting
        ]
        query_parts.append("ORDER BY " + ", ".join(order_parts))
    if limit is not None:
        query_parts.append(f"LIMIT {max(1, int(limit))}")

    return " ".join(query_parts), params


class PostgresRetrievalAdapter:
    def __init__(self, database_url: str, *, timeout_seconds: int, scope_column: str = "organization_id") -> None:
        self._database_url = database_url
        self._timeout_seconds = timeout_seconds
        self._scope_column = scope_column

    async def fetch(
        self,
        *,
        entity: str,
        columns: Sequence[str],
        constraints: Sequence[FilterConstraint],
        sorting: Sequence[ReportSorting],
        limit: int | None,
        scope_id: str,
    ) -> tuple[list[dict[str, Any]], int]:
        sql, params = build_fetch_sql(
            entity=entity,
            columns=columns,
            constraints=constraints,
            sorting=sorting,
            limit=limit,
            scope_column=self._scope_column,
            scope_id=scope_id,
        )
        _columns, rows = await self.execute(sql=sql, params=params)
        total = 0
        payload: list[dict[str, Any]] = []
        for row in rows:
            total = int(row.pop(TOTAL_COUNT_COLUMN, 0) or 0)
            payload.append(row)
        logger.info(
            "report.retrieval.fetch | %s",
            {
                "entity": entity,
                "constraint_count": len(constraints),
                "row_count": len(payload),
                "total_rows": total,
                "datasource": redact_url(self._database_url),
            },
        )
        return payload, total

    async def execute(self, *, sql: str, params: list[Any]) -> tuple[list[str], list[dict[str, Any]]]:
        conn: AsyncConnection[Any] | None = None
        try:
            conn = await AsyncConnection.connect(self._database_url)
            result = await asyncio.wait_for(conn.execute(sql, params), timeout=self._timeout_seconds)
            rows = await result.fetchall()
            columns = [desc[0] for desc in result.description or []]
            dict_rows: list[dict[str, Any]] = []
            for row in rows:
                dict_rows.append({column: row[idx] for idx, column in enumerate(columns)})
            return columns, dict_rows
        except asyncio.TimeoutError as exc:
            raise RetrievalError(
                status_code=504,
                code="retrieval_timeout",
                message="Record store query timed out",
            ) from exc
        except RetrievalError:
            raise
        except Exception as exc:
            raise RetrievalError(message="Record store query failed") from exc
        finally:
            if conn:
                await conn.close()
