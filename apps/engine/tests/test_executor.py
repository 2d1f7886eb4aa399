import asyncio
from datetime import datetime, timezone

import pytest

from report_engine.datasources.memory import InMemoryRetrievalAdapter
from report_engine.errors import (
    ConfigurationError,
    ExecutionCancelledError,
    ExecutionError,
    RetrievalError,
)
from report_engine.schemas import ReportConfiguration
from report_engine.services import executor as executor_module
from report_engine.services.executor import ReportExecutor, effective_limit, projection_columns
from report_engine.settings import Settings

ORG = "org-1"
_FIXED_NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


def _invoice(invoice_id: str, status: str, total: int, created_at: str, org: str = ORG, customer: str = "Acme") -> dict:
    return {
        "organization_id": org,
        "id": invoice_id,
        "invoice_number": f"INV-{invoice_id}",
        "customer_name": customer,
        "status": status,
        "payment_status": "paid" if status == "paid" else "unpaid",
        "total_cents": total,
        "paid_amount_cents": total if status == "paid" else 0,
        "due_date": None,
        "issue_date": created_at[:10],
        "created_at": created_at,
    }


_INVOICES = [
    _invoice("1", "paid", 100, "2024-01-05T10:00:00Z"),
    _invoice("2", "sent", 250, "2024-01-20T10:00:00Z", customer="Globex"),
    _invoice("3", "paid", 400, "2024-02-11T10:00:00Z", customer="Globex"),
    _invoice("4", "overdue", 75, "2024-03-01T10:00:00Z"),
    _invoice("5", "paid", 900, "2024-03-14T10:00:00Z", customer="Initech"),
    _invoice("6", "paid", 5000, "2024-03-14T10:00:00Z", org="org-2"),
]


def _executor(rows=None, **settings_overrides) -> ReportExecutor:
    adapter = InMemoryRetrievalAdapter({"invoices": _INVOICES if rows is None else rows})
    settings = Settings(**settings_overrides)
    return ReportExecutor(adapter, settings=settings, clock=lambda: _FIXED_NOW)


def _run(configuration, executor: ReportExecutor | None = None, **kwargs):
    return asyncio.run((executor or _executor()).execute(configuration, scope_id=ORG, **kwargs))


def test_equals_filter_returns_only_matching_rows() -> None:
    results = _run(
        {
            "entity": "invoices",
            "fields": ["id", "status"],
            "filters": [{"field": "status", "operator": "equals", "value": "paid"}],
        }
    )
    assert results.data == [{"id": "1", "status": "paid"}, {"id": "3", "status": "paid"}, {"id": "5", "status": "paid"}]
    assert results.total_rows == 3


def test_limit_with_descending_sort_keeps_unlimited_total() -> None:
    results = _run(
        {
            "entity": "invoices",
            "fields": ["id", "total_cents"],
            "sorting": [{"field": "total_cents", "direction": "desc"}],
            "limit": 2,
        }
    )
    assert results.data == [{"id": "5", "total_cents": 900}, {"id": "3", "total_cents": 400}]
    assert results.total_rows == 5


def test_grouped_execution_over_empty_snapshot() -> None:
    results = _run(
        {
            "entity": "invoices",
            "groupBy": [{"field": "status"}],
            "aggregations": [{"field": "total_cents", "function": "sum"}],
        },
        _executor(rows=[]),
    )
    assert results.data == []
    assert results.total_rows == 0


def test_grouped_execution_by_month() -> None:
    results = _run(
        {
            "entity": "invoices",
            "fields": [],
            "groupBy": [{"field": "created_at", "dateGrouping": "month"}],
            "aggregations": [
                {"field": "total_cents", "function": "sum", "label": "Total"},
                {"field": "*", "function": "count", "label": "Invoices"},
            ],
            "sorting": [{"field": "created_at", "direction": "asc"}],
        }
    )
    assert results.data == [
        {"created_at": "2024-01", "Total": 350, "Invoices": 2},
        {"created_at": "2024-02", "Total": 400, "Invoices": 1},
        {"created_at": "2024-03", "Total": 975, "Invoices": 2},
    ]
    assert results.total_rows == 5


def test_results_envelope() -> None:
    configuration = ReportConfiguration(entity="invoices", fields=["id"])
    results = _run(configuration)
    assert results.generated_at == _FIXED_NOW
    assert results.execution_time >= 0
    assert results.configuration == configuration
    dumped = results.model_dump(by_alias=True)
    assert {"data", "totalRows", "generatedAt", "configuration", "executionTime"} <= set(dumped)


def test_same_configuration_yields_identical_data() -> None:
    configuration = {
        "entity": "invoices",
        "groupBy": [{"field": "customer_name"}],
        "aggregations": [
            {"field": "total_cents", "function": "avg", "label": "Average"},
            {"field": "total_cents", "function": "max", "label": "Largest"},
        ],
    }
    executor = _executor()
    first = _run(configuration, executor)
    second = _run(configuration, executor)
    assert first.data == second.data
    assert first.data[0] == {"customer_name": "Acme", "Average": 87.5, "Largest": 100}


def test_concurrent_executions_do_not_interfere() -> None:
    executor = _executor()

    async def _both():
        return await asyncio.gather(
            executor.execute(
                {
                    "entity": "invoices",
                    "groupBy": [{"field": "status"}],
                    "aggregations": [{"field": "*", "function": "count"}],
                },
                scope_id=ORG,
            ),
            executor.execute({"entity": "invoices", "fields": ["id"]}, scope_id="org-2"),
        )

    grouped, other_org = asyncio.run(_both())
    assert sum(row["count"] for row in grouped.data) == 5
    assert other_org.data == [{"id": "6"}]


def test_date_range_preset_uses_clock() -> None:
    results = _run({"entity": "invoices", "fields": ["id"], "dateRange": {"preset": "this_month"}})
    assert [row["id"] for row in results.data] == ["4", "5"]


def test_projection_and_limit_helpers() -> None:
    configuration = ReportConfiguration(
        entity="invoices",
        fields=["customer_name"],
        group_by=[{"field": "status"}],
        aggregations=[{"field": "total_cents", "function": "sum"}, {"field": "*", "function": "count"}],
    )
    assert projection_columns(configuration) == ["customer_name", "status", "total_cents"]
    assert "invoice_number" in projection_columns(ReportConfiguration(entity="invoices"))
    assert effective_limit(None, 100) == 100
    assert effective_limit(5, 100) == 5
    assert effective_limit(500, 100) == 100


def test_row_cap_applies_when_limit_is_absent() -> None:
    results = _run({"entity": "invoices", "fields": ["id"]}, _executor(report_rows_max=2))
    assert len(results.data) == 2
    assert results.total_rows == 5


def test_configuration_errors_happen_before_retrieval() -> None:
    class _ExplodingAdapter:
        calls = 0

        async def fetch(self, **kwargs):
            _ExplodingAdapter.calls += 1
            raise AssertionError("fetch must not be reached")

    executor = ReportExecutor(_ExplodingAdapter(), settings=Settings())
    with pytest.raises(ConfigurationError):
        asyncio.run(executor.execute({"entity": "invoices", "fields": ["ghost"]}, scope_id=ORG))
    assert _ExplodingAdapter.calls == 0


def test_retrieval_errors_propagate_unchanged() -> None:
    error = RetrievalError(message="store offline")

    class _FailingAdapter:
        async def fetch(self, **kwargs):
            raise error

    executor = ReportExecutor(_FailingAdapter(), settings=Settings())
    with pytest.raises(RetrievalError) as exc_info:
        asyncio.run(executor.execute({"entity": "invoices"}, scope_id=ORG))
    assert exc_info.value is error


def test_unexpected_adapter_failures_become_retrieval_errors() -> None:
    class _BrokenAdapter:
        async def fetch(self, **kwargs):
            raise ConnectionResetError("socket closed")

    executor = ReportExecutor(_BrokenAdapter(), settings=Settings())
    with pytest.raises(RetrievalError) as exc_info:
        asyncio.run(executor.execute({"entity": "invoices"}, scope_id=ORG))
    assert exc_info.value.code == "retrieval_failed"


def test_unexpected_transform_failures_become_execution_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def _boom(*args, **kwargs):
        raise KeyError("accumulator")

    monkeypatch.setattr(executor_module, "transform_rows", _boom)
    with pytest.raises(ExecutionError) as exc_info:
        _run({"entity": "invoices"})
    assert exc_info.value.code == "transform_failed"


def test_cancelled_before_start() -> None:
    event = asyncio.Event()
    event.set()
    with pytest.raises(ExecutionCancelledError) as exc_info:
        _run({"entity": "invoices"}, cancel_event=event)
    assert exc_info.value.stage == "validate"
    assert exc_info.value.status_code == 499


def test_cancelled_during_fetch_skips_transform() -> None:
    event = asyncio.Event()

    class _CancellingAdapter:
        async def fetch(self, **kwargs):
            event.set()
            return [{"id": "1"}], 1

    executor = ReportExecutor(_CancellingAdapter(), settings=Settings())
    with pytest.raises(ExecutionCancelledError) as exc_info:
        asyncio.run(executor.execute({"entity": "invoices"}, scope_id=ORG, cancel_event=event))
    assert exc_info.value.stage == "transform"


def test_adapter_receives_compiled_request() -> None:
    captured: dict = {}

    class _RecordingAdapter:
        async def fetch(self, **kwargs):
            captured.update(kwargs)
            return [], 0

    executor = ReportExecutor(_RecordingAdapter(), settings=Settings(report_rows_max=1000), clock=lambda: _FIXED_NOW)
    asyncio.run(
        executor.execute(
            {
                "entity": "invoices",
                "fields": ["id"],
                "filters": [{"field": "status", "operator": "not_in", "value": ["cancelled"]}],
                "dateRange": {"preset": "yesterday"},
                "sorting": [{"field": "id"}],
                "limit": 20,
            },
            scope_id=ORG,
        )
    )
    assert captured["entity"] == "invoices"
    assert captured["scope_id"] == ORG
    assert captured["limit"] == 20
    assert captured["columns"] == ["id"]
    assert [(item.field, item.kind, item.value) for item in captured["constraints"]] == [
        ("status", "not_in", ["cancelled"]),
        ("created_at", "gte", "2024-03-14"),
        ("created_at", "lt", "2024-03-15"),
    ]
    assert [item.field for item in captured["sorting"]] == ["id"]


def test_mistyped_filter_value_fails_before_retrieval() -> None:
    calls: list[dict] = []

    class _SpyAdapter:
        async def fetch(self, **kwargs):
            calls.append(kwargs)
            return [], 0

    executor = ReportExecutor(_SpyAdapter(), settings=Settings())
    with pytest.raises(ConfigurationError) as exc_info:
        asyncio.run(
            executor.execute(
                {
                    "entity": "invoices",
                    "filters": [{"field": "total_cents", "operator": "greater_than", "value": "abc"}],
                },
                scope_id=ORG,
            )
        )
    assert exc_info.value.code == "invalid_filter_value"
    assert calls == []
