from __future__ import annotations

from report_engine.schemas import ReportConfiguration
from report_engine.services.validator import validate_configuration

_PRESET_PAYLOADS: tuple[dict, ...] = (
    {
        "id": "work-orders-by-status",
        "name": "Work Orders by Status",
        "entity": "work_orders",
        "fields": ["status"],
        "groupBy": [{"field": "status"}],
        "aggregations": [{"field": "*", "function": "count", "label": "Count"}],
        "chartType": "pie",
    },
    {
        "id": "monthly-invoice-trends",
        "name": "Monthly Invoice Trends",
        "entity": "invoices",
        "fields": ["created_at", "total_cents"],
        "groupBy": [{"field": "created_at", "dateGrouping": "month"}],
        "aggregations": [
            {"field": "total_cents", "function": "sum", "label": "Total Invoiced"},
            {"field": "*", "function": "count", "label": "Invoice Count"},
        ],
        "sorting": [{"field": "created_at", "direction": "asc"}],
        "chartType": "line",
    },
    {
        "id": "top-customers-by-revenue",
        "name": "Top Customers by Revenue",
        "entity": "invoices",
        "fields": ["customer_name", "paid_amount_cents"],
        "groupBy": [{"field": "customer_name"}],
        "aggregations": [{"field": "paid_amount_cents", "function": "sum", "label": "Total Paid"}],
        "sorting": [{"field": "paid_amount_cents", "direction": "desc"}],
        "chartType": "bar",
        "limit": 10,
    },
    {
        "id": "payment-methods-distribution",
        "name": "Payment Methods Distribution",
        "entity": "payments",
        "fields": ["payment_method_type", "amount_cents"],
        "groupBy": [{"field": "payment_method_type"}],
        "aggregations": [
            {"field": "amount_cents", "function": "sum", "label": "Total Amount"},
            {"field": "*", "function": "count", "label": "Payment Count"},
        ],
        "chartType": "pie",
    },
)


def _build_presets() -> tuple[ReportConfiguration, ...]:
    presets = tuple(ReportConfiguration.model_validate(payload) for payload in _PRESET_PAYLOADS)
    for preset in presets:
        validate_configuration(preset)
    return presets


PRESET_REPORTS: tuple[ReportConfiguration, ...] = _build_presets()


def list_presets() -> list[ReportConfiguration]:
    return [preset.model_copy(deep=True) for preset in PRESET_REPORTS]


def get_preset(preset_id: str) -> ReportConfiguration | None:
    for preset in PRESET_REPORTS:
        if preset.id == preset_id:
            return preset.model_copy(deep=True)
    return None
