"""Field registry for ad-hoc reports.

Every entity a report can target is declared here together with the fields a
report author may select, filter, group, sort or aggregate. The catalogue is
built once at import time and exposed read-only.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from report_engine.schemas import ReportFieldOut, ValueType


@dataclass(frozen=True, slots=True)
class ReportField:
    entity: str
    name: str
    label: str
    value_type: ValueType
    filterable: bool = False
    groupable: bool = False
    sortable: bool = False
    aggregatable: bool = False
    enum_values: tuple[str, ...] | None = None

    @property
    def is_ordered(self) -> bool:
        return self.value_type in ("number", "date")

    def to_schema(self) -> ReportFieldOut:
        return ReportFieldOut(
            entity=self.entity,
            name=self.name,
            label=self.label,
            value_type=self.value_type,
            filterable=self.filterable,
            groupable=self.groupable,
            sortable=self.sortable,
            aggregatable=self.aggregatable,
            enum_values=list(self.enum_values) if self.enum_values is not None else None,
        )


def _fields(entity: str, *definitions: dict) -> tuple[ReportField, ...]:
    return tuple(ReportField(entity=entity, **definition) for definition in definitions)


_WORK_ORDERS = _fields(
    "work_orders",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "job_id", "label": "Job ID", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "bpc", "label": "BPC", "value_type": "string", "filterable": True, "groupable": True},
    {"name": "ban", "label": "BAN", "value_type": "string", "filterable": True, "groupable": True},
    {"name": "customer_name", "label": "Customer Name", "value_type": "string", "filterable": True, "groupable": True},
    {
        "name": "status",
        "label": "Status",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("New", "Scheduled", "In Progress", "Complete", "Cancelled"),
    },
    {"name": "type", "label": "Type", "value_type": "string", "filterable": True, "groupable": True},
    {
        "name": "scheduled_date",
        "label": "Scheduled Date",
        "value_type": "date",
        "filterable": True,
        "sortable": True,
        "groupable": True,
    },
    {"name": "created_at", "label": "Created Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
    {"name": "address", "label": "Address", "value_type": "string", "filterable": True},
)

_CUSTOMERS = _fields(
    "customers",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "name", "label": "Name", "value_type": "string", "filterable": True, "groupable": True, "sortable": True},
    {"name": "email", "label": "Email", "value_type": "string", "filterable": True},
    {"name": "phone", "label": "Phone", "value_type": "string", "filterable": True},
    {"name": "address", "label": "Address", "value_type": "string", "filterable": True},
    {"name": "created_at", "label": "Created Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
)

_PROPERTIES = _fields(
    "properties",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {
        "name": "property_name",
        "label": "Property Name",
        "value_type": "string",
        "filterable": True,
        "groupable": True,
        "sortable": True,
    },
    {"name": "address", "label": "Address", "value_type": "string", "filterable": True},
    {"name": "contact", "label": "Contact", "value_type": "string", "filterable": True},
    {"name": "created_at", "label": "Created Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
)

_INVOICES = _fields(
    "invoices",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "invoice_number", "label": "Invoice Number", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "customer_name", "label": "Customer Name", "value_type": "string", "filterable": True, "groupable": True},
    {
        "name": "status",
        "label": "Status",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("draft", "sent", "viewed", "paid", "overdue", "cancelled"),
    },
    {
        "name": "payment_status",
        "label": "Payment Status",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("unpaid", "partial", "paid"),
    },
    {
        "name": "total_cents",
        "label": "Total Amount",
        "value_type": "number",
        "filterable": True,
        "sortable": True,
        "aggregatable": True,
    },
    {
        "name": "paid_amount_cents",
        "label": "Paid Amount",
        "value_type": "number",
        "filterable": True,
        "sortable": True,
        "aggregatable": True,
    },
    {"name": "due_date", "label": "Due Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
    {"name": "issue_date", "label": "Issue Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
    {"name": "created_at", "label": "Created Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
)

_PAYMENTS = _fields(
    "payments",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {
        "name": "amount_cents",
        "label": "Amount",
        "value_type": "number",
        "filterable": True,
        "sortable": True,
        "aggregatable": True,
    },
    {
        "name": "payment_method_type",
        "label": "Payment Method",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("card", "ach", "cash", "check"),
    },
    {
        "name": "status",
        "label": "Status",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("pending", "succeeded", "failed", "refunded"),
    },
    {"name": "created_at", "label": "Payment Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
)

_FORM_SUBMISSIONS = _fields(
    "form_submissions",
    {"name": "id", "label": "ID", "value_type": "string", "filterable": True, "sortable": True},
    {"name": "form_template_name", "label": "Form Template", "value_type": "string", "filterable": True, "groupable": True},
    {
        "name": "status",
        "label": "Status",
        "value_type": "enum",
        "filterable": True,
        "groupable": True,
        "enum_values": ("draft", "submitted", "approved", "rejected"),
    },
    {"name": "created_at", "label": "Submitted Date", "value_type": "date", "filterable": True, "sortable": True, "groupable": True},
)

REPORT_FIELDS: Mapping[str, tuple[ReportField, ...]] = MappingProxyType(
    {
        "work_orders": _WORK_ORDERS,
        "customers": _CUSTOMERS,
        "properties": _PROPERTIES,
        "invoices": _INVOICES,
        "payments": _PAYMENTS,
        "form_submissions": _FORM_SUBMISSIONS,
    }
)

_FIELD_INDEX: Mapping[str, Mapping[str, ReportField]] = MappingProxyType(
    {entity: MappingProxyType({item.name: item for item in fields}) for entity, fields in REPORT_FIELDS.items()}
)


def list_entities() -> list[str]:
    return list(REPORT_FIELDS.keys())


def has_entity(entity: str) -> bool:
    return entity in REPORT_FIELDS


def get_entity_fields(entity: str) -> tuple[ReportField, ...]:
    return REPORT_FIELDS.get(entity, ())


def get_field(entity: str, name: str) -> ReportField | None:
    fields = _FIELD_INDEX.get(entity)
    if fields is None:
        return None
    return fields.get(name)
