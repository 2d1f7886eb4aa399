from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any

_YEAR_LABEL = re.compile(r"^(\d{4})$")
_MONTH_LABEL = re.compile(r"^(\d{4})-(\d{2})$")
_QUARTER_LABEL = re.compile(r"^(\d{4})-Q([1-4])$")
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")


def _parse_label(value: str) -> datetime | None:
    match = _YEAR_LABEL.match(value)
    if match:
        return datetime(int(match.group(1)), 1, 1)
    match = _MONTH_LABEL.match(value)
    if match:
        return datetime(int(match.group(1)), int(match.group(2)), 1)
    match = _QUARTER_LABEL.match(value)
    if match:
        return datetime(int(match.group(1)), (int(match.group(2)) - 1) * 3 + 1, 1)
    return None


def parse_datetime(value: Any) -> datetime | None:
    """Best-effort conversion of a stored value or bucket label into a datetime.

    Accepts ``datetime``/``date`` objects, ISO-8601 strings (a trailing ``Z`` is
    read as UTC) and the labels produced by :func:`bucket_date` (``YYYY``,
    ``YYYY-MM``, ``YYYY-Qn``), so bucketing a label again yields the same label.
    Returns ``None`` when the value cannot be read as a point in time.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    try:
        labelled = _parse_label(text)
    except ValueError:
        return None
    if labelled is not None:
        return labelled
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_iso_datetime(value: Any) -> datetime | None:
    """Like :func:`parse_datetime` but only for ISO-8601 dates and timestamps, never bucket labels."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not _ISO_DATE_PREFIX.match(value.strip()):
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None


def is_date_only(value: Any) -> bool:
    if isinstance(value, date) and not isinstance(value, datetime):
        return True
    return isinstance(value, str) and bool(_DATE_ONLY.match(value.strip()))


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def localize(value: datetime, tz: tzinfo | None) -> datetime:
    if tz is None or value.tzinfo is None:
        return value
    return value.astimezone(tz)


def bucket_date(value: Any, granularity: str, *, tz: tzinfo | None = None) -> str | None:
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    moment = localize(parsed, tz)
    day = moment.date()

    if granularity == "day":
        return day.isoformat()
    if granularity == "week":
        # Monday-based weeks: a Sunday belongs to the week that started six days earlier.
        return (day - timedelta(days=day.weekday())).isoformat()
    if granularity == "month":
        return f"{day.year:04d}-{day.month:02d}"
    if granularity == "quarter":
        return f"{day.year:04d}-Q{(day.month - 1) // 3 + 1}"
    if granularity == "year":
        return f"{day.year:04d}"
    raise ValueError(f"Unsupported date grouping '{granularity}'")


def next_day(value: Any) -> Any:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value + timedelta(days=1)
    if isinstance(value, str) and is_date_only(value):
        parsed = datetime.strptime(value.strip(), "%Y-%m-%d").date()
        return (parsed + timedelta(days=1)).isoformat()
    return value
