"""Lenient date parsing shared by status reconciliation, imports and reports.

Formats are tried in this order and the first match wins:

1. ``date`` / ``datetime`` objects (time part dropped)
2. Excel serial day numbers, only as numeric cells (``45306`` or ``45306.5``) handed over by openpyxl
3. ISO ``yyyy-MM-dd`` and ISO datetimes (``2024-01-15T10:00:00Z``)
4. ``dd-MM-yyyy HH:mm``
5. ``dd-MM-yyyy``
6. ``dd.MM.yyyy`` (optionally followed by ``HH:mm``)

Anything else resolves to ``None``; the parser never raises.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Any

from smarthouse.settings import get_app_timezone

_EXCEL_EPOCH = date(1899, 12, 30)
_LEGACY_FORMATS: tuple[str, ...] = (
    "%d-%m-%Y %H:%M",
    "%d-%m-%Y",
    "%d.%m.%Y %H:%M",
    "%d.%m.%Y",
)
# Roughly 1954 to 2119; numbers outside this window are ids or amounts, not dates.
_EXCEL_SERIAL_MIN = 20000
_EXCEL_SERIAL_MAX = 80000


def _from_excel_serial(value: float) -> date | None:
    if value < _EXCEL_SERIAL_MIN or value > _EXCEL_SERIAL_MAX:
        return None
    return _EXCEL_EPOCH + timedelta(days=int(value))


def parse_lenient_date(value: Any) -> date | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_excel_serial(float(value))

    text = str(value).strip()
    if not text:
        return None

    if len(text) >= 10 and text[4] == "-" and text[7] == "-":
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None

    for fmt in _LEGACY_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_iso(value: date | None) -> str:
    return value.isoformat() if value is not None else ""


def format_display(value: date | None) -> str:
    """``dd-MM-yyyy`` rendering used in notification change lists."""
    return value.strftime("%d-%m-%Y") if value is not None else ""


def today_in_app_tz() -> date:
    return datetime.now(get_app_timezone()).date()
