"""Conversion between typed domain models and flat string rows.

Rows always carry every column of their sheet: missing values are written as
empty strings so the sheet keeps a stable shape.  Reading is tolerant: unknown
statuses fall back to ``active``, unparseable dates become ``None`` and broken
JSON cells are logged and dropped.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from smarthouse.rowstore import to_cell
from smarthouse.schemas import (
    AddressHistory,
    BokResident,
    DeductionReason,
    Employee,
    EquipmentItem,
    ImportStatus,
    NonEmployee,
    Notification,
    NotificationChange,
    ResidentBase,
    ResidentKind,
    ResidentStatus,
)
from smarthouse.services.dates import format_iso, parse_lenient_date

logger = logging.getLogger("smarthouse.serialization")

ModelT = TypeVar("ModelT", bound=BaseModel)

_TRUE_CELLS = {"true", "tak", "1", "yes"}
_FALSE_CELLS = {"false", "nie", "0", "no"}


def parse_bool_cell(value: Any, *, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    if text in _TRUE_CELLS:
        return True
    if text in _FALSE_CELLS:
        return False
    return default


def parse_number_cell(value: Any) -> float | None:
    text = str(value or "").strip().replace(" ", "").replace(",", ".")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def parse_csv_cell(value: Any) -> list[str]:
    return [item.strip() for item in str(value or "").split(",") if item.strip()]


def parse_datetime_cell(value: Any) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        day = parse_lenient_date(text)
        if day is None:
            return None
        parsed = datetime(day.year, day.month, day.day)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_json_cell(value: Any, *, column: str) -> Any:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        logger.warning("row_json_cell_invalid", extra={"column": column})
        return None


@dataclass(frozen=True, slots=True)
class Codec:
    dump: Callable[[Any], str]
    load: Callable[[str, str], Any]


def _dump_text(value: Any) -> str:
    return to_cell(value)


def _dump_date(value: Any) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return format_iso(value)
    return format_iso(parse_lenient_date(value))


def _dump_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return to_cell(value)


def _dump_json(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        value = [item.model_dump(mode="json") if isinstance(item, BaseModel) else item for item in value]
    return json.dumps(value, ensure_ascii=False)


def _load_deduction_reasons(raw: str, column: str) -> list[DeductionReason] | None:
    parsed = _parse_json_cell(raw, column=column)
    if not isinstance(parsed, list):
        return None
    reasons: list[DeductionReason] = []
    for item in parsed:
        try:
            reasons.append(DeductionReason.model_validate(item))
        except ValidationError:
            logger.warning("row_json_item_invalid", extra={"column": column})
    return reasons


def _load_changes(raw: str, column: str) -> list[NotificationChange]:
    parsed = _parse_json_cell(raw, column=column)
    if not isinstance(parsed, list):
        return []
    changes: list[NotificationChange] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        changes.append(
            NotificationChange(
                field=str(item.get("field", "")),
                old_value=str(item.get("old_value", item.get("oldValue", ""))),
                new_value=str(item.get("new_value", item.get("newValue", ""))),
            )
        )
    return changes


TEXT = Codec(dump=_dump_text, load=lambda raw, _column: raw)
OPTIONAL_TEXT = Codec(dump=_dump_text, load=lambda raw, _column: raw or None)
DATE = Codec(dump=_dump_date, load=lambda raw, _column: parse_lenient_date(raw))
DATETIME = Codec(dump=_dump_datetime, load=lambda raw, _column: parse_datetime_cell(raw))
NUMBER = Codec(dump=_dump_text, load=lambda raw, _column: parse_number_cell(raw))
INTEGER = Codec(
    dump=_dump_text,
    load=lambda raw, _column: int(parse_number_cell(raw) or 0),
)
BOOL = Codec(dump=_dump_text, load=lambda raw, _column: parse_bool_cell(raw, default=False))
STATUS = Codec(
    dump=lambda value: to_cell(value.value if isinstance(value, ResidentStatus) else value),
    load=lambda raw, _column: (
        ResidentStatus.DISMISSED if raw.strip().lower() == ResidentStatus.DISMISSED.value else ResidentStatus.ACTIVE
    ),
)
DEDUCTIONS = Codec(dump=_dump_json, load=_load_deduction_reasons)
CHANGES = Codec(dump=_dump_json, load=_load_changes)


# (model field, sheet column, codec)
ColumnSpec = tuple[str, str, Codec]

_RESIDENT_COLUMNS: tuple[ColumnSpec, ...] = (
    ("id", "id", TEXT),
    ("first_name", "firstName", TEXT),
    ("last_name", "lastName", TEXT),
    ("coordinator_id", "coordinatorId", TEXT),
    ("nationality", "nationality", TEXT),
    ("gender", "gender", TEXT),
    ("address", "address", TEXT),
    ("room_number", "roomNumber", TEXT),
    ("zaklad", "zaklad", TEXT),
    ("check_in_date", "checkInDate", DATE),
    ("check_out_date", "checkOutDate", DATE),
    ("departure_report_date", "departureReportDate", DATE),
    ("status", "status", STATUS),
    ("comments", "comments", OPTIONAL_TEXT),
)

RESIDENT_COLUMNS: dict[ResidentKind, tuple[ColumnSpec, ...]] = {
    ResidentKind.EMPLOYEE: _RESIDENT_COLUMNS
    + (
        ("contract_start_date", "contractStartDate", DATE),
        ("contract_end_date", "contractEndDate", DATE),
        ("old_address", "oldAddress", OPTIONAL_TEXT),
        ("address_change_date", "addressChangeDate", DATE),
        ("deposit_returned", "depositReturned", OPTIONAL_TEXT),
        ("deposit_return_amount", "depositReturnAmount", NUMBER),
        ("deduction_regulation", "deductionRegulation", NUMBER),
        ("deduction_no_4_months", "deductionNo4Months", NUMBER),
        ("deduction_no_30_days", "deductionNo30Days", NUMBER),
        ("deduction_reason", "deductionReason", DEDUCTIONS),
        ("deduction_entry_date", "deductionEntryDate", DATE),
    ),
    ResidentKind.NON_EMPLOYEE: _RESIDENT_COLUMNS
    + (
        ("payment_type", "paymentType", OPTIONAL_TEXT),
        ("payment_amount", "paymentAmount", NUMBER),
    ),
    ResidentKind.BOK: _RESIDENT_COLUMNS
    + (
        ("role", "role", TEXT),
        ("send_date", "sendDate", DATETIME),
        ("dismiss_date", "dismissDate", DATE),
        ("return_status", "returnStatus", TEXT),
    ),
}

RESIDENT_MODELS: dict[ResidentKind, type[ResidentBase]] = {
    ResidentKind.EMPLOYEE: Employee,
    ResidentKind.NON_EMPLOYEE: NonEmployee,
    ResidentKind.BOK: BokResident,
}

FULL_NAME_COLUMN = "fullName"

ADDRESS_HISTORY_COLUMNS: tuple[ColumnSpec, ...] = (
    ("id", "id", TEXT),
    ("employee_id", "employeeId", TEXT),
    ("employee_name", "employeeName", TEXT),
    ("coordinator_name", "coordinatorName", TEXT),
    ("department", "department", TEXT),
    ("address", "address", TEXT),
    ("check_in_date", "checkInDate", DATE),
    ("check_out_date", "checkOutDate", DATE),
)

NOTIFICATION_COLUMNS: tuple[ColumnSpec, ...] = (
    ("id", "id", TEXT),
    ("message", "message", TEXT),
    ("entity_id", "entityId", TEXT),
    ("entity_first_name", "entityFirstName", TEXT),
    ("entity_last_name", "entityLastName", TEXT),
    ("actor_name", "actorName", TEXT),
    ("recipient_id", "recipientId", TEXT),
    ("created_at", "createdAt", DATETIME),
    ("is_read", "isRead", BOOL),
    ("type", "type", TEXT),
    ("changes", "changes", CHANGES),
)

IMPORT_STATUS_COLUMNS: tuple[ColumnSpec, ...] = (
    ("job_id", "jobId", TEXT),
    ("file_name", "fileName", TEXT),
    ("status", "status", TEXT),
    ("message", "message", TEXT),
    ("processed_rows", "processedRows", INTEGER),
    ("total_rows", "totalRows", INTEGER),
    ("created_at", "createdAt", DATETIME),
    ("actor_name", "actorName", TEXT),
)

EQUIPMENT_COLUMNS: tuple[ColumnSpec, ...] = (
    ("id", "id", TEXT),
    ("inventory_number", "inventoryNumber", TEXT),
    ("name", "name", TEXT),
    ("quantity", "quantity", INTEGER),
    ("description", "description", TEXT),
    ("address_id", "addressId", TEXT),
    ("address_name", "addressName", TEXT),
)


def headers_for(columns: tuple[ColumnSpec, ...]) -> list[str]:
    return [column for _field, column, _codec in columns]


def resident_headers(kind: ResidentKind) -> list[str]:
    headers = headers_for(RESIDENT_COLUMNS[kind])
    headers.insert(1, FULL_NAME_COLUMN)
    return headers


def full_name_of(last_name: str, first_name: str) -> str:
    return f"{last_name} {first_name}".strip()


def split_full_name(full_name: str) -> tuple[str, str]:
    """``"Kowalski Jan Maria"`` -> ``("Kowalski", "Jan Maria")`` (surname first)."""
    parts = full_name.split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def dump_columns(model: BaseModel, columns: tuple[ColumnSpec, ...]) -> dict[str, str]:
    return {column: codec.dump(getattr(model, field)) for field, column, codec in columns}


def load_columns(
    model_cls: type[ModelT],
    record: Mapping[str, Any],
    columns: tuple[ColumnSpec, ...],
    *,
    key_field: str = "id",
) -> ModelT | None:
    values: dict[str, Any] = {}
    for field, column, codec in columns:
        raw = record.get(column)
        values[field] = codec.load("" if raw is None else str(raw), column)
    if not values.get(key_field):
        return None
    cleaned = {key: value for key, value in values.items() if value is not None}
    try:
        return model_cls.model_validate(cleaned)
    except ValidationError as exc:
        invalid_fields = {str(error["loc"][0]) for error in exc.errors() if error.get("loc")}
        logger.warning(
            "row_cells_invalid",
            extra={
                "model": model_cls.__name__,
                "key": values.get(key_field),
                "fields": sorted(invalid_fields),
            },
        )
        if key_field in invalid_fields:
            return None
    # One retry with the offending cells reset to their defaults.
    retry = {key: value for key, value in cleaned.items() if key not in invalid_fields}
    try:
        return model_cls.model_validate(retry)
    except ValidationError:
        return None


def to_row(entity: ResidentBase) -> dict[str, str]:
    record = dump_columns(entity, RESIDENT_COLUMNS[entity.kind])
    record[FULL_NAME_COLUMN] = full_name_of(entity.last_name, entity.first_name)
    return record


def from_row(kind: ResidentKind, record: Mapping[str, Any]) -> ResidentBase | None:
    data = dict(record)
    if not str(data.get("firstName") or "").strip() and not str(data.get("lastName") or "").strip():
        last_name, first_name = split_full_name(str(data.get(FULL_NAME_COLUMN) or ""))
        data["lastName"] = last_name
        data["firstName"] = first_name
    return load_columns(RESIDENT_MODELS[kind], data, RESIDENT_COLUMNS[kind])


def patch_to_row(kind: ResidentKind, updates: Mapping[str, Any], current: ResidentBase) -> dict[str, str]:
    """Serialize only the changed fields of ``updates``; ``current`` supplies the name parts for ``fullName``."""
    columns = {field: (column, codec) for field, column, codec in RESIDENT_COLUMNS[kind]}
    unknown = sorted(set(updates) - set(columns))
    if unknown:
        raise KeyError(", ".join(unknown))

    patch: dict[str, str] = {}
    for field, value in updates.items():
        column, codec = columns[field]
        patch[column] = codec.dump(value)
    if "first_name" in updates or "last_name" in updates:
        patch[FULL_NAME_COLUMN] = full_name_of(
            str(updates.get("last_name", current.last_name) or ""),
            str(updates.get("first_name", current.first_name) or ""),
        )
    return patch


def address_history_to_row(entry: AddressHistory) -> dict[str, str]:
    return dump_columns(entry, ADDRESS_HISTORY_COLUMNS)


def address_history_from_row(record: Mapping[str, Any]) -> AddressHistory | None:
    return load_columns(AddressHistory, record, ADDRESS_HISTORY_COLUMNS)


def notification_to_row(notification: Notification) -> dict[str, str]:
    record = dump_columns(notification, NOTIFICATION_COLUMNS)
    record["type"] = notification.type.value
    return record


def notification_from_row(record: Mapping[str, Any]) -> Notification | None:
    data = dict(record)
    if not data.get("type"):
        data["type"] = "info"
    return load_columns(Notification, data, NOTIFICATION_COLUMNS)


def import_status_to_row(status: ImportStatus) -> dict[str, str]:
    record = dump_columns(status, IMPORT_STATUS_COLUMNS)
    record["status"] = status.status.value
    return record


def import_status_from_row(record: Mapping[str, Any]) -> ImportStatus | None:
    return load_columns(ImportStatus, record, IMPORT_STATUS_COLUMNS, key_field="job_id")


def equipment_to_row(item: EquipmentItem) -> dict[str, str]:
    return dump_columns(item, EQUIPMENT_COLUMNS)


def equipment_from_row(record: Mapping[str, Any]) -> EquipmentItem | None:
    return load_columns(EquipmentItem, record, EQUIPMENT_COLUMNS)
