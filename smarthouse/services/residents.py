from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from smarthouse.errors import ApiError, NotFoundError, UnknownFieldError
from smarthouse.rowstore import Row, Workbook
from smarthouse.schemas import (
    BokResident,
    Coordinator,
    Employee,
    HousingSettings,
    MigrationResult,
    NonEmployee,
    NotificationChange,
    NotificationType,
    ResidentBase,
    ResidentKind,
    ResidentStatus,
)
from smarthouse.services.dates import format_display, today_in_app_tz
from smarthouse.services.notifications import (
    ACTION_ADDED,
    ACTION_DELETED,
    ACTION_UPDATED,
    create_notification,
)
from smarthouse.services.serialization import (
    RESIDENT_MODELS,
    from_row,
    patch_to_row,
    split_full_name,
    to_row,
)
from smarthouse.services.sheets import (
    add_address_history_entry,
    delete_address_history_for_employee,
    find_row,
    get_settings,
    resident_sheet,
)

logger = logging.getLogger("smarthouse.residents")

_ID_PREFIXES = {
    ResidentKind.EMPLOYEE: "emp",
    ResidentKind.NON_EMPLOYEE: "nonemp",
    ResidentKind.BOK: "bok",
}
_NOT_FOUND_MESSAGES = {
    ResidentKind.EMPLOYEE: "Employee not found.",
    ResidentKind.NON_EMPLOYEE: "Non-employee not found.",
    ResidentKind.BOK: "BOK resident not found.",
}
_NOT_FOUND_FOR_DELETE = {
    ResidentKind.EMPLOYEE: "Employee not found for deletion.",
    ResidentKind.NON_EMPLOYEE: "Non-employee not found for deletion.",
    ResidentKind.BOK: "BOK resident not found for deletion.",
}
_IMMUTABLE_FIELDS = {"id", "full_name"}

BokTab = Literal["active", "dispatched", "dismissed"]


def _data_dict(data: BaseModel | Mapping[str, Any], *, exclude_unset: bool = False) -> dict[str, Any]:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_unset=exclude_unset)
    return dict(data)


def _load_row(row: Row, kind: ResidentKind) -> ResidentBase:
    resident = from_row(kind, row.to_dict())
    if resident is None:
        raise NotFoundError(_NOT_FOUND_MESSAGES[kind])
    return resident


def get_resident(book: Workbook, kind: ResidentKind, resident_id: str) -> ResidentBase:
    row = find_row(resident_sheet(book, kind), resident_id)
    if row is None:
        raise NotFoundError(_NOT_FOUND_MESSAGES[kind])
    return _load_row(row, kind)


def add_resident(
    book: Workbook,
    kind: ResidentKind,
    data: BaseModel | Mapping[str, Any],
    actor_id: str,
    *,
    settings: HousingSettings | None = None,
) -> ResidentBase:
    values = _data_dict(data)
    values.pop("full_name", None)
    values["id"] = f"{_ID_PREFIXES[kind]}-{uuid4().hex[:12]}"
    values["status"] = ResidentStatus.ACTIVE
    try:
        resident = RESIDENT_MODELS[kind].model_validate(values)
    except ValidationError as exc:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message=str(exc.errors())) from exc
    if resident.check_in_date is None:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="check_in_date: Field required")

    resident_sheet(book, kind).add_row(to_row(resident))
    logger.info("resident_added", extra={"kind": kind.value, "resident_id": resident.id, "actor_id": actor_id})

    housing = settings if settings is not None else get_settings(book)
    if kind == ResidentKind.EMPLOYEE and resident.address:
        coordinator = housing.find_coordinator(resident.coordinator_id)
        add_address_history_entry(
            book,
            {
                "employee_id": resident.id,
                "employee_name": resident.full_name,
                "coordinator_name": coordinator.name if coordinator else "",
                "department": resident.zaklad,
                "address": resident.address,
                "check_in_date": resident.check_in_date,
            },
        )

    create_notification(
        book,
        actor_id=actor_id,
        action=ACTION_ADDED,
        entity=resident,
        type=NotificationType.SUCCESS,
        settings=housing,
    )
    return resident


def _display_value(value: Any) -> str:
    if value is None or value == "":
        return "Brak"
    if isinstance(value, date):
        return format_display(value)
    if isinstance(value, bool):
        return "Tak" if value else "Nie"
    if isinstance(value, ResidentStatus):
        return value.value
    if isinstance(value, list):
        return ", ".join(str(getattr(item, "name", item)) for item in value) or "Brak"
    return str(value)


def _diff(current: ResidentBase, updated: ResidentBase, fields: Iterable[str]) -> list[NotificationChange]:
    changes: list[NotificationChange] = []
    for field in fields:
        old_value = getattr(current, field)
        new_value = getattr(updated, field)
        if old_value == new_value:
            continue
        changes.append(
            NotificationChange(
                field=field,
                old_value=_display_value(old_value),
                new_value=_display_value(new_value),
            )
        )
    return changes


def update_resident(
    book: Workbook,
    kind: ResidentKind,
    resident_id: str,
    updates: BaseModel | Mapping[str, Any],
    actor_id: str,
    *,
    settings: HousingSettings | None = None,
) -> ResidentBase:
    """Field-level patch: only the columns that actually change are written, in one save."""
    row = find_row(resident_sheet(book, kind), resident_id)
    if row is None:
        raise NotFoundError(_NOT_FOUND_MESSAGES[kind])
    current = _load_row(row, kind)

    patch = {key: value for key, value in _data_dict(updates, exclude_unset=True).items() if key not in _IMMUTABLE_FIELDS}
    unknown = sorted(set(patch) - set(RESIDENT_MODELS[kind].model_fields))
    if unknown:
        raise UnknownFieldError(unknown)
    try:
        updated = RESIDENT_MODELS[kind].model_validate({**current.model_dump(), **patch})
    except ValidationError as exc:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message=str(exc.errors())) from exc

    changed_fields = [field for field in patch if getattr(current, field, None) != getattr(updated, field, None)]
    today = today_in_app_tz()
    address_changed = kind == ResidentKind.EMPLOYEE and "address" in changed_fields and bool(current.address)
    if address_changed:
        updated = updated.model_copy(update={"old_address": current.address, "address_change_date": today})
        changed_fields.extend(field for field in ("old_address", "address_change_date") if field not in changed_fields)

    if not changed_fields:
        return current

    cells = patch_to_row(kind, {field: getattr(updated, field) for field in changed_fields}, updated)
    for column, value in cells.items():
        row.set(column, value)
    row.save()

    housing = settings if settings is not None else get_settings(book)
    if kind == ResidentKind.EMPLOYEE and "address" in changed_fields:
        _record_address_change(book, housing, current, updated, today)

    create_notification(
        book,
        actor_id=actor_id,
        action=ACTION_UPDATED,
        entity=updated,
        changes=_diff(current, updated, changed_fields),
        settings=housing,
    )
    return updated


def _record_address_change(
    book: Workbook,
    settings: HousingSettings,
    current: ResidentBase,
    updated: ResidentBase,
    change_date: date,
) -> None:
    coordinator = settings.find_coordinator(updated.coordinator_id)
    add_address_history_entry(
        book,
        {
            "employee_id": updated.id,
            "employee_name": updated.full_name,
            "coordinator_name": coordinator.name if coordinator else "",
            "department": updated.zaklad,
            "address": updated.address,
            "check_in_date": change_date,
        },
    )
    logger.info(
        "employee_address_changed",
        extra={"resident_id": updated.id, "old_address": current.address, "new_address": updated.address},
    )


def delete_resident(book: Workbook, kind: ResidentKind, resident_id: str, actor_id: str) -> None:
    row = find_row(resident_sheet(book, kind), resident_id)
    if row is None:
        raise NotFoundError(_NOT_FOUND_FOR_DELETE[kind])
    resident = from_row(kind, row.to_dict())
    row.delete()

    if kind == ResidentKind.EMPLOYEE:
        removed = delete_address_history_for_employee(book, resident_id)
        logger.info("address_history_deleted", extra={"resident_id": resident_id, "count": removed})

    if resident is not None:
        create_notification(
            book,
            actor_id=actor_id,
            action=ACTION_DELETED,
            entity=resident,
            type=NotificationType.DESTRUCTIVE,
        )


def add_employee(book: Workbook, data: BaseModel | Mapping[str, Any], actor_id: str) -> Employee:
    return add_resident(book, ResidentKind.EMPLOYEE, data, actor_id)  # type: ignore[return-value]


def add_non_employee(book: Workbook, data: BaseModel | Mapping[str, Any], actor_id: str) -> NonEmployee:
    return add_resident(book, ResidentKind.NON_EMPLOYEE, data, actor_id)  # type: ignore[return-value]


def add_bok_resident(book: Workbook, data: BaseModel | Mapping[str, Any], actor_id: str) -> BokResident:
    return add_resident(book, ResidentKind.BOK, data, actor_id)  # type: ignore[return-value]


def update_employee(book: Workbook, resident_id: str, updates: BaseModel | Mapping[str, Any], actor_id: str) -> Employee:
    return update_resident(book, ResidentKind.EMPLOYEE, resident_id, updates, actor_id)  # type: ignore[return-value]


def update_non_employee(
    book: Workbook, resident_id: str, updates: BaseModel | Mapping[str, Any], actor_id: str
) -> NonEmployee:
    return update_resident(book, ResidentKind.NON_EMPLOYEE, resident_id, updates, actor_id)  # type: ignore[return-value]


def update_bok_resident(
    book: Workbook, resident_id: str, updates: BaseModel | Mapping[str, Any], actor_id: str
) -> BokResident:
    return update_resident(book, ResidentKind.BOK, resident_id, updates, actor_id)  # type: ignore[return-value]


def delete_employee(book: Workbook, resident_id: str, actor_id: str) -> None:
    delete_resident(book, ResidentKind.EMPLOYEE, resident_id, actor_id)


def delete_non_employee(book: Workbook, resident_id: str, actor_id: str) -> None:
    delete_resident(book, ResidentKind.NON_EMPLOYEE, resident_id, actor_id)


def delete_bok_resident(book: Workbook, resident_id: str, actor_id: str) -> None:
    delete_resident(book, ResidentKind.BOK, resident_id, actor_id)


def _bulk_delete_employees_where(book: Workbook, column: str, value: str, *, actor_id: str) -> int:
    removed = 0
    for row in resident_sheet(book, ResidentKind.EMPLOYEE).get_rows():
        if row.get(column) != value:
            continue
        employee_id = row.get("id")
        row.delete()
        delete_address_history_for_employee(book, employee_id)
        removed += 1
    logger.info(
        "employees_bulk_deleted",
        extra={"filter_column": column, "filter_value": value, "count": removed, "actor_id": actor_id},
    )
    return removed


def bulk_delete_employees(book: Workbook, status: ResidentStatus, actor_id: str) -> int:
    return _bulk_delete_employees_where(book, "status", status.value, actor_id=actor_id)


def bulk_delete_employees_by_coordinator(book: Workbook, coordinator_id: str, actor_id: str) -> int:
    return _bulk_delete_employees_where(book, "coordinatorId", coordinator_id, actor_id=actor_id)


def bulk_delete_employees_by_department(book: Workbook, department: str, actor_id: str) -> int:
    return _bulk_delete_employees_where(book, "zaklad", department, actor_id=actor_id)


def transfer_employees(
    book: Workbook,
    from_coordinator_id: str,
    to_coordinator_id: str,
    settings: HousingSettings,
    actor_id: str,
) -> int:
    if settings.find_coordinator(to_coordinator_id) is None:
        raise NotFoundError("Target coordinator not found.")
    moved = 0
    for row in resident_sheet(book, ResidentKind.EMPLOYEE).get_rows():
        if row.get("coordinatorId") != from_coordinator_id:
            continue
        row.set("coordinatorId", to_coordinator_id)
        row.save()
        moved += 1
    logger.info(
        "employees_transferred",
        extra={"from": from_coordinator_id, "to": to_coordinator_id, "count": moved, "actor_id": actor_id},
    )
    return moved


def _migrate_sheet_names(book: Workbook, kind: ResidentKind) -> int:
    migrated = 0
    for row in resident_sheet(book, kind).get_rows():
        if row.get("firstName").strip() or row.get("lastName").strip():
            continue
        full_name = row.get("fullName").strip()
        if not full_name:
            continue
        last_name, first_name = split_full_name(full_name)
        row.set("lastName", last_name)
        row.set("firstName", first_name)
        row.save()
        migrated += 1
    return migrated


def migrate_full_names(book: Workbook) -> MigrationResult:
    """Backfill ``firstName``/``lastName`` on rows that only have the legacy ``fullName``."""
    result = MigrationResult(
        migrated_employees=_migrate_sheet_names(book, ResidentKind.EMPLOYEE),
        migrated_non_employees=_migrate_sheet_names(book, ResidentKind.NON_EMPLOYEE),
    )
    logger.info("full_names_migrated", extra=result.model_dump())
    return result


def visible_residents(residents: Iterable[ResidentBase], coordinator: Coordinator | None) -> list[ResidentBase]:
    if coordinator is None or coordinator.is_admin:
        return list(residents)
    departments = {item.casefold() for item in coordinator.departments}
    visible: list[ResidentBase] = []
    for resident in residents:
        if resident.coordinator_id == coordinator.uid:
            visible.append(resident)
        elif coordinator.visibility_mode == "department" and resident.zaklad.casefold() in departments:
            visible.append(resident)
    return visible


def bok_tab(resident: BokResident) -> BokTab:
    if resident.status == ResidentStatus.DISMISSED or resident.dismiss_date is not None:
        return "dismissed"
    if resident.check_out_date is not None:
        return "dispatched"
    return "active"
