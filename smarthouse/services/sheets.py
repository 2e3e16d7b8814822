from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from smarthouse.errors import NotFoundError
from smarthouse.rowstore import Row, Workbook, Worksheet
from smarthouse.schemas import (
    Address,
    AddressHistory,
    BokResident,
    Coordinator,
    Employee,
    HousingSettings,
    NonEmployee,
    ResidentBase,
    ResidentKind,
    Room,
    SettingsUpdate,
)
from smarthouse.services.serialization import (
    ADDRESS_HISTORY_COLUMNS,
    address_history_from_row,
    address_history_to_row,
    from_row,
    headers_for,
    parse_bool_cell,
    parse_csv_cell,
    parse_number_cell,
    resident_headers,
)

logger = logging.getLogger("smarthouse.sheets")

SHEET_EMPLOYEES = "Employees"
SHEET_NON_EMPLOYEES = "NonEmployees"
SHEET_BOK_RESIDENTS = "BokResidents"
SHEET_ADDRESS_HISTORY = "AddressHistory"
SHEET_ADDRESSES = "Addresses"
SHEET_ROOMS = "Rooms"
SHEET_COORDINATORS = "Coordinators"
SHEET_NOTIFICATIONS = "Powiadomienia"
SHEET_AUDIT_LOG = "AuditLog"
SHEET_IMPORT_STATUS = "ImportStatus"
SHEET_EQUIPMENT = "Equipment"
SHEET_INSPECTIONS = "Inspections"
SHEET_INSPECTION_DETAILS = "InspectionDetails"

RESIDENT_SHEETS: dict[ResidentKind, str] = {
    ResidentKind.EMPLOYEE: SHEET_EMPLOYEES,
    ResidentKind.NON_EMPLOYEE: SHEET_NON_EMPLOYEES,
    ResidentKind.BOK: SHEET_BOK_RESIDENTS,
}

# Settings key -> sheet holding one ``name`` per row.
SIMPLE_LIST_SHEETS: dict[str, str] = {
    "nationalities": "Nationalities",
    "departments": "Departments",
    "genders": "Genders",
    "localities": "Localities",
    "payment_types_nz": "PaymentTypesNZ",
    "bok_roles": "BokRoles",
    "bok_return_options": "BokReturnOptions",
    "bok_statuses": "BokStatuses",
}

COORDINATOR_HEADERS = [
    "uid",
    "name",
    "password",
    "isAdmin",
    "departments",
    "visibilityMode",
    "pushSubscription",
]
ADDRESS_HEADERS = ["id", "name", "locality", "coordinatorIds", "isActive"]
ROOM_HEADERS = ["id", "addressId", "name", "capacity", "isActive", "isLocked"]
ADDRESS_HISTORY_HEADERS = headers_for(ADDRESS_HISTORY_COLUMNS)


def resident_sheet(book: Workbook, kind: ResidentKind) -> Worksheet:
    return book.get_sheet(RESIDENT_SHEETS[kind], resident_headers(kind))


def find_row(sheet: Worksheet, value: str, *, column: str = "id") -> Row | None:
    for row in sheet.get_rows():
        if row.get(column) == value:
            return row
    return None


def get_residents(book: Workbook, kind: ResidentKind) -> list[ResidentBase]:
    residents: list[ResidentBase] = []
    for row in resident_sheet(book, kind).get_rows():
        resident = from_row(kind, row.to_dict())
        if resident is not None:
            residents.append(resident)
    return residents


def get_employees(book: Workbook) -> list[Employee]:
    return get_residents(book, ResidentKind.EMPLOYEE)  # type: ignore[return-value]


def get_non_employees(book: Workbook) -> list[NonEmployee]:
    return get_residents(book, ResidentKind.NON_EMPLOYEE)  # type: ignore[return-value]


def get_bok_residents(book: Workbook) -> list[BokResident]:
    return get_residents(book, ResidentKind.BOK)  # type: ignore[return-value]


def _coordinator_from_row(row: Row) -> Coordinator | None:
    uid = row.get("uid").strip()
    if not uid:
        return None
    visibility = row.get("visibilityMode").strip() or "department"
    return Coordinator(
        uid=uid,
        name=row.get("name"),
        password=row.get("password"),
        is_admin=parse_bool_cell(row.get("isAdmin"), default=False),
        departments=parse_csv_cell(row.get("departments")),
        visibility_mode="strict" if visibility == "strict" else "department",
        push_subscription=row.get("pushSubscription") or None,
    )


def _coordinator_to_row(coordinator: Coordinator) -> dict[str, Any]:
    return {
        "uid": coordinator.uid,
        "name": coordinator.name,
        "password": coordinator.password,
        "isAdmin": coordinator.is_admin,
        "departments": ",".join(coordinator.departments),
        "visibilityMode": coordinator.visibility_mode,
        "pushSubscription": coordinator.push_subscription or "",
    }


def _room_flag(row: Row, column: str, *, default: bool) -> bool:
    raw = row.get(column)
    if not raw:
        # Older sheets were created with lowercase headers.
        raw = row.get(column.lower())
    return parse_bool_cell(raw, default=default)


def _room_from_row(row: Row) -> Room:
    capacity = parse_number_cell(row.get("capacity"))
    return Room(
        id=row.get("id"),
        name=row.get("name"),
        capacity=int(capacity) if capacity is not None and capacity >= 1 else 1,
        is_active=_room_flag(row, "isActive", default=True),
        is_locked=_room_flag(row, "isLocked", default=False),
    )


def _read_settings_lists(book: Workbook) -> dict[str, list[str]]:
    lists: dict[str, list[str]] = {}
    for key, title in SIMPLE_LIST_SHEETS.items():
        names = [row.get("name").strip() for row in book.get_sheet(title, ["name"]).get_rows()]
        lists[key] = [name for name in names if name]
    return lists


def get_settings(book: Workbook) -> HousingSettings:
    coordinators = [
        item
        for item in (_coordinator_from_row(row) for row in book.get_sheet(SHEET_COORDINATORS, COORDINATOR_HEADERS).get_rows())
        if item is not None
    ]

    rooms_by_address: dict[str, list[Room]] = {}
    for row in book.get_sheet(SHEET_ROOMS, ROOM_HEADERS).get_rows():
        if not row.get("id"):
            continue
        rooms_by_address.setdefault(row.get("addressId"), []).append(_room_from_row(row))

    addresses: list[Address] = []
    for row in book.get_sheet(SHEET_ADDRESSES, ADDRESS_HEADERS).get_rows():
        address_id = row.get("id")
        if not address_id:
            continue
        addresses.append(
            Address(
                id=address_id,
                name=row.get("name"),
                locality=row.get("locality"),
                coordinator_ids=parse_csv_cell(row.get("coordinatorIds")),
                rooms=rooms_by_address.get(address_id, []),
                is_active=_room_flag(row, "isActive", default=True),
            )
        )

    return HousingSettings(
        coordinators=coordinators,
        addresses=addresses,
        **_read_settings_lists(book),
    )


def _sync_simple_list(book: Workbook, title: str, names: Iterable[str]) -> None:
    sheet = book.get_sheet(title, ["name"])
    wanted: list[str] = []
    for name in names:
        cleaned = name.strip()
        if cleaned and cleaned not in wanted:
            wanted.append(cleaned)

    existing: set[str] = set()
    for row in sheet.get_rows():
        name = row.get("name").strip()
        if name not in wanted:
            row.delete()
        else:
            existing.add(name)

    new_names = [name for name in wanted if name not in existing]
    if new_names:
        sheet.add_rows([{"name": name} for name in new_names])


def _write_coordinators(book: Workbook, coordinators: list[Coordinator]) -> None:
    sheet = book.get_sheet(SHEET_COORDINATORS, COORDINATOR_HEADERS)
    sheet.clear_rows()
    sheet.add_rows([_coordinator_to_row(item) for item in coordinators])


def _write_addresses(book: Workbook, addresses: list[Address]) -> None:
    addresses_sheet = book.get_sheet(SHEET_ADDRESSES, ADDRESS_HEADERS)
    rooms_sheet = book.get_sheet(SHEET_ROOMS, ROOM_HEADERS)
    addresses_sheet.clear_rows()
    rooms_sheet.clear_rows()
    addresses_sheet.add_rows(
        [
            {
                "id": address.id,
                "name": address.name,
                "locality": address.locality,
                "coordinatorIds": ",".join(address.coordinator_ids),
                "isActive": address.is_active,
            }
            for address in addresses
        ]
    )
    rooms_sheet.add_rows(
        [
            {
                "id": room.id,
                "addressId": address.id,
                "name": room.name,
                "capacity": room.capacity,
                "isActive": room.is_active,
                "isLocked": room.is_locked,
            }
            for address in addresses
            for room in address.rooms
        ]
    )


def update_settings(book: Workbook, partial: SettingsUpdate | Mapping[str, Any]) -> HousingSettings:
    """Shallow merge: every top-level key present in ``partial`` replaces the stored value."""
    if not isinstance(partial, SettingsUpdate):
        partial = SettingsUpdate.model_validate(dict(partial))
    changes = partial.model_dump(exclude_unset=True)

    for key, title in SIMPLE_LIST_SHEETS.items():
        if key in changes and changes[key] is not None:
            _sync_simple_list(book, title, changes[key])
    if partial.coordinators is not None and "coordinators" in changes:
        _write_coordinators(book, partial.coordinators)
    if partial.addresses is not None and "addresses" in changes:
        _write_addresses(book, partial.addresses)

    logger.info("settings_updated", extra={"keys": sorted(changes)})
    return get_settings(book)


def address_history_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_ADDRESS_HISTORY, ADDRESS_HISTORY_HEADERS)


def get_address_history(book: Workbook, employee_id: str | None = None) -> list[AddressHistory]:
    entries: list[AddressHistory] = []
    for row in address_history_sheet(book).get_rows():
        entry = address_history_from_row(row.to_dict())
        if entry is None:
            continue
        if employee_id is not None and entry.employee_id != employee_id:
            continue
        entries.append(entry)
    return entries


def add_address_history_entry(book: Workbook, entry: AddressHistory | Mapping[str, Any]) -> AddressHistory:
    if not isinstance(entry, AddressHistory):
        data = dict(entry)
        data.setdefault("id", f"ah-{uuid4().hex[:12]}")
        entry = AddressHistory.model_validate(data)
    address_history_sheet(book).add_row(address_history_to_row(entry))
    return entry


def update_address_history_entry(book: Workbook, entry_id: str, updates: BaseModel | Mapping[str, Any]) -> AddressHistory:
    sheet = address_history_sheet(book)
    row = find_row(sheet, entry_id)
    if row is None:
        raise NotFoundError("Address history entry not found.")
    current = address_history_from_row(row.to_dict())
    if current is None:
        raise NotFoundError("Address history entry not found.")

    patch = updates.model_dump(exclude_unset=True) if isinstance(updates, BaseModel) else dict(updates)
    updated = current.model_copy(update=patch)
    new_record = address_history_to_row(updated)
    for column, value in new_record.items():
        if value != row.get(column):
            row.set(column, value)
    row.save()
    return updated


def delete_address_history_entry(book: Workbook, entry_id: str) -> None:
    row = find_row(address_history_sheet(book), entry_id)
    if row is None:
        raise NotFoundError("Address history entry not found.")
    row.delete()


def delete_address_history_for_employee(book: Workbook, employee_id: str) -> int:
    deleted = 0
    for row in address_history_sheet(book).get_rows():
        if row.get("employeeId") == employee_id:
            row.delete()
            deleted += 1
    return deleted
