from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from smarthouse.errors import ApiError, NotFoundError
from smarthouse.schemas import (
    BokResident,
    Coordinator,
    EmployeeCreate,
    NotificationType,
    ResidentKind,
    ResidentStatus,
)
from smarthouse.services import residents as resident_service
from smarthouse.services.notifications import list_notifications
from smarthouse.services.sheets import (
    SHEET_ADDRESS_HISTORY,
    SHEET_EMPLOYEES,
    get_address_history,
    get_employees,
    get_settings,
)
from tests.fakes import FakeWorkbook, seed_settings


def _employee_row(employee_id: str, **cells: str) -> dict[str, str]:
    record = {
        "id": employee_id,
        "fullName": "Kowalski Jan",
        "firstName": "Jan",
        "lastName": "Kowalski",
        "coordinatorId": "coord-1",
        "address": "Długa 1",
        "roomNumber": "1",
        "zaklad": "Magazyn",
        "checkInDate": "2024-01-15",
        "status": "active",
    }
    record.update(cells)
    return record


class ResidentServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.book = FakeWorkbook()
        seed_settings(
            self.book,
            coordinators=[{"uid": "coord-1", "name": "Anna Nowak"}, {"uid": "coord-2", "name": "Piotr Zieliński"}],
        )

    def test_add_employee_persists_surname_first_full_name_and_active_status(self) -> None:
        employee = resident_service.add_employee(
            self.book,
            {"first_name": "Nowy", "last_name": "Pracownik", "coordinator_id": "coord-1", "check_in_date": "2024-05-10"},
            "coord-1",
        )

        sheet = self.book.sheet(SHEET_EMPLOYEES)
        self.assertEqual(sheet.add_row_calls, 1)
        record = sheet.records[0]
        self.assertEqual(record["fullName"], "Pracownik Nowy")
        self.assertEqual(record["status"], "active")
        self.assertEqual(record["checkInDate"], "2024-05-10")
        self.assertEqual(record["checkOutDate"], "")
        self.assertTrue(employee.id.startswith("emp-"))
        self.assertEqual(employee.full_name, "Pracownik Nowy")

        notifications = list_notifications(self.book, is_admin=True)
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0].type, NotificationType.SUCCESS)
        self.assertEqual(notifications[0].actor_name, "Anna Nowak")
        self.assertEqual(notifications[0].message, "Dodał pracownika Pracownik Nowy.")

    def test_add_employee_without_check_in_date_is_rejected(self) -> None:
        with self.assertRaises(ApiError) as caught:
            resident_service.add_employee(
                self.book, {"first_name": "A", "last_name": "B", "coordinator_id": "coord-1"}, "coord-1"
            )

        self.assertEqual(caught.exception.status_code, 422)
        self.assertEqual(self.book.sheet(SHEET_EMPLOYEES).add_row_calls, 0)

    def test_add_employee_with_address_starts_address_history(self) -> None:
        payload = EmployeeCreate(
            first_name="Jan",
            last_name="Kowalski",
            coordinator_id="coord-1",
            check_in_date=date(2024, 2, 1),
            address="Długa 1",
            zaklad="Magazyn",
        )

        employee = resident_service.add_employee(self.book, payload, "coord-1")

        history = get_address_history(self.book, employee.id)
        self.assertEqual(len(history), 1)
        self.assertEqual(history[0].address, "Długa 1")
        self.assertEqual(history[0].coordinator_name, "Anna Nowak")
        self.assertEqual(history[0].check_in_date, date(2024, 2, 1))

    def test_update_writes_only_changed_columns_in_one_save(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        updated = resident_service.update_employee(
            self.book,
            "emp-1",
            {"room_number": "7", "zaklad": "Magazyn", "comments": "Nocna zmiana"},
            "coord-1",
        )

        row = self.book.sheet(SHEET_EMPLOYEES).get_rows()[0]
        self.assertEqual(row.save_count, 1)
        self.assertEqual(row.get("roomNumber"), "7")
        self.assertEqual(row.get("comments"), "Nocna zmiana")
        self.assertEqual(updated.room_number, "7")

        notification = list_notifications(self.book, is_admin=True)[0]
        self.assertEqual(
            {(change.field, change.old_value, change.new_value) for change in notification.changes},
            {("room_number", "1", "7"), ("comments", "Brak", "Nocna zmiana")},
        )

    def test_update_name_refreshes_full_name_column(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        resident_service.update_employee(self.book, "emp-1", {"last_name": "Nowak"}, "coord-1")

        row = self.book.sheet(SHEET_EMPLOYEES).get_rows()[0]
        self.assertEqual(row.get("fullName"), "Nowak Jan")

    def test_update_without_changes_does_not_save(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        resident_service.update_employee(self.book, "emp-1", {"room_number": "1"}, "coord-1")

        self.assertEqual(self.book.sheet(SHEET_EMPLOYEES).saves, 0)

    def test_address_change_keeps_old_address_and_adds_history(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        with patch("smarthouse.services.residents.today_in_app_tz", return_value=date(2024, 3, 10)):
            updated = resident_service.update_employee(self.book, "emp-1", {"address": "Krótka 5"}, "coord-1")

        self.assertEqual(updated.old_address, "Długa 1")
        self.assertEqual(updated.address_change_date, date(2024, 3, 10))
        row = self.book.sheet(SHEET_EMPLOYEES).get_rows()[0]
        self.assertEqual(row.get("oldAddress"), "Długa 1")
        self.assertEqual(row.get("addressChangeDate"), "2024-03-10")

        history = get_address_history(self.book, "emp-1")
        self.assertEqual([entry.address for entry in history], ["Krótka 5"])
        changes = {change.field: change for change in list_notifications(self.book, is_admin=True)[0].changes}
        self.assertEqual(changes["address_change_date"].new_value, "10-03-2024")

    def test_update_rejects_unknown_fields(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        with self.assertRaises(ApiError) as ctx:
            resident_service.update_employee(self.book, "emp-1", {"shoe_size": "44"}, "coord-1")

        self.assertEqual(ctx.exception.code, "UNKNOWN_FIELD")
        self.assertEqual(self.book.sheet(SHEET_EMPLOYEES).saves, 0)

    def test_update_unknown_bok_resident_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            resident_service.update_bok_resident(self.book, "bok-missing", {"role": "Kierowca"}, "coord-1")

        self.assertEqual(ctx.exception.status_code, 404)

    def test_delete_employee_cascades_only_its_address_history(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"), _employee_row("emp-2"))
        self.book.sheet(SHEET_ADDRESS_HISTORY).seed(
            {"id": "ah-1", "employeeId": "emp-1", "address": "Długa 1"},
            {"id": "ah-2", "employeeId": "emp-2", "address": "Długa 1"},
            {"id": "ah-3", "employeeId": "emp-1", "address": "Krótka 5"},
        )

        resident_service.delete_employee(self.book, "emp-1", "admin")

        self.assertEqual([row.get("id") for row in self.book.sheet(SHEET_EMPLOYEES).get_rows()], ["emp-2"])
        self.assertEqual([entry.id for entry in get_address_history(self.book)], ["ah-2"])
        notification = list_notifications(self.book, is_admin=True)[0]
        self.assertEqual(notification.type, NotificationType.DESTRUCTIVE)
        self.assertEqual(notification.actor_name, "Admin")

    def test_delete_unknown_employee_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            resident_service.delete_employee(self.book, "emp-missing", "admin")

        self.assertEqual(ctx.exception.message, "Employee not found for deletion.")

    def test_bulk_delete_by_status_and_transfer(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(
            _employee_row("emp-1", status="dismissed"),
            _employee_row("emp-2"),
            _employee_row("emp-3", coordinatorId="coord-2"),
        )

        removed = resident_service.bulk_delete_employees(self.book, ResidentStatus.DISMISSED, "admin")
        moved = resident_service.transfer_employees(
            self.book, "coord-1", "coord-2", get_settings(self.book), "admin"
        )

        self.assertEqual(removed, 1)
        self.assertEqual(moved, 1)
        coordinators = {row.get("id"): row.get("coordinatorId") for row in self.book.sheet(SHEET_EMPLOYEES).get_rows()}
        self.assertEqual(coordinators, {"emp-2": "coord-2", "emp-3": "coord-2"})

    def test_transfer_to_unknown_coordinator_is_rejected(self) -> None:
        with self.assertRaises(NotFoundError):
            resident_service.transfer_employees(self.book, "coord-1", "coord-9", get_settings(self.book), "admin")

    def test_migrate_full_names_backfills_split_columns(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(
            {"id": "emp-1", "fullName": "Kowalski Jan Maria", "status": "active"},
            _employee_row("emp-2"),
        )

        result = resident_service.migrate_full_names(self.book)

        self.assertEqual(result.migrated_employees, 1)
        self.assertEqual(result.migrated_non_employees, 0)
        row = self.book.sheet(SHEET_EMPLOYEES).get_rows()[0]
        self.assertEqual(row.get("lastName"), "Kowalski")
        self.assertEqual(row.get("firstName"), "Jan Maria")

    def test_visibility_respects_department_mode(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(
            _employee_row("emp-1"),
            _employee_row("emp-2", coordinatorId="coord-2", zaklad="Magazyn"),
            _employee_row("emp-3", coordinatorId="coord-2", zaklad="Biuro"),
        )
        employees = get_employees(self.book)
        department = Coordinator(uid="coord-1", name="Anna", departments=["magazyn"])
        strict = Coordinator(uid="coord-1", name="Anna", departments=["magazyn"], visibility_mode="strict")

        self.assertEqual(
            [item.id for item in resident_service.visible_residents(employees, department)], ["emp-1", "emp-2"]
        )
        self.assertEqual([item.id for item in resident_service.visible_residents(employees, strict)], ["emp-1"])

    def test_bok_tabs(self) -> None:
        active = BokResident(id="bok-1")
        dispatched = BokResident(id="bok-2", check_out_date=date(2024, 1, 1))
        dismissed = BokResident(id="bok-3", dismiss_date=date(2024, 1, 1))

        self.assertEqual(resident_service.bok_tab(active), "active")
        self.assertEqual(resident_service.bok_tab(dispatched), "dispatched")
        self.assertEqual(resident_service.bok_tab(dismissed), "dismissed")

    def test_get_resident_by_kind(self) -> None:
        self.book.sheet(SHEET_EMPLOYEES).seed(_employee_row("emp-1"))

        employee = resident_service.get_resident(self.book, ResidentKind.EMPLOYEE, "emp-1")

        self.assertEqual(employee.full_name, "Kowalski Jan")
        self.assertEqual(employee.check_in_date, date(2024, 1, 15))


if __name__ == "__main__":
    unittest.main()
