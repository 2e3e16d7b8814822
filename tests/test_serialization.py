from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from smarthouse.schemas import (
    BokResident,
    DeductionReason,
    Employee,
    Notification,
    NotificationChange,
    ResidentKind,
    ResidentStatus,
)
from smarthouse.services.dates import format_display, parse_lenient_date
from smarthouse.services.serialization import (
    from_row,
    notification_from_row,
    notification_to_row,
    parse_bool_cell,
    parse_number_cell,
    patch_to_row,
    resident_headers,
    split_full_name,
    to_row,
)


class LenientDateTests(unittest.TestCase):
    def test_supported_formats(self) -> None:
        expected = date(2024, 1, 15)
        for raw in (
            "2024-01-15",
            "2024-01-15T10:00:00Z",
            "15-01-2024",
            "15-01-2024 10:30",
            "15.01.2024",
            "15.01.2024 08:00",
            45306,
            45306.5,
            datetime(2024, 1, 15, 23, 59),
            expected,
        ):
            with self.subTest(raw=raw):
                self.assertEqual(parse_lenient_date(raw), expected)

    def test_unparseable_values_resolve_to_none(self) -> None:
        unparseable = (None, "", "   ", "jutro", "2024-13-45", "32-01-2024", True, 0, 12, "99999999")
        # Bare numbers in text cells are not serial dates.
        for raw in (*unparseable, "45306", "2024", "12"):
            with self.subTest(raw=raw):
                self.assertIsNone(parse_lenient_date(raw))

    def test_display_format(self) -> None:
        self.assertEqual(format_display(date(2024, 3, 9)), "09-03-2024")
        self.assertEqual(format_display(None), "")


class CellParserTests(unittest.TestCase):
    def test_bool_and_number_cells(self) -> None:
        self.assertTrue(parse_bool_cell("TRUE", default=False))
        self.assertTrue(parse_bool_cell("tak", default=False))
        self.assertFalse(parse_bool_cell("Nie", default=True))
        self.assertTrue(parse_bool_cell("", default=True))
        self.assertEqual(parse_number_cell("1 250,75"), 1250.75)
        self.assertIsNone(parse_number_cell("abc"))


class ResidentRowTests(unittest.TestCase):
    def test_to_row_writes_every_column_and_full_name(self) -> None:
        employee = Employee(
            id="emp-1",
            first_name="Nowy",
            last_name="Pracownik",
            check_in_date=date(2024, 5, 10),
            deduction_reason=[DeductionReason(name="Kaucja", checked=True, amount=100.0)],
        )

        record = to_row(employee)

        self.assertEqual(set(record), set(resident_headers(ResidentKind.EMPLOYEE)))
        self.assertEqual(record["fullName"], "Pracownik Nowy")
        self.assertEqual(record["checkInDate"], "2024-05-10")
        self.assertEqual(record["checkOutDate"], "")
        self.assertEqual(record["comments"], "")
        self.assertEqual(record["status"], "active")
        self.assertIn('"Kaucja"', record["deductionReason"])

    def test_from_row_tolerates_legacy_cells(self) -> None:
        resident = from_row(
            ResidentKind.EMPLOYEE,
            {
                "id": "emp-1",
                "fullName": "Kowalski Jan",
                "checkInDate": "15.01.2024",
                "checkOutDate": "niewiadomo",
                "status": "Zwolniony?",
                "depositReturnAmount": "abc",
                "deductionReason": "{broken",
            },
        )

        assert resident is not None
        self.assertEqual((resident.last_name, resident.first_name), ("Kowalski", "Jan"))
        self.assertEqual(resident.check_in_date, date(2024, 1, 15))
        self.assertIsNone(resident.check_out_date)
        self.assertEqual(resident.status, ResidentStatus.ACTIVE)
        self.assertIsNone(resident.deposit_return_amount)
        self.assertIsNone(resident.deduction_reason)

    def test_from_row_drops_invalid_enum_cell_and_keeps_row(self) -> None:
        resident = from_row(ResidentKind.EMPLOYEE, {"id": "emp-1", "lastName": "A", "depositReturned": "Może"})

        assert resident is not None
        self.assertIsNone(resident.deposit_returned)

    def test_from_row_without_id_is_skipped(self) -> None:
        self.assertIsNone(from_row(ResidentKind.BOK, {"lastName": "A"}))

    def test_bok_row_keeps_send_datetime(self) -> None:
        bok = BokResident(
            id="bok-1",
            role="Kierowca",
            send_date=datetime(2024, 2, 1, 8, 30, tzinfo=timezone.utc),
            dismiss_date=date(2024, 3, 1),
        )

        restored = from_row(ResidentKind.BOK, to_row(bok))

        assert isinstance(restored, BokResident)
        self.assertEqual(restored.send_date, bok.send_date)
        self.assertEqual(restored.dismiss_date, date(2024, 3, 1))

    def test_patch_to_row_serializes_only_given_fields(self) -> None:
        current = Employee(id="emp-1", first_name="Jan", last_name="Kowalski")

        patch = patch_to_row(ResidentKind.EMPLOYEE, {"first_name": "Adam", "check_out_date": None}, current)

        self.assertEqual(patch, {"firstName": "Adam", "checkOutDate": "", "fullName": "Kowalski Adam"})
        with self.assertRaises(KeyError):
            patch_to_row(ResidentKind.EMPLOYEE, {"dismiss_date": None}, current)

    def test_split_full_name_is_surname_first(self) -> None:
        self.assertEqual(split_full_name("Kowalski Jan Maria"), ("Kowalski", "Jan Maria"))
        self.assertEqual(split_full_name("   "), ("", ""))


class NotificationRowTests(unittest.TestCase):
    def test_changes_survive_the_sheet(self) -> None:
        notification = Notification(
            id="notif-1",
            message="Zaktualizował dane pracownika Kowalski Jan.",
            created_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
            changes=[NotificationChange(field="address", old_value="Brak", new_value="Długa 1")],
        )

        restored = notification_from_row(notification_to_row(notification))

        assert restored is not None
        self.assertEqual(restored.changes, notification.changes)
        self.assertFalse(restored.is_read)

    def test_legacy_camel_case_changes_are_accepted(self) -> None:
        restored = notification_from_row(
            {
                "id": "notif-1",
                "message": "x",
                "createdAt": "2024-01-01T12:00:00+00:00",
                "changes": '[{"field": "roomNumber", "oldValue": "1", "newValue": "2"}]',
                "isRead": "TRUE",
            }
        )

        assert restored is not None
        self.assertEqual(restored.changes[0].old_value, "1")
        self.assertTrue(restored.is_read)


if __name__ == "__main__":
    unittest.main()
