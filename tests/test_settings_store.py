from __future__ import annotations

import unittest
from datetime import date

from smarthouse.errors import NotFoundError
from smarthouse.schemas import Address, AddressHistoryUpdate, Coordinator, Room, SettingsUpdate
from smarthouse.services.sheets import (
    SHEET_ADDRESS_HISTORY,
    SHEET_COORDINATORS,
    SHEET_ROOMS,
    SIMPLE_LIST_SHEETS,
    add_address_history_entry,
    delete_address_history_entry,
    get_address_history,
    get_settings,
    update_address_history_entry,
    update_settings,
)
from tests.fakes import FakeWorkbook, seed_settings


class SettingsStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.book = FakeWorkbook()

    def test_settings_are_assembled_from_sheets(self) -> None:
        seed_settings(
            self.book,
            coordinators=[
                {
                    "uid": "coord-1",
                    "name": "Anna Nowak",
                    "password": "tajne",
                    "isAdmin": "TRUE",
                    "departments": "Magazyn, Biuro",
                    "visibilityMode": "strict",
                },
                {"uid": "", "name": "bez id"},
            ],
            addresses=[
                {"id": "a1", "name": "Długa 1", "locality": "Gdańsk", "coordinatorIds": "coord-1,coord-2", "isActive": ""},
            ],
            rooms=[
                {"id": "r1", "addressId": "a1", "name": "1", "capacity": "3", "isActive": "TRUE", "isLocked": "FALSE"},
                {"id": "r2", "addressId": "a1", "name": "2", "capacity": "zero", "isactive": "FALSE"},
            ],
            localities=["Gdańsk", " ", "Sopot"],
        )

        settings = get_settings(self.book)

        self.assertEqual(settings.id, "global-settings")
        self.assertEqual(len(settings.coordinators), 1)
        coordinator = settings.coordinators[0]
        self.assertTrue(coordinator.is_admin)
        self.assertEqual(coordinator.departments, ["Magazyn", "Biuro"])
        self.assertEqual(coordinator.visibility_mode, "strict")
        address = settings.addresses[0]
        self.assertTrue(address.is_active)
        self.assertEqual(address.coordinator_ids, ["coord-1", "coord-2"])
        self.assertEqual([room.capacity for room in address.rooms], [3, 1])
        self.assertFalse(address.rooms[1].is_active)
        self.assertEqual(settings.localities, ["Gdańsk", "Sopot"])

    def test_partial_update_only_touches_sent_keys(self) -> None:
        seed_settings(self.book, coordinators=[{"uid": "coord-1", "name": "Anna"}], localities=["Gdańsk", "Sopot"])
        locality_sheet = self.book.sheet(SIMPLE_LIST_SHEETS["localities"])

        settings = update_settings(self.book, {"localities": ["Sopot", "Gdynia", "Gdynia", " "]})

        self.assertEqual(settings.localities, ["Sopot", "Gdynia"])
        self.assertEqual([item.uid for item in settings.coordinators], ["coord-1"])
        self.assertEqual(len(locality_sheet.add_rows_calls), 1)
        self.assertEqual(locality_sheet.add_rows_calls[0], [{"name": "Gdynia"}])

    def test_coordinators_and_addresses_are_rewritten(self) -> None:
        seed_settings(self.book, coordinators=[{"uid": "coord-1", "name": "Anna"}])

        settings = update_settings(
            self.book,
            SettingsUpdate(
                coordinators=[Coordinator(uid="coord-2", name="Piotr", departments=["Biuro"])],
                addresses=[
                    Address(
                        id="a1",
                        name="Długa 1",
                        locality="Gdańsk",
                        rooms=[Room(id="r1", name="1", capacity=2), Room(id="r2", name="2", is_locked=True)],
                    )
                ],
            ),
        )

        self.assertEqual([item.uid for item in settings.coordinators], ["coord-2"])
        self.assertEqual(self.book.sheet(SHEET_COORDINATORS).records[0]["departments"], "Biuro")
        self.assertEqual(len(self.book.sheet(SHEET_ROOMS).records), 2)
        self.assertTrue(settings.addresses[0].rooms[1].is_locked)

    def test_unknown_settings_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            update_settings(self.book, {"colors": ["red"]})


class AddressHistoryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.book = FakeWorkbook()
        add_address_history_entry(
            self.book,
            {"id": "ah-1", "employee_id": "emp-1", "address": "Długa 1", "check_in_date": date(2024, 1, 1)},
        )
        add_address_history_entry(self.book, {"id": "ah-2", "employee_id": "emp-2", "address": "Krótka 5"})

    def test_filter_by_employee(self) -> None:
        self.assertEqual([entry.id for entry in get_address_history(self.book, "emp-1")], ["ah-1"])
        self.assertEqual(len(get_address_history(self.book)), 2)

    def test_update_patches_changed_cells(self) -> None:
        updated = update_address_history_entry(
            self.book, "ah-1", AddressHistoryUpdate(check_out_date=date(2024, 2, 1))
        )

        self.assertEqual(updated.check_out_date, date(2024, 2, 1))
        self.assertEqual(updated.address, "Długa 1")
        row = self.book.sheet(SHEET_ADDRESS_HISTORY).get_rows()[0]
        self.assertEqual(row.get("checkOutDate"), "2024-02-01")
        self.assertEqual(row.save_count, 1)

    def test_missing_entries_raise_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            update_address_history_entry(self.book, "ah-9", {"address": "X"})
        with self.assertRaises(NotFoundError):
            delete_address_history_entry(self.book, "ah-9")

        delete_address_history_entry(self.book, "ah-2")
        self.assertEqual([entry.id for entry in get_address_history(self.book)], ["ah-1"])


if __name__ == "__main__":
    unittest.main()
