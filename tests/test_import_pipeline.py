from __future__ import annotations

import base64
import unittest
from datetime import date, datetime
from io import BytesIO
from unittest.mock import patch

from openpyxl import Workbook as ExcelWorkbook

from smarthouse.schemas import Coordinator, HousingSettings, ImportJobStatus, ResidentKind
from smarthouse.services.imports import (
    get_import_status,
    import_employees_from_excel,
    import_non_employees_from_excel,
    list_import_statuses,
    read_sheet_records,
    run_import_job,
)
from smarthouse.services.sheets import SHEET_EMPLOYEES, SHEET_NON_EMPLOYEES
from tests.fakes import FakeWorkbook

HEADERS = ["Imię i nazwisko", "Koordynator", "Data zameldowania", "Miejscowość", "Adres", "Pokój"]
REQUIRED = ["Koordynator", "Data zameldowania"]


def _xlsx_base64(headers: list[str], rows: list[list[object]]) -> str:
    wb = ExcelWorkbook()
    ws = wb.active
    ws.append(headers)
    for row in rows:
        ws.append(row)
    stream = BytesIO()
    wb.save(stream)
    return base64.b64encode(stream.getvalue()).decode("ascii")


def _settings(localities: list[str] | None = None) -> HousingSettings:
    return HousingSettings(
        coordinators=[
            Coordinator(uid="coord-1", name="Anna Nowak"),
            Coordinator(uid="coord-2", name="Piotr Zieliński"),
        ],
        localities=localities if localities is not None else ["Gdańsk"],
    )


class ImportPipelineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.book = FakeWorkbook()

    def test_unknown_coordinators_are_rejected_and_valid_rows_batched_in_order(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "01.03.2024", "Gdańsk", "Długa 1", "1"],
                ["Nowak Ewa", "Nieznany Koordynator", "02.03.2024", "Gdańsk", "Długa 1", "1"],
                ["Wiśniewski Adam", "piotr zieliński", "03.03.2024", "Gdańsk", "Długa 1", "2"],
                ["Lewandowska Ola", "Ktoś Inny", "04.03.2024", "Gdańsk", "Długa 1", "2"],
                ["Kamiński Marek", "ANNA NOWAK", "2024-03-05", "Gdańsk", "Długa 1", "3"],
            ],
        )

        with patch("smarthouse.services.imports.update_settings") as update_settings_mock:
            result = import_employees_from_excel(
                self.book, payload, "coord-1", _settings(), required_columns=REQUIRED
            )

        self.assertEqual(result.total_rows, 5)
        self.assertEqual(result.imported_count, 3)
        self.assertEqual(len(result.errors), 2)
        self.assertEqual(
            result.errors[0],
            "Wiersz 3 (Nowak): Nie znaleziono koordynatora 'nieznany koordynator'.",
        )
        self.assertTrue(result.errors[1].startswith("Wiersz 5 (Lewandowska)"))

        sheet = self.book.sheet(SHEET_EMPLOYEES)
        self.assertEqual(sheet.add_row_calls, 0)
        self.assertEqual(len(sheet.add_rows_calls), 1)
        batch = sheet.add_rows_calls[0]
        self.assertEqual([record["lastName"] for record in batch], ["Kowalski", "Wiśniewski", "Kamiński"])
        self.assertEqual([record["fullName"] for record in batch][0], "Kowalski Jan")
        self.assertEqual([record["coordinatorId"] for record in batch], ["coord-1", "coord-2", "coord-1"])
        self.assertEqual(batch[0]["checkInDate"], "2024-03-01")
        self.assertEqual(batch[0]["status"], "active")
        update_settings_mock.assert_not_called()

    def test_new_localities_trigger_exactly_one_settings_update(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "01.03.2024", "Sopot", "Morska 2", "1"],
                ["Nowak Ewa", "Anna Nowak", "01.03.2024", "sopot", "Morska 2", "1"],
                ["Zając Piotr", "Anna Nowak", "01.03.2024", "Gdynia", "Portowa 5", "4"],
                ["Mazur Kasia", "Anna Nowak", "01.03.2024", "Gdańsk", "Długa 1", "1"],
                ["Krawczyk Tomasz", "Brak Takiego", "01.03.2024", "Elbląg", "Polna 9", "1"],
            ],
        )

        with patch("smarthouse.services.imports.update_settings") as update_settings_mock:
            result = import_employees_from_excel(
                self.book, payload, "coord-1", _settings(["Gdańsk"]), required_columns=REQUIRED
            )

        self.assertEqual(result.imported_count, 4)
        update_settings_mock.assert_called_once()
        partial = update_settings_mock.call_args.args[1]
        self.assertEqual(partial, {"localities": ["Gdańsk", "Sopot", "Gdynia"]})

    def test_missing_required_data_is_reported_per_row(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "", "Gdańsk", "Długa 1", "1"],
                ["", "Anna Nowak", "01.03.2024", "Gdańsk", "Długa 1", "1"],
                ["Nowak Ewa", "Anna Nowak", "nie wiem", "Gdańsk", "Długa 1", "1"],
            ],
        )

        result = import_employees_from_excel(self.book, payload, "coord-1", _settings(), required_columns=REQUIRED)

        self.assertEqual(result.total_rows, 3)
        self.assertEqual(result.imported_count, 0)
        self.assertEqual(
            result.errors,
            [
                "Wiersz 2: Brak wymaganych danych w kolumnach: data zameldowania.",
                "Wiersz 3: Brak wymaganych danych w kolumnach: imię i nazwisko.",
                "Wiersz 4: Brak wymaganych danych w kolumnach: data zameldowania.",
            ],
        )
        self.assertEqual(self.book.sheet(SHEET_EMPLOYEES).add_rows_calls, [])

    def test_separate_name_columns_and_native_excel_dates(self) -> None:
        payload = _xlsx_base64(
            ["Imię", "Nazwisko", "Koordynator", "Data zameldowania", "Data wymeldowania"],
            [["Jan", "Kowalski", "Anna Nowak", datetime(2024, 3, 1), date(2024, 4, 30)]],
        )

        result = import_employees_from_excel(self.book, payload, "coord-1", _settings(), required_columns=REQUIRED)

        self.assertEqual(result.imported_count, 1)
        record = self.book.sheet(SHEET_EMPLOYEES).add_rows_calls[0][0]
        self.assertEqual(record["firstName"], "Jan")
        self.assertEqual(record["lastName"], "Kowalski")
        self.assertEqual(record["checkInDate"], "2024-03-01")
        self.assertEqual(record["checkOutDate"], "2024-04-30")

    def test_non_employee_import_reads_payment_columns(self) -> None:
        payload = _xlsx_base64(
            ["Imię i nazwisko", "Koordynator", "Data zameldowania", "Rodzaj płatności NZ", "Kwota"],
            [["Nowak Ewa", "Anna Nowak", "10.02.2024", "Gotówka", "850,50"]],
        )

        result = import_non_employees_from_excel(
            self.book, payload, "coord-1", _settings(), required_columns=REQUIRED
        )

        self.assertEqual(result.imported_count, 1)
        record = self.book.sheet(SHEET_NON_EMPLOYEES).add_rows_calls[0][0]
        self.assertTrue(record["id"].startswith("nonemp-"))
        self.assertEqual(record["paymentType"], "Gotówka")
        self.assertEqual(record["paymentAmount"], "850.5")

    def test_empty_file_reports_zero_rows(self) -> None:
        payload = _xlsx_base64(HEADERS, [])

        result = import_employees_from_excel(self.book, payload, "coord-1", _settings(), required_columns=REQUIRED)

        self.assertEqual(result.total_rows, 0)
        self.assertEqual(result.imported_count, 0)
        self.assertEqual(result.errors, [])
        self.assertNotIn(SHEET_EMPLOYEES, self.book.sheets)

    def test_unreadable_file_returns_error_instead_of_raising(self) -> None:
        payload = base64.b64encode(b"definitely not a spreadsheet").decode("ascii")

        result = import_employees_from_excel(self.book, payload, "coord-1", _settings(), required_columns=REQUIRED)

        self.assertEqual(result.total_rows, 0)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("Nie udało się odczytać pliku"))

    def test_data_url_prefix_and_blank_rows_are_ignored(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "01.03.2024", "", "", ""],
                [None, None, None, None, None, None],
                ["Nowak Ewa", "Anna Nowak", "01.03.2024", "", "", ""],
            ],
        )

        records = read_sheet_records(
            "data:application/vnd.openxmlformats-officedocument.spreadsheetml.sheet;base64," + payload
        )

        self.assertEqual(len(records), 2)
        self.assertEqual([row_number for row_number, _ in records], [2, 4])
        self.assertEqual(records[1][1]["Imię i nazwisko"], "Nowak Ewa")

    def test_error_rows_keep_sheet_numbers_after_blank_lines(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "01.03.2024", "", "", ""],
                [None, None, None, None, None, None],
                [None, None, None, None, None, None],
                ["Nowak Ewa", "Nikt", "01.03.2024", "", "", ""],
            ],
        )

        result = import_employees_from_excel(self.book, payload, "coord-1", _settings(), required_columns=REQUIRED)

        self.assertEqual(result.total_rows, 2)
        self.assertEqual(result.errors, ["Wiersz 5 (Nowak): Nie znaleziono koordynatora 'nikt'."])

    def test_check_in_date_is_required_even_when_not_configured(self) -> None:
        payload = _xlsx_base64(
            ["Imię i nazwisko", "Koordynator", "Data zameldowania"],
            [
                ["Kowalski Jan", "Anna Nowak", None],
                ["Nowak Ewa", "Anna Nowak", "01.03.2024"],
            ],
        )

        result = import_employees_from_excel(
            self.book, payload, "coord-1", _settings(), required_columns=["Koordynator"]
        )

        self.assertEqual(result.imported_count, 1)
        self.assertEqual(result.errors, ["Wiersz 2: Brak wymaganych danych w kolumnach: data zameldowania."])
        batch = self.book.sheet(SHEET_EMPLOYEES).add_rows_calls[0]
        self.assertEqual([record["checkInDate"] for record in batch], ["2024-03-01"])

    def test_run_import_job_tracks_status_row(self) -> None:
        payload = _xlsx_base64(
            HEADERS,
            [
                ["Kowalski Jan", "Anna Nowak", "01.03.2024", "Gdańsk", "Długa 1", "1"],
                ["Nowak Ewa", "Nikt", "01.03.2024", "Gdańsk", "Długa 1", "1"],
            ],
        )

        with patch("smarthouse.services.imports.get_import_required_columns", return_value=REQUIRED):
            job, result = run_import_job(
                self.book,
                ResidentKind.EMPLOYEE,
                file_name="lista.xlsx",
                file_base64=payload,
                actor_id="coord-1",
                settings=_settings(),
            )

        self.assertEqual(job.status, ImportJobStatus.COMPLETED)
        self.assertEqual(job.total_rows, 2)
        self.assertEqual(job.processed_rows, 1)
        self.assertEqual(job.actor_name, "Anna Nowak")
        self.assertEqual(result.imported_count, 1)

        stored = get_import_status(self.book, job.job_id)
        self.assertEqual(stored.status, ImportJobStatus.COMPLETED)
        self.assertEqual(stored.message, "Zaimportowano 1 z 2 wierszy. Błędy: 1.")
        self.assertEqual(len(list_import_statuses(self.book)), 1)

    def test_run_import_job_marks_unreadable_file_as_failed(self) -> None:
        job, result = run_import_job(
            self.book,
            ResidentKind.EMPLOYEE,
            file_name="zly.xlsx",
            file_base64=base64.b64encode(b"garbage").decode("ascii"),
            actor_id="admin",
            settings=_settings(),
        )

        self.assertEqual(job.status, ImportJobStatus.FAILED)
        self.assertEqual(job.actor_name, "Admin")
        self.assertEqual(job.message, result.errors[0])

    def test_run_import_job_marks_failed_and_reraises_on_storage_error(self) -> None:
        payload = _xlsx_base64(HEADERS, [["Kowalski Jan", "Anna Nowak", "01.03.2024", "", "", ""]])

        with patch("smarthouse.services.imports.get_import_required_columns", return_value=REQUIRED), patch(
            "smarthouse.services.imports.resident_sheet",
            side_effect=ConnectionError("row store unavailable"),
        ):
            with self.assertRaises(ConnectionError):
                run_import_job(
                    self.book,
                    ResidentKind.EMPLOYEE,
                    file_name="lista.xlsx",
                    file_base64=payload,
                    actor_id="coord-1",
                    settings=_settings(),
                )

        statuses = list_import_statuses(self.book)
        self.assertEqual(len(statuses), 1)
        self.assertEqual(statuses[0].status, ImportJobStatus.FAILED)
        self.assertEqual(statuses[0].message, "row store unavailable")
        self.assertEqual(self.book.db.rollbacks, 1)


if __name__ == "__main__":
    unittest.main()
