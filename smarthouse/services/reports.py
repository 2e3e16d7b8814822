from __future__ import annotations

import base64
import calendar
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from io import BytesIO

from openpyxl import Workbook as ExcelWorkbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from smarthouse.rowstore import Workbook
from smarthouse.schemas import Employee, HousingSettings, NonEmployee, ReportFile, ResidentBase
from smarthouse.services.sheets import get_employees, get_non_employees, get_settings

ALL_COORDINATORS = "all"

ACCOMMODATION_HEADERS = [
    "Imię i nazwisko",
    "Koordynator",
    "Zakład",
    "Miejscowość",
    "Adres",
    "Pokój",
    "Od",
    "Do",
    "Dni w miesiącu",
]
NZ_COSTS_HEADERS = [
    "Imię i nazwisko",
    "Koordynator",
    "Adres",
    "Pokój",
    "Data zameldowania",
    "Data wymeldowania",
    "Rodzaj płatności NZ",
    "Kwota",
    "Dni w miesiącu",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
ZEBRA_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
SUMMARY_FILL = PatternFill(fill_type="solid", fgColor="E9F1F7")
HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)


@dataclass(frozen=True, slots=True)
class StaySegment:
    resident: ResidentBase
    address: str
    start: date | None
    end: date | None


def month_bounds(year: int, month: int) -> tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def days_in_month(check_in: date | None, check_out: date | None, year: int, month: int) -> int:
    """Days of ``year-month`` covered by the stay, both ends inclusive; open stays run to month end."""
    if check_in is None:
        return 0
    first_day, last_day = month_bounds(year, month)
    start = max(check_in, first_day)
    end = min(check_out, last_day) if check_out is not None else last_day
    if end < start:
        return 0
    return (end - start).days + 1


def stay_segments(resident: ResidentBase) -> list[StaySegment]:
    """Split an employee's stay at ``address_change_date`` when the old address is known."""
    if isinstance(resident, Employee) and resident.old_address and resident.address_change_date is not None:
        change_day = resident.address_change_date
        return [
            StaySegment(resident, resident.old_address, resident.check_in_date, change_day - timedelta(days=1)),
            StaySegment(resident, resident.address, change_day, resident.check_out_date),
        ]
    return [StaySegment(resident, resident.address, resident.check_in_date, resident.check_out_date)]


def _matches_coordinator(resident: ResidentBase, coordinator_id: str) -> bool:
    return coordinator_id == ALL_COORDINATORS or resident.coordinator_id == coordinator_id


def _style_header(ws: Worksheet, row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _style_body(ws: Worksheet, *, first_row: int, last_row: int) -> None:
    for row_idx in range(first_row, last_row + 1):
        for cell in ws[row_idx]:
            cell.border = THIN_BORDER
            if (row_idx - first_row) % 2 == 1:
                cell.fill = ZEBRA_FILL


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = max(len("" if cell.value is None else str(cell.value)) for cell in column_cells)
        ws.column_dimensions[get_column_letter(column_cells[0].column)].width = min(max_len + 2, 45)


def _finish_sheet(ws: Worksheet, data_rows: int) -> None:
    _style_header(ws)
    _style_body(ws, first_row=2, last_row=data_rows + 1)
    ws.freeze_panes = "A2"
    if data_rows:
        ws.auto_filter.ref = f"A1:{get_column_letter(ws.max_column)}{data_rows + 1}"
    _auto_width(ws)


def _encode(wb: ExcelWorkbook) -> str:
    stream = BytesIO()
    wb.save(stream)
    return base64.b64encode(stream.getvalue()).decode("ascii")


def _locality_of(settings: HousingSettings, address_name: str) -> str:
    address = settings.find_address(address_name)
    return address.locality if address is not None else ""


def _coordinator_name(settings: HousingSettings, coordinator_id: str) -> str:
    coordinator = settings.find_coordinator(coordinator_id)
    return coordinator.name if coordinator is not None else "N/A"


def build_accommodation_report(
    settings: HousingSettings,
    residents: Sequence[ResidentBase],
    year: int,
    month: int,
    coordinator_id: str = ALL_COORDINATORS,
) -> ReportFile:
    first_day, last_day = month_bounds(year, month)
    wb = ExcelWorkbook()
    ws = wb.active
    ws.title = "Raport Zakwaterowania"
    ws.append(ACCOMMODATION_HEADERS)

    total_days = 0
    data_rows = 0
    for resident in residents:
        if not _matches_coordinator(resident, coordinator_id):
            continue
        for segment in stay_segments(resident):
            days = days_in_month(segment.start, segment.end, year, month)
            if days <= 0:
                continue
            start = max(segment.start, first_day) if segment.start else first_day
            end = min(segment.end, last_day) if segment.end else last_day
            ws.append(
                [
                    resident.full_name,
                    _coordinator_name(settings, resident.coordinator_id),
                    resident.zaklad,
                    _locality_of(settings, segment.address),
                    segment.address,
                    resident.room_number,
                    start.isoformat(),
                    end.isoformat(),
                    days,
                ]
            )
            total_days += days
            data_rows += 1

    _finish_sheet(ws, data_rows)
    ws.append(["Razem", "", "", "", "", "", "", "", total_days])
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER

    return ReportFile(
        file_name=f"Raport_Zakwaterowania_{year}_{month:02d}.xlsx",
        file_content_base64=_encode(wb),
    )


def build_nz_costs_report(
    settings: HousingSettings,
    non_employees: Sequence[NonEmployee],
    year: int,
    month: int,
    coordinator_id: str = ALL_COORDINATORS,
) -> ReportFile:
    wb = ExcelWorkbook()
    ws = wb.active
    ws.title = "Koszty NZ"
    ws.append(NZ_COSTS_HEADERS)

    total_amount = 0.0
    data_rows = 0
    for resident in non_employees:
        if not _matches_coordinator(resident, coordinator_id):
            continue
        days = days_in_month(resident.check_in_date, resident.check_out_date, year, month)
        if days <= 0:
            continue
        amount = resident.payment_amount or 0.0
        ws.append(
            [
                resident.full_name,
                _coordinator_name(settings, resident.coordinator_id),
                resident.address,
                resident.room_number,
                resident.check_in_date.isoformat() if resident.check_in_date else "",
                resident.check_out_date.isoformat() if resident.check_out_date else "",
                resident.payment_type or "",
                amount,
                days,
            ]
        )
        total_amount += amount
        data_rows += 1

    _finish_sheet(ws, data_rows)
    ws.append(["Razem", "", "", "", "", "", "", total_amount, ""])
    for cell in ws[ws.max_row]:
        cell.font = BOLD_FONT
        cell.fill = SUMMARY_FILL
        cell.border = THIN_BORDER

    return ReportFile(
        file_name=f"Raport_Koszty_NZ_{year}_{month:02d}.xlsx",
        file_content_base64=_encode(wb),
    )


def generate_accommodation_report(
    book: Workbook,
    year: int,
    month: int,
    coordinator_id: str = ALL_COORDINATORS,
    *,
    include_non_employees: bool = False,
) -> ReportFile:
    residents: list[ResidentBase] = list(get_employees(book))
    if include_non_employees:
        residents.extend(get_non_employees(book))
    return build_accommodation_report(get_settings(book), residents, year, month, coordinator_id)


def generate_nz_costs_report(
    book: Workbook,
    year: int,
    month: int,
    coordinator_id: str = ALL_COORDINATORS,
) -> ReportFile:
    return build_nz_costs_report(get_settings(book), get_non_employees(book), year, month, coordinator_id)
