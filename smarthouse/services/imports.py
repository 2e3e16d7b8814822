"""Bulk import of residents from an uploaded Excel workbook.

The first worksheet is read with openpyxl; its first row holds the Polish
column headers.  Every data row is validated on its own and rejected rows
end up as messages in ``ImportResult.errors``; only the accepted rows are
written, in a single ``add_rows`` call.
"""

from __future__ import annotations

import base64
import binascii
import logging
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from io import BytesIO
from typing import Any
from uuid import uuid4

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from smarthouse.audit import log_audit
from smarthouse.errors import NotFoundError
from smarthouse.rowstore import Workbook, Worksheet
from smarthouse.schemas import (
    Coordinator,
    Employee,
    HousingSettings,
    ImportJobStatus,
    ImportResult,
    ImportStatus,
    NonEmployee,
    ResidentBase,
    ResidentKind,
    ResidentStatus,
)
from smarthouse.services.dates import parse_lenient_date
from smarthouse.services.notifications import resolve_actor_name
from smarthouse.services.serialization import (
    IMPORT_STATUS_COLUMNS,
    headers_for,
    import_status_from_row,
    import_status_to_row,
    parse_number_cell,
    split_full_name,
    to_row,
)
from smarthouse.services.sheets import SHEET_IMPORT_STATUS, find_row, resident_sheet, update_settings
from smarthouse.settings import get_import_required_columns

logger = logging.getLogger("smarthouse.imports")

COL_FIRST_NAME = "Imię"
COL_LAST_NAME = "Nazwisko"
COL_FULL_NAME = "Imię i nazwisko"
COL_COORDINATOR = "Koordynator"
COL_NATIONALITY = "Narodowość"
COL_GENDER = "Płeć"
COL_DEPARTMENT = "Zakład"
COL_LOCALITY = "Miejscowość"
COL_ADDRESS = "Adres"
COL_ROOM = "Pokój"
COL_CHECK_IN = "Data zameldowania"
COL_CHECK_OUT = "Data wymeldowania"
COL_COMMENTS = "Komentarze"
COL_PAYMENT_TYPE = "Rodzaj płatności NZ"
COL_AMOUNT = "Kwota"

_DATE_COLUMNS = {COL_CHECK_IN.casefold(), COL_CHECK_OUT.casefold()}
_ID_PREFIXES = {ResidentKind.EMPLOYEE: "emp", ResidentKind.NON_EMPLOYEE: "nonemp"}

IMPORT_STATUS_HEADERS = headers_for(IMPORT_STATUS_COLUMNS)


class ImportFileError(ValueError):
    pass


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _strip_data_url(payload: str) -> str:
    if payload.startswith("data:") and "," in payload:
        return payload.split(",", 1)[1]
    return payload


def read_sheet_records(file_base64: str) -> list[tuple[int, dict[str, Any]]]:
    """Decode the upload and project its first worksheet onto header-keyed dicts.

    Each record is paired with its spreadsheet row number; blank rows are dropped
    without shifting the numbers of the rows after them.
    """
    try:
        raw = base64.b64decode(_strip_data_url(file_base64.strip()), validate=False)
        workbook = load_workbook(BytesIO(raw), read_only=True, data_only=True)
    except (binascii.Error, InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as exc:
        raise ImportFileError(str(exc) or exc.__class__.__name__) from exc

    try:
        if not workbook.worksheets:
            return []
        rows = workbook.worksheets[0].iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        headers = [_cell_text(item) for item in header]

        records: list[tuple[int, dict[str, Any]]] = []
        for row_number, values in enumerate(rows, start=2):
            if all(_cell_text(value) == "" for value in values):
                continue
            record = {
                headers[index]: value
                for index, value in enumerate(values)
                if index < len(headers) and headers[index]
            }
            records.append((row_number, record))
        return records
    finally:
        workbook.close()


class _RowReader:
    def __init__(self, record: Mapping[str, Any]):
        self._cells = {str(key).strip().casefold(): value for key, value in record.items()}

    def text(self, column: str) -> str:
        return _cell_text(self._cells.get(column.casefold()))

    def date(self, column: str) -> date | None:
        return parse_lenient_date(self._cells.get(column.casefold()))

    def is_missing(self, column: str) -> bool:
        if column.casefold() in _DATE_COLUMNS:
            return self.date(column) is None
        return self.text(column) == ""


@dataclass
class _ImportContext:
    kind: ResidentKind
    settings: HousingSettings
    required_columns: Sequence[str]
    coordinators_by_name: dict[str, Coordinator] = field(default_factory=dict)
    known_localities: set[str] = field(default_factory=set)
    staged_localities: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, kind: ResidentKind, settings: HousingSettings, required_columns: Sequence[str]) -> _ImportContext:
        return cls(
            kind=kind,
            settings=settings,
            required_columns=required_columns,
            coordinators_by_name={item.name.strip().casefold(): item for item in settings.coordinators},
            known_localities={item.strip().casefold() for item in settings.localities},
        )

    def stage_locality(self, locality: str) -> None:
        key = locality.casefold()
        if not locality or key in self.known_localities:
            return
        self.known_localities.add(key)
        self.staged_localities.append(locality)


def _split_names(reader: _RowReader) -> tuple[str, str]:
    first_name = reader.text(COL_FIRST_NAME)
    last_name = reader.text(COL_LAST_NAME)
    if first_name or last_name:
        return first_name, last_name
    last_name, first_name = split_full_name(reader.text(COL_FULL_NAME))
    return first_name, last_name


def _build_resident(
    kind: ResidentKind,
    reader: _RowReader,
    *,
    first_name: str,
    last_name: str,
    coordinator_id: str,
) -> ResidentBase:
    common: dict[str, Any] = {
        "id": f"{_ID_PREFIXES[kind]}-{uuid4().hex[:12]}",
        "first_name": first_name,
        "last_name": last_name,
        "coordinator_id": coordinator_id,
        "nationality": reader.text(COL_NATIONALITY),
        "gender": reader.text(COL_GENDER),
        "address": reader.text(COL_ADDRESS),
        "room_number": reader.text(COL_ROOM),
        "zaklad": reader.text(COL_DEPARTMENT),
        "check_in_date": reader.date(COL_CHECK_IN),
        "check_out_date": reader.date(COL_CHECK_OUT),
        "status": ResidentStatus.ACTIVE,
        "comments": reader.text(COL_COMMENTS) or None,
    }
    if kind == ResidentKind.NON_EMPLOYEE:
        return NonEmployee(
            **common,
            payment_type=reader.text(COL_PAYMENT_TYPE) or None,
            payment_amount=parse_number_cell(reader.text(COL_AMOUNT)),
        )
    return Employee(**common)


def _validate_row(
    context: _ImportContext,
    row_number: int,
    record: Mapping[str, Any],
) -> tuple[ResidentBase | None, str | None]:
    reader = _RowReader(record)
    first_name, last_name = _split_names(reader)

    missing: list[str] = []
    if not first_name and not last_name:
        missing.append(COL_FULL_NAME)
    if reader.date(COL_CHECK_IN) is None:
        missing.append(COL_CHECK_IN)
    missing.extend(
        column
        for column in context.required_columns
        if column.casefold() != COL_CHECK_IN.casefold() and reader.is_missing(column)
    )
    if missing:
        columns = ", ".join(column.lower() for column in missing)
        return None, f"Wiersz {row_number}: Brak wymaganych danych w kolumnach: {columns}."

    coordinator_input = reader.text(COL_COORDINATOR)
    coordinator = context.coordinators_by_name.get(coordinator_input.casefold())
    if coordinator is None:
        return None, (
            f"Wiersz {row_number} ({last_name}): "
            f"Nie znaleziono koordynatora '{coordinator_input.lower()}'."
        )

    resident = _build_resident(
        context.kind,
        reader,
        first_name=first_name,
        last_name=last_name,
        coordinator_id=coordinator.uid,
    )
    context.stage_locality(reader.text(COL_LOCALITY))
    return resident, None


def _import_residents(
    book: Workbook,
    kind: ResidentKind,
    file_base64: str,
    actor_id: str,
    settings: HousingSettings,
    required_columns: Sequence[str] | None,
) -> ImportResult:
    try:
        records = read_sheet_records(file_base64)
    except ImportFileError as exc:
        logger.warning("import_file_unreadable", extra={"kind": kind.value, "actor_id": actor_id, "error": str(exc)})
        return ImportResult(
            imported_count=0,
            total_rows=0,
            errors=[f"Nie udało się odczytać pliku: {exc}"],
        )

    columns = list(required_columns) if required_columns is not None else get_import_required_columns(kind.value)
    context = _ImportContext.build(kind, settings, columns)

    valid: list[ResidentBase] = []
    errors: list[str] = []
    for row_number, record in records:
        resident, error = _validate_row(context, row_number, record)
        if error is not None:
            errors.append(error)
            continue
        valid.append(resident)  # type: ignore[arg-type]

    if valid:
        resident_sheet(book, kind).add_rows([to_row(resident) for resident in valid])

    if context.staged_localities:
        update_settings(book, {"localities": [*settings.localities, *context.staged_localities]})

    logger.info(
        "import_finished",
        extra={
            "kind": kind.value,
            "actor_id": actor_id,
            "total_rows": len(records),
            "imported": len(valid),
            "rejected": len(errors),
            "new_localities": context.staged_localities,
        },
    )
    return ImportResult(imported_count=len(valid), total_rows=len(records), errors=errors)


def import_employees_from_excel(
    book: Workbook,
    file_base64: str,
    actor_id: str,
    settings: HousingSettings,
    *,
    required_columns: Sequence[str] | None = None,
) -> ImportResult:
    return _import_residents(book, ResidentKind.EMPLOYEE, file_base64, actor_id, settings, required_columns)


def import_non_employees_from_excel(
    book: Workbook,
    file_base64: str,
    actor_id: str,
    settings: HousingSettings,
    *,
    required_columns: Sequence[str] | None = None,
) -> ImportResult:
    return _import_residents(book, ResidentKind.NON_EMPLOYEE, file_base64, actor_id, settings, required_columns)


_IMPORTERS = {
    ResidentKind.EMPLOYEE: import_employees_from_excel,
    ResidentKind.NON_EMPLOYEE: import_non_employees_from_excel,
}


def import_status_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_IMPORT_STATUS, IMPORT_STATUS_HEADERS)


def _save_status(book: Workbook, status: ImportStatus) -> None:
    sheet = import_status_sheet(book)
    row = find_row(sheet, status.job_id, column="jobId")
    record = import_status_to_row(status)
    if row is None:
        sheet.add_row(record)
        return
    for column, value in record.items():
        row.set(column, value)
    row.save()


def _summary_message(result: ImportResult) -> str:
    message = f"Zaimportowano {result.imported_count} z {result.total_rows} wierszy."
    if result.errors:
        message += f" Błędy: {len(result.errors)}."
    return message


def run_import_job(
    book: Workbook,
    kind: ResidentKind,
    *,
    file_name: str,
    file_base64: str,
    actor_id: str,
    settings: HousingSettings,
) -> tuple[ImportStatus, ImportResult]:
    """Run one import and track it in an ``ImportStatus`` row the client can poll."""
    if kind not in _IMPORTERS:
        raise ValueError(f"Import is not supported for {kind.value}.")

    status = ImportStatus(
        job_id=f"import-{uuid4().hex[:12]}",
        file_name=file_name,
        status=ImportJobStatus.PROCESSING,
        message="Przetwarzanie pliku...",
        actor_name=resolve_actor_name(settings, actor_id),
        created_at=datetime.now(timezone.utc),
    )
    _save_status(book, status)

    try:
        result = _IMPORTERS[kind](book, file_base64, actor_id, settings)
    except Exception as exc:
        book.db.rollback()
        failed = status.model_copy(update={"status": ImportJobStatus.FAILED, "message": str(exc)})
        try:
            _save_status(book, failed)
        except Exception:
            logger.exception("import_status_write_failed", extra={"job_id": status.job_id})
        log_audit(
            book,
            actor_id=actor_id,
            actor_name=status.actor_name,
            action="import_failed",
            success=False,
            entity_type=kind.value,
            details={"job_id": status.job_id, "file_name": file_name},
        )
        raise

    failed_to_read = result.total_rows == 0 and bool(result.errors)
    finished = status.model_copy(
        update={
            "status": ImportJobStatus.FAILED if failed_to_read else ImportJobStatus.COMPLETED,
            "total_rows": result.total_rows,
            "processed_rows": result.imported_count,
            "message": result.errors[0] if failed_to_read else _summary_message(result),
        }
    )
    _save_status(book, finished)
    log_audit(
        book,
        actor_id=actor_id,
        actor_name=status.actor_name,
        action="import_completed",
        success=not failed_to_read,
        entity_type=kind.value,
        details={
            "job_id": status.job_id,
            "file_name": file_name,
            "imported": result.imported_count,
            "total_rows": result.total_rows,
            "errors": len(result.errors),
        },
    )
    return finished, result


def list_import_statuses(book: Workbook) -> list[ImportStatus]:
    statuses = [
        item
        for item in (import_status_from_row(row.to_dict()) for row in import_status_sheet(book).get_rows())
        if item is not None
    ]
    statuses.sort(key=lambda item: item.created_at, reverse=True)
    return statuses


def get_import_status(book: Workbook, job_id: str) -> ImportStatus:
    for status in list_import_statuses(book):
        if status.job_id == job_id:
            return status
    raise NotFoundError("Import job not found.")
