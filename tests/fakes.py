from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from smarthouse.rowstore import to_cell


class FakeDB:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


class FakeRow:
    def __init__(self, sheet: FakeSheet, record: dict[str, str]):
        self._sheet = sheet
        self.record = record
        self._pending: dict[str, str] = {}
        self.save_count = 0
        self.deleted = False

    @property
    def row_number(self) -> int:
        return self._sheet.records.index(self.record) + 2

    def get(self, column: str) -> str:
        if column in self._pending:
            return self._pending[column]
        return str(self.record.get(column) or "")

    def set(self, column: str, value: Any) -> None:
        self._sheet.ensure_headers([column])
        self._pending[column] = to_cell(value)

    def to_dict(self) -> dict[str, str]:
        data = {column: self.get(column) for column in self._sheet.headers}
        data.update(self._pending)
        return data

    def save(self) -> None:
        if not self._pending:
            return
        self.record.update(self._pending)
        self._pending.clear()
        self.save_count += 1
        self._sheet.saves += 1

    def delete(self) -> None:
        self._sheet.records.remove(self.record)
        self._sheet._rows.pop(id(self.record), None)
        self.deleted = True
        self._sheet.deletes += 1


class FakeSheet:
    def __init__(self, title: str, headers: Sequence[str]):
        self.title = title
        self._headers = list(headers)
        self.records: list[dict[str, str]] = []
        self.add_row_calls = 0
        self.add_rows_calls: list[list[dict[str, str]]] = []
        self.saves = 0
        self.deletes = 0
        self._rows: dict[int, FakeRow] = {}

    @property
    def headers(self) -> list[str]:
        return list(self._headers)

    def ensure_headers(self, columns: Iterable[str]) -> None:
        for column in columns:
            if column not in self._headers:
                self._headers.append(column)

    def _row_for(self, record: dict[str, str]) -> FakeRow:
        row = self._rows.get(id(record))
        if row is None:
            row = FakeRow(self, record)
            self._rows[id(record)] = row
        return row

    def get_rows(self) -> list[FakeRow]:
        return [self._row_for(record) for record in self.records]

    def _append(self, record: Mapping[str, Any]) -> FakeRow:
        self.ensure_headers(record.keys())
        stored = {column: to_cell(value) for column, value in record.items()}
        self.records.append(stored)
        return self._row_for(stored)

    def add_row(self, record: Mapping[str, Any]) -> FakeRow:
        self.add_row_calls += 1
        return self._append(record)

    def add_rows(self, records: Sequence[Mapping[str, Any]]) -> list[FakeRow]:
        if not records:
            return []
        self.add_rows_calls.append([dict(record) for record in records])
        return [self._append(record) for record in records]

    def clear_rows(self) -> int:
        removed = len(self.records)
        self.records.clear()
        self._rows.clear()
        return removed

    def seed(self, *records: Mapping[str, Any]) -> FakeSheet:
        for record in records:
            self._append(record)
        return self


class FakeWorkbook:
    def __init__(self) -> None:
        self.db = FakeDB()
        self.sheets: dict[str, FakeSheet] = {}

    def get_sheet(self, title: str, headers: Sequence[str]) -> FakeSheet:
        sheet = self.sheets.get(title)
        if sheet is None:
            sheet = FakeSheet(title, headers)
            self.sheets[title] = sheet
        else:
            sheet.ensure_headers(headers)
        return sheet

    def sheet(self, title: str) -> FakeSheet:
        return self.get_sheet(title, [])


class FailingSheet(FakeSheet):
    def add_row(self, record: Mapping[str, Any]) -> FakeRow:
        raise RuntimeError("sheet unavailable")


def seed_settings(
    book: FakeWorkbook,
    *,
    coordinators: Iterable[Mapping[str, Any]] = (),
    addresses: Iterable[Mapping[str, Any]] = (),
    rooms: Iterable[Mapping[str, Any]] = (),
    localities: Iterable[str] = (),
) -> None:
    from smarthouse.services.sheets import (
        ADDRESS_HEADERS,
        COORDINATOR_HEADERS,
        ROOM_HEADERS,
        SHEET_ADDRESSES,
        SHEET_COORDINATORS,
        SHEET_ROOMS,
        SIMPLE_LIST_SHEETS,
    )

    book.get_sheet(SHEET_COORDINATORS, COORDINATOR_HEADERS).seed(*coordinators)
    book.get_sheet(SHEET_ADDRESSES, ADDRESS_HEADERS).seed(*addresses)
    book.get_sheet(SHEET_ROOMS, ROOM_HEADERS).seed(*rooms)
    book.get_sheet(SIMPLE_LIST_SHEETS["localities"], ["name"]).seed(*({"name": name} for name in localities))
