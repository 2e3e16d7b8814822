"""Spreadsheet-style row store on top of SQLAlchemy.

Every sheet is a named list of rows; a row is a map of column name to string
cell.  Services only see :class:`Workbook`, :class:`Worksheet` and
:class:`Row`, never the ORM models, so the storage could be swapped for a real
spreadsheet client without touching business logic.
"""

from __future__ import annotations

import logging
from collections.abc import Generator, Iterable, Mapping, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi import Depends
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from smarthouse.db import get_db
from smarthouse.models import SheetHeader, SheetRow

logger = logging.getLogger("smarthouse.rowstore")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Enum):
        return to_cell(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    return str(value)


class Row:
    def __init__(self, sheet: Worksheet, record: SheetRow):
        self._sheet = sheet
        self._record = record
        self._pending: dict[str, str] = {}
        self._deleted = False

    @property
    def row_number(self) -> int:
        # Header occupies row 1 in spreadsheet terms.
        return self._record.position + 2

    def get(self, column: str) -> str:
        if column in self._pending:
            return self._pending[column]
        value = (self._record.data or {}).get(column)
        return "" if value is None else str(value)

    def set(self, column: str, value: Any) -> None:
        if self._deleted:
            raise RuntimeError("Cannot modify a deleted row.")
        self._sheet.ensure_headers([column])
        self._pending[column] = to_cell(value)

    def to_dict(self) -> dict[str, str]:
        data = {column: self.get(column) for column in self._sheet.headers}
        data.update(self._pending)
        return data

    def save(self) -> None:
        if self._deleted:
            raise RuntimeError("Cannot save a deleted row.")
        if not self._pending:
            return
        db = self._sheet.db
        # Reassign instead of mutating so SQLAlchemy sees the JSON change.
        self._record.data = {**(self._record.data or {}), **self._pending}
        self._record.updated_at = _utcnow()
        db.add(self._record)
        db.commit()
        self._pending.clear()

    def delete(self) -> None:
        db = self._sheet.db
        db.delete(self._record)
        db.commit()
        self._deleted = True
        self._pending.clear()


class Worksheet:
    def __init__(self, db: Session, header: SheetHeader):
        self.db = db
        self._header = header

    @property
    def title(self) -> str:
        return self._header.title

    @property
    def headers(self) -> list[str]:
        return list(self._header.headers or [])

    def ensure_headers(self, columns: Iterable[str]) -> None:
        current = self.headers
        missing = [column for column in columns if column not in current]
        if not missing:
            return
        self._header.headers = current + missing
        self._header.updated_at = _utcnow()
        self.db.add(self._header)
        self.db.commit()
        logger.info(
            "sheet_headers_extended",
            extra={"sheet": self.title, "added_columns": missing},
        )

    def _next_position(self) -> int:
        current_max = self.db.scalar(
            select(func.max(SheetRow.position)).where(SheetRow.sheet_title == self.title)
        )
        return 0 if current_max is None else int(current_max) + 1

    def _build_record(self, record: Mapping[str, Any], position: int) -> SheetRow:
        self.ensure_headers(record.keys())
        now = _utcnow()
        return SheetRow(
            sheet_title=self.title,
            position=position,
            data={column: to_cell(value) for column, value in record.items()},
            created_at=now,
            updated_at=now,
        )

    def get_rows(self) -> list[Row]:
        records = self.db.scalars(
            select(SheetRow)
            .where(SheetRow.sheet_title == self.title)
            .order_by(SheetRow.position.asc())
        ).all()
        return [Row(self, record) for record in records]

    def add_row(self, record: Mapping[str, Any]) -> Row:
        row = self._build_record(record, self._next_position())
        self.db.add(row)
        self.db.commit()
        return Row(self, row)

    def add_rows(self, records: Sequence[Mapping[str, Any]]) -> list[Row]:
        if not records:
            return []
        position = self._next_position()
        built: list[SheetRow] = []
        for offset, record in enumerate(records):
            built.append(self._build_record(record, position + offset))
        self.db.add_all(built)
        self.db.commit()
        logger.info("sheet_rows_added", extra={"sheet": self.title, "count": len(built)})
        return [Row(self, item) for item in built]

    def clear_rows(self) -> int:
        result = self.db.execute(delete(SheetRow).where(SheetRow.sheet_title == self.title))
        self.db.commit()
        return int(result.rowcount or 0)


class Workbook:
    def __init__(self, db: Session):
        self.db = db

    def get_sheet(self, title: str, headers: Sequence[str]) -> Worksheet:
        header = self.db.get(SheetHeader, title)
        if header is None:
            header = SheetHeader(title=title, headers=list(headers), updated_at=_utcnow())
            self.db.add(header)
            self.db.commit()
            logger.info("sheet_created", extra={"sheet": title, "columns": len(headers)})
            return Worksheet(self.db, header)
        sheet = Worksheet(self.db, header)
        sheet.ensure_headers(headers)
        return sheet


def get_workbook(db: Session = Depends(get_db)) -> Generator[Workbook, None, None]:
    yield Workbook(db)
