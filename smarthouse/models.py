from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from smarthouse.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in local tooling).
CellMap = JSON().with_variant(JSONB(), "postgresql")


class SheetHeader(Base):
    __tablename__ = "sheet_headers"

    title: Mapped[str] = mapped_column(String(100), primary_key=True)
    headers: Mapped[list[str]] = mapped_column(CellMap, nullable=False, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class SheetRow(Base):
    __tablename__ = "sheet_rows"
    __table_args__ = (
        UniqueConstraint("sheet_title", "position", name="uq_sheet_rows_title_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sheet_title: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(CellMap, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
