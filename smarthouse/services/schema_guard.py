from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine

from smarthouse.models import SheetHeader, SheetRow


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def _model_columns(model: type) -> set[str]:
    return {column.name for column in model.__table__.columns}  # type: ignore[attr-defined]


# Row-store tables come from the ORM models so the guard follows migrations.
REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    SheetHeader.__tablename__: _model_columns(SheetHeader),
    SheetRow.__tablename__: _model_columns(SheetRow),
    "alembic_version": {"version_num"},
}
EXPECTED_ROW_INDEXES = ("ix_sheet_rows_sheet_title",)


def _check_columns(inspector: Any, issues: list[str]) -> None:
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_columns - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_row_indexes(inspector: Any, warnings: list[str]) -> None:
    try:
        indexes = {str(item.get("name")) for item in inspector.get_indexes(SheetRow.__tablename__)}
    except Exception as exc:  # pragma: no cover
        warnings.append(f"INDEX_INSPECTION_FAILED:{exc.__class__.__name__}")
        return
    if not indexes:
        return
    for name in EXPECTED_ROW_INDEXES:
        if name not in indexes:
            warnings.append(f"INDEX_NOT_FOUND:{name}")


def _check_alembic_version(engine: Engine, issues: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except Exception as exc:  # pragma: no cover
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return
    if not (str(row).strip() if row is not None else ""):
        issues.append("ALEMBIC_VERSION_EMPTY")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    """Check that the sheet tables exist with their columns before serving requests."""
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    _check_columns(inspector, issues)
    _check_row_indexes(inspector, warnings)
    _check_alembic_version(engine, issues)

    return SchemaGuardResult(
        ok=not issues,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
