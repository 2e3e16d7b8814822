#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text


EXPECTED_HEAD = "0001_sheet_rows"
EXPECTED_SHEETS = [
    "Employees",
    "NonEmployees",
    "BokResidents",
    "Coordinators",
    "Addresses",
    "Rooms",
]


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in ("sheet_headers", "sheet_rows") if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})
        if missing_tables:
            return report

        known_sheets = set(conn.execute(text("select title from sheet_headers")).scalars())
        missing_sheets = [title for title in EXPECTED_SHEETS if title not in known_sheets]
        add("missing_sheets", "warn" if missing_sheets else "ok", {"sheets": missing_sheets})

        orphan_rows = conn.execute(
            text(
                """
                select r.sheet_title, count(*)
                from sheet_rows r
                left join sheet_headers h on h.title = r.sheet_title
                where h.title is null
                group by r.sheet_title
                """
            )
        ).fetchall()
        add(
            "rows_without_headers",
            "fail" if orphan_rows else "ok",
            {"rows": [list(row) for row in orphan_rows]},
        )

        duplicate_ids = conn.execute(
            text(
                """
                select sheet_title, data->>'id' as row_id, count(*)
                from sheet_rows
                where coalesce(data->>'id', '') <> ''
                group by sheet_title, data->>'id'
                having count(*) > 1
                limit 20
                """
            )
        ).fetchall()
        add(
            "duplicate_row_ids",
            "fail" if duplicate_ids else "ok",
            {"rows": [list(row) for row in duplicate_ids]},
        )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
