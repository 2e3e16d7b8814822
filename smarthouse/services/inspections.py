"""Address inspections.

An inspection is stored as one header row in ``Inspections`` plus a flat list
of rows in ``InspectionDetails``: one per checklist item, and one per category
(empty ``itemLabel``) carrying that category's notes and photos.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from smarthouse.errors import NotFoundError
from smarthouse.rowstore import Row, Workbook, Worksheet
from smarthouse.schemas import Inspection, InspectionCategory, InspectionItem
from smarthouse.services.serialization import parse_datetime_cell
from smarthouse.services.sheets import SHEET_INSPECTION_DETAILS, SHEET_INSPECTIONS, find_row

logger = logging.getLogger("smarthouse.inspections")

INSPECTION_HEADERS = ["id", "addressId", "addressName", "date", "coordinatorId", "coordinatorName", "standard"]
INSPECTION_DETAIL_HEADERS = [
    "id",
    "inspectionId",
    "addressName",
    "date",
    "coordinatorName",
    "category",
    "itemLabel",
    "itemType",
    "itemValue",
    "itemOptions",
    "uwagi",
    "photoData",
]


def inspections_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_INSPECTIONS, INSPECTION_HEADERS)


def details_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_INSPECTION_DETAILS, INSPECTION_DETAIL_HEADERS)


def _loads(raw: str, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("inspection_detail_json_invalid")
        return default


def _detail_rows(inspection: Inspection) -> list[dict[str, Any]]:
    common = {
        "inspectionId": inspection.id,
        "addressName": inspection.address_name,
        "date": inspection.date.isoformat(),
        "coordinatorName": inspection.coordinator_name,
    }
    rows: list[dict[str, Any]] = []
    for category in inspection.categories:
        rows.append(
            {
                **common,
                "id": f"insp-det-{uuid4().hex[:12]}",
                "category": category.name,
                "itemLabel": "",
                "uwagi": category.uwagi,
                "photoData": json.dumps(category.photos) if category.photos else "",
            }
        )
        for item in category.items:
            rows.append(
                {
                    **common,
                    "id": f"insp-det-{uuid4().hex[:12]}",
                    "category": category.name,
                    "itemLabel": item.label,
                    "itemType": item.type,
                    "itemValue": json.dumps(item.value, ensure_ascii=False),
                    "itemOptions": json.dumps(item.options, ensure_ascii=False) if item.options else "",
                }
            )
    return rows


def _categories_from_details(rows: list[Row]) -> list[InspectionCategory]:
    categories: dict[str, InspectionCategory] = {}
    for row in rows:
        name = row.get("category")
        category = categories.setdefault(name, InspectionCategory(name=name))
        label = row.get("itemLabel")
        if not label:
            category.uwagi = row.get("uwagi")
            category.photos = list(_loads(row.get("photoData"), []))
            continue
        category.items.append(
            InspectionItem(
                label=label,
                type=row.get("itemType") or "text",
                value=_loads(row.get("itemValue"), None),
                options=_loads(row.get("itemOptions"), None),
            )
        )
    return list(categories.values())


def list_inspections(book: Workbook, *, address_id: str | None = None) -> list[Inspection]:
    details_by_inspection: dict[str, list[Row]] = {}
    for row in details_sheet(book).get_rows():
        details_by_inspection.setdefault(row.get("inspectionId"), []).append(row)

    inspections: list[Inspection] = []
    for row in inspections_sheet(book).get_rows():
        inspection_id = row.get("id")
        inspected_at = parse_datetime_cell(row.get("date"))
        if not inspection_id or inspected_at is None:
            continue
        if address_id is not None and row.get("addressId") != address_id:
            continue
        inspections.append(
            Inspection(
                id=inspection_id,
                address_id=row.get("addressId"),
                address_name=row.get("addressName"),
                date=inspected_at,
                coordinator_id=row.get("coordinatorId"),
                coordinator_name=row.get("coordinatorName"),
                standard=row.get("standard") or None,
                categories=_categories_from_details(details_by_inspection.get(inspection_id, [])),
            )
        )
    inspections.sort(key=lambda item: item.date, reverse=True)
    return inspections


def _header_record(inspection: Inspection) -> dict[str, Any]:
    return {
        "id": inspection.id,
        "addressId": inspection.address_id,
        "addressName": inspection.address_name,
        "date": inspection.date.isoformat(),
        "coordinatorId": inspection.coordinator_id,
        "coordinatorName": inspection.coordinator_name,
        "standard": inspection.standard or "",
    }


def _delete_details(book: Workbook, inspection_id: str) -> None:
    for row in details_sheet(book).get_rows():
        if row.get("inspectionId") == inspection_id:
            row.delete()


def add_inspection(book: Workbook, data: BaseModel | Mapping[str, Any]) -> Inspection:
    values = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    values["id"] = f"insp-{uuid4().hex[:12]}"
    inspection = Inspection.model_validate(values)
    inspections_sheet(book).add_row(_header_record(inspection))
    details = _detail_rows(inspection)
    if details:
        details_sheet(book).add_rows(details)
    logger.info("inspection_added", extra={"inspection_id": inspection.id, "details": len(details)})
    return inspection


def update_inspection(book: Workbook, inspection_id: str, data: BaseModel | Mapping[str, Any]) -> Inspection:
    row = find_row(inspections_sheet(book), inspection_id)
    if row is None:
        raise NotFoundError("Inspection not found.")
    values = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    values["id"] = inspection_id
    inspection = Inspection.model_validate(values)

    for column, value in _header_record(inspection).items():
        row.set(column, value)
    row.save()
    _delete_details(book, inspection_id)
    details = _detail_rows(inspection)
    if details:
        details_sheet(book).add_rows(details)
    return inspection


def delete_inspection(book: Workbook, inspection_id: str) -> None:
    row = find_row(inspections_sheet(book), inspection_id)
    if row is None:
        raise NotFoundError("Inspection not found.")
    row.delete()
    _delete_details(book, inspection_id)
