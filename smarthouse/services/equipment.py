from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any
from uuid import uuid4

from pydantic import BaseModel

from smarthouse.errors import NotFoundError
from smarthouse.rowstore import Workbook, Worksheet
from smarthouse.schemas import EquipmentItem, HousingSettings
from smarthouse.services.serialization import (
    EQUIPMENT_COLUMNS,
    equipment_from_row,
    equipment_to_row,
    headers_for,
)
from smarthouse.services.sheets import SHEET_EQUIPMENT, find_row

logger = logging.getLogger("smarthouse.equipment")

EQUIPMENT_HEADERS = headers_for(EQUIPMENT_COLUMNS)


def equipment_sheet(book: Workbook) -> Worksheet:
    return book.get_sheet(SHEET_EQUIPMENT, EQUIPMENT_HEADERS)


def list_equipment(
    book: Workbook,
    *,
    settings: HousingSettings | None = None,
    coordinator_id: str | None = None,
) -> list[EquipmentItem]:
    allowed_addresses: set[str] | None = None
    if coordinator_id and settings is not None:
        allowed_addresses = {
            address.id for address in settings.addresses if coordinator_id in address.coordinator_ids
        }

    items: list[EquipmentItem] = []
    for row in equipment_sheet(book).get_rows():
        item = equipment_from_row(row.to_dict())
        if item is None:
            continue
        if allowed_addresses is not None and item.address_id not in allowed_addresses:
            continue
        items.append(item)
    return items


def add_equipment(book: Workbook, data: BaseModel | Mapping[str, Any]) -> EquipmentItem:
    values = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    values["id"] = f"eq-{uuid4().hex[:12]}"
    item = EquipmentItem.model_validate(values)
    equipment_sheet(book).add_row(equipment_to_row(item))
    logger.info("equipment_added", extra={"equipment_id": item.id, "address_id": item.address_id})
    return item


def update_equipment(book: Workbook, item_id: str, updates: BaseModel | Mapping[str, Any]) -> EquipmentItem:
    row = find_row(equipment_sheet(book), item_id)
    if row is None:
        raise NotFoundError("Equipment item not found.")
    current = equipment_from_row(row.to_dict())
    if current is None:
        raise NotFoundError("Equipment item not found.")

    patch = updates.model_dump(exclude_unset=True) if isinstance(updates, BaseModel) else dict(updates)
    patch.pop("id", None)
    updated = EquipmentItem.model_validate({**current.model_dump(), **patch})
    for column, value in equipment_to_row(updated).items():
        if row.get(column) != value:
            row.set(column, value)
    row.save()
    return updated


def delete_equipment(book: Workbook, item_id: str) -> None:
    row = find_row(equipment_sheet(book), item_id)
    if row is None:
        raise NotFoundError("Equipment item not found.")
    row.delete()
    logger.info("equipment_deleted", extra={"equipment_id": item_id})
