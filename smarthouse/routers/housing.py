from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, status

from smarthouse.rowstore import Workbook, get_workbook
from smarthouse.schemas import (
    AddressHistory,
    AddressHistoryUpdate,
    DashboardStats,
    EquipmentCreate,
    EquipmentItem,
    HousingSettings,
    Inspection,
    InspectionCreate,
    OccupancyResponse,
    ReportFile,
    SettingsUpdate,
)
from smarthouse.security import SessionIdentity, require_admin, require_session
from smarthouse.services.dashboard import build_dashboard
from smarthouse.services.dates import today_in_app_tz
from smarthouse.services.equipment import add_equipment, delete_equipment, list_equipment, update_equipment
from smarthouse.services.inspections import add_inspection, delete_inspection, list_inspections, update_inspection
from smarthouse.services.occupancy import compute_occupancy, summarize_by_locality
from smarthouse.services.reports import ALL_COORDINATORS, generate_accommodation_report, generate_nz_costs_report
from smarthouse.services.sheets import (
    delete_address_history_entry,
    get_address_history,
    get_bok_residents,
    get_employees,
    get_non_employees,
    get_settings,
    update_address_history_entry,
    update_settings,
)
from smarthouse.settings import get_settings as get_app_settings

router = APIRouter(tags=["housing"])


def _scope(identity: SessionIdentity, coordinator_id: str | None) -> str | None:
    """Non-admin coordinators are always scoped to themselves."""
    if identity.is_admin:
        return coordinator_id or None
    return identity.uid


@router.get("/api/settings", response_model=HousingSettings)
def read_settings(
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> HousingSettings:
    housing = get_settings(book)
    if identity.is_admin:
        return housing
    # Coordinators never receive other coordinators' passwords or push tokens.
    coordinators = [item.model_copy(update={"password": "", "push_subscription": None}) for item in housing.coordinators]
    return housing.model_copy(update={"coordinators": coordinators})


@router.patch("/api/settings", response_model=HousingSettings)
def patch_settings(
    payload: SettingsUpdate,
    _identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> HousingSettings:
    return update_settings(book, payload)


@router.get("/api/occupancy", response_model=OccupancyResponse)
def read_occupancy(
    coordinator_id: str | None = Query(default=None),
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> OccupancyResponse:
    addresses = compute_occupancy(
        get_settings(book),
        get_employees(book),
        get_non_employees(book),
        _scope(identity, coordinator_id),
        get_bok_residents(book),
    )
    return OccupancyResponse(addresses=addresses, localities=summarize_by_locality(addresses))


@router.get("/api/dashboard", response_model=DashboardStats)
def read_dashboard(
    coordinator_id: str | None = Query(default=None),
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> DashboardStats:
    scope = _scope(identity, coordinator_id)

    def _scoped(items: list[Any]) -> list[Any]:
        if scope is None:
            return items
        return [item for item in items if item.coordinator_id == scope]

    return build_dashboard(
        get_settings(book),
        _scoped(get_employees(book)),
        _scoped(get_non_employees(book)),
        _scoped(get_bok_residents(book)),
        today=today_in_app_tz(),
        upcoming_days=get_app_settings().upcoming_checkout_days,
        coordinator_id=scope,
    )


@router.get("/api/equipment", response_model=list[EquipmentItem])
def read_equipment(
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[EquipmentItem]:
    if identity.is_admin:
        return list_equipment(book)
    return list_equipment(book, settings=get_settings(book), coordinator_id=identity.uid)


@router.post("/api/equipment", response_model=EquipmentItem, status_code=status.HTTP_201_CREATED)
def create_equipment(
    payload: EquipmentCreate,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> EquipmentItem:
    return add_equipment(book, payload)


@router.patch("/api/equipment/{item_id}", response_model=EquipmentItem)
def patch_equipment(
    item_id: str,
    payload: EquipmentCreate,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> EquipmentItem:
    return update_equipment(book, item_id, payload)


@router.delete("/api/equipment/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_equipment(
    item_id: str,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    delete_equipment(book, item_id)


@router.get("/api/inspections", response_model=list[Inspection])
def read_inspections(
    address_id: str | None = Query(default=None),
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[Inspection]:
    return list_inspections(book, address_id=address_id)


@router.post("/api/inspections", response_model=Inspection, status_code=status.HTTP_201_CREATED)
def create_inspection(
    payload: InspectionCreate,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> Inspection:
    return add_inspection(book, payload)


@router.put("/api/inspections/{inspection_id}", response_model=Inspection)
def replace_inspection(
    inspection_id: str,
    payload: InspectionCreate,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> Inspection:
    return update_inspection(book, inspection_id, payload)


@router.delete("/api/inspections/{inspection_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_inspection(
    inspection_id: str,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    delete_inspection(book, inspection_id)


@router.get("/api/address-history", response_model=list[AddressHistory])
def read_address_history(
    employee_id: str | None = Query(default=None),
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[AddressHistory]:
    return get_address_history(book, employee_id)


@router.patch("/api/address-history/{entry_id}", response_model=AddressHistory)
def patch_address_history(
    entry_id: str,
    payload: AddressHistoryUpdate,
    _identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> AddressHistory:
    return update_address_history_entry(book, entry_id, payload)


@router.delete("/api/address-history/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_address_history(
    entry_id: str,
    _identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> None:
    delete_address_history_entry(book, entry_id)


@router.get("/api/reports/accommodation", response_model=ReportFile)
def accommodation_report(
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    coordinator_id: str = Query(default=ALL_COORDINATORS),
    include_non_employees: bool = Query(default=False),
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> ReportFile:
    scope = _scope(identity, None if coordinator_id == ALL_COORDINATORS else coordinator_id)
    return generate_accommodation_report(
        book,
        year,
        month,
        scope or ALL_COORDINATORS,
        include_non_employees=include_non_employees,
    )


@router.get("/api/reports/nz-costs", response_model=ReportFile)
def nz_costs_report(
    year: int = Query(ge=2000, le=2100),
    month: int = Query(ge=1, le=12),
    coordinator_id: str = Query(default=ALL_COORDINATORS),
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> ReportFile:
    scope = _scope(identity, None if coordinator_id == ALL_COORDINATORS else coordinator_id)
    return generate_nz_costs_report(book, year, month, scope or ALL_COORDINATORS)
