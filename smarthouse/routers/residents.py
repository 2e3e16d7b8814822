from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Request, status

from smarthouse.errors import ApiError
from smarthouse.rowstore import Workbook, get_workbook
from smarthouse.schemas import (
    BokResident,
    BokResidentCreate,
    BulkDeleteRequest,
    Employee,
    EmployeeCreate,
    ImportRequest,
    ImportStatus,
    MigrationResult,
    NonEmployee,
    NonEmployeeCreate,
    ResidentBase,
    ResidentKind,
    ResidentUpdate,
    StatusCheckResult,
    TransferRequest,
)
from smarthouse.security import SessionIdentity, require_admin, require_session
from smarthouse.services import residents as resident_service
from smarthouse.services.imports import get_import_status, list_import_statuses, run_import_job
from smarthouse.services.sheets import get_residents, get_settings
from smarthouse.services.statuses import check_and_update_statuses

router = APIRouter(tags=["residents"])

CollectionName = Literal["employees", "non-employees", "bok-residents"]
_COLLECTIONS: dict[str, ResidentKind] = {
    "employees": ResidentKind.EMPLOYEE,
    "non-employees": ResidentKind.NON_EMPLOYEE,
    "bok-residents": ResidentKind.BOK,
}


def _visible(book: Workbook, identity: SessionIdentity, kind: ResidentKind) -> list[ResidentBase]:
    residents = get_residents(book, kind)
    if identity.is_admin:
        return residents
    coordinator = get_settings(book).find_coordinator(identity.uid)
    if coordinator is None:
        return []
    return resident_service.visible_residents(residents, coordinator)


@router.get("/api/residents/{collection}")
def list_residents(
    collection: CollectionName,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[dict[str, Any]]:
    kind = _COLLECTIONS[collection]
    items = _visible(book, identity, kind)
    if kind == ResidentKind.BOK:
        return [
            {**item.model_dump(mode="json"), "tab": resident_service.bok_tab(item)}  # type: ignore[arg-type]
            for item in items
        ]
    return [item.model_dump(mode="json") for item in items]


@router.post("/api/residents/employees", response_model=Employee, status_code=status.HTTP_201_CREATED)
def create_employee(
    payload: EmployeeCreate,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> Employee:
    return resident_service.add_employee(book, payload, identity.uid)


@router.post("/api/residents/non-employees", response_model=NonEmployee, status_code=status.HTTP_201_CREATED)
def create_non_employee(
    payload: NonEmployeeCreate,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> NonEmployee:
    return resident_service.add_non_employee(book, payload, identity.uid)


@router.post("/api/residents/bok-residents", response_model=BokResident, status_code=status.HTTP_201_CREATED)
def create_bok_resident(
    payload: BokResidentCreate,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> BokResident:
    return resident_service.add_bok_resident(book, payload, identity.uid)


@router.patch("/api/residents/{collection}/{resident_id}")
def patch_resident(
    collection: CollectionName,
    resident_id: str,
    payload: ResidentUpdate,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> dict[str, Any]:
    updates = payload.model_extra or {}
    updated = resident_service.update_resident(book, _COLLECTIONS[collection], resident_id, updates, identity.uid)
    return updated.model_dump(mode="json")


@router.delete("/api/residents/{collection}/{resident_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_resident(
    collection: CollectionName,
    resident_id: str,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> None:
    resident_service.delete_resident(book, _COLLECTIONS[collection], resident_id, identity.uid)


@router.post("/api/residents/employees/bulk-delete")
def bulk_delete_employees(
    payload: BulkDeleteRequest,
    identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> dict[str, int]:
    provided = [value for value in (payload.status, payload.coordinator_id, payload.department) if value]
    if len(provided) != 1:
        raise ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message="Exactly one of status, coordinator_id or department is required.",
        )
    if payload.status is not None:
        deleted = resident_service.bulk_delete_employees(book, payload.status, identity.uid)
    elif payload.coordinator_id:
        deleted = resident_service.bulk_delete_employees_by_coordinator(book, payload.coordinator_id, identity.uid)
    else:
        deleted = resident_service.bulk_delete_employees_by_department(book, payload.department or "", identity.uid)
    return {"deleted": deleted}


@router.post("/api/residents/employees/transfer")
def transfer_employees(
    payload: TransferRequest,
    identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> dict[str, int]:
    moved = resident_service.transfer_employees(
        book,
        payload.from_coordinator_id,
        payload.to_coordinator_id,
        get_settings(book),
        identity.uid,
    )
    return {"transferred": moved}


@router.post("/api/statuses/check", response_model=StatusCheckResult)
def check_statuses(
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> StatusCheckResult:
    return check_and_update_statuses(book, identity.uid)


def _run_import(book: Workbook, kind: ResidentKind, payload: ImportRequest, identity: SessionIdentity) -> dict[str, Any]:
    job, result = run_import_job(
        book,
        kind,
        file_name=payload.file_name,
        file_base64=payload.file_base64,
        actor_id=identity.uid,
        settings=get_settings(book),
    )
    return {"job": job.model_dump(mode="json"), "result": result.model_dump(mode="json")}


@router.post("/api/imports/employees")
def import_employees(
    payload: ImportRequest,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> dict[str, Any]:
    return _run_import(book, ResidentKind.EMPLOYEE, payload, identity)


@router.post("/api/imports/non-employees")
def import_non_employees(
    payload: ImportRequest,
    identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> dict[str, Any]:
    return _run_import(book, ResidentKind.NON_EMPLOYEE, payload, identity)


@router.get("/api/imports", response_model=list[ImportStatus])
def list_imports(
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> list[ImportStatus]:
    return list_import_statuses(book)


@router.get("/api/imports/{job_id}", response_model=ImportStatus)
def read_import(
    job_id: str,
    _identity: SessionIdentity = Depends(require_session),
    book: Workbook = Depends(get_workbook),
) -> ImportStatus:
    return get_import_status(book, job_id)


@router.post("/api/maintenance/migrate-full-names", response_model=MigrationResult)
def migrate_full_names(
    request: Request,
    _identity: SessionIdentity = Depends(require_admin),
    book: Workbook = Depends(get_workbook),
) -> MigrationResult:
    request.state.flags = {"maintenance": "migrate_full_names"}
    return resident_service.migrate_full_names(book)
