from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class ResidentKind(str, enum.Enum):
    EMPLOYEE = "employee"
    NON_EMPLOYEE = "non_employee"
    BOK = "bok"


class ResidentStatus(str, enum.Enum):
    ACTIVE = "active"
    DISMISSED = "dismissed"


class NotificationType(str, enum.Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"


class ImportJobStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


DepositReturned = Literal["Tak", "Nie", "Nie dotyczy"]
InspectionStandard = Literal["Wysoki", "Normalny", "Niski"]
VisibilityMode = Literal["department", "strict"]


class DeductionReason(BaseModel):
    name: str
    checked: bool = False
    amount: float | None = None


class ResidentBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    kind: ClassVar[ResidentKind]

    id: str
    first_name: str = ""
    last_name: str = ""
    coordinator_id: str = ""
    nationality: str = ""
    gender: str = ""
    address: str = ""
    room_number: str = ""
    zaklad: str = ""
    check_in_date: date | None = None
    check_out_date: date | None = None
    departure_report_date: date | None = None
    status: ResidentStatus = ResidentStatus.ACTIVE
    comments: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def full_name(self) -> str:
        return f"{self.last_name} {self.first_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == ResidentStatus.ACTIVE


class Employee(ResidentBase):
    kind: ClassVar[ResidentKind] = ResidentKind.EMPLOYEE

    contract_start_date: date | None = None
    contract_end_date: date | None = None
    old_address: str | None = None
    address_change_date: date | None = None
    deposit_returned: DepositReturned | None = None
    deposit_return_amount: float | None = None
    deduction_regulation: float | None = None
    deduction_no_4_months: float | None = None
    deduction_no_30_days: float | None = None
    deduction_reason: list[DeductionReason] | None = None
    deduction_entry_date: date | None = None


class NonEmployee(ResidentBase):
    kind: ClassVar[ResidentKind] = ResidentKind.NON_EMPLOYEE

    payment_type: str | None = None
    payment_amount: float | None = None


class BokResident(ResidentBase):
    kind: ClassVar[ResidentKind] = ResidentKind.BOK

    role: str = ""
    send_date: datetime | None = None
    dismiss_date: date | None = None
    return_status: str = ""


Resident = Employee | NonEmployee | BokResident


class Coordinator(BaseModel):
    uid: str
    name: str
    password: str = ""
    is_admin: bool = False
    departments: list[str] = Field(default_factory=list)
    visibility_mode: VisibilityMode = "department"
    push_subscription: str | None = None


class Room(BaseModel):
    id: str
    name: str
    capacity: int = Field(default=1, ge=1)
    is_active: bool = True
    is_locked: bool = False


class Address(BaseModel):
    id: str
    name: str
    locality: str = ""
    coordinator_ids: list[str] = Field(default_factory=list)
    rooms: list[Room] = Field(default_factory=list)
    is_active: bool = True


class HousingSettings(BaseModel):
    id: str = "global-settings"
    coordinators: list[Coordinator] = Field(default_factory=list)
    localities: list[str] = Field(default_factory=list)
    departments: list[str] = Field(default_factory=list)
    nationalities: list[str] = Field(default_factory=list)
    genders: list[str] = Field(default_factory=list)
    addresses: list[Address] = Field(default_factory=list)
    payment_types_nz: list[str] = Field(default_factory=list)
    bok_statuses: list[str] = Field(default_factory=list)
    bok_roles: list[str] = Field(default_factory=list)
    bok_return_options: list[str] = Field(default_factory=list)

    def find_coordinator(self, coordinator_id: str | None) -> Coordinator | None:
        if not coordinator_id:
            return None
        for coordinator in self.coordinators:
            if coordinator.uid == coordinator_id:
                return coordinator
        return None

    def find_address(self, name: str | None) -> Address | None:
        if not name:
            return None
        for address in self.addresses:
            if address.name == name:
                return address
        return None


class SettingsUpdate(BaseModel):
    """Partial settings document; only keys that were sent are merged."""

    model_config = ConfigDict(extra="forbid")

    coordinators: list[Coordinator] | None = None
    localities: list[str] | None = None
    departments: list[str] | None = None
    nationalities: list[str] | None = None
    genders: list[str] | None = None
    addresses: list[Address] | None = None
    payment_types_nz: list[str] | None = None
    bok_statuses: list[str] | None = None
    bok_roles: list[str] | None = None
    bok_return_options: list[str] | None = None


class AddressHistory(BaseModel):
    id: str
    employee_id: str
    employee_name: str = ""
    coordinator_name: str = ""
    department: str = ""
    address: str = ""
    check_in_date: date | None = None
    check_out_date: date | None = None


class NotificationChange(BaseModel):
    field: str
    old_value: str
    new_value: str


class Notification(BaseModel):
    id: str
    message: str
    entity_id: str = ""
    entity_first_name: str = ""
    entity_last_name: str = ""
    actor_name: str = ""
    recipient_id: str = ""
    created_at: datetime
    is_read: bool = False
    type: NotificationType = NotificationType.INFO
    changes: list[NotificationChange] = Field(default_factory=list)


class ImportStatus(BaseModel):
    job_id: str
    file_name: str
    status: ImportJobStatus
    total_rows: int = 0
    processed_rows: int = 0
    message: str = ""
    actor_name: str = ""
    created_at: datetime


class ImportResult(BaseModel):
    imported_count: int = 0
    total_rows: int = 0
    errors: list[str] = Field(default_factory=list)


class StatusCheckResult(BaseModel):
    updated: int = 0


class EquipmentItem(BaseModel):
    id: str
    inventory_number: str = ""
    name: str
    quantity: int = Field(default=1, ge=0)
    description: str = ""
    address_id: str = ""
    address_name: str = ""


class InspectionItem(BaseModel):
    label: str
    type: str = "text"
    value: Any = None
    options: list[str] | None = None


class InspectionCategory(BaseModel):
    name: str
    items: list[InspectionItem] = Field(default_factory=list)
    uwagi: str = ""
    photos: list[str] = Field(default_factory=list)


class Inspection(BaseModel):
    id: str
    address_id: str
    address_name: str = ""
    date: datetime
    coordinator_id: str = ""
    coordinator_name: str = ""
    standard: InspectionStandard | None = None
    categories: list[InspectionCategory] = Field(default_factory=list)


class RoomOccupancy(BaseModel):
    room_id: str
    room_name: str
    capacity: int
    occupied: int
    available: int
    is_active: bool


class AddressOccupancy(BaseModel):
    address_id: str
    address_name: str
    locality: str
    is_active: bool
    rooms: list[RoomOccupancy] = Field(default_factory=list)
    capacity: int = 0
    occupied: int = 0
    available: int = 0


class LocalitySummary(BaseModel):
    locality: str
    capacity: int = 0
    occupied: int = 0
    available: int = 0


class OccupancyResponse(BaseModel):
    addresses: list[AddressOccupancy]
    localities: list[LocalitySummary]


class ReportFile(BaseModel):
    file_name: str
    file_content_base64: str


class DashboardStats(BaseModel):
    active_employees: int = 0
    active_non_employees: int = 0
    active_bok_residents: int = 0
    addresses_in_use: int = 0
    capacity: int = 0
    occupied: int = 0
    available: int = 0
    upcoming_checkouts: list[dict[str, Any]] = Field(default_factory=list)


class LoginRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    uid: str
    name: str
    is_admin: bool


class ResidentCreateBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    coordinator_id: str = Field(min_length=1)
    check_in_date: date
    nationality: str = ""
    gender: str = ""
    address: str = ""
    room_number: str = ""
    zaklad: str = ""
    check_out_date: date | None = None
    departure_report_date: date | None = None
    comments: str | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Name must not be blank.")
        return stripped


class EmployeeCreate(ResidentCreateBase):
    contract_start_date: date | None = None
    contract_end_date: date | None = None
    deposit_returned: DepositReturned | None = None
    deposit_return_amount: float | None = None
    deduction_regulation: float | None = None
    deduction_no_4_months: float | None = None
    deduction_no_30_days: float | None = None
    deduction_reason: list[DeductionReason] | None = None
    deduction_entry_date: date | None = None


class NonEmployeeCreate(ResidentCreateBase):
    payment_type: str | None = None
    payment_amount: float | None = None


class BokResidentCreate(ResidentCreateBase):
    role: str = Field(min_length=1)
    send_date: datetime | None = None
    dismiss_date: date | None = None
    return_status: str = ""


class ResidentUpdate(BaseModel):
    """Field-level patch shared by every resident kind; unknown keys are rejected by the service."""

    model_config = ConfigDict(extra="allow")


class BulkDeleteRequest(BaseModel):
    status: ResidentStatus | None = None
    coordinator_id: str | None = None
    department: str | None = None


class TransferRequest(BaseModel):
    from_coordinator_id: str = Field(min_length=1)
    to_coordinator_id: str = Field(min_length=1)


class ImportRequest(BaseModel):
    file_name: str = Field(default="import.xlsx", max_length=255)
    file_base64: str = Field(min_length=1)


class PushSubscriptionRequest(BaseModel):
    subscription: dict[str, Any] | None = None


class EquipmentCreate(BaseModel):
    inventory_number: str = ""
    name: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=0)
    description: str = ""
    address_id: str = ""
    address_name: str = ""


class InspectionCreate(BaseModel):
    address_id: str = Field(min_length=1)
    address_name: str = ""
    date: datetime
    coordinator_id: str = ""
    coordinator_name: str = ""
    standard: InspectionStandard | None = None
    categories: list[InspectionCategory] = Field(default_factory=list)


class AddressHistoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    address: str | None = None
    check_in_date: date | None = None
    check_out_date: date | None = None
    coordinator_name: str | None = None
    department: str | None = None


class MigrationResult(BaseModel):
    migrated_employees: int = 0
    migrated_non_employees: int = 0
