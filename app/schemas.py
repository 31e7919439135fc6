from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models import AssignmentType, AuditActorType

HierarchyLevel = Literal["companies", "divisions", "regions", "markets", "districts"]


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    local_part, _, domain = normalized.partition("@")
    if not local_part or "." not in domain:
        raise ValueError("Invalid email address")
    return normalized


def _reject_null(value: Any) -> Any:
    if value is None:
        raise ValueError("Field cannot be null")
    return value


class HierarchyNodeCreate(BaseModel):
    name: str = Field(min_length=2, max_length=255)
    parent_id: int | None = Field(default=None, ge=1)
    code: str | None = Field(default=None, max_length=50)
    is_active: bool = True


class HierarchyNodeUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=255)
    code: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None

    @field_validator("name", "is_active")
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class HierarchyNodeRead(BaseModel):
    id: int
    level: HierarchyLevel
    name: str
    parent_id: int | None = None
    code: str | None = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class AddressRead(BaseModel):
    id: int
    address_type: str
    street_line1: str
    street_line2: str | None = None
    city: str
    state_province: str
    postal_code: str
    country_code: str
    phone: str | None = None
    phone_type: str | None = None

    model_config = ConfigDict(from_attributes=True)


class LocationCreate(BaseModel):
    location_id: int | None = Field(default=None, ge=1)
    district_id: int = Field(ge=1)
    name: str = Field(min_length=1, max_length=255)
    store_number: str | None = Field(default=None, max_length=50)
    manager_employee_id: int | None = Field(default=None, ge=1)
    timezone: str | None = Field(default=None, max_length=64)
    gl_code: str | None = Field(default=None, max_length=50)
    in_footprint: bool = True
    is_active: bool = True


class LocationUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    district_id: int | None = Field(default=None, ge=1)
    store_number: str | None = Field(default=None, max_length=50)
    manager_employee_id: int | None = Field(default=None, ge=1)
    is_active: bool = True


class LocationRead(BaseModel):
    location_id: int
    district_id: int
    name: str
    store_number: str | None = None
    manager_employee_id: int | None = None
    timezone: str
    gl_code: str | None = None
    in_footprint: bool
    is_active: bool
    address: AddressRead | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EmployeeCreate(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    first_name: str = Field(min_length=1, max_length=120)
    last_name: str = Field(min_length=1, max_length=120)
    username: str | None = Field(default=None, min_length=1, max_length=120)
    user_type_id: int | None = Field(default=None, ge=1)
    hire_date: date
    employee_number: str | None = Field(default=None, max_length=50)
    home_phone: str | None = None
    work_phone: str | None = None
    mobile_phone: str | None = None
    is_full_time: bool = True
    is_active: bool = True

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class EmployeeUpdate(BaseModel):
    email: str | None = Field(default=None, min_length=3, max_length=255)
    first_name: str | None = Field(default=None, min_length=1, max_length=120)
    last_name: str | None = Field(default=None, min_length=1, max_length=120)
    username: str | None = Field(default=None, min_length=1, max_length=120)
    user_type_id: int | None = Field(default=None, ge=1)
    hire_date: date | None = None
    termination_date: date | None = None
    termination_reason_id: int | None = Field(default=None, ge=1)
    termination_notes: str | None = None
    employee_number: str | None = Field(default=None, max_length=50)
    home_phone: str | None = None
    work_phone: str | None = None
    mobile_phone: str | None = None
    is_full_time: bool | None = None
    is_on_leave: bool | None = None
    is_active: bool | None = None

    @field_validator(
        "first_name", "last_name", "username", "user_type_id", "hire_date", "is_full_time", "is_on_leave", "is_active"
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str | None) -> str:
        return _normalize_email(_reject_null(value))


class EmployeeRead(BaseModel):
    employee_id: int
    username: str
    email: str
    first_name: str
    last_name: str
    user_type_id: int
    hire_date: date
    termination_date: date | None = None
    termination_reason_id: int | None = None
    employee_number: str | None = None
    home_phone: str | None = None
    work_phone: str | None = None
    mobile_phone: str | None = None
    is_full_time: bool
    is_on_leave: bool
    is_active: bool
    address: AddressRead | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AssignmentCreate(BaseModel):
    employee_id: int = Field(ge=1)
    location_id: int = Field(ge=1)
    job_title_id: int = Field(ge=1)
    supervisor_employee_id: int | None = Field(default=None, ge=1)
    assignment_type: AssignmentType = AssignmentType.PRIMARY
    start_date: date
    end_date: date | None = None
    is_current: bool = True
    is_primary: bool | None = None
    notes: str | None = None
    store_override: bool = False

    @model_validator(mode="after")
    def validate_dates(self) -> "AssignmentCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class AssignmentUpdate(BaseModel):
    location_id: int | None = Field(default=None, ge=1)
    job_title_id: int | None = Field(default=None, ge=1)
    supervisor_employee_id: int | None = Field(default=None, ge=1)
    assignment_type: AssignmentType | None = None
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool | None = None
    is_primary: bool | None = None
    notes: str | None = None
    reason_code: str | None = Field(default=None, max_length=50)
    store_override: bool | None = None

    @field_validator(
        "location_id", "job_title_id", "assignment_type", "start_date", "is_current", "is_primary", "store_override"
    )
    @classmethod
    def reject_null(cls, value: Any) -> Any:
        return _reject_null(value)


class AssignmentEndRequest(BaseModel):
    end_date: date


class AssignmentRead(BaseModel):
    id: int
    employee_id: int
    location_id: int
    job_title_id: int
    supervisor_employee_id: int | None = None
    assignment_type: AssignmentType
    start_date: date
    end_date: date | None = None
    is_current: bool
    is_primary: bool
    notes: str | None = None
    reason_code: str | None = None
    store_override: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SoftDeleteResponse(BaseModel):
    ok: bool
    id: int


class ImportDetails(BaseModel):
    imported: int
    failed: int
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class ImportResponse(BaseModel):
    message: str
    details: ImportDetails


class MigrationStepResult(BaseModel):
    step: str
    status: Literal["success"]


class MigrationResponse(BaseModel):
    success: bool
    message: str
    current_state: dict[str, int] = Field(serialization_alias="currentState")
    new_state: dict[str, int] = Field(serialization_alias="newState")
    results: list[MigrationStepResult]


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    actor_type: AuditActorType
    actor_id: str
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    success: bool
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)
