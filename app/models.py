from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentType(str, enum.Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"
    TEMPORARY = "TEMPORARY"
    TRAINING = "TRAINING"


class AddressType(str, enum.Enum):
    PHYSICAL = "PHYSICAL"
    HOME = "HOME"
    MAILING = "MAILING"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )


class Address(TimestampMixin, Base):
    __tablename__ = "addresses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    address_type: Mapped[str] = mapped_column(String(20), nullable=False, default=AddressType.PHYSICAL.value)
    street_line1: Mapped[str] = mapped_column(String(255), nullable=False)
    street_line2: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str] = mapped_column(String(120), nullable=False)
    state_province: Mapped[str] = mapped_column(String(120), nullable=False)
    postal_code: Mapped[str] = mapped_column(String(20), nullable=False)
    country_code: Mapped[str] = mapped_column(String(2), nullable=False, default="US")
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class UserType(TimestampMixin, Base):
    __tablename__ = "user_types"

    user_type_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class TerminationReason(TimestampMixin, Base):
    __tablename__ = "termination_reasons"

    termination_reason_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    reason_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    reason_type: Mapped[str] = mapped_column(String(30), nullable=False, default="VOLUNTARY")
    requires_details: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class JobTitle(TimestampMixin, Base):
    __tablename__ = "job_titles"

    job_title_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str | None] = mapped_column(String(120), nullable=True)
    level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)


class Company(TimestampMixin, Base):
    __tablename__ = "companies"

    company_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    legal_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tax_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    divisions: Mapped[list[Division]] = relationship(back_populates="company")


class Division(TimestampMixin, Base):
    __tablename__ = "divisions"
    __table_args__ = (UniqueConstraint("company_id", "name", name="unique_division_name_per_company"),)

    division_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.company_id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    director_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gl_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    company: Mapped[Company] = relationship(back_populates="divisions")
    regions: Mapped[list[Region]] = relationship(back_populates="division")


class Region(TimestampMixin, Base):
    __tablename__ = "regions"

    region_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    division_id: Mapped[int | None] = mapped_column(ForeignKey("divisions.division_id"), nullable=True, index=True)
    # Pre-migration parent pointer (region -> market); kept for the backfill.
    market_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    director_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gl_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    division: Mapped[Division | None] = relationship(back_populates="regions")
    markets: Mapped[list[Market]] = relationship(back_populates="region")


class Market(TimestampMixin, Base):
    __tablename__ = "markets"

    market_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    region_id: Mapped[int | None] = mapped_column(ForeignKey("regions.region_id"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    abbreviation: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    manager_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gl_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    region: Mapped[Region | None] = relationship(back_populates="markets")
    districts: Mapped[list[District]] = relationship(back_populates="market")


class District(TimestampMixin, Base):
    __tablename__ = "districts"

    district_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    market_id: Mapped[int | None] = mapped_column(ForeignKey("markets.market_id"), nullable=True, index=True)
    # Pre-migration parent pointer (district -> region); kept for the backfill.
    region_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    manager_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gl_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    market: Mapped[Market | None] = relationship(back_populates="districts")
    locations: Mapped[list[Location]] = relationship(back_populates="district")


class Location(TimestampMixin, Base):
    __tablename__ = "locations"

    location_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    district_id: Mapped[int] = mapped_column(ForeignKey("districts.district_id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    store_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    manager_employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="America/Chicago")
    gl_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    in_footprint: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    district: Mapped[District] = relationship(back_populates="locations")
    address: Mapped[Address | None] = relationship()
    assignments: Mapped[list[EmployeeAssignment]] = relationship(
        back_populates="location",
        foreign_keys="EmployeeAssignment.location_id",
    )


class Employee(TimestampMixin, Base):
    __tablename__ = "employees"

    employee_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    username: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    user_type_id: Mapped[int] = mapped_column(ForeignKey("user_types.user_type_id"), nullable=False)
    address_id: Mapped[int | None] = mapped_column(ForeignKey("addresses.id"), nullable=True)
    hire_date: Mapped[date] = mapped_column(Date, nullable=False)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_reason_id: Mapped[int | None] = mapped_column(
        ForeignKey("termination_reasons.termination_reason_id"),
        nullable=True,
    )
    termination_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    employee_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    home_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    work_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    mobile_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_full_time: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_on_leave: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JsonDocument, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    user_type: Mapped[UserType] = relationship()
    address: Mapped[Address | None] = relationship()
    assignments: Mapped[list[EmployeeAssignment]] = relationship(
        back_populates="employee",
        foreign_keys="EmployeeAssignment.employee_id",
    )


class EmployeeAssignment(TimestampMixin, Base):
    __tablename__ = "employee_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.employee_id"), nullable=False, index=True)
    location_id: Mapped[int] = mapped_column(ForeignKey("locations.location_id"), nullable=False, index=True)
    job_title_id: Mapped[int] = mapped_column(ForeignKey("job_titles.job_title_id"), nullable=False)
    supervisor_employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.employee_id"), nullable=True)
    assignment_type: Mapped[AssignmentType] = mapped_column(
        Enum(AssignmentType, name="assignment_type", native_enum=False, length=20),
        nullable=False,
        default=AssignmentType.PRIMARY,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    store_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    employee: Mapped[Employee] = relationship(back_populates="assignments", foreign_keys=[employee_id])
    location: Mapped[Location] = relationship(back_populates="assignments", foreign_keys=[location_id])
    job_title: Mapped[JobTitle] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
