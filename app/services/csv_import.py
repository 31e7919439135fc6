from __future__ import annotations

import csv
import io
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import InstrumentedAttribute, Session

from app.models import (
    Address,
    AddressType,
    AssignmentType,
    District,
    Employee,
    JobTitle,
    Location,
    TerminationReason,
    UserType,
)
from app.services.assignments import create_assignment
from app.settings import Settings, get_settings

logger = logging.getLogger("app.importer")

EntityType = Literal["locations", "employees"]
ConflictMode = Literal["fail", "skip"]
ENTITY_TYPES: tuple[str, ...] = ("locations", "employees")
CONFLICT_MODES: tuple[str, ...] = ("fail", "skip")

ADDRESS_FIELDS = ("street_line1", "city", "state_province", "postal_code")
LOCATION_REQUIRED_FIELDS = ("location_id", "district_id", "name")
EMPLOYEE_REQUIRED_FIELDS = ("employee_id", "username", "email", "first_name", "last_name")

Record = Mapping[str, Any]


class CsvFormatError(ValueError):
    pass


class RowError(Exception):
    pass


@dataclass(slots=True)
class ImportResult:
    imported: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def record_failure(self, label: str, reason: str) -> None:
        self.failed += 1
        self.errors.append(f"{label}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "imported": self.imported,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass(frozen=True, slots=True)
class ReferenceCheck:
    field_name: str
    column: InstrumentedAttribute[int]
    not_found: str

    def message(self, value: int, valid_ids: set[int]) -> str:
        return self.not_found.format(value=value, valid=", ".join(str(item) for item in sorted(valid_ids)))


LOCATION_REFERENCES: tuple[ReferenceCheck, ...] = (
    ReferenceCheck(
        "district_id",
        District.district_id,
        "District ID {value} not found. Please ensure districts exist before importing locations.",
    ),
    ReferenceCheck(
        "manager_employee_id",
        Employee.employee_id,
        "Manager employee ID {value} not found. Import employees first or leave manager_employee_id empty.",
    ),
)

EMPLOYEE_REFERENCES: tuple[ReferenceCheck, ...] = (
    ReferenceCheck("user_type_id", UserType.user_type_id, "User type ID {value} not found. Valid values are: {valid}"),
    ReferenceCheck(
        "termination_reason_id",
        TerminationReason.termination_reason_id,
        "Termination reason ID {value} not found",
    ),
    ReferenceCheck("location_id", Location.location_id, "Location ID {value} not found. Import locations first."),
    ReferenceCheck(
        "job_title_id",
        JobTitle.job_title_id,
        "Job title ID {value} not found. Ensure job titles are configured.",
    ),
    ReferenceCheck(
        "supervisor_employee_id",
        Employee.employee_id,
        "Supervisor employee ID {value} not found. Import supervisors first.",
    ),
)


# --- parsing -----------------------------------------------------------------


def is_comment_line(line: str) -> bool:
    return line.strip().startswith("#")


def clean_csv_text(content: str) -> str:
    return "\n".join(line for line in content.splitlines() if not is_comment_line(line))


def coerce_cell(value: str | None) -> str | bool | None:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        return None
    lowered = stripped.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return stripped


def parse_csv_records(content: str) -> list[dict[str, Any]]:
    """Parse an import file into records keyed by the header row.

    Comment lines are dropped before parsing, blank lines are skipped and cells
    are coerced with :func:`coerce_cell`. A line of empty cells such as ``,,,``
    is not blank: it becomes a record and fails the required-field checks.
    """
    if content.startswith("\ufeff"):
        content = content[1:]

    reader = csv.reader(io.StringIO(clean_csv_text(content)))
    header: list[str] | None = None
    records: list[dict[str, Any]] = []
    try:
        for row in reader:
            if not row or (len(row) == 1 and not row[0].strip()):
                continue
            if header is None:
                header = [cell.strip() for cell in row]
                duplicates = sorted({name for name in header if header.count(name) > 1})
                if duplicates:
                    raise CsvFormatError(f"Duplicate column names in header: {', '.join(duplicates)}")
                continue
            if len(row) != len(header):
                raise CsvFormatError(
                    f"Invalid record length on line {reader.line_num}: expected {len(header)} columns, got {len(row)}"
                )
            records.append({name: coerce_cell(cell) for name, cell in zip(header, row)})
    except csv.Error as exc:
        raise CsvFormatError(f"Malformed CSV on line {reader.line_num}: {exc}") from exc
    return records


# --- value helpers -----------------------------------------------------------


def _parse_int(value: Any, field_name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        raise RowError(f"Invalid {field_name} value: {str(value).lower()}")
    try:
        return int(str(value).strip())
    except ValueError as exc:
        raise RowError(f"Invalid {field_name} value: {value}") from exc


def _parse_date(value: Any, field_name: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise RowError(f"Invalid {field_name} value: {value} (expected YYYY-MM-DD)") from exc


def _text(record: Record, field_name: str) -> str | None:
    value = record.get(field_name)
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _flag(record: Record, field_name: str) -> bool:
    return record.get(field_name) is not False


def _missing_fields(record: Record, required: Iterable[str]) -> list[str]:
    return [name for name in required if record.get(name) is None]


def _store_error_message(exc: SQLAlchemyError) -> str:
    original = getattr(exc, "orig", None)
    message = str(original if original is not None else exc).strip()
    return message.splitlines()[0] if message else exc.__class__.__name__


def _natural_key(record: Record, field_name: str) -> int | None:
    try:
        return _parse_int(record.get(field_name), field_name)
    except RowError:
        return None


# --- foreign-key pre-validation ----------------------------------------------


def _existing_ids(db: Session, column: InstrumentedAttribute[int], ids: set[int]) -> set[int]:
    if not ids:
        return set()
    return set(db.scalars(select(column).where(column.in_(sorted(ids)))).all())


def _distinct_reference_ids(records: Iterable[Record], field_name: str, default: int | None = None) -> set[int]:
    values: set[int] = set()
    for record in records:
        value = _natural_key(record, field_name)
        if value is None and record.get(field_name) is None:
            value = default
        if value is not None:
            values.add(value)
    return values


def prevalidate_references(
    db: Session,
    records: list[Record],
    checks: tuple[ReferenceCheck, ...],
    defaults: Mapping[str, int] | None = None,
) -> dict[str, set[int]]:
    """Resolve every referenced id with one ``IN`` query per reference field."""
    defaults = defaults or {}
    valid_ids: dict[str, set[int]] = {}
    for check in checks:
        wanted = _distinct_reference_ids(records, check.field_name, defaults.get(check.field_name))
        valid_ids[check.field_name] = _existing_ids(db, check.column, wanted)
        logger.debug(
            "import_references_resolved",
            extra={
                "field": check.field_name,
                "requested": len(wanted),
                "found": len(valid_ids[check.field_name]),
            },
        )
    return valid_ids


def _check_references(
    values: Mapping[str, int | None],
    checks: tuple[ReferenceCheck, ...],
    valid_ids: Mapping[str, set[int]],
) -> None:
    for check in checks:
        value = values.get(check.field_name)
        if value is not None and value not in valid_ids[check.field_name]:
            raise RowError(check.message(value, valid_ids[check.field_name]))


def _existing_keys(db: Session, records: list[Record], column: InstrumentedAttribute[int], field_name: str) -> set[int]:
    keys = {key for key in (_natural_key(record, field_name) for record in records) if key is not None}
    return _existing_ids(db, column, keys)


# --- row writers ---------------------------------------------------------------


def _insert_address(
    db: Session,
    record: Record,
    *,
    address_type: AddressType,
    settings: Settings,
    with_phone: bool,
) -> int | None:
    if _missing_fields(record, ADDRESS_FIELDS):
        return None
    address = Address(
        address_type=address_type.value,
        street_line1=_text(record, "street_line1"),
        street_line2=_text(record, "street_line2"),
        city=_text(record, "city"),
        state_province=_text(record, "state_province"),
        postal_code=_text(record, "postal_code"),
        country_code=_text(record, "country_code") or settings.import_default_country_code,
    )
    if with_phone:
        address.phone = _text(record, "phone")
        address.phone_type = _text(record, "phone_type") or "MAIN"
    db.add(address)
    db.flush()
    return address.id


def _stage_location(db: Session, record: Record, valid_ids: Mapping[str, set[int]], settings: Settings) -> Location:
    missing = _missing_fields(record, LOCATION_REQUIRED_FIELDS)
    if missing:
        raise RowError(f"Missing required fields: {', '.join(missing)}")

    location_id = _parse_int(record["location_id"], "location_id")
    references = {
        "district_id": _parse_int(record.get("district_id"), "district_id"),
        "manager_employee_id": _parse_int(record.get("manager_employee_id"), "manager_employee_id"),
    }
    _check_references(references, LOCATION_REFERENCES, valid_ids)

    address_id = _insert_address(
        db,
        record,
        address_type=AddressType.PHYSICAL,
        settings=settings,
        with_phone=True,
    )
    location = Location(
        location_id=location_id,
        district_id=references["district_id"],
        name=_text(record, "name"),
        address_id=address_id,
        manager_employee_id=references["manager_employee_id"],
        timezone=_text(record, "timezone") or settings.import_default_timezone,
        gl_code=_text(record, "gl_code"),
        in_footprint=_flag(record, "in_footprint"),
        store_number=_text(record, "store_number"),
        is_active=_flag(record, "is_active"),
    )
    db.add(location)
    db.flush()
    return location


@dataclass(slots=True)
class _StagedEmployee:
    employee: Employee
    location_id: int | None
    job_title_id: int | None
    supervisor_employee_id: int | None
    assignment_start: date | None


def _stage_employee(
    db: Session,
    record: Record,
    valid_ids: Mapping[str, set[int]],
    settings: Settings,
) -> _StagedEmployee:
    missing = _missing_fields(record, EMPLOYEE_REQUIRED_FIELDS)
    if missing:
        raise RowError(f"Missing required fields: {', '.join(missing)}")

    employee_id = _parse_int(record["employee_id"], "employee_id")
    user_type_id = _parse_int(record.get("user_type_id"), "user_type_id")
    references = {
        "user_type_id": user_type_id if user_type_id is not None else settings.import_default_user_type_id,
        "termination_reason_id": _parse_int(record.get("termination_reason_id"), "termination_reason_id"),
        "location_id": _parse_int(record.get("location_id"), "location_id"),
        "job_title_id": _parse_int(record.get("job_title_id"), "job_title_id"),
        "supervisor_employee_id": _parse_int(record.get("supervisor_employee_id"), "supervisor_employee_id"),
    }
    _check_references(references, EMPLOYEE_REFERENCES, valid_ids)

    hire_date = _parse_date(record.get("hire_date"), "hire_date")
    termination_date = _parse_date(record.get("termination_date"), "termination_date")
    assignment_start = _parse_date(record.get("assignment_start_date"), "assignment_start_date") or hire_date

    address_id = _insert_address(
        db,
        record,
        address_type=AddressType.HOME,
        settings=settings,
        with_phone=False,
    )
    employee = Employee(
        employee_id=employee_id,
        username=_text(record, "username"),
        email=_text(record, "email"),
        first_name=_text(record, "first_name"),
        last_name=_text(record, "last_name"),
        user_type_id=references["user_type_id"],
        address_id=address_id,
        hire_date=hire_date,
        termination_date=termination_date,
        termination_reason_id=references["termination_reason_id"],
        home_phone=_text(record, "home_phone"),
        work_phone=_text(record, "work_phone"),
        mobile_phone=_text(record, "mobile_phone"),
        employee_number=_text(record, "employee_number"),
        is_full_time=_flag(record, "is_full_time"),
        is_active=_flag(record, "is_active"),
    )
    db.add(employee)
    db.flush()
    return _StagedEmployee(
        employee=employee,
        location_id=references["location_id"],
        job_title_id=references["job_title_id"],
        supervisor_employee_id=references["supervisor_employee_id"],
        assignment_start=assignment_start,
    )


def _create_initial_assignment(db: Session, staged: _StagedEmployee) -> str | None:
    if staged.location_id is None or staged.job_title_id is None:
        return None
    try:
        create_assignment(
            db,
            employee_id=staged.employee.employee_id,
            location_id=staged.location_id,
            job_title_id=staged.job_title_id,
            supervisor_employee_id=staged.supervisor_employee_id,
            assignment_type=AssignmentType.PRIMARY,
            start_date=staged.assignment_start,
            is_current=True,
            is_primary=True,
            validate=False,
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        return _store_error_message(exc)
    return None


# --- entry points --------------------------------------------------------------


def import_locations(db: Session, records: list[Record], *, conflict: ConflictMode = "fail") -> ImportResult:
    settings = get_settings()
    result = ImportResult()
    valid_ids = prevalidate_references(db, records, LOCATION_REFERENCES)
    existing = _existing_keys(db, records, Location.location_id, "location_id") if conflict == "skip" else set()

    for record in records:
        label = f"Location {record.get('location_id')}"
        if _natural_key(record, "location_id") in existing:
            result.skipped += 1
            continue
        try:
            _stage_location(db, record, valid_ids, settings)
            db.commit()
        except RowError as exc:
            db.rollback()
            result.record_failure(label, str(exc))
        except SQLAlchemyError as exc:
            db.rollback()
            result.record_failure(label, _store_error_message(exc))
        else:
            result.imported += 1
    return result


def import_employees(db: Session, records: list[Record], *, conflict: ConflictMode = "fail") -> ImportResult:
    settings = get_settings()
    result = ImportResult()
    valid_ids = prevalidate_references(
        db,
        records,
        EMPLOYEE_REFERENCES,
        defaults={"user_type_id": settings.import_default_user_type_id},
    )
    existing = _existing_keys(db, records, Employee.employee_id, "employee_id") if conflict == "skip" else set()

    for record in records:
        label = f"Employee {record.get('employee_id')}"
        if _natural_key(record, "employee_id") in existing:
            result.skipped += 1
            continue
        try:
            staged = _stage_employee(db, record, valid_ids, settings)
            db.commit()
        except RowError as exc:
            db.rollback()
            result.record_failure(label, str(exc))
            continue
        except SQLAlchemyError as exc:
            db.rollback()
            result.record_failure(label, _store_error_message(exc))
            continue

        warning = _create_initial_assignment(db, staged)
        if warning is not None:
            result.errors.append(f"Assignment for {staged.employee.employee_id}: {warning}")
        result.imported += 1
    return result


def run_import(
    db: Session,
    entity_type: EntityType,
    records: list[Record],
    *,
    conflict: ConflictMode = "fail",
) -> ImportResult:
    if entity_type == "locations":
        result = import_locations(db, records, conflict=conflict)
    elif entity_type == "employees":
        result = import_employees(db, records, conflict=conflict)
    else:
        raise ValueError(f"Unsupported import type: {entity_type}")

    logger.info(
        "import_completed",
        extra={
            "entity_type": entity_type,
            "conflict": conflict,
            "rows": len(records),
            "imported": result.imported,
            "failed": result.failed,
            "skipped": result.skipped,
        },
    )
    return result
