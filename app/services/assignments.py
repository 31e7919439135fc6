from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AssignmentType, Employee, EmployeeAssignment, JobTitle, Location

logger = logging.getLogger("app.assignments")

UPDATABLE_FIELDS = frozenset(
    {
        "location_id",
        "job_title_id",
        "supervisor_employee_id",
        "assignment_type",
        "start_date",
        "end_date",
        "is_primary",
        "is_current",
        "notes",
        "reason_code",
        "store_override",
    }
)

NOT_NULL_FIELDS = frozenset(
    {"location_id", "job_title_id", "assignment_type", "start_date", "is_current", "is_primary", "store_override"}
)


class AssignmentError(ValueError):
    pass


def current_primary_assignments(
    db: Session,
    employee_id: int,
    *,
    exclude_id: int | None = None,
) -> list[EmployeeAssignment]:
    stmt = select(EmployeeAssignment).where(
        EmployeeAssignment.employee_id == employee_id,
        EmployeeAssignment.is_current.is_(True),
        EmployeeAssignment.is_primary.is_(True),
    )
    if exclude_id is not None:
        stmt = stmt.where(EmployeeAssignment.id != exclude_id)
    return list(db.scalars(stmt.order_by(EmployeeAssignment.id)).all())


def set_primary_assignment(db: Session, assignment: EmployeeAssignment) -> list[EmployeeAssignment]:
    """Make ``assignment`` the employee's primary assignment.

    Every other current primary assignment of the same employee is demoted to a
    non-primary SECONDARY assignment. The promoted row keeps its own
    ``assignment_type``. Changes are flushed, not committed, so the
    demotion and the promotion land in the caller's transaction together.
    Returns the demoted rows.
    """
    if assignment.id is None:
        db.flush()

    demoted: list[EmployeeAssignment] = []
    if assignment.is_current:
        demoted = current_primary_assignments(db, assignment.employee_id, exclude_id=assignment.id)
        for previous in demoted:
            previous.is_primary = False
            previous.assignment_type = AssignmentType.SECONDARY

    assignment.is_primary = True
    db.flush()

    if demoted:
        logger.info(
            "primary_assignment_demoted",
            extra={
                "employee_id": assignment.employee_id,
                "assignment_id": assignment.id,
                "demoted_ids": [item.id for item in demoted],
            },
        )
    return demoted


def _validate_references(
    db: Session,
    *,
    employee_id: int | None = None,
    location_id: int | None = None,
    job_title_id: int | None = None,
    supervisor_employee_id: int | None = None,
) -> None:
    if employee_id is not None and db.get(Employee, employee_id) is None:
        raise AssignmentError(f"Employee ID {employee_id} not found")
    if location_id is not None and db.get(Location, location_id) is None:
        raise AssignmentError(f"Location ID {location_id} not found")
    if job_title_id is not None and db.get(JobTitle, job_title_id) is None:
        raise AssignmentError(f"Job title ID {job_title_id} not found")
    if supervisor_employee_id is not None:
        if supervisor_employee_id == employee_id:
            raise AssignmentError("An employee cannot supervise themselves")
        if db.get(Employee, supervisor_employee_id) is None:
            raise AssignmentError(f"Supervisor employee ID {supervisor_employee_id} not found")


def create_assignment(
    db: Session,
    *,
    employee_id: int,
    location_id: int,
    job_title_id: int,
    start_date: date | None,
    supervisor_employee_id: int | None = None,
    assignment_type: AssignmentType = AssignmentType.PRIMARY,
    end_date: date | None = None,
    is_current: bool = True,
    is_primary: bool | None = None,
    notes: str | None = None,
    store_override: bool = False,
    validate: bool = True,
) -> EmployeeAssignment:
    if is_primary is None:
        is_primary = assignment_type is AssignmentType.PRIMARY
    if end_date is not None and start_date is not None and end_date < start_date:
        raise AssignmentError("end_date must not be before start_date")
    if validate:
        _validate_references(
            db,
            employee_id=employee_id,
            location_id=location_id,
            job_title_id=job_title_id,
            supervisor_employee_id=supervisor_employee_id,
        )

    assignment = EmployeeAssignment(
        employee_id=employee_id,
        location_id=location_id,
        job_title_id=job_title_id,
        supervisor_employee_id=supervisor_employee_id,
        assignment_type=assignment_type,
        start_date=start_date,
        end_date=end_date,
        is_current=is_current,
        is_primary=False,
        notes=notes,
        store_override=store_override,
    )
    db.add(assignment)
    db.flush()
    if is_primary:
        set_primary_assignment(db, assignment)
    return assignment


def update_assignment(
    db: Session,
    assignment: EmployeeAssignment,
    changes: Mapping[str, Any],
) -> EmployeeAssignment:
    unknown = sorted(set(changes) - UPDATABLE_FIELDS)
    if unknown:
        raise AssignmentError(f"Unsupported assignment fields: {', '.join(unknown)}")
    nulled = sorted(key for key in NOT_NULL_FIELDS & set(changes) if changes[key] is None)
    if nulled:
        raise AssignmentError(f"Fields cannot be null: {', '.join(nulled)}")

    _validate_references(
        db,
        location_id=changes.get("location_id"),
        job_title_id=changes.get("job_title_id"),
        supervisor_employee_id=changes.get("supervisor_employee_id"),
    )
    if changes.get("supervisor_employee_id") is not None and changes["supervisor_employee_id"] == assignment.employee_id:
        raise AssignmentError("An employee cannot supervise themselves")

    was_current_primary = assignment.is_primary and assignment.is_current
    wants_primary = changes.get("is_primary")

    for key, value in changes.items():
        if key == "is_primary":
            continue
        setattr(assignment, key, value)

    if assignment.end_date is not None and assignment.start_date is not None and assignment.end_date < assignment.start_date:
        raise AssignmentError("end_date must not be before start_date")

    if wants_primary is True or (wants_primary is None and assignment.is_primary):
        if not was_current_primary:
            set_primary_assignment(db, assignment)
    else:
        assignment.is_primary = False
    db.flush()
    return assignment


def end_assignment(db: Session, assignment: EmployeeAssignment, end_date: date) -> EmployeeAssignment:
    if assignment.start_date is not None and end_date < assignment.start_date:
        raise AssignmentError("end_date must not be before start_date")
    assignment.end_date = end_date
    assignment.is_current = False
    db.flush()
    return assignment
