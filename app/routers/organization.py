from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.audit import log_admin_action
from app.db import get_db
from app.models import (
    Company,
    District,
    Division,
    Employee,
    EmployeeAssignment,
    Location,
    Market,
    Region,
    UserType,
)
from app.schemas import (
    AssignmentCreate,
    AssignmentEndRequest,
    AssignmentRead,
    AssignmentUpdate,
    EmployeeCreate,
    EmployeeRead,
    EmployeeUpdate,
    HierarchyLevel,
    HierarchyNodeCreate,
    HierarchyNodeRead,
    HierarchyNodeUpdate,
    LocationCreate,
    LocationRead,
    LocationUpdate,
    SoftDeleteResponse,
)
from app.security import require_admin_permission
from app.services.assignments import (
    AssignmentError,
    create_assignment,
    end_assignment,
    set_primary_assignment,
    update_assignment,
)
from app.settings import get_settings

router = APIRouter(tags=["organization"])

FIRST_LOCATION_ID = 10000
FIRST_EMPLOYEE_ID = 2000


@dataclass(frozen=True, slots=True)
class HierarchyLevelConfig:
    model: type
    id_field: str
    parent_field: str | None = None
    parent_model: type | None = None
    entity_type: str = ""


HIERARCHY_LEVELS: dict[str, HierarchyLevelConfig] = {
    "companies": HierarchyLevelConfig(Company, "company_id", entity_type="company"),
    "divisions": HierarchyLevelConfig(Division, "division_id", "company_id", Company, "division"),
    "regions": HierarchyLevelConfig(Region, "region_id", "division_id", Division, "region"),
    "markets": HierarchyLevelConfig(Market, "market_id", "region_id", Region, "market"),
    "districts": HierarchyLevelConfig(District, "district_id", "market_id", Market, "district"),
}


def _next_id(db: Session, column: Any, default: int = 1) -> int:
    current = db.scalar(select(func.max(column)))
    return int(current) + 1 if current is not None else default


def _node_read(level: str, node: Any) -> HierarchyNodeRead:
    config = HIERARCHY_LEVELS[level]
    return HierarchyNodeRead(
        id=getattr(node, config.id_field),
        level=level,  # type: ignore[arg-type]
        name=node.name,
        parent_id=getattr(node, config.parent_field) if config.parent_field else None,
        code=getattr(node, "code", None),
        is_active=node.is_active,
        created_at=node.created_at,
        updated_at=node.updated_at,
    )


def _get_or_404(db: Session, model: type, entity_id: int, label: str) -> Any:
    instance = db.get(model, entity_id)
    if instance is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return instance


def _commit_or_409(db: Session, detail: str) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=detail)


# --- hierarchy -----------------------------------------------------------------


@router.get(
    "/api/admin/organization/{level}",
    response_model=list[HierarchyNodeRead],
    dependencies=[Depends(require_admin_permission("organization"))],
)
def list_hierarchy_nodes(
    level: HierarchyLevel,
    parent_id: int | None = Query(default=None, ge=1),
    include_inactive: bool = Query(default=False),
    db: Session = Depends(get_db),
) -> list[HierarchyNodeRead]:
    config = HIERARCHY_LEVELS[level]
    model = config.model
    stmt = select(model).order_by(model.name.asc())
    if parent_id is not None:
        if config.parent_field is None:
            raise HTTPException(status_code=422, detail="Companies have no parent")
        stmt = stmt.where(getattr(model, config.parent_field) == parent_id)
    if not include_inactive:
        stmt = stmt.where(model.is_active.is_(True))
    return [_node_read(level, node) for node in db.scalars(stmt).all()]


@router.post(
    "/api/admin/organization/{level}",
    response_model=HierarchyNodeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("organization", write=True))],
)
def create_hierarchy_node(
    level: HierarchyLevel,
    payload: HierarchyNodeCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> HierarchyNodeRead:
    config = HIERARCHY_LEVELS[level]
    model = config.model
    values: dict[str, Any] = {"name": payload.name.strip(), "is_active": payload.is_active}
    if config.parent_field is not None:
        if payload.parent_id is None:
            raise HTTPException(status_code=422, detail=f"parent_id is required for {level}")
        _get_or_404(db, config.parent_model, payload.parent_id, "Parent")  # type: ignore[arg-type]
        values[config.parent_field] = payload.parent_id
    if payload.code is not None and hasattr(model, "code"):
        values["code"] = payload.code.strip() or None

    values[config.id_field] = _next_id(db, getattr(model, config.id_field))
    node = model(**values)
    db.add(node)
    _commit_or_409(db, f"{config.entity_type.capitalize()} already exists")
    db.refresh(node)
    read = _node_read(level, node)
    log_admin_action(
        db,
        request,
        action=f"{config.entity_type.upper()}_CREATED",
        entity_type=config.entity_type,
        entity_id=str(read.id),
        details={"name": read.name, "parent_id": read.parent_id},
    )
    return read


@router.patch(
    "/api/admin/organization/{level}/{node_id}",
    response_model=HierarchyNodeRead,
    dependencies=[Depends(require_admin_permission("organization", write=True))],
)
def update_hierarchy_node(
    level: HierarchyLevel,
    node_id: int,
    payload: HierarchyNodeUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> HierarchyNodeRead:
    config = HIERARCHY_LEVELS[level]
    node = _get_or_404(db, config.model, node_id, config.entity_type.capitalize())
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes and changes["name"] is not None:
        node.name = changes["name"].strip()
    if "code" in changes and hasattr(node, "code"):
        node.code = changes["code"]
    if changes.get("is_active") is not None:
        node.is_active = changes["is_active"]
    _commit_or_409(db, f"{config.entity_type.capitalize()} already exists")
    db.refresh(node)
    log_admin_action(
        db,
        request,
        action=f"{config.entity_type.upper()}_UPDATED",
        entity_type=config.entity_type,
        entity_id=str(node_id),
        details=changes,
    )
    return _node_read(level, node)


# --- locations -------------------------------------------------------------------


@router.get(
    "/api/admin/locations",
    response_model=list[LocationRead],
    dependencies=[Depends(require_admin_permission("locations"))],
)
def list_locations(
    district_id: int | None = Query(default=None, ge=1),
    search: str | None = Query(default=None, max_length=100),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[LocationRead]:
    stmt = select(Location).options(selectinload(Location.address)).order_by(Location.name.asc())
    if district_id is not None:
        stmt = stmt.where(Location.district_id == district_id)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Location.name.ilike(pattern), Location.store_number.ilike(pattern)))
    if not include_inactive:
        stmt = stmt.where(Location.is_active.is_(True))
    return list(db.scalars(stmt.offset(offset).limit(limit)).all())


@router.get(
    "/api/admin/locations/{location_id}",
    response_model=LocationRead,
    dependencies=[Depends(require_admin_permission("locations"))],
)
def get_location(location_id: int, db: Session = Depends(get_db)) -> LocationRead:
    return _get_or_404(db, Location, location_id, "Location")


@router.post(
    "/api/admin/locations",
    response_model=LocationRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("locations", write=True))],
)
def create_location(payload: LocationCreate, request: Request, db: Session = Depends(get_db)) -> LocationRead:
    _get_or_404(db, District, payload.district_id, "District")
    if payload.manager_employee_id is not None:
        _get_or_404(db, Employee, payload.manager_employee_id, "Manager employee")

    location_id = payload.location_id or _next_id(db, Location.location_id, FIRST_LOCATION_ID)
    location = Location(
        location_id=location_id,
        district_id=payload.district_id,
        name=payload.name.strip(),
        store_number=payload.store_number,
        manager_employee_id=payload.manager_employee_id,
        timezone=payload.timezone or get_settings().import_default_timezone,
        gl_code=payload.gl_code,
        in_footprint=payload.in_footprint,
        is_active=payload.is_active,
    )
    db.add(location)
    _commit_or_409(db, "Location ID already exists")
    db.refresh(location)
    log_admin_action(
        db,
        request,
        action="LOCATION_CREATED",
        entity_type="location",
        entity_id=str(location.location_id),
        details={"name": location.name, "district_id": location.district_id},
    )
    return location


@router.put(
    "/api/admin/locations/{location_id}",
    response_model=LocationRead,
    dependencies=[Depends(require_admin_permission("locations", write=True))],
)
def update_location(
    location_id: int,
    payload: LocationUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> LocationRead:
    location = _get_or_404(db, Location, location_id, "Location")
    if payload.district_id is not None and payload.district_id != location.district_id:
        _get_or_404(db, District, payload.district_id, "District")
        location.district_id = payload.district_id
    if payload.manager_employee_id is not None:
        _get_or_404(db, Employee, payload.manager_employee_id, "Manager employee")
    location.name = payload.name.strip()
    location.store_number = payload.store_number
    location.manager_employee_id = payload.manager_employee_id
    location.is_active = payload.is_active
    _commit_or_409(db, "Location update conflicts with existing data")
    db.refresh(location)
    log_admin_action(
        db,
        request,
        action="LOCATION_UPDATED",
        entity_type="location",
        entity_id=str(location_id),
        details=payload.model_dump(),
    )
    return location


# --- employees -------------------------------------------------------------------


@router.get(
    "/api/admin/employees",
    response_model=list[EmployeeRead],
    dependencies=[Depends(require_admin_permission("employees"))],
)
def list_employees(
    location_id: int | None = Query(default=None, ge=1),
    search: str | None = Query(default=None, max_length=100),
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[EmployeeRead]:
    stmt = select(Employee).options(selectinload(Employee.address)).order_by(
        Employee.last_name.asc(),
        Employee.first_name.asc(),
    )
    if location_id is not None:
        stmt = stmt.where(
            Employee.employee_id.in_(
                select(EmployeeAssignment.employee_id).where(
                    EmployeeAssignment.location_id == location_id,
                    EmployeeAssignment.is_current.is_(True),
                )
            )
        )
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(
            or_(
                Employee.first_name.ilike(pattern),
                Employee.last_name.ilike(pattern),
                Employee.email.ilike(pattern),
                Employee.username.ilike(pattern),
            )
        )
    if not include_inactive:
        stmt = stmt.where(Employee.is_active.is_(True))
    return list(db.scalars(stmt.offset(offset).limit(limit)).all())


@router.get(
    "/api/admin/employees/{employee_id}",
    response_model=EmployeeRead,
    dependencies=[Depends(require_admin_permission("employees"))],
)
def get_employee(employee_id: int, db: Session = Depends(get_db)) -> EmployeeRead:
    return _get_or_404(db, Employee, employee_id, "Employee")


@router.post(
    "/api/admin/employees",
    response_model=EmployeeRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("employees", write=True))],
)
def create_employee(payload: EmployeeCreate, request: Request, db: Session = Depends(get_db)) -> EmployeeRead:
    user_type_id = payload.user_type_id or get_settings().import_default_user_type_id
    _get_or_404(db, UserType, user_type_id, "User type")

    employee_id = _next_id(db, Employee.employee_id, FIRST_EMPLOYEE_ID)
    employee = Employee(
        employee_id=employee_id,
        username=payload.username or payload.email.split("@", 1)[0],
        email=payload.email,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        user_type_id=user_type_id,
        hire_date=payload.hire_date,
        employee_number=payload.employee_number or f"EMP{employee_id}",
        home_phone=payload.home_phone,
        work_phone=payload.work_phone,
        mobile_phone=payload.mobile_phone,
        is_full_time=payload.is_full_time,
        is_active=payload.is_active,
    )
    db.add(employee)
    _commit_or_409(db, "Username or email already exists")
    db.refresh(employee)
    log_admin_action(
        db,
        request,
        action="EMPLOYEE_CREATED",
        entity_type="employee",
        entity_id=str(employee.employee_id),
        details={"username": employee.username, "user_type_id": employee.user_type_id},
    )
    return employee


@router.patch(
    "/api/admin/employees/{employee_id}",
    response_model=EmployeeRead,
    dependencies=[Depends(require_admin_permission("employees", write=True))],
)
def update_employee(
    employee_id: int,
    payload: EmployeeUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> EmployeeRead:
    employee = _get_or_404(db, Employee, employee_id, "Employee")
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("user_type_id") is not None:
        _get_or_404(db, UserType, changes["user_type_id"], "User type")
    for key, value in changes.items():
        setattr(employee, key, value)
    _commit_or_409(db, "Username or email already exists")
    db.refresh(employee)
    log_admin_action(
        db,
        request,
        action="EMPLOYEE_UPDATED",
        entity_type="employee",
        entity_id=str(employee_id),
        details={"fields": sorted(changes)},
    )
    return employee


@router.delete(
    "/api/admin/employees/{employee_id}",
    response_model=SoftDeleteResponse,
    dependencies=[Depends(require_admin_permission("employees", write=True))],
)
def deactivate_employee(employee_id: int, request: Request, db: Session = Depends(get_db)) -> SoftDeleteResponse:
    employee = _get_or_404(db, Employee, employee_id, "Employee")
    employee.is_active = False
    db.commit()
    log_admin_action(
        db,
        request,
        action="EMPLOYEE_DEACTIVATED",
        entity_type="employee",
        entity_id=str(employee_id),
    )
    return SoftDeleteResponse(ok=True, id=employee_id)


# --- assignments -----------------------------------------------------------------


@router.get(
    "/api/admin/assignments",
    response_model=list[AssignmentRead],
    dependencies=[Depends(require_admin_permission("assignments"))],
)
def list_assignments(
    employee_id: int | None = Query(default=None, ge=1),
    location_id: int | None = Query(default=None, ge=1),
    current_only: bool = Query(default=True),
    db: Session = Depends(get_db),
) -> list[AssignmentRead]:
    stmt = select(EmployeeAssignment).order_by(
        EmployeeAssignment.employee_id.asc(),
        EmployeeAssignment.is_primary.desc(),
        EmployeeAssignment.start_date.desc(),
    )
    if employee_id is not None:
        stmt = stmt.where(EmployeeAssignment.employee_id == employee_id)
    if location_id is not None:
        stmt = stmt.where(EmployeeAssignment.location_id == location_id)
    if current_only:
        stmt = stmt.where(EmployeeAssignment.is_current.is_(True))
    return list(db.scalars(stmt).all())


@router.post(
    "/api/admin/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_permission("assignments", write=True))],
)
def create_employee_assignment(
    payload: AssignmentCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> AssignmentRead:
    try:
        assignment = create_assignment(db, **payload.model_dump())
        db.commit()
    except AssignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(exc))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Assignment conflicts with existing data")
    db.refresh(assignment)
    log_admin_action(
        db,
        request,
        action="ASSIGNMENT_CREATED",
        entity_type="assignment",
        entity_id=str(assignment.id),
        details={
            "employee_id": assignment.employee_id,
            "location_id": assignment.location_id,
            "is_primary": assignment.is_primary,
        },
    )
    return assignment


@router.patch(
    "/api/admin/assignments/{assignment_id}",
    response_model=AssignmentRead,
    dependencies=[Depends(require_admin_permission("assignments", write=True))],
)
def update_employee_assignment(
    assignment_id: int,
    payload: AssignmentUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> AssignmentRead:
    assignment = _get_or_404(db, EmployeeAssignment, assignment_id, "Assignment")
    changes = payload.model_dump(exclude_unset=True)
    try:
        update_assignment(db, assignment, changes)
        db.commit()
    except AssignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(exc))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Assignment conflicts with existing data")
    db.refresh(assignment)
    log_admin_action(
        db,
        request,
        action="ASSIGNMENT_UPDATED",
        entity_type="assignment",
        entity_id=str(assignment_id),
        details={"fields": sorted(changes)},
    )
    return assignment


@router.post(
    "/api/admin/assignments/{assignment_id}/make-primary",
    response_model=AssignmentRead,
    dependencies=[Depends(require_admin_permission("assignments", write=True))],
)
def make_primary_assignment(
    assignment_id: int,
    request: Request,
    db: Session = Depends(get_db),
) -> AssignmentRead:
    assignment = _get_or_404(db, EmployeeAssignment, assignment_id, "Assignment")
    if not assignment.is_current:
        raise HTTPException(status_code=422, detail="Only current assignments can be primary")
    demoted = set_primary_assignment(db, assignment)
    db.commit()
    db.refresh(assignment)
    log_admin_action(
        db,
        request,
        action="ASSIGNMENT_PRIMARY_SET",
        entity_type="assignment",
        entity_id=str(assignment_id),
        details={"employee_id": assignment.employee_id, "demoted_ids": [item.id for item in demoted]},
    )
    return assignment


@router.post(
    "/api/admin/assignments/{assignment_id}/end",
    response_model=AssignmentRead,
    dependencies=[Depends(require_admin_permission("assignments", write=True))],
)
def end_employee_assignment(
    assignment_id: int,
    payload: AssignmentEndRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AssignmentRead:
    assignment = _get_or_404(db, EmployeeAssignment, assignment_id, "Assignment")
    try:
        end_assignment(db, assignment, payload.end_date)
        db.commit()
    except AssignmentError as exc:
        db.rollback()
        raise HTTPException(status_code=422, detail=str(exc))
    db.refresh(assignment)
    log_admin_action(
        db,
        request,
        action="ASSIGNMENT_ENDED",
        entity_type="assignment",
        entity_id=str(assignment_id),
        details={"end_date": payload.end_date.isoformat()},
    )
    return assignment
