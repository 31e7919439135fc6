from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.models import Employee, EmployeeAssignment, Location

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
SAMPLE_FILL = PatternFill(fill_type="solid", fgColor="F7FBFE")
REQUIRED_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
HEADER_FONT = Font(bold=True, color="FFFFFF")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)
MUTED_FONT = Font(color="334155")
THIN_BORDER = Border(
    left=Side(style="thin", color="D0D7DE"),
    right=Side(style="thin", color="D0D7DE"),
    top=Side(style="thin", color="D0D7DE"),
    bottom=Side(style="thin", color="D0D7DE"),
)


@dataclass(frozen=True, slots=True)
class ImportTemplate:
    entity_type: str
    title: str
    headers: tuple[str, ...]
    required: tuple[str, ...]
    sample_row: tuple[str, ...]
    notes: tuple[str, ...]

    @property
    def filename_stem(self) -> str:
        return f"{self.entity_type}-import-template"

    def instruction_lines(self) -> list[str]:
        lines = [
            f"# {self.title}",
            f"# Required fields: {', '.join(self.required)}",
            "# Optional fields: All others",
            "# Notes:",
        ]
        lines.extend(f"#   - {note}" for note in self.notes)
        lines.append("# Lines starting with # are ignored on import")
        return lines


LOCATION_TEMPLATE = ImportTemplate(
    entity_type="locations",
    title="LOCATION IMPORT TEMPLATE",
    headers=(
        "location_id",
        "company_id",
        "division_id",
        "region_id",
        "market_id",
        "district_id",
        "name",
        "store_number",
        "street_line1",
        "street_line2",
        "city",
        "state_province",
        "postal_code",
        "country_code",
        "phone",
        "phone_type",
        "manager_employee_id",
        "timezone",
        "gl_code",
        "in_footprint",
        "is_active",
    ),
    required=("location_id", "district_id", "name"),
    sample_row=(
        "101",
        "1",
        "1",
        "1",
        "1",
        "1",
        "Dallas Downtown",
        "S001",
        "100 Main St",
        "",
        "Dallas",
        "TX",
        "75201",
        "US",
        "214-555-0100",
        "MAIN",
        "",
        "America/Chicago",
        "GL-LOC-001",
        "true",
        "true",
    ),
    notes=(
        "location_id must be unique",
        "company_id, division_id, region_id and market_id are informational; district_id places the store",
        "Full hierarchy must exist: company > division > region > market > district",
        "district_id must exist in the system",
        "Address fields create a physical address when street_line1, city, state_province and postal_code are set",
        "phone_type options: MAIN, FAX, MOBILE, OTHER",
        "timezone examples: America/Chicago, America/New_York",
        "in_footprint and is_active: true or false",
        "Leave manager_employee_id empty if not assigning",
    ),
)

EMPLOYEE_TEMPLATE = ImportTemplate(
    entity_type="employees",
    title="EMPLOYEE IMPORT TEMPLATE",
    headers=(
        "employee_id",
        "username",
        "email",
        "first_name",
        "last_name",
        "user_type_id",
        "hire_date",
        "termination_date",
        "termination_reason_id",
        "employee_number",
        "home_phone",
        "work_phone",
        "mobile_phone",
        "is_full_time",
        "is_active",
        "street_line1",
        "street_line2",
        "city",
        "state_province",
        "postal_code",
        "country_code",
        "location_id",
        "job_title_id",
        "supervisor_employee_id",
        "assignment_start_date",
    ),
    required=("employee_id", "username", "email", "first_name", "last_name"),
    sample_row=(
        "1001",
        "jsmith",
        "john.smith@company.com",
        "John",
        "Smith",
        "3",
        "2020-01-15",
        "",
        "",
        "EMP001",
        "214-555-1234",
        "",
        "469-555-5678",
        "true",
        "true",
        "123 Main St",
        "Apt 4B",
        "Dallas",
        "TX",
        "75201",
        "US",
        "101",
        "6",
        "",
        "2020-01-15",
    ),
    notes=(
        "employee_id must be unique",
        "username and email must be unique",
        "user_type_id: 1=ADMIN, 2=MANAGER, 3=EMPLOYEE, 4=HR, 5=EXECUTIVE (defaults to 3)",
        "Date format: YYYY-MM-DD",
        "is_full_time and is_active: true or false",
        "Address fields create home address if provided",
        "location_id and job_title_id create the primary assignment if both provided",
        "Leave termination fields empty for active employees",
    ),
)

TEMPLATES: dict[str, ImportTemplate] = {
    LOCATION_TEMPLATE.entity_type: LOCATION_TEMPLATE,
    EMPLOYEE_TEMPLATE.entity_type: EMPLOYEE_TEMPLATE,
}


def get_template(entity_type: str) -> ImportTemplate:
    try:
        return TEMPLATES[entity_type]
    except KeyError:
        raise ValueError(f"Invalid template type: {entity_type}") from None


def build_template_csv(entity_type: str) -> str:
    template = get_template(entity_type)
    lines = template.instruction_lines()
    lines.append("")
    lines.append(",".join(template.headers))
    lines.append(",".join(template.sample_row))
    return "\n".join(lines)


def _style_header(ws: Worksheet, required: tuple[str, ...], row: int = 1) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER
        if cell.value in required:
            cell.font = Font(bold=True, color="0B4F73")
            cell.fill = REQUIRED_FILL


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        max_len = 0
        col_letter = get_column_letter(column_cells[0].column)
        for cell in column_cells:
            value = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(value))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def build_template_xlsx(entity_type: str) -> bytes:
    template = get_template(entity_type)
    wb = Workbook()

    ws = wb.active
    ws.title = "Template"
    ws.append(list(template.headers))
    ws.append(list(template.sample_row))
    _style_header(ws, template.required)
    for cell in ws[2]:
        cell.fill = SAMPLE_FILL
        cell.border = THIN_BORDER
    ws.freeze_panes = "A2"
    _auto_width(ws)

    notes_ws = wb.create_sheet("Instructions")
    notes_ws.cell(row=1, column=1, value=template.title).font = TITLE_FONT
    notes_ws.cell(row=2, column=1, value="Save the Template sheet as CSV before uploading.").font = MUTED_FONT
    for row_idx, line in enumerate(template.instruction_lines()[1:], start=4):
        notes_ws.cell(row=row_idx, column=1, value=line.lstrip("# ").rstrip())
    notes_ws.column_dimensions["A"].width = 110

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _address_columns(address: Any, *, with_phone: bool) -> dict[str, Any]:
    if address is None:
        return {}
    columns = {
        "street_line1": address.street_line1,
        "street_line2": address.street_line2,
        "city": address.city,
        "state_province": address.state_province,
        "postal_code": address.postal_code,
        "country_code": address.country_code,
    }
    if with_phone:
        columns["phone"] = address.phone
        columns["phone_type"] = address.phone_type
    return columns


def _location_row(location: Location) -> dict[str, Any]:
    district = location.district
    market = district.market if district is not None else None
    region = market.region if market is not None else None
    division = region.division if region is not None else None
    row: dict[str, Any] = {
        "location_id": location.location_id,
        "company_id": division.company_id if division is not None else None,
        "division_id": region.division_id if region is not None else None,
        "region_id": market.region_id if market is not None else None,
        "market_id": district.market_id if district is not None else None,
        "district_id": location.district_id,
        "name": location.name,
        "store_number": location.store_number,
        "manager_employee_id": location.manager_employee_id,
        "timezone": location.timezone,
        "gl_code": location.gl_code,
        "in_footprint": location.in_footprint,
        "is_active": location.is_active,
    }
    row.update(_address_columns(location.address, with_phone=True))
    return row


def _primary_assignment(employee: Employee) -> EmployeeAssignment | None:
    for assignment in employee.assignments:
        if assignment.is_current and assignment.is_primary:
            return assignment
    return None


def _employee_row(employee: Employee) -> dict[str, Any]:
    row: dict[str, Any] = {
        "employee_id": employee.employee_id,
        "username": employee.username,
        "email": employee.email,
        "first_name": employee.first_name,
        "last_name": employee.last_name,
        "user_type_id": employee.user_type_id,
        "hire_date": employee.hire_date,
        "termination_date": employee.termination_date,
        "termination_reason_id": employee.termination_reason_id,
        "employee_number": employee.employee_number,
        "home_phone": employee.home_phone,
        "work_phone": employee.work_phone,
        "mobile_phone": employee.mobile_phone,
        "is_full_time": employee.is_full_time,
        "is_active": employee.is_active,
    }
    row.update(_address_columns(employee.address, with_phone=False))
    assignment = _primary_assignment(employee)
    if assignment is not None:
        row.update(
            {
                "location_id": assignment.location_id,
                "job_title_id": assignment.job_title_id,
                "supervisor_employee_id": assignment.supervisor_employee_id,
                "assignment_start_date": assignment.start_date,
            }
        )
    return row


def export_records_csv(db: Session, entity_type: str) -> str:
    """Render stored rows in the import column layout so the file can be edited and re-imported."""
    template = get_template(entity_type)
    if entity_type == "locations":
        locations = db.scalars(
            select(Location).options(selectinload(Location.address)).order_by(Location.location_id)
        ).all()
        rows = [_location_row(item) for item in locations]
    else:
        employees = db.scalars(
            select(Employee)
            .options(selectinload(Employee.address), selectinload(Employee.assignments))
            .order_by(Employee.employee_id)
        ).all()
        rows = [_employee_row(item) for item in employees]

    stream = io.StringIO()
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(template.headers)
    for row in rows:
        writer.writerow([_cell(row.get(name)) for name in template.headers])
    return stream.getvalue()
