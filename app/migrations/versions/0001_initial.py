"""Initial organization directory schema (three-level hierarchy)

Revision ID: 0001_initial
Revises:
Create Date: 2026-03-02 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def _metadata() -> sa.Column:
    return sa.Column(
        "metadata",
        postgresql.JSONB(astext_type=sa.Text()),
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )


def _is_active() -> sa.Column:
    return sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true"))


def upgrade() -> None:
    op.create_table(
        "addresses",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("address_type", sa.String(length=20), nullable=False, server_default="PHYSICAL"),
        sa.Column("street_line1", sa.String(length=255), nullable=False),
        sa.Column("street_line2", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=False),
        sa.Column("state_province", sa.String(length=120), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=False),
        sa.Column("country_code", sa.String(length=2), nullable=False, server_default="US"),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("phone_type", sa.String(length=20), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        _is_active(),
        *_timestamps(),
    )

    op.create_table(
        "user_types",
        sa.Column("user_type_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _is_active(),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_user_types_name"),
    )

    op.create_table(
        "termination_reasons",
        sa.Column("termination_reason_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("reason_code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("reason_type", sa.String(length=30), nullable=False, server_default="VOLUNTARY"),
        sa.Column("requires_details", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _is_active(),
        *_timestamps(),
        sa.UniqueConstraint("reason_code", name="uq_termination_reasons_reason_code"),
    )

    op.create_table(
        "job_titles",
        sa.Column("job_title_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("department", sa.String(length=120), nullable=True),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        _is_active(),
        _metadata(),
        *_timestamps(),
    )

    # Pre-restructure chain: district -> region -> market.
    op.create_table(
        "markets",
        sa.Column("market_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("abbreviation", sa.String(length=20), nullable=True),
        sa.Column("address_id", sa.Integer(), nullable=True),
        sa.Column("manager_employee_id", sa.Integer(), nullable=True),
        sa.Column("gl_code", sa.String(length=50), nullable=True),
        _metadata(),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], name="markets_address_id_fkey"),
    )

    op.create_table(
        "regions",
        sa.Column("region_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("market_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address_id", sa.Integer(), nullable=True),
        sa.Column("director_employee_id", sa.Integer(), nullable=True),
        sa.Column("gl_code", sa.String(length=50), nullable=True),
        _metadata(),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["market_id"], ["markets.market_id"], name="regions_market_id_fkey"),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], name="regions_address_id_fkey"),
    )

    op.create_table(
        "districts",
        sa.Column("district_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address_id", sa.Integer(), nullable=True),
        sa.Column("manager_employee_id", sa.Integer(), nullable=True),
        sa.Column("gl_code", sa.String(length=50), nullable=True),
        _metadata(),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["region_id"], ["regions.region_id"], name="districts_region_id_fkey"),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], name="districts_address_id_fkey"),
    )

    op.create_table(
        "locations",
        sa.Column("location_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("district_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("store_number", sa.String(length=50), nullable=True),
        sa.Column("address_id", sa.Integer(), nullable=True),
        sa.Column("manager_employee_id", sa.Integer(), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="America/Chicago"),
        sa.Column("gl_code", sa.String(length=50), nullable=True),
        sa.Column("in_footprint", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _metadata(),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["district_id"], ["districts.district_id"], name="locations_district_id_fkey"),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], name="locations_address_id_fkey"),
    )
    op.create_index("ix_locations_district_id", "locations", ["district_id"])
    op.create_index("ix_locations_manager_employee_id", "locations", ["manager_employee_id"])

    op.create_table(
        "employees",
        sa.Column("employee_id", sa.Integer(), primary_key=True, autoincrement=False, nullable=False),
        sa.Column("username", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("user_type_id", sa.Integer(), nullable=False),
        sa.Column("address_id", sa.Integer(), nullable=True),
        sa.Column("hire_date", sa.Date(), nullable=False),
        sa.Column("termination_date", sa.Date(), nullable=True),
        sa.Column("termination_reason_id", sa.Integer(), nullable=True),
        sa.Column("termination_notes", sa.Text(), nullable=True),
        sa.Column("employee_number", sa.String(length=50), nullable=True),
        sa.Column("home_phone", sa.String(length=50), nullable=True),
        sa.Column("work_phone", sa.String(length=50), nullable=True),
        sa.Column("mobile_phone", sa.String(length=50), nullable=True),
        sa.Column("is_full_time", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_on_leave", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _metadata(),
        _is_active(),
        *_timestamps(),
        sa.UniqueConstraint("username", name="uq_employees_username"),
        sa.UniqueConstraint("email", name="uq_employees_email"),
        sa.ForeignKeyConstraint(["user_type_id"], ["user_types.user_type_id"], name="employees_user_type_id_fkey"),
        sa.ForeignKeyConstraint(
            ["termination_reason_id"],
            ["termination_reasons.termination_reason_id"],
            name="employees_termination_reason_id_fkey",
        ),
        sa.ForeignKeyConstraint(["address_id"], ["addresses.id"], name="employees_address_id_fkey"),
    )

    op.create_table(
        "employee_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("job_title_id", sa.Integer(), nullable=False),
        sa.Column("supervisor_employee_id", sa.Integer(), nullable=True),
        sa.Column("assignment_type", sa.String(length=20), nullable=False, server_default="PRIMARY"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reason_code", sa.String(length=50), nullable=True),
        sa.Column("store_override", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.employee_id"], name="employee_assignments_employee_id_fkey"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.location_id"], name="employee_assignments_location_id_fkey"),
        sa.ForeignKeyConstraint(
            ["job_title_id"],
            ["job_titles.job_title_id"],
            name="employee_assignments_job_title_id_fkey",
        ),
        sa.ForeignKeyConstraint(
            ["supervisor_employee_id"],
            ["employees.employee_id"],
            name="employee_assignments_supervisor_employee_id_fkey",
        ),
        sa.CheckConstraint(
            "assignment_type IN ('PRIMARY', 'SECONDARY', 'TEMPORARY', 'TRAINING')",
            name="ck_employee_assignments_assignment_type",
        ),
    )
    op.create_index("ix_employee_assignments_employee_id", "employee_assignments", ["employee_id"])
    op.create_index("ix_employee_assignments_location_id", "employee_assignments", ["location_id"])
    op.create_index(
        "ix_employee_assignments_current_primary",
        "employee_assignments",
        ["employee_id"],
        postgresql_where=sa.text("is_current AND is_primary"),
    )

    op.bulk_insert(
        sa.table(
            "user_types",
            sa.column("user_type_id", sa.Integer()),
            sa.column("name", sa.String()),
        ),
        [
            {"user_type_id": 1, "name": "ADMIN"},
            {"user_type_id": 2, "name": "MANAGER"},
            {"user_type_id": 3, "name": "EMPLOYEE"},
            {"user_type_id": 4, "name": "HR"},
            {"user_type_id": 5, "name": "EXECUTIVE"},
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_employee_assignments_current_primary", table_name="employee_assignments")
    op.drop_index("ix_employee_assignments_location_id", table_name="employee_assignments")
    op.drop_index("ix_employee_assignments_employee_id", table_name="employee_assignments")
    op.drop_table("employee_assignments")
    op.drop_table("employees")
    op.drop_index("ix_locations_manager_employee_id", table_name="locations")
    op.drop_index("ix_locations_district_id", table_name="locations")
    op.drop_table("locations")
    op.drop_table("districts")
    op.drop_table("regions")
    op.drop_table("markets")
    op.drop_table("job_titles")
    op.drop_table("termination_reasons")
    op.drop_table("user_types")
    op.drop_table("addresses")
