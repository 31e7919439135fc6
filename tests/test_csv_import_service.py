from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy import event, select
from sqlalchemy.exc import IntegrityError

from app.models import Address, AssignmentType, Employee, EmployeeAssignment, Location
from app.services.csv_import import (
    EMPLOYEE_REFERENCES,
    import_employees,
    import_locations,
    parse_csv_records,
    prevalidate_references,
    run_import,
)
from tests.sqlite_support import add_location, make_session, seed_reference_data


class _StatementCounter:
    def __init__(self, engine) -> None:  # type: ignore[no-untyped-def]
        self.engine = engine
        self.statements: list[str] = []

    def __enter__(self) -> "_StatementCounter":
        event.listen(self.engine, "before_cursor_execute", self._record)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        event.remove(self.engine, "before_cursor_execute", self._record)

    def _record(self, _conn, _cursor, statement, _params, _context, _executemany):  # type: ignore[no-untyped-def]
        self.statements.append(statement)


class LocationImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.db = make_session()
        seed_reference_data(self.db)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_valid_rows_are_imported_with_defaults(self) -> None:
        records = parse_csv_records(
            "location_id,district_id,name,store_number,in_footprint\n"
            "101,1,Dallas Downtown,S001,\n"
            "102,2,Dallas Uptown,S002,false\n"
        )

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 2)
        self.assertEqual(result.failed, 0)
        self.assertEqual(result.errors, [])
        uptown = self.db.get(Location, 102)
        self.assertIsNotNone(uptown)
        self.assertFalse(uptown.in_footprint)
        self.assertTrue(uptown.is_active)
        self.assertEqual(uptown.timezone, "America/Chicago")
        self.assertIsNone(uptown.address_id)

    def test_bad_row_does_not_block_neighbours(self) -> None:
        records = parse_csv_records(
            "location_id,district_id,name\n"
            "101,1,First\n"
            "102,999,Second\n"
            "103,1,Third\n"
        )

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 2)
        self.assertEqual(result.failed, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("Location 102: District ID 999 not found"))
        stored = self.db.scalars(select(Location.location_id).order_by(Location.location_id)).all()
        self.assertEqual(stored, [101, 103])

    def test_missing_required_fields_are_reported(self) -> None:
        records = parse_csv_records("location_id,district_id,name\n101,1,\n")

        result = import_locations(self.db, records)

        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors, ["Location 101: Missing required fields: name"])

    def test_five_rows_with_third_missing_required_field(self) -> None:
        records = parse_csv_records(
            "location_id,district_id,name\n"
            "101,1,First\n"
            "102,1,Second\n"
            "103,,Third\n"
            "104,2,Fourth\n"
            "105,2,Fifth\n"
        )

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 4)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors, ["Location 103: Missing required fields: district_id"])
        stored = self.db.scalars(select(Location.location_id).order_by(Location.location_id)).all()
        self.assertEqual(stored, [101, 102, 104, 105])

    def test_row_of_empty_cells_is_a_failure(self) -> None:
        records = parse_csv_records("location_id,district_id,name\n101,1,First\n,,\n")

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors, ["Location None: Missing required fields: location_id, district_id, name"])

    def test_non_numeric_id_is_a_row_error(self) -> None:
        records = parse_csv_records("location_id,district_id,name\nabc,1,Bad\n104,1,Good\n")

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 1)
        self.assertIn("Invalid location_id value: abc", result.errors[0])

    def test_address_is_created_when_all_address_fields_present(self) -> None:
        records = parse_csv_records(
            "location_id,district_id,name,street_line1,city,state_province,postal_code,phone\n"
            "101,1,Dallas Downtown,100 Main St,Dallas,TX,75201,214-555-0100\n"
        )

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 1)
        location = self.db.get(Location, 101)
        address = self.db.get(Address, location.address_id)
        self.assertEqual(address.address_type, "PHYSICAL")
        self.assertEqual(address.phone_type, "MAIN")
        self.assertEqual(address.country_code, "US")

    def test_duplicate_primary_key_fails_row_by_default(self) -> None:
        add_location(self.db, 101)
        records = parse_csv_records("location_id,district_id,name\n101,1,Again\n102,1,New\n")

        result = import_locations(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 1)
        self.assertTrue(result.errors[0].startswith("Location 101: "))

    def test_skip_mode_counts_existing_rows(self) -> None:
        add_location(self.db, 101)
        records = parse_csv_records("location_id,district_id,name\n101,1,Again\n102,1,New\n")

        result = import_locations(self.db, records, conflict="skip")

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 0)
        self.assertEqual(result.skipped, 1)
        self.assertEqual(self.db.get(Location, 101).name, "Store 101")


class EmployeeImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.db = make_session()
        seed_reference_data(self.db)
        add_location(self.db, 101)
        add_location(self.db, 102)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _primary_assignments(self, employee_id: int) -> list[EmployeeAssignment]:
        return list(
            self.db.scalars(
                select(EmployeeAssignment).where(
                    EmployeeAssignment.employee_id == employee_id,
                    EmployeeAssignment.is_current.is_(True),
                    EmployeeAssignment.is_primary.is_(True),
                )
            ).all()
        )

    def test_employee_row_creates_home_address_and_primary_assignment(self) -> None:
        records = parse_csv_records(
            "employee_id,username,email,first_name,last_name,hire_date,street_line1,city,state_province,"
            "postal_code,location_id,job_title_id,assignment_start_date\n"
            "1001,jsmith,john.smith@company.com,John,Smith,2020-01-15,123 Main St,Dallas,TX,75201,101,6,\n"
        )

        result = import_employees(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.errors, [])
        employee = self.db.get(Employee, 1001)
        self.assertEqual(employee.user_type_id, 3)
        self.assertTrue(employee.is_full_time)
        self.assertEqual(self.db.get(Address, employee.address_id).address_type, "HOME")
        primaries = self._primary_assignments(1001)
        self.assertEqual(len(primaries), 1)
        self.assertEqual(primaries[0].location_id, 101)
        self.assertEqual(primaries[0].assignment_type, AssignmentType.PRIMARY)
        self.assertEqual(primaries[0].start_date, date(2020, 1, 15))

    def test_unknown_user_type_lists_valid_values(self) -> None:
        records = parse_csv_records(
            "employee_id,username,email,first_name,last_name,user_type_id,hire_date\n"
            "1001,jsmith,j@x.com,John,Smith,9,2020-01-15\n"
            "1002,mjones,m@x.com,Mary,Jones,3,2020-01-15\n"
        )

        result = import_employees(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.errors, ["Employee 1001: User type ID 9 not found. Valid values are: 3"])

    def test_missing_fields_are_listed(self) -> None:
        records = parse_csv_records(
            "employee_id,username,email,first_name,last_name\n1001,jsmith,,John,\n"
        )

        result = import_employees(self.db, records)

        self.assertEqual(result.errors, ["Employee 1001: Missing required fields: email, last_name"])

    def test_import_demotes_existing_current_primary(self) -> None:
        # Assignment rows left behind by an earlier load of the same employee id.
        existing = EmployeeAssignment(
            employee_id=1001,
            location_id=102,
            job_title_id=7,
            assignment_type=AssignmentType.PRIMARY,
            start_date=date(2021, 3, 1),
            is_current=True,
            is_primary=True,
        )
        self.db.add(existing)
        self.db.commit()

        records = parse_csv_records(
            "employee_id,username,email,first_name,last_name,hire_date,location_id,job_title_id\n"
            "1001,jsmith,jsmith@example.com,John,Smith,2020-01-15,101,6\n"
        )
        result = import_employees(self.db, records)

        self.assertEqual(result.imported, 1)
        self.db.refresh(existing)
        self.assertFalse(existing.is_primary)
        self.assertEqual(existing.assignment_type, AssignmentType.SECONDARY)
        primaries = self._primary_assignments(1001)
        self.assertEqual([item.location_id for item in primaries], [101])

    def test_assignment_failure_is_a_warning_and_employee_counts(self) -> None:
        records = parse_csv_records(
            "employee_id,username,email,first_name,last_name,hire_date,location_id,job_title_id\n"
            "1001,jsmith,jsmith@example.com,John,Smith,2020-01-15,101,6\n"
        )

        with patch(
            "app.services.csv_import.create_assignment",
            side_effect=IntegrityError("INSERT", {}, Exception("constraint failed")),
        ):
            result = import_employees(self.db, records)

        self.assertEqual(result.imported, 1)
        self.assertEqual(result.failed, 0)
        self.assertEqual(result.errors, ["Assignment for 1001: constraint failed"])
        self.assertIsNotNone(self.db.get(Employee, 1001))

    def test_prevalidation_issues_one_query_per_reference_field(self) -> None:
        header = "employee_id,username,email,first_name,last_name,hire_date,location_id,job_title_id\n"
        rows = "".join(
            f"{2000 + i},user{i},user{i}@example.com,First{i},Last{i},2020-01-15,{101 + i % 2},6\n"
            for i in range(100)
        )
        records = parse_csv_records(header + rows)

        with _StatementCounter(self.engine) as counter:
            valid_ids = prevalidate_references(
                self.db,
                records,
                EMPLOYEE_REFERENCES,
                defaults={"user_type_id": 3},
            )

        selects = [item for item in counter.statements if item.lstrip().upper().startswith("SELECT")]
        # user_type_id (defaulted), location_id and job_title_id are the only non-empty reference sets.
        self.assertEqual(len(selects), 3)
        self.assertEqual(valid_ids["location_id"], {101, 102})
        self.assertEqual(valid_ids["termination_reason_id"], set())

    def test_run_import_rejects_unknown_type(self) -> None:
        with self.assertRaises(ValueError):
            run_import(self.db, "widgets", [])  # type: ignore[arg-type]


if __name__ == "__main__":
    unittest.main()
