from __future__ import annotations

import unittest
from io import BytesIO

from openpyxl import load_workbook
from sqlalchemy import select

from app.models import Employee, EmployeeAssignment
from app.services.csv_import import import_employees, import_locations, parse_csv_records
from app.services.import_templates import (
    EMPLOYEE_TEMPLATE,
    LOCATION_TEMPLATE,
    REQUIRED_FILL,
    build_template_csv,
    build_template_xlsx,
    export_records_csv,
    get_template,
)
from tests.sqlite_support import add_location, make_session, seed_reference_data


class TemplateContentTests(unittest.TestCase):
    def test_sample_rows_match_headers(self) -> None:
        for template in (LOCATION_TEMPLATE, EMPLOYEE_TEMPLATE):
            self.assertEqual(len(template.headers), len(template.sample_row), template.entity_type)
            self.assertTrue(set(template.required) <= set(template.headers))

    def test_csv_template_parses_to_its_sample_row(self) -> None:
        records = parse_csv_records(build_template_csv("locations"))

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["location_id"], "101")
        self.assertEqual(records[0]["name"], "Dallas Downtown")
        self.assertIs(records[0]["in_footprint"], True)
        self.assertIsNone(records[0]["street_line2"])

    def test_unknown_template_type(self) -> None:
        with self.assertRaises(ValueError):
            get_template("widgets")

    def test_xlsx_marks_required_columns(self) -> None:
        workbook = load_workbook(BytesIO(build_template_xlsx("locations")))
        sheet = workbook["Template"]

        headers = [cell.value for cell in sheet[1]]
        self.assertEqual(headers, list(LOCATION_TEMPLATE.headers))
        required_cells = [cell for cell in sheet[1] if cell.value in LOCATION_TEMPLATE.required]
        self.assertTrue(all(cell.fill.fgColor.rgb.endswith(REQUIRED_FILL.fgColor.rgb[-6:]) for cell in required_cells))
        self.assertEqual(workbook["Instructions"]["A1"].value, "LOCATION IMPORT TEMPLATE")


class TemplateImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.db = make_session()
        seed_reference_data(self.db)

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_location_template_imports_cleanly(self) -> None:
        result = import_locations(self.db, parse_csv_records(build_template_csv("locations")))

        self.assertEqual((result.imported, result.failed), (1, 0))

    def test_employee_template_imports_with_assignment(self) -> None:
        add_location(self.db, 101)

        result = import_employees(self.db, parse_csv_records(build_template_csv("employees")))

        self.assertEqual(result.errors, [])
        self.assertEqual(result.imported, 1)
        employee = self.db.get(Employee, 1001)
        self.assertEqual(employee.employee_number, "EMP001")
        assignments = self.db.scalars(select(EmployeeAssignment).where(EmployeeAssignment.employee_id == 1001)).all()
        self.assertEqual([(item.location_id, item.is_primary) for item in assignments], [(101, True)])

    def test_export_can_be_reimported_in_skip_mode(self) -> None:
        import_locations(self.db, parse_csv_records(build_template_csv("locations")))

        exported = export_records_csv(self.db, "locations")
        records = parse_csv_records(exported)

        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["location_id"], "101")
        self.assertEqual(records[0]["market_id"], "1")
        self.assertEqual(records[0]["city"], "Dallas")
        result = import_locations(self.db, records, conflict="skip")
        self.assertEqual((result.imported, result.skipped), (0, 1))


if __name__ == "__main__":
    unittest.main()
