from __future__ import annotations

import unittest
from collections.abc import Generator

from fastapi.testclient import TestClient
from sqlalchemy import select

from app.db import get_db
from app.main import app
from app.models import AuditLog, EmployeeAssignment
from app.security import require_admin
from tests.sqlite_support import add_employee, make_session, seed_reference_data


def _override_get_db(db):  # type: ignore[no-untyped-def]
    def _override() -> Generator[object, None, None]:
        yield db

    return _override


def _super_admin_claims() -> dict[str, object]:
    return {"sub": "admin-1", "role": "admin", "is_super_admin": True}


class _OrganizationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine, self.db = make_session()
        seed_reference_data(self.db)
        app.dependency_overrides.clear()
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        app.dependency_overrides[require_admin] = _super_admin_claims
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()
        self.engine.dispose()


class HierarchyEndpointTests(_OrganizationTestCase):
    def test_create_company_then_division(self) -> None:
        company = self.client.post("/api/admin/organization/companies", json={"name": "Alliance Mobile"})
        self.assertEqual(company.status_code, 201)
        self.assertEqual(company.json()["id"], 1)
        self.assertIsNone(company.json()["parent_id"])

        division = self.client.post(
            "/api/admin/organization/divisions",
            json={"name": "Retail Operations", "parent_id": 1, "code": "RETAIL"},
        )
        self.assertEqual(division.status_code, 201)
        self.assertEqual(division.json()["parent_id"], 1)
        self.assertEqual(division.json()["code"], "RETAIL")

        listed = self.client.get("/api/admin/organization/divisions", params={"parent_id": 1})
        self.assertEqual([item["name"] for item in listed.json()], ["Retail Operations"])

        actions = self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all()
        self.assertEqual(actions, ["COMPANY_CREATED", "DIVISION_CREATED"])

    def test_child_level_requires_existing_parent(self) -> None:
        missing_parent = self.client.post("/api/admin/organization/divisions", json={"name": "Retail"})
        self.assertEqual(missing_parent.status_code, 422)

        unknown_parent = self.client.post(
            "/api/admin/organization/divisions",
            json={"name": "Retail", "parent_id": 42},
        )
        self.assertEqual(unknown_parent.status_code, 404)

    def test_unknown_level_is_rejected(self) -> None:
        response = self.client.get("/api/admin/organization/planets")
        self.assertEqual(response.status_code, 422)

    def test_deactivated_nodes_are_hidden_by_default(self) -> None:
        response = self.client.patch("/api/admin/organization/districts/2", json={"is_active": False})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_active"])

        active = self.client.get("/api/admin/organization/districts")
        everything = self.client.get("/api/admin/organization/districts", params={"include_inactive": True})
        self.assertEqual([item["id"] for item in active.json()], [1])
        self.assertEqual(sorted(item["id"] for item in everything.json()), [1, 2])


class LocationEndpointTests(_OrganizationTestCase):
    def test_location_ids_start_at_ten_thousand(self) -> None:
        first = self.client.post("/api/admin/locations", json={"district_id": 1, "name": "Dallas Downtown"})
        second = self.client.post("/api/admin/locations", json={"district_id": 2, "name": "Dallas Uptown"})

        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["location_id"], 10000)
        self.assertEqual(first.json()["timezone"], "America/Chicago")
        self.assertEqual(second.json()["location_id"], 10001)

        filtered = self.client.get("/api/admin/locations", params={"district_id": 2})
        self.assertEqual([item["name"] for item in filtered.json()], ["Dallas Uptown"])

    def test_unknown_district_is_not_found(self) -> None:
        response = self.client.post("/api/admin/locations", json={"district_id": 99, "name": "Nowhere"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "NOT_FOUND")

    def test_update_location(self) -> None:
        self.client.post("/api/admin/locations", json={"district_id": 1, "name": "Dallas Downtown"})

        response = self.client.put(
            "/api/admin/locations/10000",
            json={"name": "Dallas Main", "district_id": 2, "store_number": "S009", "is_active": True},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["district_id"], 2)
        self.assertEqual(response.json()["store_number"], "S009")


class EmployeeEndpointTests(_OrganizationTestCase):
    def _create(self, email: str):  # type: ignore[no-untyped-def]
        return self.client.post(
            "/api/admin/employees",
            json={"email": email, "first_name": "John", "last_name": "Smith", "hire_date": "2020-01-15"},
        )

    def test_create_employee_defaults(self) -> None:
        response = self._create("John.Smith@Company.com")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["employee_id"], 2000)
        self.assertEqual(body["email"], "john.smith@company.com")
        self.assertEqual(body["username"], "john.smith")
        self.assertEqual(body["employee_number"], "EMP2000")
        self.assertEqual(body["user_type_id"], 3)

    def test_duplicate_email_conflicts(self) -> None:
        self._create("john.smith@company.com")
        response = self.client.post(
            "/api/admin/employees",
            json={
                "email": "john.smith@company.com",
                "username": "jsmith2",
                "first_name": "John",
                "last_name": "Smith",
                "hire_date": "2020-01-15",
            },
        )
        self.assertEqual(response.status_code, 409)

    def test_invalid_email_is_rejected(self) -> None:
        response = self._create("not-an-email")
        self.assertEqual(response.status_code, 422)

    def test_deactivate_hides_employee_from_default_listing(self) -> None:
        self._create("john.smith@company.com")

        response = self.client.delete("/api/admin/employees/2000")

        self.assertEqual(response.json(), {"ok": True, "id": 2000})
        self.assertEqual(self.client.get("/api/admin/employees").json(), [])
        everything = self.client.get("/api/admin/employees", params={"include_inactive": True})
        self.assertEqual(len(everything.json()), 1)

    def test_null_on_required_field_is_unprocessable(self) -> None:
        self._create("john.smith@company.com")

        response = self.client.patch("/api/admin/employees/2000", json={"first_name": None})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
        self.assertEqual(self.client.get("/api/admin/employees/2000").json()["first_name"], "John")

    def test_null_on_optional_field_clears_it(self) -> None:
        self._create("john.smith@company.com")

        response = self.client.patch("/api/admin/employees/2000", json={"employee_number": None})

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["employee_number"])


class AssignmentEndpointTests(_OrganizationTestCase):
    def setUp(self) -> None:
        super().setUp()
        add_employee(self.db, 2000)
        for name in ("Store A", "Store B"):
            self.client.post("/api/admin/locations", json={"district_id": 1, "name": name})

    def _assign(self, location_id: int, **extra: object):  # type: ignore[no-untyped-def]
        payload = {"employee_id": 2000, "location_id": location_id, "job_title_id": 7, "start_date": "2024-02-01"}
        payload.update(extra)
        return self.client.post("/api/admin/assignments", json=payload)

    def test_second_primary_demotes_first(self) -> None:
        first = self._assign(10000)
        second = self._assign(10001)

        self.assertEqual(first.status_code, 201)
        self.assertEqual(second.json()["assignment_type"], "PRIMARY")

        listed = self.client.get("/api/admin/assignments", params={"employee_id": 2000}).json()
        primaries = [item for item in listed if item["is_primary"]]
        self.assertEqual([item["location_id"] for item in primaries], [10001])
        demoted = next(item for item in listed if item["location_id"] == 10000)
        self.assertEqual(demoted["assignment_type"], "SECONDARY")

    def test_make_primary_and_end(self) -> None:
        first_id = self._assign(10000).json()["id"]
        second_id = self._assign(10001, assignment_type="TEMPORARY").json()["id"]

        promoted = self.client.post(f"/api/admin/assignments/{second_id}/make-primary")
        self.assertEqual(promoted.status_code, 200)
        self.assertTrue(promoted.json()["is_primary"])
        self.assertEqual(promoted.json()["assignment_type"], "TEMPORARY")
        self.assertFalse(self.db.get(EmployeeAssignment, first_id).is_primary)

        ended = self.client.post(f"/api/admin/assignments/{first_id}/end", json={"end_date": "2024-06-30"})
        self.assertEqual(ended.status_code, 200)
        self.assertFalse(ended.json()["is_current"])

        again = self.client.post(f"/api/admin/assignments/{first_id}/make-primary")
        self.assertEqual(again.status_code, 422)

    def test_unknown_location_is_unprocessable(self) -> None:
        response = self._assign(99999)
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["message"], "Location ID 99999 not found")

    def test_create_keeps_submitted_type_and_flag(self) -> None:
        self._assign(10000)
        response = self._assign(10001, assignment_type="TEMPORARY", is_primary=True)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["assignment_type"], "TEMPORARY")
        self.assertTrue(response.json()["is_primary"])

    def test_patch_null_start_date_is_unprocessable(self) -> None:
        assignment_id = self._assign(10000).json()["id"]

        response = self.client.patch(f"/api/admin/assignments/{assignment_id}", json={"start_date": None})

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_end_before_start_is_unprocessable(self) -> None:
        assignment_id = self._assign(10000).json()["id"]
        response = self.client.post(f"/api/admin/assignments/{assignment_id}/end", json={"end_date": "2023-01-01"})
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
