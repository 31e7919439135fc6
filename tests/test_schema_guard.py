from __future__ import annotations

import unittest
from unittest.mock import patch

from app.services.schema_guard import verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(
        self,
        *,
        columns_by_table: dict[str, set[str]],
        enums: list[dict[str, object]],
        extra_tables: set[str] | None = None,
    ):
        self._columns_by_table = columns_by_table
        self._enums = enums
        self._extra_tables = extra_tables or set()

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_table_names(self):  # type: ignore[no-untyped-def]
        return sorted(set(self._columns_by_table) | self._extra_tables)

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


FULL_COLUMNS = {
    "locations": {"location_id", "district_id", "name", "timezone", "in_footprint"},
    "employees": {"employee_id", "username", "email", "user_type_id", "hire_date"},
    "employee_assignments": {"id", "employee_id", "location_id", "is_current", "is_primary"},
    "districts": {"district_id", "name", "market_id"},
    "alembic_version": {"version_num"},
}


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=FULL_COLUMNS,
            enums=[{"name": "audit_actor_type", "labels": ["ADMIN", "SYSTEM"]}],
            extra_tables={"companies", "divisions"},
        )
        fake_engine = _FakeEngine("0002_audit_logs")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_unmigrated_hierarchy_is_a_warning_only(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table=FULL_COLUMNS,
            enums=[{"name": "audit_actor_type", "labels": ["ADMIN", "SYSTEM"]}],
        )
        fake_engine = _FakeEngine("0002_audit_logs")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["HIERARCHY_NOT_MIGRATED"])
        self.assertEqual(result.to_dict()["warning_count"], 1)

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={
                "locations": {"location_id", "district_id", "name"},
                "employees": {"employee_id", "username"},
                "employee_assignments": {"id", "employee_id", "location_id", "is_current", "is_primary"},
                "districts": {"district_id", "name"},
                "alembic_version": {"version_num"},
            },
            enums=[{"name": "audit_actor_type", "labels": ["ADMIN"]}],
            extra_tables={"companies"},
        )
        fake_engine = _FakeEngine("")

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:locations:in_footprint,timezone", result.issues)
        self.assertIn("MISSING_COLUMNS:employees:email,hire_date,user_type_id", result.issues)
        self.assertFalse(any(item.startswith("MISSING_COLUMNS:employee_assignments") for item in result.issues))
        self.assertIn("MISSING_ENUM_VALUES:audit_actor_type:SYSTEM", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_missing_enum_is_a_warning(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=FULL_COLUMNS, enums=[], extra_tables={"companies"})

        with patch("app.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0002_audit_logs"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.warnings, ["ENUM_NOT_FOUND:audit_actor_type"])


if __name__ == "__main__":
    unittest.main()
