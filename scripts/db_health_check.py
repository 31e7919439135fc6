#!/usr/bin/env python
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine

from app.services.hierarchy_migration import hierarchy_state
from app.settings import get_database_url, get_settings

EXPECTED_HEAD = "0002_audit_logs"


def run(engine: Engine | None = None) -> dict[str, Any]:
    settings = get_settings()
    if engine is None:
        engine = create_engine(get_database_url())

    report: dict[str, Any] = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict[str, Any]) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        state = hierarchy_state(engine, backup_prefix=settings.hierarchy_backup_prefix)
        add("hierarchy_migrated", "ok" if state["migrated"] else "warn", {"migrated": state["migrated"]})
        add(
            "hierarchy_backup_tables",
            "warn" if state["backup_tables"] else "ok",
            {"tables": state["backup_tables"]},
        )

        if "employee_assignments" in tables:
            duplicate_primaries = conn.execute(
                text(
                    """
                    select employee_id, count(*)
                    from employee_assignments
                    where is_current = true and is_primary = true
                    group by employee_id
                    having count(*) > 1
                    """
                )
            ).fetchall()
            add(
                "duplicate_current_primary_assignment",
                "fail" if duplicate_primaries else "ok",
                {"rows": [list(row) for row in duplicate_primaries]},
            )

        if "locations" in tables and "districts" in tables:
            orphan_locations = conn.execute(
                text(
                    """
                    select l.location_id
                    from locations l
                    left join districts d on d.district_id = l.district_id
                    where d.district_id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "location_orphan_district",
                "fail" if orphan_locations else "ok",
                {"sample_ids": [row[0] for row in orphan_locations]},
            )

        if state["migrated"] and "districts" in tables:
            unlinked_districts = conn.execute(
                text(
                    """
                    select district_id
                    from districts
                    where market_id is null
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "district_without_market",
                "warn" if unlinked_districts else "ok",
                {"sample_ids": [row[0] for row in unlinked_districts]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
