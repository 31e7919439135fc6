"""One-time restructuring of the organization hierarchy.

Before: District -> Region -> Market (``districts.region_id``, ``regions.market_id``).
After:  District -> Market -> Region -> Division -> Company
        (``districts.market_id``, ``markets.region_id``, ``regions.division_id``).

Each step runs in its own transaction and nothing is rolled back automatically:
a failure leaves earlier steps applied and the ``_backup_*`` copies are the only
recovery path. On PostgreSQL a run holds an advisory lock, so a concurrent
caller is refused rather than racing the ``companies`` guard check.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from alembic.operations import Operations
from alembic.runtime.migration import MigrationContext
from sqlalchemy import exists, func, inspect, insert, select, table, text, update
from sqlalchemy.engine import Connection, Engine

from app.models import Company, District, Division, Market, Region
from app.settings import Settings

logger = logging.getLogger("app.hierarchy_migration")

GUARD_TABLE = "companies"
SNAPSHOT_TABLES: tuple[str, ...] = ("markets", "regions", "districts", "locations")
NEW_TABLES: tuple[str, ...] = ("companies", "divisions")

# pg_advisory_lock key held for the whole run so concurrent callers are refused.
MIGRATION_LOCK_KEY = 7_310_402_118

# (table, constraint) pairs that point along the old chain.
DROPPED_CONSTRAINTS: tuple[tuple[str, str], ...] = (
    ("regions", "regions_market_id_fkey"),
    ("districts", "districts_region_id_fkey"),
    ("locations", "locations_district_id_fkey"),
)

NEW_COLUMNS: tuple[tuple[str, str, Callable[[], sa.types.TypeEngine[Any]]], ...] = (
    ("regions", "division_id", sa.Integer),
    ("regions", "code", lambda: sa.String(length=50)),
    ("markets", "region_id", sa.Integer),
    ("markets", "code", lambda: sa.String(length=50)),
    ("districts", "market_id", sa.Integer),
)


@dataclass(frozen=True, slots=True)
class ForeignKeySpec:
    name: str
    source_table: str
    column: str
    referent_table: str
    referent_column: str


NEW_CONSTRAINTS: tuple[ForeignKeySpec, ...] = (
    ForeignKeySpec("regions_division_id_fkey", "regions", "division_id", "divisions", "division_id"),
    ForeignKeySpec("markets_region_id_fkey", "markets", "region_id", "regions", "region_id"),
    ForeignKeySpec("districts_market_id_fkey", "districts", "market_id", "markets", "market_id"),
    ForeignKeySpec("locations_district_id_fkey", "locations", "district_id", "districts", "district_id"),
)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MigrationRefused(Exception):
    pass


@dataclass(frozen=True, slots=True)
class HierarchyDefaults:
    company_id: int
    company_name: str
    company_legal_name: str | None
    company_email: str | None
    division_id: int
    division_name: str
    division_code: str | None

    @classmethod
    def from_settings(cls, settings: Settings) -> HierarchyDefaults:
        return cls(
            company_id=settings.hierarchy_default_company_id,
            company_name=settings.hierarchy_default_company_name,
            company_legal_name=settings.hierarchy_default_company_legal_name,
            company_email=settings.hierarchy_default_company_email,
            division_id=settings.hierarchy_default_division_id,
            division_name=settings.hierarchy_default_division_name,
            division_code=settings.hierarchy_default_division_code,
        )


@dataclass(slots=True)
class MigrationStep:
    name: str
    run: Callable[[Connection], None]


@dataclass(slots=True)
class MigrationOutcome:
    current_state: dict[str, int]
    results: list[dict[str, str]] = field(default_factory=list)
    new_state: dict[str, int] | None = None
    failed_step: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.failed_step is None

    @property
    def completed_steps(self) -> list[str]:
        return [item["step"] for item in self.results]


def _operations(connection: Connection) -> Operations:
    return Operations(MigrationContext.configure(connection))


def _error_message(exc: BaseException) -> str:
    original = getattr(exc, "orig", None)
    message = str(original if original is not None else exc).strip()
    return message.splitlines()[0] if message else exc.__class__.__name__


def count_rows(connection: Connection, table_names: Iterable[str]) -> dict[str, int]:
    inspector = inspect(connection)
    counts: dict[str, int] = {}
    for name in table_names:
        if not inspector.has_table(name):
            counts[name] = 0
            continue
        counts[name] = int(connection.execute(select(func.count()).select_from(table(name))).scalar_one())
    return counts


@contextmanager
def migration_lock(engine: Engine) -> Iterator[None]:
    """Hold a session-level advisory lock for the duration of a run (PostgreSQL only)."""
    if engine.dialect.name != "postgresql":
        yield
        return

    with engine.connect() as connection:
        acquired = connection.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": MIGRATION_LOCK_KEY}
        ).scalar()
        connection.commit()
        if not acquired:
            raise MigrationRefused("Hierarchy migration is already running.")
        try:
            yield
        finally:
            connection.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": MIGRATION_LOCK_KEY})
            connection.commit()


def hierarchy_state(engine: Engine, *, backup_prefix: str = "_backup_") -> dict[str, Any]:
    table_names = set(inspect(engine).get_table_names())
    return {
        "migrated": GUARD_TABLE in table_names,
        "backup_tables": sorted(name for name in table_names if name.startswith(backup_prefix)),
    }


class HierarchyMigrator:
    def __init__(self, engine: Engine, *, defaults: HierarchyDefaults, backup_prefix: str = "_backup_"):
        if not _IDENTIFIER_RE.match(backup_prefix):
            raise ValueError(f"Invalid backup table prefix: {backup_prefix!r}")
        self.engine = engine
        self.defaults = defaults
        self.backup_prefix = backup_prefix
        self.current_state: dict[str, int] = {}

    @classmethod
    def from_settings(cls, engine: Engine, settings: Settings) -> HierarchyMigrator:
        return cls(
            engine,
            defaults=HierarchyDefaults.from_settings(settings),
            backup_prefix=settings.hierarchy_backup_prefix,
        )

    def steps(self) -> list[MigrationStep]:
        return [
            MigrationStep("Snapshot counts", self.snapshot_counts),
            MigrationStep("Create tables", self.create_tables),
            MigrationStep("Create backups", self.create_backups),
            MigrationStep("Drop constraints", self.drop_constraints),
            MigrationStep("Add columns", self.add_columns),
            MigrationStep("Insert defaults", self.insert_defaults),
            MigrationStep("Migrate relationships", self.migrate_relationships),
            MigrationStep("Re-create constraints", self.recreate_constraints),
        ]

    def is_applied(self) -> bool:
        return inspect(self.engine).has_table(GUARD_TABLE)

    def run(self, steps: list[MigrationStep] | None = None) -> MigrationOutcome:
        with migration_lock(self.engine):
            if self.is_applied():
                logger.warning("hierarchy_migration_refused", extra={"guard_table": GUARD_TABLE})
                raise MigrationRefused("Companies table already exists. Migration may have been run already.")
            return self._run_steps(steps if steps is not None else self.steps())

    def _run_steps(self, steps: list[MigrationStep]) -> MigrationOutcome:
        outcome = MigrationOutcome(current_state=self.current_state)
        for step in steps:
            try:
                with self.engine.begin() as connection:
                    step.run(connection)
            except Exception as exc:
                outcome.failed_step = step.name
                outcome.error = f"{step.name} failed: {_error_message(exc)}"
                logger.exception(
                    "hierarchy_migration_step_failed",
                    extra={"step": step.name, "completed_steps": outcome.completed_steps},
                )
                return outcome
            outcome.results.append({"step": step.name, "status": "success"})
            logger.info("hierarchy_migration_step_completed", extra={"step": step.name})

        with self.engine.connect() as connection:
            outcome.new_state = {**count_rows(connection, NEW_TABLES), **self.current_state}
        logger.info(
            "hierarchy_migration_completed",
            extra={"current_state": outcome.current_state, "new_state": outcome.new_state},
        )
        return outcome

    # --- steps -----------------------------------------------------------------

    def snapshot_counts(self, connection: Connection) -> None:
        self.current_state.clear()
        self.current_state.update(count_rows(connection, SNAPSHOT_TABLES))

    def create_tables(self, connection: Connection) -> None:
        Company.__table__.create(bind=connection, checkfirst=True)
        Division.__table__.create(bind=connection, checkfirst=True)

    def backup_table_name(self, table_name: str) -> str:
        return f"{self.backup_prefix}{table_name}"

    def create_backups(self, connection: Connection) -> None:
        quote = connection.dialect.identifier_preparer.quote
        for name in SNAPSHOT_TABLES:
            connection.exec_driver_sql(
                f"CREATE TABLE IF NOT EXISTS {quote(self.backup_table_name(name))} AS SELECT * FROM {quote(name)}"
            )

    def drop_constraints(self, connection: Connection) -> None:
        inspector = inspect(connection)
        op = _operations(connection)
        for table_name, constraint_name in DROPPED_CONSTRAINTS:
            existing = {fk.get("name") for fk in inspector.get_foreign_keys(table_name)}
            if constraint_name in existing:
                op.drop_constraint(constraint_name, table_name, type_="foreignkey")

    def add_columns(self, connection: Connection) -> None:
        inspector = inspect(connection)
        op = _operations(connection)
        for table_name, column_name, column_type in NEW_COLUMNS:
            existing = {column["name"] for column in inspector.get_columns(table_name)}
            if column_name not in existing:
                op.add_column(table_name, sa.Column(column_name, column_type(), nullable=True))

    def insert_defaults(self, connection: Connection) -> None:
        companies = Company.__table__
        divisions = Division.__table__
        defaults = self.defaults

        company_exists = connection.execute(
            select(companies.c.company_id).where(companies.c.company_id == defaults.company_id)
        ).first()
        if company_exists is None:
            connection.execute(
                insert(companies).values(
                    company_id=defaults.company_id,
                    name=defaults.company_name,
                    legal_name=defaults.company_legal_name,
                    email=defaults.company_email,
                    is_active=True,
                )
            )

        division_exists = connection.execute(
            select(divisions.c.division_id).where(divisions.c.division_id == defaults.division_id)
        ).first()
        if division_exists is None:
            connection.execute(
                insert(divisions).values(
                    division_id=defaults.division_id,
                    company_id=defaults.company_id,
                    name=defaults.division_name,
                    code=defaults.division_code,
                    is_active=True,
                )
            )

    def migrate_relationships(self, connection: Connection) -> None:
        regions = Region.__table__
        markets = Market.__table__
        districts = District.__table__

        connection.execute(
            update(regions).where(regions.c.division_id.is_(None)).values(division_id=self.defaults.division_id)
        )

        # A market's new parent is the region that used to point at it.
        region_for_market = (
            select(func.min(regions.c.region_id)).where(regions.c.market_id == markets.c.market_id).scalar_subquery()
        )
        connection.execute(
            update(markets)
            .where(exists().where(regions.c.market_id == markets.c.market_id))
            .values(region_id=region_for_market)
        )

        # A district's new parent is the market its old region belonged to.
        market_for_district = (
            select(regions.c.market_id).where(regions.c.region_id == districts.c.region_id).scalar_subquery()
        )
        connection.execute(
            update(districts)
            .where(exists().where(regions.c.region_id == districts.c.region_id))
            .values(market_id=market_for_district)
        )

    def recreate_constraints(self, connection: Connection) -> None:
        inspector = inspect(connection)
        op = _operations(connection)
        for spec in NEW_CONSTRAINTS:
            existing = {fk.get("name") for fk in inspector.get_foreign_keys(spec.source_table)}
            if spec.name in existing:
                continue
            op.create_foreign_key(
                spec.name,
                spec.source_table,
                spec.referent_table,
                [spec.column],
                [spec.referent_column],
            )
