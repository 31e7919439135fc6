import logging
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.audit import log_admin_action
from app.db import get_db, get_engine
from app.errors import flat_error_response
from app.models import AuditLog
from app.schemas import AuditLogRead, ImportDetails, ImportResponse, MigrationResponse
from app.security import require_admin_permission
from app.services.csv_import import CONFLICT_MODES, ENTITY_TYPES, parse_csv_records, run_import
from app.services.hierarchy_migration import HierarchyMigrator, MigrationRefused
from app.services.import_templates import build_template_csv, build_template_xlsx, export_records_csv, get_template
from app.settings import get_settings

router = APIRouter(tags=["admin"])
logger = logging.getLogger("app.importer")
migration_logger = logging.getLogger("app.hierarchy_migration")
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"


def _attachment(content: str | bytes, *, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _read_upload(file: UploadFile, max_bytes: int) -> bytes | None:
    payload = file.file.read(max_bytes + 1)
    if len(payload) > max_bytes:
        return None
    return payload


@router.post(
    "/api/admin/import",
    response_model=ImportResponse,
    dependencies=[Depends(require_admin_permission("imports", write=True))],
)
def import_records(
    request: Request,
    file: UploadFile | None = File(default=None),
    entity_type: str | None = Form(default=None, alias="type"),
    conflict: str = Form(default="fail"),
    db: Session = Depends(get_db),
) -> Any:
    settings = get_settings()
    missing = [name for name, value in (("file", file), ("type", entity_type)) if value is None or value == ""]
    if missing:
        return flat_error_response(
            400,
            "Missing file or type",
            details={"errors": [f"Missing form field: {name}" for name in missing]},
        )
    if entity_type not in ENTITY_TYPES:
        return flat_error_response(
            400,
            "Invalid import type",
            details={"errors": [f"type must be one of: {', '.join(ENTITY_TYPES)}"]},
        )
    if conflict not in CONFLICT_MODES:
        return flat_error_response(
            400,
            "Invalid conflict mode",
            details={"errors": [f"conflict must be one of: {', '.join(CONFLICT_MODES)}"]},
        )

    try:
        payload = _read_upload(file, settings.import_max_upload_bytes)
        if payload is None:
            return flat_error_response(
                413,
                "File too large",
                details={"errors": [f"Upload exceeds {settings.import_max_upload_bytes} bytes"]},
            )
        records = parse_csv_records(payload.decode("utf-8-sig"))
        result = run_import(db, entity_type, records, conflict=conflict)  # type: ignore[arg-type]
    except Exception as exc:
        db.rollback()
        logger.exception(
            "import_failed",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "entity_type": entity_type,
                "filename": file.filename,
            },
        )
        return flat_error_response(500, "Import failed", details={"errors": [str(exc)]})

    log_admin_action(
        db,
        request,
        action="BULK_IMPORT_COMPLETED",
        entity_type=entity_type,
        entity_id=file.filename,
        details={"conflict": conflict, "rows": len(records), **result.to_dict()},
    )
    return ImportResponse(
        message=f"Import completed: {result.imported} succeeded, {result.failed} failed",
        details=ImportDetails(**result.to_dict()),
    )


@router.get(
    "/api/admin/export-template",
    dependencies=[Depends(require_admin_permission("imports"))],
)
def export_template(
    entity_type: str = Query(alias="type"),
    export_format: str = Query(default="csv", alias="format", pattern="^(csv|xlsx)$"),
) -> Response:
    try:
        template = get_template(entity_type)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid template type")

    if export_format == "xlsx":
        return _attachment(
            build_template_xlsx(entity_type),
            media_type=XLSX_MEDIA_TYPE,
            filename=f"{template.filename_stem}.xlsx",
        )
    return _attachment(
        build_template_csv(entity_type),
        media_type=CSV_MEDIA_TYPE,
        filename=f"{template.filename_stem}.csv",
    )


@router.get(
    "/api/admin/export",
    dependencies=[Depends(require_admin_permission("imports"))],
)
def export_records(
    request: Request,
    entity_type: str = Query(alias="type"),
    db: Session = Depends(get_db),
) -> Response:
    if entity_type not in ENTITY_TYPES:
        raise HTTPException(status_code=400, detail="Invalid export type")

    content = export_records_csv(db, entity_type)
    log_admin_action(
        db,
        request,
        action="BULK_EXPORT_CSV",
        entity_type=entity_type,
        details={"bytes": len(content)},
    )
    return _attachment(content, media_type=CSV_MEDIA_TYPE, filename=f"{entity_type}-export.csv")


@router.post(
    "/api/admin/run-migration",
    response_model=MigrationResponse,
    dependencies=[Depends(require_admin_permission("migrations", write=True))],
)
def run_hierarchy_migration(
    request: Request,
    db: Session = Depends(get_db),
    engine: Engine = Depends(get_engine),
) -> Any:
    migrator = HierarchyMigrator.from_settings(engine, get_settings())
    try:
        outcome = migrator.run()
    except MigrationRefused as exc:
        log_admin_action(
            db,
            request,
            action="HIERARCHY_MIGRATION_REFUSED",
            success=False,
            entity_type="hierarchy",
            details={"reason": str(exc)},
        )
        return flat_error_response(400, str(exc))
    except SQLAlchemyError as exc:
        migration_logger.exception(
            "hierarchy_migration_connect_failed",
            extra={"request_id": getattr(request.state, "request_id", None)},
        )
        return flat_error_response(500, "Failed to connect to database", details=str(exc))

    if not outcome.ok:
        log_admin_action(
            db,
            request,
            action="HIERARCHY_MIGRATION_FAILED",
            success=False,
            entity_type="hierarchy",
            details={"failed_step": outcome.failed_step, "results": outcome.results, "error": outcome.error},
        )
        return flat_error_response(500, "Migration failed", details=outcome.error, results=outcome.results)

    log_admin_action(
        db,
        request,
        action="HIERARCHY_MIGRATION_COMPLETED",
        entity_type="hierarchy",
        details={"current_state": outcome.current_state, "new_state": outcome.new_state},
    )
    return JSONResponse(
        status_code=200,
        content=MigrationResponse(
            success=True,
            message="Migration completed successfully",
            current_state=outcome.current_state,
            new_state=outcome.new_state or {},
            results=outcome.results,
        ).model_dump(by_alias=True),
    )


@router.get(
    "/api/admin/audit-logs",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_admin_permission("audit"))],
)
def list_audit_logs(
    action: str | None = Query(default=None),
    entity_type: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    stmt = select(AuditLog).order_by(AuditLog.ts_utc.desc(), AuditLog.id.desc()).limit(limit)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    return list(db.scalars(stmt).all())
