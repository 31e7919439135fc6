import asyncio
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.db import engine
from app.errors import install_exception_handlers
from app.logging_utils import setup_json_logging
from app.routers import admin, organization
from app.services.hierarchy_migration import hierarchy_state
from app.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from app.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
request_logger = logging.getLogger("app.request")
startup_logger = logging.getLogger("app.startup")

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_exception_handlers(app)
app.include_router(admin.router)
app.include_router(organization.router)


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor_id = "anonymous"

    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        request_logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "actor_id": request.state.actor_id,
            },
        )


@app.on_event("startup")
async def check_schema() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.get("/health")
def health() -> dict[str, Any]:
    guard: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if guard is None:
        guard = SchemaGuardResult(ok=False, checked_at_utc=datetime.now(timezone.utc), issues=["SCHEMA_GUARD_NOT_RUN"])

    try:
        hierarchy = hierarchy_state(engine, backup_prefix=settings.hierarchy_backup_prefix)
    except Exception as exc:
        startup_logger.warning("hierarchy_state_unavailable", extra={"error": exc.__class__.__name__})
        hierarchy = {"migrated": None, "backup_tables": []}

    return {"status": "ok", "schema_guard": guard.to_dict(), "hierarchy": hierarchy}
