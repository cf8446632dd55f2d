"""FastAPI app: case lifecycle endpoints, dashboard and registry lookups."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Query
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from case_engine import ENGINE_VERSION, REGISTRY_VERSION
from case_engine.audit_context import set_audit_context
from case_engine.cases_api import cases_router, get_case_engine
from case_engine.config import get_config, get_config_hash
from case_engine.db import init_db
from case_engine.errors import (
    CaseEngineError,
    ConcurrentModification,
    Forbidden,
    InvalidFilter,
    InvalidPriority,
    InvalidStatus,
    NotFound,
    StorageUnavailable,
    UnknownCaseType,
)
from case_engine.logging_config import get_logger, setup_logging
from case_engine.projection import GROUP_BY_FIELDS
from case_engine.registry import get_definition
from case_engine.schemas import AggregateRow, DashboardResponse
from case_engine.service import CaseEngine

logger = get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[CaseEngineError], int], ...] = (
    (NotFound, 404),
    (Forbidden, 403),
    (StorageUnavailable, 503),
    (UnknownCaseType, 422),
    (InvalidStatus, 422),
    (InvalidPriority, 422),
    (InvalidFilter, 422),
    (ConcurrentModification, 409),
)


def http_status_for(error: CaseEngineError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(error, cls):
            return status
    return 409


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    db = config.get("database", {})
    db_url = db.get("url", "sqlite:///./data/cases.db")
    if db_url.startswith("sqlite:///") and ":memory:" not in db_url:
        Path(db_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    init_db(
        db_url,
        echo=db.get("echo", False),
        timeout_seconds=float(db.get("timeout_seconds", 5)),
    )
    yield


app = FastAPI(title="Citizen Case Engine API", version=ENGINE_VERSION, lifespan=lifespan)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Set correlation_id per request; echo X-Correlation-ID in response.
    Actor and role are set by require_api_key from the API key identity; reads stay anonymous.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_audit_context(correlation_id, "anonymous")
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


app.add_middleware(AuditContextMiddleware)


@app.exception_handler(CaseEngineError)
async def case_engine_error_handler(request: Request, exc: CaseEngineError) -> JSONResponse:
    status = http_status_for(exc)
    if exc.retryable or status == 409:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=status, content=exc.to_dict(), headers=headers)


app.include_router(cases_router)


@app.get("/health")
def health() -> dict[str, Any]:
    """Liveness, versions and resolved config hash; db_status indicates DB connectivity."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError

    from case_engine.db import get_engine

    db_status = "unknown"
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "ok"
    except (RuntimeError, SQLAlchemyError):
        db_status = "error"
    return {
        "status": "ok",
        "engine_version": ENGINE_VERSION,
        "registry_version": REGISTRY_VERSION,
        "config_hash": get_config_hash(get_config()),
        "db_status": db_status,
    }


@app.get("/registry/{case_type}")
def registry_entry(case_type: str) -> dict[str, Any]:
    """Static lifecycle definition for one case type."""
    return get_definition(case_type).summary()


@app.get("/dashboard", response_model=DashboardResponse)
def dashboard(engine: CaseEngine = Depends(get_case_engine)) -> DashboardResponse:
    return DashboardResponse(**engine.dashboard())


@app.get("/dashboard/aggregate", response_model=list[AggregateRow])
def dashboard_aggregate(
    group_by: str = Query("case_type_status", pattern="^(" + "|".join(GROUP_BY_FIELDS) + ")$"),
    engine: CaseEngine = Depends(get_case_engine),
) -> list[AggregateRow]:
    """Case counts grouped by one field (SLA bucket evaluated now)."""
    return [AggregateRow(**row) for row in engine.aggregate(group_by)]
