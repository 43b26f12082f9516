from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from workdesk.api.routers import auth, billing, identity, reporting, workforce
from workdesk.domain.permissions import assert_policy_complete
from workdesk.infra.audit import AuditMiddleware
from workdesk.infra.db import InfrastructureError, check_db_ready
from workdesk.infra.logging_config import configure_logging
from workdesk.infra.redis_state import check_redis_ready

configure_logging()
logger = logging.getLogger(__name__)

# Refuse to start when any served kind lacks a policy row for some role.
assert_policy_complete(
    identity.RESOURCE_KINDS + workforce.RESOURCE_KINDS + billing.RESOURCE_KINDS + reporting.RESOURCE_KINDS
)

app = FastAPI(
    title="workdesk",
    description="Multi-tenant workforce and billing API with role and ownership based access control.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(identity.router, prefix="/api", tags=["identity"])
app.include_router(workforce.router, prefix="/api", tags=["workforce"])
app.include_router(billing.router, prefix="/api", tags=["billing"])
app.include_router(reporting.router, prefix="/api", tags=["reporting"])


@app.exception_handler(InfrastructureError)
async def infrastructure_error_handler(request: Request, exc: InfrastructureError) -> JSONResponse:
    logger.error("request.infrastructure_error path=%s error=%s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "service temporarily unavailable"},
        headers={"Retry-After": "5"},
    )


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
