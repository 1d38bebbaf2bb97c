from __future__ import annotations

from fastapi import FastAPI, HTTPException

from org_structure.api.routers import assignments, change_requests, departments, positions, structure
from org_structure.infra import locks
from org_structure.infra.db import check_db_ready
from org_structure.infra.log_config import configure_logging
from org_structure.infra.redis_state import check_redis_ready

configure_logging()

app = FastAPI(
    title="org-structure",
    description="Departments, positions, reporting lines, assignments and structure change requests.",
    version="0.1.0",
)

app.include_router(departments.router, prefix="/api/org", tags=["departments"])
app.include_router(positions.router, prefix="/api/org", tags=["positions"])
app.include_router(assignments.router, prefix="/api/org", tags=["assignments"])
app.include_router(change_requests.router, prefix="/api/org", tags=["change-requests"])
app.include_router(structure.router, prefix="/api/org", tags=["structure"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    ready = db_ok
    if locks.ORG_LOCK_BACKEND == "redis":
        redis_ok = check_redis_ready()
        checks["redis"] = "ok" if redis_ok else "fail"
        ready = ready and redis_ok
    if not ready:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
