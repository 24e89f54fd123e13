from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException

from farm_access.api.routers import access, auth, tenancy
from farm_access.infra.db import check_db_ready

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="farm-access",
    description="Multi-tenant role-based access control for farm management.",
    version="0.1.0",
)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(access.router, prefix="/api/access", tags=["access"])
app.include_router(tenancy.router, prefix="/api/tenancy", tags=["tenancy"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
