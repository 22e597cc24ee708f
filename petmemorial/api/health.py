"""
Health endpoints.

Lightweight liveness and readiness probes without exposing secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from petmemorial.core.database import check_connection, missing_tables

logger = logging.getLogger("petmemorial")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    try:
        missing = missing_tables()
    except Exception as e:
        logger.error(f"[readyz] table inspection failed: {e}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": "database unreachable"})

    if missing:
        detail = f"missing tables: {', '.join(sorted(missing))}"
        logger.warning(f"[readyz] {detail}")
        return JSONResponse(status_code=503, content={"status": "error", "detail": detail})

    return {"status": "ok"}
