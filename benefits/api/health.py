"""
Health and readiness endpoints.

Lightweight checks for operational monitoring without exposing secrets.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from benefits.core.database import check_connection, get_engine, metadata

logger = logging.getLogger("benefits")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    required_tables = sorted(metadata.tables.keys())

    if not check_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "missing_tables": required_tables})

    try:
        present = set(inspect(get_engine()).get_table_names())
    except Exception:
        logger.warning("readyz.inspect_failed", exc_info=True)
        return JSONResponse(status_code=503, content={"status": "unavailable", "missing_tables": required_tables})

    missing = [name for name in required_tables if name not in present]
    if missing:
        return JSONResponse(status_code=503, content={"status": "not_ready", "missing_tables": missing})
    return {"status": "ready", "missing_tables": []}
