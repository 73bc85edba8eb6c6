"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect

from family_helper.core.database import get_engine, metadata

logger = logging.getLogger("family_helper")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: DB connectivity + required tables."""
    required = sorted(metadata.tables.keys())
    try:
        present = set(inspect(get_engine()).get_table_names())
    except Exception as e:
        logger.warning(f"readyz: database unavailable: {e}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "missing_tables": required})

    missing = [t for t in required if t not in present]
    if missing:
        return JSONResponse(status_code=503, content={"status": "degraded", "missing_tables": missing})
    return {"status": "ok", "missing_tables": []}
