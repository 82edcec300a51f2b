"""
Health endpoints.

Lightweight liveness plus a database readiness check; no secrets exposed.
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from guidechat.core.database import check_connection

logger = logging.getLogger("guidechat")

root_router = APIRouter(tags=["health"])


@root_router.get("/healthz")
def healthz():
    """Liveness check (no deps)."""
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Readiness check: database reachable."""
    connected = check_connection()
    payload = {
        "ok": connected,
        "db": {"connected": connected},
        "computed_at": datetime.now(timezone.utc).isoformat(),
    }
    if not connected:
        logger.warning("readyz.db_unavailable")
        return JSONResponse(status_code=503, content=payload)
    return payload
