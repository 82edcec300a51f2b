"""FastAPI routes for usage, plan and legacy limit introspection."""

import logging

from fastapi import APIRouter, Depends, Query

from guidechat.core.auth import get_current_user_email
from guidechat.features.entitlements.service import usage_overview
from guidechat.features.usage.service import (
    MAX_HISTORY_DAYS,
    format_time_remaining,
    get_usage_history,
    get_user_limits,
    reserve_export,
    time_until_next_export,
)

router = APIRouter(prefix="/api", tags=["usage"])
logger = logging.getLogger(__name__)


@router.get("/usage")
def get_usage_today(user_email: str = Depends(get_current_user_email)):
    """Plan, feature flags and today's per-bucket usage with remaining quota."""
    return usage_overview(user_email)


@router.get("/usage/history")
def get_history(
    days: int = Query(7, ge=1, le=MAX_HISTORY_DAYS),
    user_email: str = Depends(get_current_user_email),
):
    """Per-day usage for the last `days` UTC days, oldest first, zero-filled."""
    history = get_usage_history(user_email, days)
    return {
        "days": days,
        "history": [
            {
                "day": entry.day,
                "buckets": {bucket.value: summary.model_dump() for bucket, summary in entry.buckets.items()},
                "total": entry.total.model_dump(),
            }
            for entry in history
        ],
    }


@router.get("/user/limits")
def get_limits(user_email: str = Depends(get_current_user_email)):
    """Legacy per-user limit document plus export cooldown status."""
    view = get_user_limits(user_email)
    wait_ms = time_until_next_export(user_email)
    return {
        "limits": view.as_legacy_document(),
        "export": {
            "allowed": wait_ms == 0,
            "wait_ms": wait_ms,
            "wait": format_time_remaining(wait_ms) if wait_ms else None,
        },
    }


@router.post("/user/export")
def record_user_export(user_email: str = Depends(get_current_user_email)):
    """
    Gate and stamp one export against the plan's cooldown.

    Response:
    {"exported_at": "2026-03-10T12:00:00+00:00"}
    """
    exported_at = reserve_export(user_email)
    return {"exported_at": exported_at.isoformat()}
