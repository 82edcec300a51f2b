"""
guidechat/features/guests/service.py

Guest limiter for unauthenticated callers.

Guests may only use a small fixed set of buckets and get a lifetime
(not daily) guide ceiling keyed by network identity. Identity is the client
address only; shared NATs share a counter and a rotating address resets it.
"""

from datetime import datetime, timezone
from typing import Mapping, Optional
import logging
from sqlalchemy import select

from guidechat.core.config import settings
from guidechat.core.database import get_db_session, guest_limits, storage_guard, upsert
from guidechat.core.errors import StorageTransientError
from guidechat.features.entitlements.service import (
    REASON_NOT_IN_PLAN,
    AccessDecision,
    deny_storage_unavailable,
)
from guidechat.models.bucket import ModelBucket
from guidechat.models.usage import GuestCounter


logger = logging.getLogger(__name__)

GUEST_BUCKETS = frozenset({ModelBucket.LLAMA, ModelBucket.DEEPSEEK})

UNKNOWN_IDENTITY = "unknown"

GUEST_STORAGE_UNAVAILABLE = "Guest metering is temporarily unavailable. Please retry."


def client_identity(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Derive a guest identity from proxy headers or the peer address.

    Order: first x-forwarded-for hop, x-real-ip, cf-connecting-ip, peer.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(header)
        if value and value.strip():
            return value.strip()
    return peer or UNKNOWN_IDENTITY


def guest_limit() -> int:
    return settings.GUEST_GUIDE_LIMIT


def get_guest_limits(identity: str) -> GuestCounter:
    with storage_guard("guests.get_guest_limits", GUEST_STORAGE_UNAVAILABLE, identity=identity), get_db_session() as session:
        row = session.execute(
            select(guest_limits.c.guides).where(guest_limits.c.identity == identity)
        ).first()
    return GuestCounter(identity=identity, guides=int(row.guides) if row else 0)


def check_guest_guide_limit(counter: GuestCounter) -> bool:
    """True while the guest is under the lifetime ceiling."""
    return counter.guides < guest_limit()


def increment_guest_guide_count(identity: str) -> None:
    """Atomically add one guide to the guest's lifetime counter."""
    now = datetime.now(timezone.utc)
    with storage_guard("guests.increment_guest_guide_count", GUEST_STORAGE_UNAVAILABLE, identity=identity):
        stmt = upsert(guest_limits).values(identity=identity, guides=1, created_at=now, updated_at=now)
        stmt = stmt.on_conflict_do_update(
            index_elements=["identity"],
            set_={"guides": guest_limits.c.guides + 1, "updated_at": stmt.excluded.updated_at},
        )
        with get_db_session() as session:
            session.execute(stmt)


def check_and_reserve_guest(identity: str, bucket: ModelBucket) -> AccessDecision:
    """
    Gate one guest generation and charge it before the provider runs.

    Bucket restriction is checked first; the lifetime ceiling never resets.
    """
    bucket = ModelBucket(bucket)
    limit = guest_limit()

    if bucket not in GUEST_BUCKETS:
        logger.warning("[guest] DENY", extra={"identity": identity, "bucket": bucket.value, "reason": "bucket"})
        return AccessDecision(
            allowed=False,
            bucket=bucket,
            reason=REASON_NOT_IN_PLAN,
            message=(
                f"The {bucket.value} model requires an account. Guests can use: "
                f"{', '.join(sorted(b.value for b in GUEST_BUCKETS))}."
            ),
            code="model_not_in_plan",
            http_status=403,
            limit=0,
        )

    try:
        counter = get_guest_limits(identity)
        if not check_guest_guide_limit(counter):
            logger.warning(
                "[guest] DENY",
                extra={"identity": identity, "bucket": bucket.value, "used": counter.guides, "limit": limit},
            )
            return AccessDecision(
                allowed=False,
                bucket=bucket,
                reason="guest limit reached",
                message=f"Guest limit reached: {limit} free guides. Sign in to keep generating.",
                code="quota_exceeded",
                http_status=429,
                limit=limit,
                used=counter.guides,
            )
        increment_guest_guide_count(identity)
    except StorageTransientError as exc:
        logger.error("[guest] storage failure", extra={"identity": identity, "error": str(exc)})
        return deny_storage_unavailable(bucket)

    used = counter.guides + 1
    logger.info("[guest] ALLOW", extra={"identity": identity, "bucket": bucket.value, "used": used, "limit": limit})
    return AccessDecision(
        allowed=True,
        bucket=bucket,
        limit=limit,
        used=used,
        remaining=max(0, limit - used),
    )
