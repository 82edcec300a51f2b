"""
guidechat/features/usage/service.py

Usage ledger.

Handles:
- Atomic per-(user, bucket, UTC day) counter increments
- Today's usage by bucket
- Zero-filled day-range history
- Legacy per-user limit view (derived from the ledger)
- Export cooldown bookkeeping

The ledger is the single source of truth for generation counts. Every
increment is one INSERT .. ON CONFLICT DO UPDATE statement; application code
never reads a counter to compute its next value.
"""

from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional
import logging
from sqlalchemy import select, func

from guidechat.core.database import get_db_session, storage_guard, upsert, usage_records, user_limits
from guidechat.core.errors import QuotaExceededError
from guidechat.features.plans.service import export_cooldown_ms, plan_for
from guidechat.models.bucket import ModelBucket
from guidechat.models.usage import DailyUsage, UsageIncrement, UsageSummary, UserLimitView


logger = logging.getLogger(__name__)

MAX_HISTORY_DAYS = 90


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def day_key(now: Optional[datetime] = None) -> str:
    """UTC calendar day as YYYY-MM-DD."""
    return _normalize_now(now).strftime("%Y-%m-%d")


def _ledger_io(operation: str, user_email: str):
    return storage_guard(
        f"usage.{operation}",
        "Usage metering is temporarily unavailable. Please retry.",
        user_email=user_email,
    )


def record_usage(
    user_email: str,
    bucket: ModelBucket,
    *,
    requests: int = 0,
    text: int = 0,
    images: int = 0,
    tokens: int = 0,
    now: Optional[datetime] = None,
) -> None:
    """
    Add counters to today's record for (user, bucket), creating it lazily.

    Args:
        user_email: Owner of the usage
        bucket: Metered bucket (never a raw alias)
        requests/text/images/tokens: Non-negative increments
        now: Fixed timestamp (defaults to now, UTC)

    Raises:
        StorageTransientError: Storage unavailable
    """
    increment = UsageIncrement(requests=requests, text=text, images=images, tokens=tokens)
    if increment.is_empty():
        return

    bucket = ModelBucket(bucket)
    normalized_now = _normalize_now(now)

    stmt = upsert(usage_records).values(
        user_email=user_email,
        bucket=bucket.value,
        day=day_key(normalized_now),
        requests=increment.requests,
        text_requests=increment.text,
        image_generations=increment.images,
        tokens=increment.tokens,
        created_at=normalized_now,
        updated_at=normalized_now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_email", "bucket", "day"],
        set_={
            "requests": usage_records.c.requests + stmt.excluded.requests,
            "text_requests": usage_records.c.text_requests + stmt.excluded.text_requests,
            "image_generations": usage_records.c.image_generations + stmt.excluded.image_generations,
            "tokens": usage_records.c.tokens + stmt.excluded.tokens,
            "updated_at": stmt.excluded.updated_at,
        },
    )

    with _ledger_io("record_usage", user_email):
        with get_db_session() as session:
            session.execute(stmt)

    logger.info(
        "[usage] recorded",
        extra={
            "user_email": user_email,
            "bucket": bucket.value,
            "requests": increment.requests,
            "text": increment.text,
            "images": increment.images,
            "tokens": increment.tokens,
        },
    )


def _summary(row) -> UsageSummary:
    return UsageSummary(
        requests=int(row.requests or 0),
        text_requests=int(row.text_requests or 0),
        image_generations=int(row.image_generations or 0),
        tokens=int(row.tokens or 0),
    )


def _empty_buckets() -> Dict[ModelBucket, UsageSummary]:
    return {bucket: UsageSummary() for bucket in ModelBucket}


def get_usage(user_email: str, now: Optional[datetime] = None) -> Dict[ModelBucket, UsageSummary]:
    """Today's (UTC) usage for every bucket, zero-filled."""
    usage = _empty_buckets()
    with _ledger_io("get_usage", user_email):
        with get_db_session() as session:
            rows = session.execute(
                select(usage_records)
                .where(usage_records.c.user_email == user_email)
                .where(usage_records.c.day == day_key(now))
            ).all()

    for row in rows:
        try:
            bucket = ModelBucket(row.bucket)
        except ValueError:
            logger.warning("[usage] unknown bucket in ledger", extra={"bucket": row.bucket})
            continue
        usage[bucket] = _summary(row)
    return usage


def get_count(
    user_email: str,
    bucket: ModelBucket,
    period: str = "day",
    now: Optional[datetime] = None,
) -> int:
    """
    Request count for (user, bucket).

    Args:
        period: "day" for today's UTC day, "lifetime" for all recorded days
    """
    bucket = ModelBucket(bucket)
    query = (
        select(func.coalesce(func.sum(usage_records.c.requests), 0))
        .where(usage_records.c.user_email == user_email)
        .where(usage_records.c.bucket == bucket.value)
    )
    if period == "day":
        query = query.where(usage_records.c.day == day_key(now))
    elif period != "lifetime":
        raise ValueError(f"Unknown usage period: {period}")

    with _ledger_io("get_count", user_email):
        with get_db_session() as session:
            count = session.execute(query).scalar()
    return int(count or 0)


def get_usage_history(user_email: str, days: int = 7, now: Optional[datetime] = None) -> List[DailyUsage]:
    """
    Per-day usage for the last `days` UTC days (oldest first, today last).

    The full day range is built first so days without records come back
    zero-filled; found records are overlaid on top.
    """
    days = max(1, min(int(days), MAX_HISTORY_DAYS))
    normalized_now = _normalize_now(now)
    day_range = [day_key(normalized_now - timedelta(days=offset)) for offset in range(days - 1, -1, -1)]

    history: Dict[str, Dict[ModelBucket, UsageSummary]] = {day: _empty_buckets() for day in day_range}

    with _ledger_io("get_usage_history", user_email):
        with get_db_session() as session:
            rows = session.execute(
                select(usage_records)
                .where(usage_records.c.user_email == user_email)
                .where(usage_records.c.day >= day_range[0])
                .where(usage_records.c.day <= day_range[-1])
            ).all()

    for row in rows:
        try:
            bucket = ModelBucket(row.bucket)
        except ValueError:
            continue
        history[row.day][bucket] = _summary(row)

    result = []
    for day in day_range:
        buckets = history[day]
        total = UsageSummary(
            requests=sum(s.requests for s in buckets.values()),
            text_requests=sum(s.text_requests for s in buckets.values()),
            image_generations=sum(s.image_generations for s in buckets.values()),
            tokens=sum(s.tokens for s in buckets.values()),
        )
        result.append(DailyUsage(day=day, buckets=buckets, total=total))
    return result


# Legacy limit document view

def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def get_last_export(user_email: str) -> Optional[datetime]:
    with _ledger_io("get_last_export", user_email):
        with get_db_session() as session:
            row = session.execute(
                select(user_limits.c.last_export).where(user_limits.c.user_email == user_email)
            ).first()
    return _aware(row.last_export) if row else None


def get_user_limits(user_email: str) -> UserLimitView:
    """Legacy per-user counters, derived from lifetime ledger totals."""
    guides = {bucket: 0 for bucket in ModelBucket}
    with _ledger_io("get_user_limits", user_email):
        with get_db_session() as session:
            rows = session.execute(
                select(usage_records.c.bucket, func.sum(usage_records.c.requests).label("total"))
                .where(usage_records.c.user_email == user_email)
                .group_by(usage_records.c.bucket)
            ).all()
    for row in rows:
        try:
            guides[ModelBucket(row.bucket)] = int(row.total or 0)
        except ValueError:
            continue
    return UserLimitView(user_email=user_email, guides=guides, last_export=get_last_export(user_email))


def record_export(user_email: str, now: Optional[datetime] = None) -> datetime:
    normalized_now = _normalize_now(now)
    stmt = upsert(user_limits).values(
        user_email=user_email,
        last_export=normalized_now,
        created_at=normalized_now,
        updated_at=normalized_now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_email"],
        set_={"last_export": stmt.excluded.last_export, "updated_at": stmt.excluded.updated_at},
    )
    with _ledger_io("record_export", user_email):
        with get_db_session() as session:
            session.execute(stmt)
    return normalized_now


def time_until_next_export(user_email: str, now: Optional[datetime] = None) -> int:
    """Milliseconds until the plan's export cooldown elapses (0 when allowed)."""
    normalized_now = _normalize_now(now)
    last_export = get_last_export(user_email)
    if last_export is None:
        return 0
    cooldown = export_cooldown_ms(plan_for(user_email, normalized_now))
    elapsed = int((normalized_now - last_export).total_seconds() * 1000)
    return max(0, cooldown - elapsed)


def check_export_allowed(user_email: str, now: Optional[datetime] = None) -> bool:
    return time_until_next_export(user_email, now) == 0


def format_time_remaining(milliseconds: int) -> str:
    hours = milliseconds // (1000 * 60 * 60)
    minutes = (milliseconds % (1000 * 60 * 60)) // (1000 * 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def reserve_export(user_email: str, now: Optional[datetime] = None) -> datetime:
    """
    Stamp an export if the plan's cooldown has elapsed.

    The export itself (rendering, download) happens in the client; this is
    the server-side gate and bookkeeping for it.

    Raises:
        QuotaExceededError: Still inside the cooldown window
    """
    if not check_export_allowed(user_email, now):
        wait_ms = time_until_next_export(user_email, now)
        raise QuotaExceededError(
            f"Export cooldown active. Next export available in {format_time_remaining(wait_ms)}.",
            code="export_cooldown",
            details={"wait_ms": wait_ms},
        )
    exported_at = record_export(user_email, now)
    logger.info("[usage] export recorded", extra={"user_email": user_email})
    return exported_at
