"""
guidechat/features/plans/service.py

Plan catalog and plan record service.

Handles:
- Static plan tier -> limits table
- Model allow-lists (independent of numeric quotas)
- Daily generation limit checks
- User plan record lookup / assignment
"""

from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, update

from guidechat.core.config import settings
from guidechat.core.database import get_db_session, storage_guard, upsert, user_plans
from guidechat.models.bucket import ModelBucket
from guidechat.models.plan import PlanLimits, PlanTier, SupportLevel, UserPlan


UNLIMITED = -1

PLAN_STORAGE_UNAVAILABLE = "Plan lookup is temporarily unavailable. Please retry."

PLAN_LIMITS = {
    PlanTier.FREE: PlanLimits(
        quotas={
            ModelBucket.LLAMA: 6,
            ModelBucket.GEMINI: 4,
            ModelBucket.DEEPSEEK: 4,
            ModelBucket.GPT41: 0,
            ModelBucket.GPT41MINI: 0,
            ModelBucket.O3MINI: 0,
            ModelBucket.OSSLARGE: 0,
            ModelBucket.NANOBANANA: 0,
        },
        export_cooldown_hours=6,
        support_level=SupportLevel.NONE,
    ),
    PlanTier.PRO: PlanLimits(
        quotas={
            ModelBucket.LLAMA: 20,
            ModelBucket.GEMINI: 15,
            ModelBucket.DEEPSEEK: 15,
            ModelBucket.GPT41: 0,  # proplus only
            ModelBucket.GPT41MINI: 0,  # proplus only
            ModelBucket.O3MINI: 10,
            ModelBucket.OSSLARGE: 8,
            ModelBucket.NANOBANANA: 0,  # allow-listed, not yet rolled out
        },
        export_cooldown_hours=1,
        has_advanced_models=True,
        support_level=SupportLevel.EMAIL,
    ),
    PlanTier.PROPLUS: PlanLimits(
        quotas={bucket: UNLIMITED for bucket in ModelBucket},
        export_cooldown_hours=0,
        has_advanced_models=True,
        has_team_sharing=True,
        has_advanced_templates=True,
        has_early_access=True,
        support_level=SupportLevel.LIVE,
    ),
}

FREE_BUCKETS = frozenset({ModelBucket.LLAMA, ModelBucket.GEMINI, ModelBucket.DEEPSEEK})
PROPLUS_ONLY_BUCKETS = frozenset({ModelBucket.GPT41, ModelBucket.GPT41MINI})


def _check_catalog_complete() -> None:
    for tier in PlanTier:
        limits = PLAN_LIMITS.get(tier)
        if limits is None:
            raise RuntimeError(f"Plan catalog missing tier {tier.value}")
        missing = [b.value for b in ModelBucket if b not in limits.quotas]
        if missing:
            raise RuntimeError(f"Plan {tier.value} missing quotas for: {', '.join(missing)}")


_check_catalog_complete()


def limits_for(tier: PlanTier) -> PlanLimits:
    return PLAN_LIMITS[PlanTier(tier)]


def has_model_access(tier: PlanTier, bucket: ModelBucket) -> bool:
    """
    Plan allow-list check.

    Not a monotonic superset: pro gets everything except the proplus-only
    GPT-4.1 buckets, free gets only llama/gemini/deepseek. Independent of the
    numeric quota, which must also pass.
    """
    tier = PlanTier(tier)
    bucket = ModelBucket(bucket)
    if tier == PlanTier.FREE:
        return bucket in FREE_BUCKETS
    if tier == PlanTier.PRO:
        return bucket not in PROPLUS_ONLY_BUCKETS
    return True


def within_generation_limit(tier: PlanTier, bucket: ModelBucket, current_count: int) -> bool:
    quota = limits_for(tier).quota_for(ModelBucket(bucket))
    if quota == UNLIMITED:
        return True
    return current_count < quota


def export_cooldown_ms(tier: PlanTier) -> int:
    return limits_for(tier).export_cooldown_hours * 60 * 60 * 1000


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_plan(row) -> UserPlan:
    return UserPlan(
        user_email=row.user_email,
        plan=PlanTier(row.plan),
        plan_start_date=_aware(row.plan_start_date),
        plan_end_date=_aware(row.plan_end_date),
        stripe_customer_id=row.stripe_customer_id,
        stripe_subscription_id=row.stripe_subscription_id,
    )


def get_user_plan(user_email: str, now: Optional[datetime] = None) -> UserPlan:
    """
    Get a user's plan record, creating a free record on first lookup.

    Accounts listed in PROPLUS_EMAILS resolve to proplus without a record.
    """
    email = user_email
    normalized_now = _normalize_now(now)

    if email.lower() in settings.proplus_emails():
        return UserPlan(user_email=email, plan=PlanTier.PROPLUS, plan_start_date=normalized_now)

    with storage_guard("plans.get_user_plan", PLAN_STORAGE_UNAVAILABLE, user_email=email), get_db_session() as session:
        stmt = upsert(user_plans).values(
            user_email=email,
            plan=PlanTier.FREE.value,
            created_at=normalized_now,
            updated_at=normalized_now,
        ).on_conflict_do_nothing(index_elements=["user_email"])
        session.execute(stmt)
        row = session.execute(
            select(user_plans).where(user_plans.c.user_email == email)
        ).first()

    return _row_to_plan(row)


def plan_for(user_email: str, now: Optional[datetime] = None) -> PlanTier:
    """Effective tier: an expired paid plan falls back to free."""
    record = get_user_plan(user_email, now)
    end = record.plan_end_date
    if record.plan != PlanTier.FREE and end is not None and end <= _normalize_now(now):
        return PlanTier.FREE
    return record.plan


def assign_plan(
    user_email: str,
    plan: PlanTier,
    plan_end_date: Optional[datetime] = None,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> UserPlan:
    """
    Assign plan to user (creates or updates).

    Raises:
        ValueError: If plan is not a known tier
    """
    tier = PlanTier(plan)
    email = user_email
    now = datetime.now(timezone.utc)

    values = dict(
        plan=tier.value,
        plan_start_date=now,
        plan_end_date=plan_end_date,
        stripe_customer_id=stripe_customer_id,
        stripe_subscription_id=stripe_subscription_id,
        updated_at=now,
    )
    # Ensure the record exists before updating it
    get_user_plan(email)
    with storage_guard("plans.assign_plan", PLAN_STORAGE_UNAVAILABLE, user_email=email), get_db_session() as session:
        session.execute(
            update(user_plans).where(user_plans.c.user_email == email).values(**values)
        )

    return UserPlan(user_email=email, **{k: v for k, v in values.items() if k != "updated_at"})
