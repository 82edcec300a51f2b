"""
guidechat/features/entitlements/service.py

Access guard.

Handles:
- Plan allow-list + daily quota decision for (user, bucket)
- Charge-on-attempt reservation before the provider is called
- Consumption shape bookkeeping after generation
- Remaining-quota figures for display

Fails closed: if the plan record or the usage ledger cannot be read or
written, the decision is a retryable denial and the provider is never called.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional
import logging
from sqlalchemy.exc import SQLAlchemyError

from guidechat.core.errors import AccessDeniedError, QuotaExceededError, StorageTransientError
from guidechat.core.logging import log_event
from guidechat.features.plans.service import (
    UNLIMITED,
    has_model_access,
    limits_for,
    plan_for,
    within_generation_limit,
)
from guidechat.features.usage.service import get_count, get_usage, record_usage
from guidechat.models.bucket import ModelBucket
from guidechat.models.plan import PlanTier


logger = logging.getLogger(__name__)

# Shown instead of -1 so clients never render a negative remaining count
UNLIMITED_REMAINING = 999999

REASON_NOT_IN_PLAN = "plan does not include this model"
REASON_DAILY_LIMIT = "daily limit reached"
REASON_STORAGE = "usage metering unavailable"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    bucket: ModelBucket
    plan: Optional[PlanTier] = None
    reason: Optional[str] = None
    message: Optional[str] = None
    code: Optional[str] = None
    http_status: int = 200
    limit: int = 0
    used: int = 0
    remaining: int = 0
    retryable: bool = False


def remaining_quota(limit: int, used: int) -> int:
    if limit == UNLIMITED:
        return UNLIMITED_REMAINING
    return max(0, limit - used)


def _deny_not_in_plan(tier: PlanTier, bucket: ModelBucket, limit: int, used: int) -> AccessDecision:
    return AccessDecision(
        allowed=False,
        bucket=bucket,
        plan=tier,
        reason=REASON_NOT_IN_PLAN,
        message=f"Your {tier.value} plan does not include the {bucket.value} model. Upgrade to use it.",
        code="model_not_in_plan",
        http_status=403,
        limit=limit,
        used=used,
        remaining=0,
    )


def _deny_quota(tier: PlanTier, bucket: ModelBucket, limit: int, used: int) -> AccessDecision:
    return AccessDecision(
        allowed=False,
        bucket=bucket,
        plan=tier,
        reason=REASON_DAILY_LIMIT,
        message=(
            f"Daily limit reached: your plan allows {limit} guides per day for {bucket.value} "
            f"({used}/{limit} used)."
        ),
        code="quota_exceeded",
        http_status=429,
        limit=limit,
        used=used,
        remaining=0,
    )


def deny_storage_unavailable(bucket: ModelBucket, tier: Optional[PlanTier] = None) -> AccessDecision:
    return AccessDecision(
        allowed=False,
        bucket=bucket,
        plan=tier,
        reason=REASON_STORAGE,
        message="Usage metering is temporarily unavailable. Please retry.",
        code="storage_unavailable",
        http_status=503,
        retryable=True,
    )


def _log_decision(user_email: str, decision: AccessDecision) -> None:
    log_event(
        "info" if decision.allowed else "warning",
        "[access] ALLOW" if decision.allowed else "[access] DENY",
        user_email=user_email,
        bucket=decision.bucket.value,
        event_type="access.decision",
        error_code=None if decision.allowed else decision.code,
        plan=decision.plan.value if decision.plan else None,
        used=decision.used,
        limit=decision.limit,
        reason=decision.reason,
    )


def _evaluate(user_email: str, bucket: ModelBucket, now: Optional[datetime]) -> AccessDecision:
    tier = plan_for(user_email, now)
    limit = limits_for(tier).quota_for(bucket)

    if not has_model_access(tier, bucket):
        return _deny_not_in_plan(tier, bucket, limit, 0)

    used = get_count(user_email, bucket, period="day", now=now)
    if not within_generation_limit(tier, bucket, used):
        return _deny_quota(tier, bucket, limit, used)

    return AccessDecision(
        allowed=True,
        bucket=bucket,
        plan=tier,
        limit=limit,
        used=used,
        remaining=remaining_quota(limit, used),
    )


def check_access(user_email: str, bucket: ModelBucket, now: Optional[datetime] = None) -> AccessDecision:
    """
    Decide whether (user, bucket) may run one more generation, without charging.

    Used for gated actions that are not generations themselves (creating a
    session on a model, switching a session's model).
    """
    bucket = ModelBucket(bucket)
    try:
        decision = _evaluate(user_email, bucket, now)
    except (StorageTransientError, SQLAlchemyError) as exc:
        logger.error("[access] storage failure during check", extra={"user_email": user_email, "error": str(exc)})
        decision = deny_storage_unavailable(bucket)
    _log_decision(user_email, decision)
    return decision


def check_and_reserve(user_email: str, bucket: ModelBucket, now: Optional[datetime] = None) -> AccessDecision:
    """
    Gate one generation and charge it before the provider runs.

    Steps:
    1. Resolve plan tier
    2. Plan allow-list
    3. Today's count from the usage ledger
    4. Daily quota
    5. Record requests=1 (charge on attempt)

    Returns:
        AccessDecision. On allow, used/remaining reflect the state after this
        request; on deny, reason distinguishes plan, quota and storage failures.
    """
    bucket = ModelBucket(bucket)
    try:
        decision = _evaluate(user_email, bucket, now)
        if decision.allowed:
            record_usage(user_email, bucket, requests=1, now=now)
            used = decision.used + 1
            decision = AccessDecision(
                allowed=True,
                bucket=bucket,
                plan=decision.plan,
                limit=decision.limit,
                used=used,
                remaining=remaining_quota(decision.limit, used),
            )
    except (StorageTransientError, SQLAlchemyError) as exc:
        logger.error("[access] storage failure during reserve", extra={"user_email": user_email, "error": str(exc)})
        decision = deny_storage_unavailable(bucket)

    _log_decision(user_email, decision)
    return decision


def record_consumption(
    user_email: str,
    bucket: ModelBucket,
    *,
    text: int = 0,
    images: int = 0,
    tokens: int = 0,
    now: Optional[datetime] = None,
) -> None:
    """Additive shape bookkeeping after a generation. Not a gate."""
    record_usage(user_email, bucket, text=text, images=images, tokens=tokens, now=now)


def raise_for_decision(decision: AccessDecision) -> None:
    """Turn a denial into the matching AppError. No-op when allowed."""
    if decision.allowed:
        return
    details = {
        "reason": decision.reason,
        "bucket": decision.bucket.value,
        "plan": decision.plan.value if decision.plan else None,
        "limit": decision.limit,
        "used": decision.used,
        "remaining": decision.remaining,
    }
    if decision.code == AccessDeniedError.code:
        raise AccessDeniedError(decision.message, details=details)
    if decision.code == QuotaExceededError.code:
        raise QuotaExceededError(decision.message, details=details)
    raise StorageTransientError(decision.message, details={**details, "retryable": True})


def usage_overview(user_email: str, now: Optional[datetime] = None) -> Dict[str, object]:
    """
    Plan, limits and today's usage with remaining quota per bucket.

    Raises:
        StorageTransientError: Usage ledger unavailable
    """
    tier = plan_for(user_email, now)
    limits = limits_for(tier)
    usage = get_usage(user_email, now)

    buckets = {}
    for bucket in ModelBucket:
        limit = limits.quota_for(bucket)
        used = usage[bucket].requests
        buckets[bucket.value] = {
            "allowed": has_model_access(tier, bucket),
            "limit": limit,
            "used": used,
            "remaining": remaining_quota(limit, used) if has_model_access(tier, bucket) else 0,
            "text_requests": usage[bucket].text_requests,
            "image_generations": usage[bucket].image_generations,
            "tokens": usage[bucket].tokens,
        }

    return {
        "plan": tier.value,
        "features": {
            "export_cooldown_hours": limits.export_cooldown_hours,
            "has_advanced_models": limits.has_advanced_models,
            "has_team_sharing": limits.has_team_sharing,
            "has_advanced_templates": limits.has_advanced_templates,
            "has_early_access": limits.has_early_access,
            "support_level": limits.support_level.value,
        },
        "buckets": buckets,
    }
