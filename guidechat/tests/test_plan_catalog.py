"""
Tests for the plan catalog and plan records.
"""
from datetime import datetime, timezone, timedelta

import pytest

from guidechat.core.config import settings
from guidechat.features.plans.service import (
    PLAN_LIMITS,
    UNLIMITED,
    assign_plan,
    export_cooldown_ms,
    get_user_plan,
    has_model_access,
    limits_for,
    plan_for,
    within_generation_limit,
)
from guidechat.models.bucket import ModelBucket
from guidechat.models.plan import PlanTier, SupportLevel


def test_every_tier_has_a_quota_for_every_bucket():
    for tier in PlanTier:
        for bucket in ModelBucket:
            assert isinstance(PLAN_LIMITS[tier].quota_for(bucket), int)


def test_free_quotas_match_product_table():
    free = limits_for(PlanTier.FREE)
    assert free.quota_for(ModelBucket.LLAMA) == 6
    assert free.quota_for(ModelBucket.GEMINI) == 4
    assert free.quota_for(ModelBucket.DEEPSEEK) == 4
    assert free.quota_for(ModelBucket.GPT41) == 0
    assert free.export_cooldown_hours == 6
    assert free.support_level == SupportLevel.NONE


def test_allow_list_is_not_monotonic():
    assert has_model_access(PlanTier.PRO, ModelBucket.GPT41) is False
    assert has_model_access(PlanTier.PRO, ModelBucket.GPT41MINI) is False
    assert has_model_access(PlanTier.PRO, ModelBucket.O3MINI) is True
    assert has_model_access(PlanTier.FREE, ModelBucket.O3MINI) is False
    assert has_model_access(PlanTier.PROPLUS, ModelBucket.GPT41) is True


def test_pro_allow_list_independent_of_zero_quota():
    # nanobanana is allow-listed for pro but its numeric quota is 0
    assert has_model_access(PlanTier.PRO, ModelBucket.NANOBANANA) is True
    assert within_generation_limit(PlanTier.PRO, ModelBucket.NANOBANANA, 0) is False


@pytest.mark.parametrize("count", [0, 1, 10_000])
def test_unlimited_quota_always_within_limit(count):
    assert limits_for(PlanTier.PROPLUS).quota_for(ModelBucket.LLAMA) == UNLIMITED
    assert within_generation_limit(PlanTier.PROPLUS, ModelBucket.LLAMA, count) is True


def test_within_generation_limit_is_strictly_less_than():
    assert within_generation_limit(PlanTier.FREE, ModelBucket.LLAMA, 5) is True
    assert within_generation_limit(PlanTier.FREE, ModelBucket.LLAMA, 6) is False


def test_export_cooldown_ms():
    assert export_cooldown_ms(PlanTier.FREE) == 6 * 60 * 60 * 1000
    assert export_cooldown_ms(PlanTier.PROPLUS) == 0


def test_first_lookup_creates_free_record():
    plan = get_user_plan("new@example.com")
    assert plan.plan == PlanTier.FREE
    assert get_user_plan("new@example.com").plan == PlanTier.FREE


def test_assign_plan_and_expiry():
    now = datetime.now(timezone.utc)
    assign_plan("pro@example.com", PlanTier.PRO, plan_end_date=now + timedelta(days=30))
    assert plan_for("pro@example.com") == PlanTier.PRO

    assign_plan("lapsed@example.com", PlanTier.PRO, plan_end_date=now - timedelta(days=1))
    assert plan_for("lapsed@example.com") == PlanTier.FREE
    # The stored record keeps the paid tier; only the effective tier lapses
    assert get_user_plan("lapsed@example.com").plan == PlanTier.PRO


def test_assign_unknown_plan_rejected():
    with pytest.raises(ValueError):
        assign_plan("x@example.com", "enterprise")


def test_proplus_emails_resolve_without_record(monkeypatch):
    monkeypatch.setattr(settings, "PROPLUS_EMAILS", "Boss@Example.com, other@example.com")
    assert plan_for("boss@example.com") == PlanTier.PROPLUS
