"""
guidechat/models/plan.py

Plan tiers and their limits.

Plans represent capability tiers (free, pro, proplus) without pricing.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict

from guidechat.models.bucket import ModelBucket


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PROPLUS = "proplus"


class SupportLevel(str, Enum):
    NONE = "none"
    EMAIL = "email"
    PRIORITY = "priority"
    LIVE = "live"


class PlanLimits(BaseModel):
    """
    Limits and feature flags for one plan tier.

    Quota values:
    - -1: unlimited
    - 0: forbidden
    - n > 0: n generations per UTC day
    """
    model_config = ConfigDict(frozen=True)

    quotas: Dict[ModelBucket, int]
    export_cooldown_hours: int
    has_advanced_models: bool = False
    has_team_sharing: bool = False
    has_advanced_templates: bool = False
    has_early_access: bool = False
    support_level: SupportLevel = SupportLevel.NONE

    def quota_for(self, bucket: ModelBucket) -> int:
        return self.quotas[bucket]


class UserPlan(BaseModel):
    """
    UserPlan represents a user's subscription record.

    Constraint: Each user has exactly one plan record.
    """
    model_config = ConfigDict(frozen=True)

    user_email: str
    plan: PlanTier
    plan_start_date: Optional[datetime] = None
    plan_end_date: Optional[datetime] = None
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
