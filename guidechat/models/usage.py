"""
guidechat/models/usage.py

Usage ledger value objects.
"""

from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from guidechat.models.bucket import ModelBucket


class UsageIncrement(BaseModel):
    """Additive counters applied to one (user, bucket, day) record."""
    model_config = ConfigDict(frozen=True)

    requests: int = Field(default=0, ge=0)
    text: int = Field(default=0, ge=0)
    images: int = Field(default=0, ge=0)
    tokens: int = Field(default=0, ge=0)

    def is_empty(self) -> bool:
        return not (self.requests or self.text or self.images or self.tokens)


class UsageSummary(BaseModel):
    """Counters for one bucket on one UTC day."""
    model_config = ConfigDict(frozen=True)

    requests: int = 0
    text_requests: int = 0
    image_generations: int = 0
    tokens: int = 0


class DailyUsage(BaseModel):
    """
    One day of usage history.

    buckets always carries every ModelBucket; days without activity are
    zero-filled.
    """
    model_config = ConfigDict(frozen=True)

    day: str  # YYYY-MM-DD (UTC)
    buckets: Dict[ModelBucket, UsageSummary]
    total: UsageSummary


class UserLimitView(BaseModel):
    """
    Legacy per-user limit document shape.

    Guide counts are derived from the usage ledger (lifetime requests per
    bucket); only last_export is stored separately.
    """
    model_config = ConfigDict(frozen=True)

    user_email: str
    guides: Dict[ModelBucket, int]
    last_export: Optional[datetime] = None

    def as_legacy_document(self) -> Dict[str, object]:
        doc: Dict[str, object] = {"userEmail": self.user_email}
        for bucket, count in self.guides.items():
            doc[f"{bucket.value}Guides"] = count
        doc["lastExport"] = int(self.last_export.timestamp() * 1000) if self.last_export else 0
        return doc


class GuestCounter(BaseModel):
    """Lifetime guide count for one guest identity. No day rollover."""
    model_config = ConfigDict(frozen=True)

    identity: str
    guides: int = 0
