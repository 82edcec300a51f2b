"""FastAPI routes for one-shot guide generation."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from guidechat.core.auth import get_client_identity, get_optional_user_email
from guidechat.features.generation.service import generate_guide
from guidechat.features.providers.registry import ProviderRegistry, get_provider_registry

router = APIRouter(prefix="/api/ai", tags=["guides"])
logger = logging.getLogger(__name__)


class GuideRequest(BaseModel):
    # Optional so missing values surface as validation_error (400), not 422
    prompt: Optional[str] = None
    model: Optional[str] = None


@router.post("/guide")
def create_guide(
    body: GuideRequest,
    user_email: Optional[str] = Depends(get_optional_user_email),
    guest_identity: str = Depends(get_client_identity),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    """
    Generate a guide.

    Signed-in callers are gated by plan and daily quota; anonymous callers
    by the guest bucket set and lifetime ceiling.

    Response:
    {
        "guide": "## In a Nutshell ...",
        "bucket": "llama",
        "model": "meta-llama/llama-4-maverick",
        "tokens": {"input": 10, "output": 500, "total": 510},
        "usage": {"used": 3, "limit": 6, "remaining": 3},
        "guest": false
    }
    """
    result = generate_guide(
        body.model,
        body.prompt,
        registry=registry,
        user_email=user_email,
        guest_identity=None if user_email else guest_identity,
    )
    return {
        "guide": result.guide,
        "bucket": result.bucket.value,
        "model": result.model,
        "tokens": result.tokens.model_dump(),
        "usage": {"used": result.used, "limit": result.limit, "remaining": result.remaining},
        "guest": user_email is None,
    }
