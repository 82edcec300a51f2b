"""
guidechat/models/completion.py

Provider completion result.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict

from guidechat.models.bucket import ModelBucket
from guidechat.models.chat import ChatImage


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    input: int = 0
    output: int = 0
    total: int = 0

    @classmethod
    def normalise(cls, input: Optional[int], output: Optional[int], total: Optional[int] = None) -> "TokenUsage":
        safe_in = input if isinstance(input, int) else 0
        safe_out = output if isinstance(output, int) else 0
        safe_total = total if isinstance(total, int) else safe_in + safe_out
        return cls(input=safe_in, output=safe_out, total=safe_total)


class Completion(BaseModel):
    """Opaque provider output: text, token counts and optional images."""
    model_config = ConfigDict(frozen=True)

    text: str
    model: str
    tokens: TokenUsage = TokenUsage()
    images: List[ChatImage] = []


class GuideResult(BaseModel):
    """Generated guide plus post-request quota figures for the caller."""
    model_config = ConfigDict(frozen=True)

    guide: str
    bucket: ModelBucket
    model: str
    tokens: TokenUsage = TokenUsage()
    used: int
    limit: int
    remaining: int
