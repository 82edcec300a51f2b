"""
guidechat/models/bucket.py

Model buckets: the unit of quota accounting.

Several client-facing model aliases collapse into one bucket. The bucket is
derived once at the request boundary and carried through the whole flow.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class ModelBucket(str, Enum):
    LLAMA = "llama"
    GEMINI = "gemini"
    DEEPSEEK = "deepseek"
    GPT41 = "gpt41"
    GPT41MINI = "gpt41mini"
    O3MINI = "o3mini"
    OSSLARGE = "osslarge"
    NANOBANANA = "nanobanana"


class ResolvedModel(BaseModel):
    """
    Result of resolving a raw client model string.

    provider_model_id is set when the alias pins a concrete upstream model
    inside a shared bucket (e.g. kimi -> osslarge / moonshotai/kimi-k2-instruct).
    """
    model_config = ConfigDict(frozen=True)

    bucket: ModelBucket
    provider_model_id: Optional[str] = None
