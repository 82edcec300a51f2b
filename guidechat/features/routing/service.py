"""
guidechat/features/routing/service.py

Model resolver.

Maps a free-form client model string (alias or canonical id) to the bucket
it is metered under, plus the concrete upstream model when the alias pins
one. Pure lookup, no I/O.
"""

from typing import Dict, List, Optional

from guidechat.core.errors import ValidationError
from guidechat.models.bucket import ModelBucket, ResolvedModel


# Explicit alias table. Many aliases -> one bucket is intentional: usage
# history must always echo the bucket, never the raw alias.
MODEL_ALIASES: Dict[str, ResolvedModel] = {
    "llama": ResolvedModel(bucket=ModelBucket.LLAMA),
    "llama4": ResolvedModel(bucket=ModelBucket.LLAMA),
    "llama-4-hackclub": ResolvedModel(bucket=ModelBucket.LLAMA),
    "qwen32b": ResolvedModel(bucket=ModelBucket.LLAMA, provider_model_id="qwen/qwen3-32b"),
    "gemini": ResolvedModel(bucket=ModelBucket.GEMINI),
    "gemini-flash-2.5": ResolvedModel(bucket=ModelBucket.GEMINI),
    "gemini-2.5-flash": ResolvedModel(bucket=ModelBucket.GEMINI),
    "deepseek": ResolvedModel(bucket=ModelBucket.DEEPSEEK),
    "deepseek-chat": ResolvedModel(bucket=ModelBucket.DEEPSEEK),
    "gpt41": ResolvedModel(bucket=ModelBucket.GPT41),
    "gpt-4.1": ResolvedModel(bucket=ModelBucket.GPT41),
    "gpt41mini": ResolvedModel(bucket=ModelBucket.GPT41MINI),
    "gpt-4.1-mini": ResolvedModel(bucket=ModelBucket.GPT41MINI),
    "o3mini": ResolvedModel(bucket=ModelBucket.O3MINI),
    "o3-mini": ResolvedModel(bucket=ModelBucket.O3MINI),
    "osslarge": ResolvedModel(bucket=ModelBucket.OSSLARGE),
    "gpt-oss-120b": ResolvedModel(bucket=ModelBucket.OSSLARGE, provider_model_id="openai/gpt-oss-120b"),
    "kimi": ResolvedModel(bucket=ModelBucket.OSSLARGE, provider_model_id="moonshotai/kimi-k2-instruct"),
    "kimi0905": ResolvedModel(bucket=ModelBucket.OSSLARGE, provider_model_id="moonshotai/kimi-k2-instruct-0905"),
    "nanobanana": ResolvedModel(bucket=ModelBucket.NANOBANANA),
    "gemini-image": ResolvedModel(bucket=ModelBucket.NANOBANANA),
}


def resolve_model(raw_model: Optional[str]) -> Optional[ResolvedModel]:
    """
    Resolve a raw client model string.

    Returns:
        ResolvedModel, or None when the string is not a known alias
    """
    if not raw_model or not isinstance(raw_model, str):
        return None
    return MODEL_ALIASES.get(raw_model.strip().lower())


def valid_model_options() -> List[str]:
    return sorted(MODEL_ALIASES)


def require_model(raw_model: Optional[str]) -> ResolvedModel:
    """Resolve or raise ValidationError enumerating the valid options."""
    resolved = resolve_model(raw_model)
    if resolved is None:
        raise ValidationError(
            f"Invalid model specified: {raw_model!r}. Valid options: {', '.join(valid_model_options())}",
            details={"valid_models": valid_model_options()},
        )
    return resolved
