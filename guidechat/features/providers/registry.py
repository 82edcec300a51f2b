"""
Provider registry keyed by ModelBucket.

Construction fails unless every bucket has an adapter, so adding a bucket
without wiring a provider is caught at startup rather than on first request.
"""
import logging
from typing import Dict, Mapping, Optional

from guidechat.core.config import Settings, settings as default_settings
from guidechat.features.providers.base import Provider
from guidechat.features.providers.gemini import GeminiProvider
from guidechat.features.providers.openai_compat import (
    GUIDE_SYSTEM_PROMPT,
    AzureOpenAIProvider,
    OpenAICompatProvider,
)
from guidechat.models.bucket import ModelBucket


logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, providers: Mapping[ModelBucket, Provider]):
        missing = [bucket.value for bucket in ModelBucket if bucket not in providers]
        if missing:
            raise ValueError(f"No provider registered for buckets: {', '.join(missing)}")
        self._providers: Dict[ModelBucket, Provider] = dict(providers)

    def for_bucket(self, bucket: ModelBucket) -> Provider:
        return self._providers[ModelBucket(bucket)]


def build_default_registry(settings_obj: Optional[Settings] = None) -> ProviderRegistry:
    """Wire the production adapters from configuration."""
    cfg = settings_obj or default_settings
    timeout = cfg.PROVIDER_TIMEOUT_SECONDS

    hackclub = OpenAICompatProvider(
        "hackclub",
        cfg.HACKCLUB_BASE_URL,
        cfg.HACKCLUB_API_KEY,
        cfg.HACKCLUB_DEFAULT_MODEL,
        timeout=timeout,
        strip_thinking=True,
    )
    osslarge = OpenAICompatProvider(
        "hackclub-oss",
        cfg.HACKCLUB_BASE_URL,
        cfg.HACKCLUB_API_KEY,
        cfg.OSSLARGE_DEFAULT_MODEL,
        timeout=timeout,
        strip_thinking=True,
    )
    deepseek = OpenAICompatProvider(
        "deepseek",
        cfg.DEEPSEEK_BASE_URL,
        cfg.DEEPSEEK_API_KEY,
        cfg.DEEPSEEK_MODEL,
        timeout=timeout,
        system_prompt=GUIDE_SYSTEM_PROMPT,
        strip_thinking=True,
    )

    def azure(name: str, deployment: str) -> AzureOpenAIProvider:
        return AzureOpenAIProvider(
            name,
            cfg.AZURE_OPENAI_ENDPOINT or "",
            cfg.AZURE_OPENAI_API_KEY,
            deployment,
            cfg.AZURE_OPENAI_API_VERSION,
            timeout=timeout,
            system_prompt=GUIDE_SYSTEM_PROMPT,
        )

    registry = ProviderRegistry({
        ModelBucket.LLAMA: hackclub,
        ModelBucket.OSSLARGE: osslarge,
        ModelBucket.DEEPSEEK: deepseek,
        ModelBucket.GEMINI: GeminiProvider("gemini", cfg.GEMINI_BASE_URL, cfg.GEMINI_API_KEY, cfg.GEMINI_TEXT_MODEL, timeout=timeout),
        ModelBucket.NANOBANANA: GeminiProvider("nanobanana", cfg.GEMINI_BASE_URL, cfg.GEMINI_API_KEY, cfg.GEMINI_IMAGE_MODEL, timeout=timeout),
        ModelBucket.GPT41: azure("azure-gpt41", cfg.AZURE_GPT41_DEPLOYMENT),
        ModelBucket.GPT41MINI: azure("azure-gpt41mini", cfg.AZURE_GPT41MINI_DEPLOYMENT),
        ModelBucket.O3MINI: azure("azure-o3mini", cfg.AZURE_O3MINI_DEPLOYMENT),
    })
    logger.info("[provider] registry built", extra={"buckets": [b.value for b in ModelBucket]})
    return registry


_default_registry: Optional[ProviderRegistry] = None


def get_provider_registry() -> ProviderRegistry:
    """FastAPI dependency; overridden with fakes in tests."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
