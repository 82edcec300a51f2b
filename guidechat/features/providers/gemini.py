"""
Gemini generateContent adapter.

Serves the gemini bucket (text) and nanobanana (image-preview model, which
may return inline images alongside or instead of text).
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from guidechat.features.providers.base import ProviderCallError, ProviderRateLimitError, ProviderTimeoutError
from guidechat.features.providers.openai_compat import parse_retry_after, raise_for_provider_status
from guidechat.models.chat import ChatImage
from guidechat.models.completion import Completion, TokenUsage


logger = logging.getLogger(__name__)


def _retry_delay_from_details(body: Dict[str, Any]) -> Optional[int]:
    """Read google.rpc.RetryInfo.retryDelay ("12s") if present."""
    for detail in (body.get("error") or {}).get("details") or []:
        delay = detail.get("retryDelay") if isinstance(detail, dict) else None
        if isinstance(delay, str) and delay.endswith("s"):
            try:
                return max(1, round(float(delay[:-1])))
            except ValueError:
                continue
    return None


class GeminiProvider:
    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str],
        default_model: str,
        *,
        timeout: float = 120.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self._transport = transport

    def _payload(self, prompt: str, images: Optional[List[ChatImage]]) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = [{"text": prompt}]
        for image in images or []:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.data}})
        return {"contents": [{"role": "user", "parts": parts}]}

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        status = (body.get("error") or {}).get("status") if isinstance(body, dict) else None
        if response.status_code == 429 or status == "RESOURCE_EXHAUSTED":
            message = (body.get("error") or {}).get("message", "") if isinstance(body, dict) else ""
            retry_after = (
                parse_retry_after(response, message)
                or (_retry_delay_from_details(body) if isinstance(body, dict) else None)
            )
            raise ProviderRateLimitError(f"{self.name} rate limited: {message}", retry_after=retry_after)
        raise_for_provider_status(self.name, response)

    def complete(
        self,
        prompt: str,
        provider_model_id: Optional[str] = None,
        images: Optional[List[ChatImage]] = None,
    ) -> Completion:
        if not self.api_key:
            raise ProviderCallError("Gemini API key is not configured")

        model = provider_model_id or self.default_model
        url = f"{self.base_url}/models/{model}:generateContent"
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    url,
                    params={"key": self.api_key},
                    json=self._payload(prompt, images),
                    headers={"Content-Type": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.name} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderCallError(f"{self.name} request failed: {exc}") from exc

        self._raise_for_status(response)

        try:
            data = response.json()
            parts = data["candidates"][0]["content"].get("parts") or []
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            raise ProviderCallError(f"{self.name} returned a malformed completion") from exc

        texts: List[str] = []
        out_images: List[ChatImage] = []
        for part in parts:
            if part.get("text"):
                texts.append(part["text"])
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
                out_images.append(ChatImage(mime_type=mime, data=inline["data"]))

        usage = data.get("usageMetadata") or {}
        tokens = TokenUsage.normalise(
            usage.get("promptTokenCount"),
            usage.get("candidatesTokenCount"),
            usage.get("totalTokenCount"),
        )
        logger.info(
            "[provider] completion",
            extra={"provider": self.name, "model": model, "tokens_total": tokens.total, "images": len(out_images)},
        )
        return Completion(text="".join(texts).strip(), model=model, tokens=tokens, images=out_images)
