"""
OpenAI-compatible chat-completions adapters.

Covers HackClub (llama, osslarge, titles), DeepSeek and Azure OpenAI
deployments (gpt41, gpt41mini, o3mini). All share one request/response
shape; only the URL, auth header and output cleanup differ.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from guidechat.features.providers.base import ProviderCallError, ProviderRateLimitError, ProviderTimeoutError
from guidechat.models.chat import ChatImage
from guidechat.models.completion import Completion, TokenUsage


logger = logging.getLogger(__name__)

GUIDE_SYSTEM_PROMPT = (
    "You are an expert guide writer. Create comprehensive, well-structured guides that are "
    "educational and actionable. Format your response in clean markdown with clear headings, "
    "bullet points, and practical examples. Do not wrap your response in code blocks."
)

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE)
_RETRY_IN_RE = re.compile(r"retry in\s*([0-9]+\.?[0-9]*)s", re.IGNORECASE)


def strip_think_tags(content: str) -> str:
    """Drop <think>..</think> reasoning blocks some hosted models emit."""
    return _THINK_RE.sub("", content).strip()


def strip_code_fence(content: str) -> str:
    """Unwrap output the model wrapped in a ``` / ```markdown block."""
    text = content.strip()
    if text.startswith("```markdown\n") and text.endswith("\n```"):
        return text[len("```markdown\n"):-4]
    if text.startswith("```\n") and text.endswith("\n```"):
        return text[4:-4]
    if text.startswith("```") and text.endswith("```") and len(text) >= 6:
        return text[3:-3]
    return content


def parse_retry_after(response: Optional[httpx.Response] = None, message: str = "") -> Optional[int]:
    """Retry hint from a Retry-After header or a "retry in Ns" message."""
    if response is not None:
        header = response.headers.get("retry-after")
        if header:
            try:
                return max(1, int(float(header)))
            except ValueError:
                pass
    match = _RETRY_IN_RE.search(message or "")
    if match:
        return max(1, round(float(match.group(1))))
    return None


def raise_for_provider_status(provider: str, response: httpx.Response) -> None:
    """Map non-2xx responses to rate-limit vs generic provider errors."""
    if response.status_code < 400:
        return
    body = response.text[:500]
    if response.status_code == 429 or "RESOURCE_EXHAUSTED" in body:
        raise ProviderRateLimitError(
            f"{provider} rate limited: {body}",
            retry_after=parse_retry_after(response, body),
        )
    raise ProviderCallError(f"{provider} returned {response.status_code}: {body}")


class OpenAICompatProvider:
    """Chat-completions client for any OpenAI-compatible endpoint."""

    def __init__(
        self,
        name: str,
        base_url: str,
        api_key: Optional[str],
        default_model: str,
        *,
        timeout: float = 120.0,
        system_prompt: Optional[str] = None,
        strip_thinking: bool = False,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.default_model = default_model
        self.timeout = timeout
        self.system_prompt = system_prompt
        self.strip_thinking = strip_thinking
        self._transport = transport

    def _url(self, model: str) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _messages(self, prompt: str, images: Optional[List[ChatImage]]) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        if images:
            content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
            for image in images:
                content.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
                })
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": prompt})
        return messages

    def _payload(self, model: str, prompt: str, images: Optional[List[ChatImage]]) -> Dict[str, Any]:
        return {"model": model, "messages": self._messages(prompt, images)}

    def _clean(self, content: str) -> str:
        if self.strip_thinking:
            content = strip_think_tags(content)
        return strip_code_fence(content)

    def complete(
        self,
        prompt: str,
        provider_model_id: Optional[str] = None,
        images: Optional[List[ChatImage]] = None,
    ) -> Completion:
        model = provider_model_id or self.default_model
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(
                    self._url(model),
                    json=self._payload(model, prompt, images),
                    headers=self._headers(),
                )
        except httpx.TimeoutException as exc:
            raise ProviderTimeoutError(f"{self.name} timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderCallError(f"{self.name} request failed: {exc}") from exc

        raise_for_provider_status(self.name, response)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderCallError(f"{self.name} returned a malformed completion") from exc

        usage = data.get("usage") or {}
        tokens = TokenUsage.normalise(
            usage.get("prompt_tokens"),
            usage.get("completion_tokens"),
            usage.get("total_tokens"),
        )
        logger.info(
            "[provider] completion",
            extra={"provider": self.name, "model": model, "tokens_total": tokens.total},
        )
        return Completion(text=self._clean(content), model=data.get("model") or model, tokens=tokens)


class AzureOpenAIProvider(OpenAICompatProvider):
    """Azure OpenAI: one deployment per bucket, api-key header auth."""

    def __init__(self, name: str, endpoint: str, api_key: Optional[str], deployment: str, api_version: str, **kwargs):
        super().__init__(name, endpoint, api_key, deployment, **kwargs)
        self.api_version = api_version

    def _url(self, model: str) -> str:
        return f"{self.base_url}/openai/deployments/{model}/chat/completions?api-version={self.api_version}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["api-key"] = self.api_key
        return headers

    def _payload(self, model: str, prompt: str, images: Optional[List[ChatImage]]) -> Dict[str, Any]:
        return {"messages": self._messages(prompt, images), "max_completion_tokens": 4000}
