"""
Provider adapter protocol.

Every model bucket is served by one adapter exposing a single completion
call. Wire formats stay inside the adapters.
"""
from typing import List, Optional, Protocol

from guidechat.models.chat import ChatImage
from guidechat.models.completion import Completion


class ProviderRateLimitError(Exception):
    """Upstream said "slow down". Carries a retry hint in seconds when known."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ProviderTimeoutError(Exception):
    """Upstream did not answer within the configured timeout."""


class ProviderCallError(Exception):
    """Any other upstream failure (bad status, malformed body, transport error)."""


class Provider(Protocol):
    """
    Protocol for completion providers.

    Implementations must:
    - Return text (possibly empty for image-only output) and token counts
    - Raise ProviderRateLimitError on 429 / quota exhaustion
    - Raise ProviderTimeoutError when the call times out
    - Raise ProviderCallError on anything else
    """

    name: str

    def complete(
        self,
        prompt: str,
        provider_model_id: Optional[str] = None,
        images: Optional[List[ChatImage]] = None,
    ) -> Completion:
        ...
