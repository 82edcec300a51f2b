# guidechat/conftest.py
import os
import tempfile
from pathlib import Path
from typing import List, Optional

import pytest

# Must be set before guidechat.core.config is imported anywhere
_TEST_DB_DIR = Path(tempfile.mkdtemp(prefix="guidechat-tests-"))
os.environ.setdefault("ENV", "test")
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{_TEST_DB_DIR / 'guidechat.db'}")

from guidechat.features.providers.base import ProviderCallError, ProviderRateLimitError  # noqa: E402
from guidechat.features.providers.registry import ProviderRegistry  # noqa: E402
from guidechat.models.bucket import ModelBucket  # noqa: E402
from guidechat.models.chat import ChatImage  # noqa: E402
from guidechat.models.completion import Completion, TokenUsage  # noqa: E402


class FakeProvider:
    """In-memory provider recording every call."""

    def __init__(self, name: str, text: str = "fake reply", tokens: int = 42, images: Optional[List[ChatImage]] = None):
        self.name = name
        self.text = text
        self.tokens = tokens
        self.images = images or []
        self.calls = []
        self.error: Optional[Exception] = None

    def complete(self, prompt, provider_model_id=None, images=None) -> Completion:
        self.calls.append({"prompt": prompt, "provider_model_id": provider_model_id, "images": images})
        if self.error is not None:
            raise self.error
        return Completion(
            text=self.text,
            model=provider_model_id or f"{self.name}-model",
            tokens=TokenUsage(input=self.tokens // 2, output=self.tokens - self.tokens // 2, total=self.tokens),
            images=self.images,
        )

    def fail_rate_limited(self, retry_after: Optional[int] = None) -> None:
        self.error = ProviderRateLimitError("429 RESOURCE_EXHAUSTED", retry_after=retry_after)

    def fail(self) -> None:
        self.error = ProviderCallError("upstream 500")


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Fresh schema for every test."""
    from guidechat.core.database import reset_database

    reset_database()
    yield


@pytest.fixture
def providers():
    return {bucket: FakeProvider(bucket.value) for bucket in ModelBucket}


@pytest.fixture
def registry(providers):
    return ProviderRegistry(providers)
