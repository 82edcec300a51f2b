"""
Tests for model alias resolution.
"""
import pytest

from guidechat.core.errors import ValidationError
from guidechat.features.routing.service import MODEL_ALIASES, require_model, resolve_model, valid_model_options
from guidechat.models.bucket import ModelBucket


@pytest.mark.parametrize(
    "alias,bucket,provider_model",
    [
        ("llama-4-hackclub", ModelBucket.LLAMA, None),
        ("qwen32b", ModelBucket.LLAMA, "qwen/qwen3-32b"),
        ("gemini-flash-2.5", ModelBucket.GEMINI, None),
        ("kimi", ModelBucket.OSSLARGE, "moonshotai/kimi-k2-instruct"),
        ("kimi0905", ModelBucket.OSSLARGE, "moonshotai/kimi-k2-instruct-0905"),
        ("gpt-4.1-mini", ModelBucket.GPT41MINI, None),
        ("gemini-image", ModelBucket.NANOBANANA, None),
    ],
)
def test_resolve_alias(alias, bucket, provider_model):
    resolved = resolve_model(alias)
    assert resolved.bucket == bucket
    assert resolved.provider_model_id == provider_model


def test_resolve_is_case_insensitive():
    assert resolve_model("  KIMI ").bucket == ModelBucket.OSSLARGE


@pytest.mark.parametrize("raw", [None, "", "gpt-5", 42])
def test_unknown_resolves_to_none(raw):
    assert resolve_model(raw) is None


def test_every_bucket_reachable_by_its_own_name():
    for bucket in ModelBucket:
        assert resolve_model(bucket.value).bucket == bucket


def test_require_model_lists_valid_options():
    with pytest.raises(ValidationError) as exc:
        require_model("gpt-5")
    assert exc.value.status_code == 400
    assert exc.value.details["valid_models"] == valid_model_options()
    assert "kimi" in exc.value.message


def test_alias_table_values_are_buckets():
    assert {r.bucket for r in MODEL_ALIASES.values()} == set(ModelBucket)
