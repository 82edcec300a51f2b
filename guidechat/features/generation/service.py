"""
guidechat/features/generation/service.py

Generation flows: one-shot guides and chat turns.

Both follow the same order:
resolve bucket -> gate and charge -> provider call -> consumption shape.
The bucket is resolved once at the start and carried through unchanged.
"""

from datetime import datetime
from typing import List, Optional, Sequence
import logging

from guidechat.core.config import settings
from guidechat.core.errors import ProviderError, ProviderTransientError, ValidationError, non_critical
from guidechat.features.chat.service import append_message, auto_title, get_session
from guidechat.features.entitlements.service import (
    check_and_reserve,
    raise_for_decision,
    record_consumption,
)
from guidechat.features.guests.service import UNKNOWN_IDENTITY, check_and_reserve_guest
from guidechat.features.providers.base import ProviderCallError, ProviderRateLimitError, ProviderTimeoutError
from guidechat.features.routing.service import require_model
from guidechat.models.bucket import ModelBucket, ResolvedModel
from guidechat.models.chat import ChatImage, ChatMessage, ChatReply
from guidechat.models.completion import Completion, GuideResult


logger = logging.getLogger(__name__)

GUIDE_PROMPT = """You are an expert guide creator. Create a comprehensive, detailed guide for the following request: "{prompt}"

Please format your response in markdown with the following structure:
- Start with a brief "In a Nutshell" summary (2-3 sentences explaining what this guide covers)
- Use proper headings (# ## ###)
- Include practical steps and actionable advice
- Add relevant tips and best practices
- Include examples where helpful

Format your response as follows:
## In a Nutshell
[Brief 2-3 sentence summary of what this guide covers and what the user will achieve]

# [Main Title]
[Rest of the detailed guide content...]

Generate a complete guide that someone could actually use to achieve: {prompt}"""

CHAT_PREAMBLE = "You are a helpful assistant. Respond conversationally.\n\nConversation so far (most recent last):"


def validate_prompt(prompt) -> str:
    if not prompt or not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("Prompt is required and must be a string")
    if len(prompt) > settings.MAX_PROMPT_CHARS:
        raise ValidationError(
            f"Prompt is too long. Maximum length is {settings.MAX_PROMPT_CHARS:,} characters.",
            details={"max_chars": settings.MAX_PROMPT_CHARS, "length": len(prompt)},
        )
    return prompt


def validate_images(images: Optional[Sequence[ChatImage]]) -> List[ChatImage]:
    images = list(images or [])
    if len(images) > settings.MAX_CHAT_IMAGES:
        raise ValidationError(
            f"Too many images: at most {settings.MAX_CHAT_IMAGES} per message",
            details={"max_images": settings.MAX_CHAT_IMAGES},
        )
    for image in images:
        if not image.mime_type.startswith("image/"):
            raise ValidationError("Attachments must be image/* types")
    return images


def build_guide_prompt(prompt: str) -> str:
    return GUIDE_PROMPT.format(prompt=prompt)


def build_chat_prompt(history: Sequence[ChatMessage], message: str, window: Optional[int] = None) -> str:
    """Fold the last `window` messages into a ROLE: content transcript."""
    window = settings.CHAT_HISTORY_WINDOW if window is None else window
    recent = list(history)[-window:] if window > 0 else []
    lines = [f"{m.role.upper()}: {m.content}" for m in recent]
    lines.append(f"USER: {message}")
    return "\n".join([CHAT_PREAMBLE, *lines, "ASSISTANT:"])


def consumption_shape(bucket: ModelBucket, completion: Completion) -> dict:
    """Text/image/token increments recorded after a successful generation."""
    if bucket == ModelBucket.NANOBANANA:
        text = 1 if completion.text else 0
        images = len(completion.images) if completion.images else 1
    else:
        text = 1
        images = len(completion.images)
    return {"text": text, "images": images, "tokens": completion.tokens.total}


def call_provider(
    registry,
    resolved: ResolvedModel,
    prompt: str,
    images: Optional[List[ChatImage]] = None,
) -> Completion:
    """
    Dispatch to the bucket's adapter and map its failures.

    Raises:
        ProviderTransientError: Upstream rate limit or timeout (carries retry_after)
        ProviderError: Any other upstream failure
    """
    provider = registry.for_bucket(resolved.bucket)
    try:
        return provider.complete(prompt, provider_model_id=resolved.provider_model_id, images=images or None)
    except ProviderRateLimitError as exc:
        retry_after = exc.retry_after or settings.PROVIDER_RETRY_AFTER_DEFAULT_SECONDS
        logger.warning(
            "[provider] rate limited",
            extra={"bucket": resolved.bucket.value, "retry_after": retry_after},
        )
        raise ProviderTransientError(
            "The model is temporarily rate limited. Please try again in a few seconds.",
            retry_after=retry_after,
        ) from exc
    except ProviderTimeoutError as exc:
        retry_after = settings.PROVIDER_RETRY_AFTER_DEFAULT_SECONDS
        logger.warning(
            "[provider] timed out",
            extra={"bucket": resolved.bucket.value, "retry_after": retry_after, "error": str(exc)},
        )
        raise ProviderTransientError(
            "The model took too long to respond. Please try again in a few seconds.",
            retry_after=retry_after,
        ) from exc
    except ProviderCallError as exc:
        logger.error("[provider] failed", extra={"bucket": resolved.bucket.value, "error": str(exc)})
        raise ProviderError("Failed to generate a response.") from exc


def _record_shape(user_email: str, bucket: ModelBucket, completion: Completion, now: Optional[datetime]) -> None:
    with non_critical("record_consumption", user_email=user_email, bucket=bucket.value):
        record_consumption(user_email, bucket, now=now, **consumption_shape(bucket, completion))


def generate_guide(
    raw_model: Optional[str],
    prompt,
    *,
    registry,
    user_email: Optional[str] = None,
    guest_identity: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GuideResult:
    """
    Generate one guide for a signed-in user or a guest.

    Guests are limited to the guest bucket set and a lifetime ceiling; signed-in
    users go through the plan allow-list and daily quota. Either way the
    attempt is charged before the provider runs.

    Raises:
        ValidationError, AccessDeniedError, QuotaExceededError,
        StorageTransientError, ProviderTransientError, ProviderError
    """
    prompt = validate_prompt(prompt)
    resolved = require_model(raw_model)

    if user_email:
        decision = check_and_reserve(user_email, resolved.bucket, now)
    else:
        decision = check_and_reserve_guest(guest_identity or UNKNOWN_IDENTITY, resolved.bucket)
    raise_for_decision(decision)

    completion = call_provider(registry, resolved, build_guide_prompt(prompt))

    if user_email:
        _record_shape(user_email, resolved.bucket, completion, now)

    return GuideResult(
        guide=completion.text,
        bucket=resolved.bucket,
        model=completion.model,
        tokens=completion.tokens,
        used=decision.used,
        limit=decision.limit,
        remaining=decision.remaining,
    )


def send_chat_message(
    user_email: str,
    session_id: str,
    content,
    images: Optional[Sequence[ChatImage]] = None,
    *,
    registry,
    now: Optional[datetime] = None,
) -> ChatReply:
    """
    One chat turn: gate, append user message, generate, append reply, meter, title.

    Raises:
        NotFoundError: Unknown or foreign session
        plus everything generate_guide raises
    """
    content = validate_prompt(content)
    images = validate_images(images)

    chat = get_session(user_email, session_id)
    decision = check_and_reserve(user_email, chat.model, now)
    raise_for_decision(decision)

    append_message(user_email, session_id, "user", content, images=images, now=now)

    prompt = build_chat_prompt(chat.messages, content)
    completion = call_provider(registry, ResolvedModel(bucket=chat.model), prompt, images)

    reply = append_message(
        user_email,
        session_id,
        "assistant",
        completion.text,
        model=completion.model,
        images=completion.images or None,
        now=now,
    )
    _record_shape(user_email, chat.model, completion, now)

    new_title = auto_title(user_email, session_id, registry)

    return ChatReply(
        message=reply,
        new_title=new_title,
        used=decision.used,
        limit=decision.limit,
        remaining=decision.remaining,
    )
