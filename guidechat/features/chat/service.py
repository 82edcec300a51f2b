"""
guidechat/features/chat/service.py

Chat session store.

Handles:
- Session creation with an initial bucket and optional first message
- Ownership-checked fetch, list, append, archive and hard delete
- Re-gated model switch (switching is a gated action, not a metadata edit)
- One-shot best-effort auto-title after the first exchange

Ownership mismatch is reported exactly like a missing id.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4
import logging
from sqlalchemy import select, insert, update, delete

from guidechat.core.config import settings
from guidechat.core.database import get_db_session, storage_guard, chat_sessions, chat_messages
from guidechat.core.errors import NotFoundError, OwnershipError, non_critical
from guidechat.features.entitlements.service import check_access, raise_for_decision
from guidechat.models.bucket import ModelBucket
from guidechat.models.chat import (
    DEFAULT_TITLE,
    TITLE_MAX_CHARS,
    ChatImage,
    ChatMessage,
    ChatSession,
)


logger = logging.getLogger(__name__)

SESSION_NOT_FOUND = "Chat session not found"
LIST_LIMIT = 50

TITLE_PROMPT = "Generate a 5-8 word concise title (no quotes) summarizing this conversation:\n{user}\nAssistant: {assistant}"


def _now(now: Optional[datetime] = None) -> datetime:
    return now or datetime.now(timezone.utc)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def truncate_title(text: Optional[str]) -> str:
    """Collapse whitespace and cap at TITLE_MAX_CHARS with an ellipsis."""
    cleaned = " ".join((text or "").split())
    if not cleaned:
        return DEFAULT_TITLE
    if len(cleaned) > TITLE_MAX_CHARS:
        return cleaned[:TITLE_MAX_CHARS - 3] + "..."
    return cleaned


def clean_generated_title(raw: Optional[str]) -> str:
    """Strip quote/hash wrapping from model output and truncate."""
    title = (raw or "").strip().strip("\"'#").strip()
    return truncate_title(title) if title else "Chat"


def _row_to_message(row) -> ChatMessage:
    images = [ChatImage(**img) for img in row.images] if row.images else None
    return ChatMessage(
        role=row.role,
        content=row.content,
        created_at=_aware(row.created_at),
        model=row.model,
        images=images,
    )


def _row_to_session(row, messages: Optional[List[ChatMessage]] = None) -> ChatSession:
    return ChatSession(
        id=row.id,
        user_email=row.user_email,
        title=row.title,
        model=ModelBucket(row.model),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        messages=messages or [],
        archived=bool(row.archived),
    )


@contextmanager
def _store(operation: str, user_email: str):
    with storage_guard(
        f"chat.{operation}",
        "Chat storage is temporarily unavailable. Please retry.",
        user_email=user_email,
    ):
        with get_db_session() as session:
            yield session


def _owned_row(session, user_email: str, session_id: str):
    row = session.execute(select(chat_sessions).where(chat_sessions.c.id == session_id)).first()
    if row is None:
        raise NotFoundError(SESSION_NOT_FOUND)
    if row.user_email != user_email:
        logger.warning("[chat] ownership mismatch", extra={"session_id": session_id, "user_email": user_email})
        raise OwnershipError(SESSION_NOT_FOUND)
    return row


def _insert_message(session, session_id: str, message: ChatMessage) -> None:
    session.execute(
        insert(chat_messages).values(
            session_id=session_id,
            role=message.role,
            content=message.content,
            model=message.model,
            images=[img.model_dump(by_alias=True) for img in message.images] if message.images else None,
            created_at=message.created_at,
        )
    )


def create_session(
    user_email: str,
    bucket: ModelBucket,
    first_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ChatSession:
    """
    Create a session bound to `bucket`.

    The title is the truncated first message, or the default title.
    Access to the bucket is checked by the caller.
    """
    bucket = ModelBucket(bucket)
    created = _now(now)
    session_id = str(uuid4())
    title = truncate_title(first_message) if first_message and first_message.strip() else DEFAULT_TITLE

    messages: List[ChatMessage] = []
    if first_message and first_message.strip():
        messages.append(ChatMessage(role="user", content=first_message, created_at=created))

    with _store("create_session", user_email) as session:
        session.execute(
            insert(chat_sessions).values(
                id=session_id,
                user_email=user_email,
                title=title,
                model=bucket.value,
                archived=False,
                created_at=created,
                updated_at=created,
            )
        )
        for message in messages:
            _insert_message(session, session_id, message)

    logger.info("[chat] created", extra={"session_id": session_id, "user_email": user_email, "bucket": bucket.value})
    return ChatSession(
        id=session_id,
        user_email=user_email,
        title=title,
        model=bucket,
        created_at=created,
        updated_at=created,
        messages=messages,
    )


def get_session(user_email: str, session_id: str) -> ChatSession:
    """
    Fetch a session with its messages (oldest first).

    Raises:
        NotFoundError: Missing id, or owned by someone else
    """
    with _store("get_session", user_email) as session:
        row = _owned_row(session, user_email, session_id)
        message_rows = session.execute(
            select(chat_messages)
            .where(chat_messages.c.session_id == session_id)
            .order_by(chat_messages.c.id)
        ).all()
    return _row_to_session(row, [_row_to_message(m) for m in message_rows])


def list_sessions(user_email: str, limit: int = LIST_LIMIT) -> List[ChatSession]:
    """Non-archived sessions, most recently updated first, without messages."""
    with _store("list_sessions", user_email) as session:
        rows = session.execute(
            select(chat_sessions)
            .where(chat_sessions.c.user_email == user_email)
            .where(chat_sessions.c.archived == False)  # noqa: E712
            .order_by(chat_sessions.c.updated_at.desc())
            .limit(limit)
        ).all()
    return [_row_to_session(row) for row in rows]


def append_message(
    user_email: str,
    session_id: str,
    role: str,
    content: str,
    *,
    model: Optional[str] = None,
    images: Optional[List[ChatImage]] = None,
    now: Optional[datetime] = None,
) -> ChatMessage:
    """
    Append one message and bump updated_at.

    Only ownership is checked; content comes from an already-validated boundary.
    """
    message = ChatMessage(
        role=role,
        content=content,
        created_at=_now(now),
        model=model,
        images=images or None,
    )
    with _store("append_message", user_email) as session:
        _owned_row(session, user_email, session_id)
        _insert_message(session, session_id, message)
        session.execute(
            update(chat_sessions)
            .where(chat_sessions.c.id == session_id)
            .values(updated_at=message.created_at)
        )
    return message


def switch_model(
    user_email: str,
    session_id: str,
    new_bucket: ModelBucket,
    now: Optional[datetime] = None,
) -> ChatSession:
    """
    Move a session to another bucket after re-checking access.

    No-op when the bucket is unchanged. On denial the session is untouched.

    Raises:
        AccessDeniedError / QuotaExceededError / StorageTransientError
        NotFoundError
    """
    new_bucket = ModelBucket(new_bucket)
    current = get_session(user_email, session_id)
    if current.model == new_bucket:
        return current

    decision = check_access(user_email, new_bucket, now)
    raise_for_decision(decision)

    updated_at = _now(now)
    with _store("switch_model", user_email) as session:
        _owned_row(session, user_email, session_id)
        session.execute(
            update(chat_sessions)
            .where(chat_sessions.c.id == session_id)
            .values(model=new_bucket.value, updated_at=updated_at)
        )

    logger.info(
        "[chat] model switched",
        extra={"session_id": session_id, "from": current.model.value, "to": new_bucket.value},
    )
    return current.model_copy(update={"model": new_bucket, "updated_at": updated_at})


def set_title(user_email: str, session_id: str, title: str) -> None:
    with _store("set_title", user_email) as session:
        _owned_row(session, user_email, session_id)
        session.execute(
            update(chat_sessions).where(chat_sessions.c.id == session_id).values(title=title)
        )


def auto_title(user_email: str, session_id: str, registry) -> Optional[str]:
    """
    Generate a title once the session has its first user/assistant exchange.

    Runs only while the title is still the default, so a second call on a
    retitled session does nothing. Provider or storage failures leave the
    default title in place.

    Returns:
        The new title, or None when nothing changed
    """
    new_title: Optional[str] = None
    with non_critical("auto_title", session_id=session_id, user_email=user_email):
        chat = get_session(user_email, session_id)
        if not chat.has_default_title() or not chat.has_exchange():
            return None

        last_user = next(m.content for m in reversed(chat.messages) if m.role == "user")
        last_assistant = next(m.content for m in reversed(chat.messages) if m.role == "assistant")
        prompt = TITLE_PROMPT.format(user=last_user, assistant=last_assistant)

        result = registry.for_bucket(ModelBucket.LLAMA).complete(prompt, provider_model_id=settings.TITLE_MODEL)
        title = clean_generated_title(result.text)
        set_title(user_email, session_id, title)
        new_title = title
        logger.info("[chat] titled", extra={"session_id": session_id})
    return new_title


def archive_session(user_email: str, session_id: str, now: Optional[datetime] = None) -> None:
    with _store("archive_session", user_email) as session:
        _owned_row(session, user_email, session_id)
        session.execute(
            update(chat_sessions)
            .where(chat_sessions.c.id == session_id)
            .values(archived=True, updated_at=_now(now))
        )
    logger.info("[chat] archived", extra={"session_id": session_id})


def delete_session(user_email: str, session_id: str) -> None:
    """Hard delete the session and all of its messages. Irreversible."""
    with _store("delete_session", user_email) as session:
        _owned_row(session, user_email, session_id)
        session.execute(delete(chat_messages).where(chat_messages.c.session_id == session_id))
        session.execute(delete(chat_sessions).where(chat_sessions.c.id == session_id))
    logger.info("[chat] deleted", extra={"session_id": session_id, "user_email": user_email})
