"""FastAPI routes for chat sessions."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from guidechat.core.auth import get_current_user_email
from guidechat.features.chat.service import (
    create_session,
    delete_session,
    get_session,
    list_sessions,
    switch_model,
)
from guidechat.features.entitlements.service import check_access, raise_for_decision
from guidechat.features.generation.service import send_chat_message
from guidechat.features.providers.registry import ProviderRegistry, get_provider_registry
from guidechat.features.routing.service import require_model
from guidechat.models.chat import ChatSession, CreateChatRequest, SendMessageRequest, SwitchModelRequest

router = APIRouter(prefix="/api/chat", tags=["chat"])
logger = logging.getLogger(__name__)


def _session_out(chat: ChatSession, include_messages: bool = True) -> dict:
    data = chat.model_dump(mode="json", by_alias=True, exclude={"user_email"})
    if not include_messages:
        data.pop("messages", None)
    return data


@router.get("")
def list_chats(user_email: str = Depends(get_current_user_email)):
    return {"chats": [_session_out(c, include_messages=False) for c in list_sessions(user_email)]}


@router.post("", status_code=201)
def create_chat(body: CreateChatRequest, user_email: str = Depends(get_current_user_email)):
    """
    Create a session on a model the caller's plan allows.

    Creating does not charge quota; the first generation does.
    """
    resolved = require_model(body.model)
    raise_for_decision(check_access(user_email, resolved.bucket))
    chat = create_session(user_email, resolved.bucket, body.message)
    return {"chat": _session_out(chat)}


@router.get("/{session_id}")
def get_chat(session_id: str, user_email: str = Depends(get_current_user_email)):
    return {"chat": _session_out(get_session(user_email, session_id))}


@router.post("/{session_id}")
def send_message(
    session_id: str,
    body: SendMessageRequest,
    user_email: str = Depends(get_current_user_email),
    registry: ProviderRegistry = Depends(get_provider_registry),
):
    """
    Send one message and get the assistant reply.

    Response:
    {
        "message": {"role": "assistant", "content": "...", ...},
        "new_title": "Planning A Week In Lisbon",
        "usage": {"used": 2, "limit": 6, "remaining": 4}
    }
    """
    reply = send_chat_message(user_email, session_id, body.message, body.images, registry=registry)
    return {
        "message": reply.message.model_dump(mode="json", by_alias=True),
        "new_title": reply.new_title,
        "usage": {"used": reply.used, "limit": reply.limit, "remaining": reply.remaining},
    }


@router.patch("/{session_id}")
def switch_chat_model(
    session_id: str,
    body: SwitchModelRequest,
    user_email: str = Depends(get_current_user_email),
):
    resolved = require_model(body.model)
    chat = switch_model(user_email, session_id, resolved.bucket)
    return {"chat": _session_out(chat, include_messages=False)}


@router.delete("/{session_id}", status_code=204)
def delete_chat(session_id: str, user_email: str = Depends(get_current_user_email)):
    delete_session(user_email, session_id)
    return Response(status_code=204)
