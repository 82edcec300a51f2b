"""
guidechat/models/chat.py

Chat session models.

Sessions are owned by one user and bound to one active bucket at a time.
Messages are append-only.
"""

from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from guidechat.models.bucket import ModelBucket

DEFAULT_TITLE = "New Chat"
TITLE_MAX_CHARS = 60

MessageRole = Literal["user", "assistant", "system"]


class ChatImage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mime_type: str = Field(alias="mimeType")
    data: str  # base64

    @field_validator("mime_type")
    @classmethod
    def must_be_image(cls, value: str) -> str:
        if not value.startswith("image/"):
            raise ValueError("mimeType must be an image/* type")
        return value


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    created_at: datetime
    model: Optional[str] = None
    images: Optional[List[ChatImage]] = None


class ChatSession(BaseModel):
    """
    A persisted conversation.

    Lifecycle: active -> archived | deleted (hard delete).
    """
    model_config = ConfigDict(frozen=True)

    id: str
    user_email: str
    title: str
    model: ModelBucket
    created_at: datetime
    updated_at: datetime
    messages: List[ChatMessage] = []
    archived: bool = False

    def has_default_title(self) -> bool:
        return self.title == DEFAULT_TITLE

    def has_exchange(self) -> bool:
        roles = {m.role for m in self.messages}
        return "user" in roles and "assistant" in roles


class ChatReply(BaseModel):
    """Result of sending one message through a session."""
    model_config = ConfigDict(frozen=True)

    message: ChatMessage
    new_title: Optional[str] = None
    used: int
    limit: int
    remaining: int


# Request bodies (API boundary)

class CreateChatRequest(BaseModel):
    model: str
    message: Optional[str] = None

    @field_validator("model")
    @classmethod
    def model_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("model is required")
        return value


class SendMessageRequest(BaseModel):
    message: str
    images: List[ChatImage] = Field(default_factory=list)

    @field_validator("message")
    @classmethod
    def message_required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("message is required")
        return value


class SwitchModelRequest(BaseModel):
    model: str
