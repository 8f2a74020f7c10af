"""Schemas for the admin-side conversation projection."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from livechat.schemas.message import Message

ActorKind = Literal["user", "session"]
ConversationErrorType = Literal["fetch", "send", "update", "connection"]


class UserInfo(BaseModel):
    """Best-effort display info for a visitor. Empty for anonymous sessions."""

    username: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None


class ConversationSummary(BaseModel):
    """One visitor's conversation as read from the store for a page."""

    actor_id: str
    actor_kind: ActorKind
    last_message: Message
    first_message_at: datetime
    unread_ids: list[str] = Field(default_factory=list)


class Conversation(BaseModel):
    """Derived conversation entry, keyed by visitor-side actor id. Never persisted."""

    actor_id: str
    actor_kind: ActorKind
    last_message: str
    last_message_id: Optional[str] = None
    created_at: datetime
    last_message_timestamp: datetime
    user_info: UserInfo = Field(default_factory=UserInfo)
    unread_count: int = 0
    is_typing: bool = False


class ConversationError(BaseModel):
    type: ConversationErrorType
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    original_error: Optional[Any] = Field(default=None, exclude=True)

    model_config = {"arbitrary_types_allowed": True}
