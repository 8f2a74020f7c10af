"""Pydantic schemas for chat messages and their status lifecycle."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator


class MessageStatus(str, Enum):
    """Delivery status. Ordered: sent < delivered < read."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advances_from(self, current: "MessageStatus") -> bool:
        """True if moving from current to self is a forward transition."""
        return self.rank > current.rank


_STATUS_RANK = {
    MessageStatus.SENT: 0,
    MessageStatus.DELIVERED: 1,
    MessageStatus.READ: 2,
}


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -----------------------------------------------------------------------------
# Domain message
# -----------------------------------------------------------------------------


class Message(BaseModel):
    """A confirmed, store-assigned message as seen by consumers."""

    id: str
    content: str
    sender_id: Optional[str] = None
    session_id: Optional[str] = None
    recipient_id: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None
    message_status: MessageStatus = MessageStatus.SENT

    model_config = {"from_attributes": True}

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @computed_field
    @property
    def sender(self) -> Literal["admin", "user"]:
        """UI-facing side of the conversation that authored the message."""
        return "admin" if self.is_admin else "user"

    @property
    def visitor_actor_id(self) -> Optional[str]:
        """Id of the visitor-side actor whose conversation this message belongs to."""
        if self.is_admin:
            return self.recipient_id
        return self.sender_id or self.session_id


# -----------------------------------------------------------------------------
# Write schemas
# -----------------------------------------------------------------------------


class MessageCreate(BaseModel):
    """Addressing-complete insert payload built by the gateway."""

    content: str
    sender_id: Optional[str] = None
    session_id: Optional[str] = None
    recipient_id: Optional[str] = None
    is_admin: bool = False
    message_status: MessageStatus = MessageStatus.SENT

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("content must not be blank")
        return value

    @model_validator(mode="after")
    def _check_addressing(self) -> "MessageCreate":
        if self.is_admin:
            if not self.recipient_id:
                raise ValueError("admin messages require recipient_id")
            if self.session_id is not None:
                raise ValueError("admin messages cannot carry a session_id")
            return self
        if (self.sender_id is None) == (self.session_id is None):
            raise ValueError(
                "visitor messages need exactly one of sender_id or session_id"
            )
        if self.recipient_id is not None:
            raise ValueError("visitor messages must not set recipient_id")
        return self


class SendMessageRequest(BaseModel):
    """Body for posting a message over HTTP."""

    content: str = Field(..., max_length=4000)


class StatusUpdateRequest(BaseModel):
    status: MessageStatus


class StatusUpdateResult(BaseModel):
    message_id: str
    applied: bool
