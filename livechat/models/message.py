"""
Message model: one row per chat message between a visitor and the admin side.

The visitor-side actor of a row is sender_id (authenticated visitor),
session_id (anonymous visitor) or, for admin replies, recipient_id.
"""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, CheckConstraint, Column, Index, String, Text

from livechat.db import Base
from livechat.models.mixins import TimestampMixin


class Message(Base, TimestampMixin):
    """Persisted chat message. message_status only ever moves forward."""

    __tablename__ = "messages"

    __table_args__ = (
        Index("ix_messages_sender_created", "sender_id", "created_at"),
        Index("ix_messages_session_created", "session_id", "created_at"),
        Index("ix_messages_recipient_created", "recipient_id", "created_at"),
        CheckConstraint(
            "message_status IN ('sent', 'delivered', 'read')",
            name="ck_messages_status",
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    content = Column(Text, nullable=False)
    sender_id = Column(String(64), nullable=True)
    session_id = Column(String(64), nullable=True)
    recipient_id = Column(String(64), nullable=True)
    is_admin = Column(Boolean, nullable=False, default=False)
    message_status = Column(String(16), nullable=False, default="sent")
