"""Conversation scope key: the one value that decides which messages belong to a view."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from livechat.schemas.message import Message

ScopeKind = Literal["user", "session", "inbox"]

INBOX_ACTOR = "*"


@dataclass(frozen=True)
class ScopeKey:
    """
    Visitor-side actor id plus how it addresses messages.

    user:    sender_id = actor or recipient_id = actor
    session: session_id = actor or recipient_id = actor
    inbox:   every message (admin conversation list)
    """

    kind: ScopeKind
    actor_id: str

    @classmethod
    def for_user(cls, user_id: str) -> "ScopeKey":
        return cls(kind="user", actor_id=user_id)

    @classmethod
    def for_session(cls, session_id: str) -> "ScopeKey":
        return cls(kind="session", actor_id=session_id)

    @classmethod
    def inbox(cls) -> "ScopeKey":
        return cls(kind="inbox", actor_id=INBOX_ACTOR)

    @property
    def is_inbox(self) -> bool:
        return self.kind == "inbox"

    def matches(self, message: Message) -> bool:
        """True if the message belongs to this conversation."""
        if self.kind == "inbox":
            return True
        if message.recipient_id == self.actor_id:
            return True
        if self.kind == "user":
            return message.sender_id == self.actor_id
        return message.session_id == self.actor_id

    def channel_name(self, prefix: str) -> str:
        return f"{prefix}:{self.kind}:{self.actor_id}"

    def __str__(self) -> str:
        return f"{self.kind}:{self.actor_id}"
