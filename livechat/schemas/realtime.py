"""Schemas for realtime change events, connection state and typing presence."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ChangeEventType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class ChangeEvent(BaseModel):
    """Raw row change as published by the store's change feed."""

    type: ChangeEventType
    table: str = "messages"
    new: dict[str, Any]
    old: Optional[dict[str, Any]] = None


class TypingIndicator(BaseModel):
    """Ephemeral typing state of one actor. Never written to the store."""

    actor_id: str
    is_typing: bool
    last_typed: datetime
    is_admin: bool = False

    @field_validator("last_typed", mode="after")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def is_stale(self, now: datetime, window: float) -> bool:
        return now - self.last_typed > timedelta(seconds=window)

    def is_active(self, now: datetime, window: float) -> bool:
        """Typing and fresh. A stale indicator counts as not typing whatever its flag."""
        return self.is_typing and not self.is_stale(now, window)


class RealtimeFrame(BaseModel):
    """Frame pushed to WebSocket clients."""

    type: str
    data: dict[str, Any] = Field(default_factory=dict)
