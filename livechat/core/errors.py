"""
Error taxonomy for the messaging core.

Every store, transport and identity failure is translated into one of these
before it leaves a gateway or adapter, so callers only ever handle this set.
"""

from __future__ import annotations

from typing import Optional


class LiveChatError(Exception):
    """Base class for all messaging core errors."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause


class FetchError(LiveChatError):
    """Initial conversation load failed. Never to be shown as an empty conversation."""


class SendError(LiveChatError):
    """Message insert failed. Local state is left untouched."""


class BlankMessageError(SendError):
    """Content was empty or whitespace-only; rejected before any store call."""

    def __init__(self) -> None:
        super().__init__("Message content must not be blank")


class StatusError(LiveChatError):
    """Status update RPC failed."""


class ChannelConnectionError(LiveChatError):
    """Realtime channel closed or errored."""


class AuthError(LiveChatError):
    """Sign-in, sign-up, sign-out or session lookup failed."""


class StorePermissionError(LiveChatError):
    """The store rejected a write by policy. Callers should prompt re-authentication."""
