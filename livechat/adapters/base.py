"""
Persistent store interface.

The gateway and aggregator only talk to the store through this contract,
which mirrors the hosted store's select/insert/update surface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from livechat.core.scope_key import ScopeKey
from livechat.schemas.conversation import ActorKind, ConversationSummary, UserInfo
from livechat.schemas.message import Message, MessageCreate, MessageStatus


class BaseMessageStore(ABC):
    """Contract for message stores. Implementations raise livechat.core.errors types."""

    @abstractmethod
    async def select_scope(self, scope: ScopeKey) -> List[Message]:
        """Messages belonging to the scope, ascending by created_at. Raise FetchError."""
        ...

    @abstractmethod
    async def insert(self, data: MessageCreate) -> Message:
        """Insert and return the stored message. Raise SendError or StorePermissionError."""
        ...

    @abstractmethod
    async def get(self, message_id: str) -> Optional[Message]:
        ...

    @abstractmethod
    async def update_status(
        self, message_id: str, status: MessageStatus
    ) -> Tuple[Optional[Message], bool]:
        """Forward-only status update. Returns (message, applied). Raise StatusError."""
        ...

    @abstractmethod
    async def conversation_page(
        self, page: int, page_size: int
    ) -> Tuple[List[ConversationSummary], int]:
        """One page of distinct visitor conversations, most recent first, plus total."""
        ...

    @abstractmethod
    async def profiles(self, user_ids: Iterable[str]) -> Dict[str, UserInfo]:
        """Display info for the given user ids; missing ids are simply absent."""
        ...

    @abstractmethod
    async def actor_kind(self, actor_id: str) -> ActorKind:
        """How the visitor behind actor_id is addressed. Raise FetchError."""
        ...
