"""
Conversation Aggregator (admin side).

Keeps the current page of visitor conversations in memory, keyed by the
visitor-side actor id and ordered by recency, and patches it from realtime
insert/update events.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from typing import Dict, List, Optional, Set

from livechat.adapters.base import BaseMessageStore
from livechat.config import Settings
from livechat.core.errors import FetchError
from livechat.infra.logging_config import get_logger
from livechat.schemas.conversation import (
    ActorKind,
    Conversation,
    ConversationError,
    ConversationErrorType,
    ConversationSummary,
    UserInfo,
)
from livechat.schemas.message import Message, MessageStatus
from livechat.services.status_pipeline import MessageStatusPipeline
from livechat.services.subscription_manager import SeenCache

logger = get_logger("conversation_aggregator")


def actor_kind_of(message: Message) -> ActorKind:
    if message.is_admin:
        # Replies do not say how the visitor is addressed; handle_insert asks the store.
        return "session"
    return "user" if message.sender_id else "session"


def is_unread(message: Message) -> bool:
    return not message.is_admin and message.message_status != MessageStatus.READ


class ConversationAggregator:
    def __init__(
        self,
        store: BaseMessageStore,
        *,
        page_size: int = 10,
        pipeline: Optional[MessageStatusPipeline] = None,
        seen_limit: int = 4096,
    ) -> None:
        self._store = store
        self.page_size = page_size
        self._pipeline = pipeline
        self._entries: "OrderedDict[str, Conversation]" = OrderedDict()
        self._unread: Dict[str, Set[str]] = {}
        self._seen = SeenCache(seen_limit)
        self.page = 1
        self.total = 0
        self.loading = False
        self.errors: List[ConversationError] = []

    @classmethod
    def from_settings(
        cls,
        store: BaseMessageStore,
        settings: Settings,
        pipeline: Optional[MessageStatusPipeline] = None,
    ) -> "ConversationAggregator":
        return cls(store, page_size=settings.conversations_page_size, pipeline=pipeline)

    @property
    def conversations(self) -> List[Conversation]:
        """Entries of the current page, most recent first."""
        return list(self._entries.values())

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    def get(self, actor_id: str) -> Optional[Conversation]:
        return self._entries.get(actor_id)

    def record_error(
        self, type: ConversationErrorType, message: str, error: Optional[Exception] = None
    ) -> ConversationError:
        entry = ConversationError(type=type, message=message, original_error=error)
        self.errors.append(entry)
        return entry

    async def load_page(self, page: int = 1) -> List[Conversation]:
        """Replace the in-memory map with one page from the store. Raises FetchError."""
        page = max(page, 1)
        self.loading = True
        try:
            summaries, total = await self._store.conversation_page(page, self.page_size)
        except FetchError as e:
            self.record_error("fetch", e.message, e)
            logger.warning("Conversation page %d failed to load: %s", page, e.message)
            raise
        finally:
            self.loading = False

        profiles = await self._lookup_profiles(
            [s.actor_id for s in summaries if s.actor_kind == "user"]
        )
        self._entries.clear()
        self._unread.clear()
        self._seen.clear()
        for summary in summaries:
            self._entries[summary.actor_id] = self._from_summary(
                summary, profiles.get(summary.actor_id)
            )
        self.page = page
        self.total = total
        return self.conversations

    async def retry(self) -> List[Conversation]:
        return await self.load_page(self.page)

    def _from_summary(
        self, summary: ConversationSummary, info: Optional[UserInfo]
    ) -> Conversation:
        last = summary.last_message
        self._unread[summary.actor_id] = set(summary.unread_ids)
        self._seen.add(last.id)
        for message_id in summary.unread_ids:
            self._seen.add(message_id)
        return Conversation(
            actor_id=summary.actor_id,
            actor_kind=summary.actor_kind,
            last_message=last.content,
            last_message_id=last.id,
            created_at=summary.first_message_at,
            last_message_timestamp=last.created_at,
            user_info=info or UserInfo(),
            unread_count=len(summary.unread_ids),
        )

    async def _lookup_profiles(self, user_ids: List[str]) -> Dict[str, UserInfo]:
        if not user_ids:
            return {}
        try:
            return await self._store.profiles(user_ids)
        except FetchError as e:
            logger.warning("Profile lookup failed: %s", e.message)
            return {}

    # -- realtime --------------------------------------------------------------

    def apply_insert(self, message: Message) -> Optional[Conversation]:
        """
        Fold an inserted message into the map. Re-applying the same message
        id changes nothing.
        """
        actor_id = message.visitor_actor_id
        if actor_id is None:
            return None
        if message.id in self._seen:
            return self._entries.get(actor_id)

        entry = self._entries.get(actor_id)
        if entry is None:
            if self.page != 1:
                return None
            entry = Conversation(
                actor_id=actor_id,
                actor_kind=actor_kind_of(message),
                last_message=message.content,
                last_message_id=message.id,
                created_at=message.created_at,
                last_message_timestamp=message.created_at,
            )
            self._entries[actor_id] = entry
            self._unread[actor_id] = set()
            self.total += 1
        elif message.created_at >= entry.last_message_timestamp:
            entry.last_message = message.content
            entry.last_message_id = message.id
            entry.last_message_timestamp = message.created_at

        self._seen.add(message.id)
        if is_unread(message):
            self._unread[actor_id].add(message.id)
        entry.unread_count = len(self._unread[actor_id])
        self._entries.move_to_end(actor_id, last=False)
        return entry

    async def handle_insert(self, message: Message) -> Optional[Conversation]:
        """
        apply_insert plus best-effort hydration of new entries: the actor kind
        of conversations first seen through an admin reply, then the profile
        of signed-in visitors.
        """
        known = message.visitor_actor_id in self._entries
        entry = self.apply_insert(message)
        if entry is None or known:
            return entry
        if message.is_admin:
            try:
                entry.actor_kind = await self._store.actor_kind(entry.actor_id)
            except FetchError as e:
                logger.warning("Actor kind lookup failed for %s: %s", entry.actor_id, e.message)
        if entry.actor_kind == "user":
            profiles = await self._lookup_profiles([entry.actor_id])
            if entry.actor_id in profiles:
                entry.user_info = profiles[entry.actor_id]
        return entry

    def apply_update(self, message: Message) -> Optional[Conversation]:
        """Patch the matching entry in place; recency order is left alone."""
        actor_id = message.visitor_actor_id
        entry = self._entries.get(actor_id) if actor_id else None
        if entry is None:
            return None
        unread = self._unread.setdefault(actor_id, set())
        if is_unread(message):
            if message.id in self._seen:
                unread.add(message.id)
        else:
            unread.discard(message.id)
        entry.unread_count = len(unread)
        if entry.last_message_id == message.id:
            entry.last_message = message.content
        return entry

    def set_typing(self, actor_id: str, is_typing: bool) -> None:
        entry = self._entries.get(actor_id)
        if entry is not None:
            entry.is_typing = is_typing

    async def mark_conversation_read(self, actor_id: str) -> int:
        """Zero the unread count now and persist "read" for each unread message."""
        ids = sorted(self._unread.get(actor_id, ()))
        entry = self._entries.get(actor_id)
        if entry is not None:
            entry.unread_count = 0
        self._unread[actor_id] = set()
        if not ids or self._pipeline is None:
            return 0
        warned = len(self._pipeline.warnings)
        applied = await self._pipeline.mark_read(ids)
        failed = len(self._pipeline.warnings) - warned
        if failed:
            self.record_error("update", f"{failed} message(s) could not be marked read")
        return applied
