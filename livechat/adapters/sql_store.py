"""
SQLAlchemy-backed message store.

Wraps MessageService/ProfileService, translates database failures into the
core error taxonomy, enforces the admin-write policy and, after every
committed write, publishes a change event the way a hosted change feed would.
"""

from __future__ import annotations

from contextlib import AbstractContextManager, nullcontext
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from livechat.adapters.base import BaseMessageStore
from livechat.channels.base import RealtimeClient
from livechat.core.errors import (
    FetchError,
    SendError,
    StatusError,
    StorePermissionError,
)
from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.conversation import ActorKind, ConversationSummary, UserInfo
from livechat.schemas.message import Message, MessageCreate, MessageStatus
from livechat.schemas.realtime import ChangeEvent, ChangeEventType
from livechat.services.message_service import MessageService
from livechat.services.profile_service import ProfileService

logger = get_logger("sql_store")

SessionFactory = Callable[[], AbstractContextManager[DBSession]]


class SqlMessageStore(BaseMessageStore):
    def __init__(
        self,
        session_factory: SessionFactory,
        realtime: Optional[RealtimeClient] = None,
    ) -> None:
        self._session_factory = session_factory
        self._realtime = realtime

    @classmethod
    def for_session(
        cls, db: DBSession, realtime: Optional[RealtimeClient] = None
    ) -> "SqlMessageStore":
        """Store bound to an existing request-scoped session."""
        return cls(lambda: nullcontext(db), realtime)

    async def select_scope(self, scope: ScopeKey) -> List[Message]:
        try:
            with self._session_factory() as db:
                rows = MessageService(db).get_messages_for_scope(scope)
                return [Message.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise FetchError("Could not load messages", cause=e) from e

    async def insert(self, data: MessageCreate) -> Message:
        try:
            with self._session_factory() as db:
                if data.is_admin and not ProfileService(db).is_admin(
                    data.sender_id or ""
                ):
                    raise StorePermissionError(
                        "Permission denied. Please try logging out and back in."
                    )
                message = Message.model_validate(MessageService(db).create_message(data))
        except SQLAlchemyError as e:
            raise SendError("Failed to send message", cause=e) from e
        await self._publish(ChangeEventType.INSERT, message)
        return message

    async def get(self, message_id: str) -> Optional[Message]:
        try:
            with self._session_factory() as db:
                row = MessageService(db).get_message(message_id)
                return Message.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise FetchError("Could not load message", cause=e) from e

    async def update_status(
        self, message_id: str, status: MessageStatus
    ) -> Tuple[Optional[Message], bool]:
        try:
            with self._session_factory() as db:
                row, applied = MessageService(db).update_status(message_id, status)
                message = Message.model_validate(row) if row else None
        except SQLAlchemyError as e:
            raise StatusError("Failed to update message status", cause=e) from e
        if applied and message is not None:
            await self._publish(ChangeEventType.UPDATE, message)
        return message, applied

    async def conversation_page(
        self, page: int, page_size: int
    ) -> Tuple[List[ConversationSummary], int]:
        try:
            with self._session_factory() as db:
                return MessageService(db).get_conversation_page(page, page_size)
        except SQLAlchemyError as e:
            raise FetchError("Could not load conversations", cause=e) from e

    async def profiles(self, user_ids: Iterable[str]) -> Dict[str, UserInfo]:
        try:
            with self._session_factory() as db:
                found = ProfileService(db).get_profiles(user_ids)
                return {
                    user_id: UserInfo(
                        username=p.username, name=p.name, avatar_url=p.avatar_url
                    )
                    for user_id, p in found.items()
                }
        except SQLAlchemyError as e:
            raise FetchError("Could not load profiles", cause=e) from e

    async def actor_kind(self, actor_id: str) -> ActorKind:
        try:
            with self._session_factory() as db:
                return MessageService(db).actor_kind(actor_id)
        except SQLAlchemyError as e:
            raise FetchError("Could not resolve conversation actor", cause=e) from e

    async def _publish(self, event_type: ChangeEventType, message: Message) -> None:
        if self._realtime is None:
            return
        event = ChangeEvent(type=event_type, new=message.model_dump(mode="json"))
        try:
            await self._realtime.publish_change(event)
        except Exception as e:
            # The write is committed; subscribers catch up on their next fetch.
            logger.warning("Change feed publish failed for %s: %s", message.id, e)
