"""
Message Store Gateway: typed fetch/send/status over the message store.

All conversation addressing (sender_id vs session_id vs recipient_id) is
decided here and nowhere else.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import ValidationError

from livechat.adapters.base import BaseMessageStore
from livechat.core.errors import (
    BlankMessageError,
    FetchError,
    SendError,
    StatusError,
    StorePermissionError,
)
from livechat.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.message import Message, MessageCreate, MessageStatus

logger = get_logger("message_gateway")


def sort_messages(messages: List[Message]) -> List[Message]:
    """Render order: created_at ascending, id as a stable tie-break."""
    return sorted(messages, key=lambda m: (m.created_at, m.id))


def build_message_create(
    identity: Identity,
    content: str,
    recipient_id: Optional[str] = None,
    is_admin: bool = False,
) -> MessageCreate:
    """Addressing fields for a send. Raises BlankMessageError / SendError."""
    if not content or not content.strip():
        raise BlankMessageError()
    try:
        if is_admin:
            if not isinstance(identity, AuthenticatedIdentity):
                raise StorePermissionError("Admin replies require a signed-in admin")
            return MessageCreate(
                content=content,
                sender_id=identity.user_id,
                recipient_id=recipient_id,
                is_admin=True,
            )
        if isinstance(identity, AnonymousIdentity):
            return MessageCreate(content=content, session_id=identity.session_id)
        return MessageCreate(content=content, sender_id=identity.user_id)
    except ValidationError as e:
        raise SendError(f"Invalid message addressing: {e.errors()[0]['msg']}", cause=e) from e


class MessageStoreGateway:
    def __init__(self, store: BaseMessageStore) -> None:
        self._store = store

    async def fetch_conversation(self, scope: ScopeKey) -> List[Message]:
        """
        All messages of one conversation, ascending by created_at.

        Raises FetchError; an empty list always means "no messages".
        """
        messages = await self._store.select_scope(scope)
        return sort_messages([m for m in messages if scope.matches(m)])

    async def fetch_for_identity(self, identity: Identity) -> List[Message]:
        return await self.fetch_conversation(identity.scope)

    async def send_message(
        self,
        identity: Identity,
        content: str,
        recipient_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> Message:
        """
        Insert a message and return it with its store-assigned id.

        Blank content is rejected before the store is touched.
        """
        origin = "admin" if is_admin else "visitor"
        try:
            data = build_message_create(identity, content, recipient_id, is_admin)
            message = await self._store.insert(data)
        except BlankMessageError:
            logger.debug("Rejected blank message from %s", identity.actor_id)
            raise
        except StorePermissionError as e:
            logger.warning("Send refused for %s: %s", identity.actor_id, e.message)
            raise
        except SendError as e:
            logger.warning("Send failed for %s: %s", identity.actor_id, e.message)
            raise
        logger.info("Message %s sent by %s (%s)", message.id, identity.actor_id, origin)
        return message

    async def update_status(self, message_id: str, new_status: MessageStatus) -> bool:
        """
        Move a message's status forward. Returns True if applied.

        Setting a lower-or-equal status is a no-op, not an error.
        """
        try:
            current = await self._store.get(message_id)
        except FetchError as e:
            raise StatusError("Could not read message status", cause=e) from e
        if current is None:
            raise StatusError(f"Message {message_id} not found")
        if not new_status.advances_from(current.message_status):
            return False
        _, applied = await self._store.update_status(message_id, new_status)
        if applied:
            logger.debug("Message %s marked %s", message_id, new_status.value)
        return applied
