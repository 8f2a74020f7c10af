"""
Command to send a chat message for the resolved identity.

Inserts through the gateway (which owns addressing and blank-content
rejection) and lets the store publish the change to realtime subscribers.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from livechat.adapters.sql_store import SqlMessageStore
from livechat.channels.base import RealtimeClient
from livechat.commands.base import http_exception_for
from livechat.core.errors import SendError, StorePermissionError
from livechat.core.identity import Identity
from livechat.schemas.message import Message
from livechat.services.message_gateway import MessageStoreGateway

logger = logging.getLogger(__name__)


class SendMessageCommand:
    """
    Command to insert a visitor message or an admin reply.
    """

    def __init__(self, db: Session, realtime: Optional[RealtimeClient] = None) -> None:
        self.db = db
        self.gateway = MessageStoreGateway(SqlMessageStore.for_session(db, realtime))

    async def execute(
        self,
        identity: Identity,
        content: str,
        recipient_id: Optional[str] = None,
        is_admin: bool = False,
    ) -> Message:
        """
        Send the message and return it with its store-assigned id.

        Raises:
            HTTPException: 422 for blank content, 403 when the store refuses
                the write, 502 when the insert failed.
        """
        try:
            return await self.gateway.send_message(
                identity, content, recipient_id=recipient_id, is_admin=is_admin
            )
        except (SendError, StorePermissionError) as e:
            raise http_exception_for(e) from e
