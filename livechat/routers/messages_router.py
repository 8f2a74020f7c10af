"""Visitor messages API: own conversation, send, status acknowledgement."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from livechat.commands.base import http_exception_for
from livechat.commands.send_message_command import SendMessageCommand
from livechat.core.app_state import state
from livechat.core.errors import FetchError, StatusError, StorePermissionError
from livechat.core.identity import Identity
from livechat.db import get_db
from livechat.routers.utils.dependencies import get_gateway, get_identity
from livechat.schemas.message import (
    Message,
    SendMessageRequest,
    StatusUpdateRequest,
    StatusUpdateResult,
)
from livechat.services.message_gateway import MessageStoreGateway

messages_router = APIRouter(prefix="/messages", tags=["Message"])


@messages_router.get("", response_model=List[Message])
async def list_messages(
    identity: Identity = Depends(get_identity),
    gateway: MessageStoreGateway = Depends(get_gateway),
) -> List[Message]:
    """The caller's conversation, oldest first."""
    return await _conversation_or_503(gateway, identity)


@messages_router.post("", response_model=Message, status_code=201)
async def send_message(
    body: SendMessageRequest,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_db),
) -> Message:
    """Send a message as the current visitor (signed in or anonymous)."""
    command = SendMessageCommand(db, state.realtime)
    return await command.execute(identity, body.content)


@messages_router.patch("/{message_id}/status", response_model=StatusUpdateResult)
async def update_message_status(
    message_id: str,
    body: StatusUpdateRequest,
    identity: Identity = Depends(get_identity),
    gateway: MessageStoreGateway = Depends(get_gateway),
) -> StatusUpdateResult:
    """
    Acknowledge delivery or reading of a message addressed to the caller.
    Lower-or-equal statuses are accepted as no-ops.
    """
    conversation = await _conversation_or_503(gateway, identity)
    target = next((m for m in conversation if m.id == message_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Message not found")
    if not target.is_admin:
        raise HTTPException(
            status_code=403, detail="Only the recipient can acknowledge a message"
        )
    try:
        applied = await gateway.update_status(message_id, body.status)
    except (StatusError, StorePermissionError) as e:
        raise http_exception_for(e) from e
    return StatusUpdateResult(message_id=message_id, applied=applied)


async def _conversation_or_503(
    gateway: MessageStoreGateway, identity: Identity
) -> List[Message]:
    try:
        return await gateway.fetch_for_identity(identity)
    except FetchError as e:
        raise http_exception_for(e) from e
