"""Admin conversations API: paged list, thread, reply, mark read."""

from __future__ import annotations

from typing import Any, List

from fastapi import APIRouter, Depends, Query
from fastapi_pagination import Page, Params, create_page
from sqlalchemy.orm import Session

from livechat.adapters.sql_store import SqlMessageStore
from livechat.commands.base import http_exception_for
from livechat.commands.send_message_command import SendMessageCommand
from livechat.config import Settings, get_settings
from livechat.core.app_state import state
from livechat.core.errors import FetchError
from livechat.core.identity import AuthenticatedIdentity
from livechat.core.scope_key import ScopeKey
from livechat.db import get_db
from livechat.routers.utils.dependencies import (
    get_gateway,
    get_message_store,
    require_admin,
)
from livechat.schemas.conversation import Conversation
from livechat.schemas.message import Message, SendMessageRequest
from livechat.services.conversation_aggregator import ConversationAggregator
from livechat.services.message_gateway import MessageStoreGateway
from livechat.services.message_service import MessageService
from livechat.services.status_pipeline import MessageStatusPipeline

conversations_router = APIRouter(prefix="/conversations", tags=["Conversation"])


class ConversationParams(Params):
    size: int = Query(10, ge=1, le=100, description="Page size")


def _scope_for(db: Session, actor_id: str) -> ScopeKey:
    if MessageService(db).actor_kind(actor_id) == "user":
        return ScopeKey.for_user(actor_id)
    return ScopeKey.for_session(actor_id)


@conversations_router.get("", response_model=Page[Conversation])
async def list_conversations(
    params: ConversationParams = Depends(),
    _admin: AuthenticatedIdentity = Depends(require_admin),
    store: SqlMessageStore = Depends(get_message_store),
) -> Page[Conversation]:
    """Distinct visitor conversations, most recent first, with unread counts."""
    aggregator = ConversationAggregator(store, page_size=params.size)
    try:
        items = await aggregator.load_page(params.page)
    except FetchError as e:
        raise http_exception_for(e) from e
    return create_page(items, total=aggregator.total, params=params)


@conversations_router.get("/{actor_id}/messages", response_model=List[Message])
async def list_conversation_messages(
    actor_id: str,
    _admin: AuthenticatedIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: MessageStoreGateway = Depends(get_gateway),
) -> List[Message]:
    """One visitor's conversation, oldest first."""
    try:
        return await gateway.fetch_conversation(_scope_for(db, actor_id))
    except FetchError as e:
        raise http_exception_for(e) from e


@conversations_router.post(
    "/{actor_id}/messages", response_model=Message, status_code=201
)
async def reply_to_conversation(
    actor_id: str,
    body: SendMessageRequest,
    admin: AuthenticatedIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Message:
    """Send an admin reply addressed to the visitor."""
    command = SendMessageCommand(db, state.realtime)
    return await command.execute(
        admin, body.content, recipient_id=actor_id, is_admin=True
    )


@conversations_router.post("/{actor_id}/read", response_model=dict[str, Any])
async def mark_conversation_read(
    actor_id: str,
    _admin: AuthenticatedIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
    gateway: MessageStoreGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Mark every unread visitor message of the conversation as read."""
    try:
        messages = await gateway.fetch_conversation(_scope_for(db, actor_id))
    except FetchError as e:
        raise http_exception_for(e) from e
    pipeline = MessageStatusPipeline.from_settings(gateway, settings)
    unread = pipeline.unread_for(messages, viewer_is_admin=True)
    marked = await pipeline.mark_read([m.id for m in unread])
    return {
        "data": {
            "marked": marked,
            "failed": len(pipeline.warnings),
        }
    }
