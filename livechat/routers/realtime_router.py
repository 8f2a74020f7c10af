"""
Realtime WebSocket: pushes inserts, updates, connection state and typing
for one conversation scope, and accepts typing and read acknowledgements.

Each socket is one conversation view and owns its own subscription.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from livechat.adapters.sql_store import SqlMessageStore
from livechat.config import get_settings
from livechat.core.app_state import state
from livechat.core.errors import AuthError, ChannelConnectionError, FetchError
from livechat.core.identity import AnonymousIdentity, AuthenticatedIdentity, Identity
from livechat.core.scope_key import ScopeKey
from livechat.db import db_session
from livechat.routers.utils.dependencies import bearer_token
from livechat.schemas.message import Message
from livechat.schemas.realtime import ConnectionState, RealtimeFrame
from livechat.services.message_gateway import MessageStoreGateway
from livechat.services.message_service import MessageService
from livechat.services.profile_service import ProfileService
from livechat.services.status_pipeline import MessageStatusPipeline
from livechat.services.subscription_manager import (
    RealtimeSubscriptionManager,
    SubscriptionHandlers,
)
from livechat.services.typing_presence import TypingPresenceTracker

logger = logging.getLogger(__name__)

realtime_router = APIRouter(tags=["Realtime"])

WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403


class SocketRejected(Exception):
    def __init__(self, code: int, reason: str) -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason


def _resolve_identity(websocket: WebSocket) -> Identity:
    settings = get_settings()
    token = websocket.query_params.get("token") or bearer_token(
        websocket.headers.get("authorization")
    )
    if token:
        if state.identity_provider is None:
            raise SocketRejected(WS_UNAUTHORIZED, "Authentication is not configured")
        try:
            user = state.identity_provider.get_user(token)
        except AuthError as e:
            raise SocketRejected(WS_UNAUTHORIZED, e.message) from e
        if user is None:
            raise SocketRejected(WS_UNAUTHORIZED, "Invalid or expired token")
        return AuthenticatedIdentity(user_id=user.user_id, email=user.email)
    session_id = websocket.cookies.get(
        settings.anonymous_session_cookie
    ) or websocket.query_params.get("session_id")
    if not session_id:
        raise SocketRejected(WS_UNAUTHORIZED, "No session")
    return AnonymousIdentity(session_id=session_id)


def _resolve_scope(websocket: WebSocket, identity: Identity) -> tuple[ScopeKey, bool]:
    """Scope to watch and whether the viewer acts as admin."""
    actor_id = websocket.query_params.get("actor_id")
    inbox = websocket.query_params.get("inbox") in ("1", "true")
    if not actor_id and not inbox:
        return identity.scope, False
    if not isinstance(identity, AuthenticatedIdentity):
        raise SocketRejected(WS_UNAUTHORIZED, "Sign in required")
    with db_session() as db:
        if not ProfileService(db).is_admin(identity.user_id):
            raise SocketRejected(WS_FORBIDDEN, "Admin access required")
        if inbox:
            return ScopeKey.inbox(), True
        if MessageService(db).actor_kind(actor_id) == "user":
            return ScopeKey.for_user(actor_id), True
    return ScopeKey.for_session(actor_id), True


def _frame(type: str, data: dict[str, Any]) -> dict[str, Any]:
    return RealtimeFrame(type=type, data=data).model_dump(mode="json")


@realtime_router.websocket("/realtime")
async def realtime_socket(websocket: WebSocket) -> None:
    await websocket.accept()
    try:
        identity = _resolve_identity(websocket)
        scope, is_admin = _resolve_scope(websocket, identity)
    except SocketRejected as e:
        await websocket.close(code=e.code, reason=e.reason)
        return

    settings = get_settings()
    gateway = MessageStoreGateway(SqlMessageStore(db_session, state.realtime))
    pipeline = MessageStatusPipeline.from_settings(gateway, settings)
    manager = RealtimeSubscriptionManager.from_settings(state.realtime, settings)
    tracker: Optional[TypingPresenceTracker] = None
    typing_task: Optional[asyncio.Task] = None

    async def on_insert(message: Message) -> None:
        await websocket.send_json(_frame("insert", message.model_dump(mode="json")))
        if not scope.is_inbox:
            pipeline.acknowledge_delivered(message, viewer_is_admin=is_admin)

    async def on_update(message: Message) -> None:
        await websocket.send_json(_frame("update", message.model_dump(mode="json")))

    async def on_status(connection: ConnectionState) -> None:
        await websocket.send_json(_frame("status", {"state": connection.value}))

    async def on_exhausted(error: ChannelConnectionError) -> None:
        await websocket.send_json(
            _frame(
                "status",
                {"state": ConnectionState.DISCONNECTED.value, "exhausted": True},
            )
        )

    handle = await manager.open(
        scope,
        SubscriptionHandlers(
            on_insert=on_insert,
            on_update=on_update,
            on_status_change=on_status,
            on_exhausted=on_exhausted,
        ),
    )
    logger.info("Realtime socket opened for %s (%s)", identity.actor_id, scope)

    try:
        if not scope.is_inbox:
            tracker = TypingPresenceTracker.from_settings(state.realtime, scope, settings)
            await tracker.start()
            typing_task = asyncio.create_task(
                _forward_typing(websocket, tracker, identity.actor_id)
            )
        while True:
            payload = await websocket.receive_json()
            kind = payload.get("type") if isinstance(payload, dict) else None
            if kind == "typing" and tracker is not None:
                tracker.keystroke(identity, is_admin=is_admin)
            elif kind == "read" and not scope.is_inbox:
                ids = [str(i) for i in payload.get("ids") or []]
                try:
                    await _mark_read(gateway, pipeline, scope, ids, is_admin)
                except FetchError as e:
                    await websocket.send_json(_frame("error", {"detail": e.message}))
            elif kind == "refresh":
                await handle.refresh()
            else:
                await websocket.send_json(_frame("error", {"detail": "Unknown frame"}))
    except WebSocketDisconnect:
        logger.info("Realtime socket closed for %s", identity.actor_id)
    finally:
        handle.close()
        if typing_task is not None:
            typing_task.cancel()
        if tracker is not None:
            await tracker.close()
        await pipeline.aclose()


async def _forward_typing(
    websocket: WebSocket, tracker: TypingPresenceTracker, own_actor: str
) -> None:
    async for indicator in tracker.subscribe():
        if indicator.actor_id == own_actor:
            continue
        await websocket.send_json(_frame("typing", indicator.model_dump(mode="json")))


async def _mark_read(
    gateway: MessageStoreGateway,
    pipeline: MessageStatusPipeline,
    scope: ScopeKey,
    ids: list[str],
    is_admin: bool,
) -> None:
    """Read acks only for messages of this conversation sent by the other side."""
    messages = await gateway.fetch_conversation(scope)
    wanted = set(ids)
    candidates = [m for m in messages if m.id in wanted]
    pipeline.acknowledge_read(candidates, viewer_is_admin=is_admin, focused=True)
