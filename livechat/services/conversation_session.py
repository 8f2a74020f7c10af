"""
Conversation views.

ConversationSession is one open conversation: it owns a MessageList, holds
the scope's realtime subscription, sends with optimistic pending entries and
drives delivered/read acknowledgement. AdminConsole owns the conversation
list and switches the viewed conversation, tearing down the previous scope
before opening the next.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, List, Optional

from livechat.core.errors import (
    ChannelConnectionError,
    FetchError,
    SendError,
    StorePermissionError,
)
from livechat.core.identity import AuthenticatedIdentity, Identity
from livechat.core.message_list import MessageList
from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.conversation import ActorKind, Conversation
from livechat.schemas.message import Message
from livechat.schemas.realtime import ConnectionState
from livechat.services.conversation_aggregator import ConversationAggregator
from livechat.services.message_gateway import MessageStoreGateway
from livechat.services.status_pipeline import MessageStatusPipeline
from livechat.services.subscription_manager import (
    RealtimeSubscriptionManager,
    SubscriptionHandle,
    SubscriptionHandlers,
)
from livechat.services.typing_presence import TypingPresenceTracker

logger = get_logger("conversation_session")

ChangeListener = Callable[[], None]


class LoadState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"


class ConversationSession:
    def __init__(
        self,
        gateway: MessageStoreGateway,
        manager: RealtimeSubscriptionManager,
        scope: ScopeKey,
        viewer: Identity,
        *,
        viewer_is_admin: bool = False,
        pipeline: Optional[MessageStatusPipeline] = None,
        typing: Optional[TypingPresenceTracker] = None,
        on_change: Optional[ChangeListener] = None,
    ) -> None:
        if viewer_is_admin and not isinstance(viewer, AuthenticatedIdentity):
            raise ValueError("admin views require an authenticated identity")
        self.scope = scope
        self.viewer = viewer
        self.viewer_is_admin = viewer_is_admin
        self.messages = MessageList()
        self.load_state = LoadState.LOADING
        self.connection_state = ConnectionState.CONNECTING
        self.connection_exhausted = False
        self.error: Optional[FetchError] = None
        self.focused = True
        self._gateway = gateway
        self._manager = manager
        self._pipeline = pipeline
        self._typing = typing
        self._on_change = on_change
        self._handle: Optional[SubscriptionHandle] = None

    async def open(self) -> None:
        """Subscribe, then fetch, so nothing sent in between is missed."""
        self._handle = await self._manager.open(
            self.scope,
            SubscriptionHandlers(
                on_insert=self._on_insert,
                on_update=self._on_update,
                on_status_change=self._on_status_change,
                on_exhausted=self._on_exhausted,
            ),
        )
        if self._typing is not None:
            await self._typing.start()
        await self.reload()

    async def reload(self) -> None:
        self.load_state = LoadState.LOADING
        try:
            fetched = await self._gateway.fetch_conversation(self.scope)
        except FetchError as e:
            # Keep what is already shown; an error is never rendered as "empty".
            self.error = e
            self.load_state = LoadState.ERROR
            logger.warning("Fetch failed for %s: %s", self.scope, e.message)
            self._notify()
            return
        self.error = None
        self.messages.merge_fetched(fetched)
        self.load_state = LoadState.READY if len(self.messages) else LoadState.EMPTY
        self._acknowledge(fetched)
        self._notify()

    async def send(self, content: str) -> Message:
        """
        Optimistic send. The pending entry is replaced by the stored message on
        success and removed on failure; the error propagates to the caller.
        """
        pending = self.messages.add_pending(content, is_admin=self.viewer_is_admin)
        self._notify()
        try:
            message = await self._gateway.send_message(
                self.viewer,
                content,
                recipient_id=self.scope.actor_id if self.viewer_is_admin else None,
                is_admin=self.viewer_is_admin,
            )
        except (SendError, StorePermissionError):
            self.messages.fail(pending.temp_id)
            self._notify()
            raise
        self.messages.confirm(pending.temp_id, message)
        if self.load_state == LoadState.EMPTY:
            self.load_state = LoadState.READY
        if self._typing is not None:
            await self._typing.stop_typing(self.viewer, self.viewer_is_admin)
        self._notify()
        return message

    def keystroke(self) -> None:
        if self._typing is not None:
            self._typing.keystroke(self.viewer, self.viewer_is_admin)

    def typing_actors(self) -> List[str]:
        if self._typing is None:
            return []
        return self._typing.typing_actors(exclude_actor=self.viewer.actor_id)

    def set_focus(self, focused: bool) -> None:
        self.focused = focused
        if focused:
            self._acknowledge_read(self.messages.messages)

    @property
    def subscription(self) -> Optional[SubscriptionHandle]:
        return self._handle

    async def refresh_connection(self) -> None:
        """Manual reconnect once automatic retries are exhausted."""
        if self._handle is not None:
            await self._handle.refresh()

    # -- realtime handlers ---------------------------------------------------

    def _on_insert(self, message: Message) -> None:
        if self.messages.apply_insert(message):
            if self.load_state == LoadState.EMPTY:
                self.load_state = LoadState.READY
            self._acknowledge([message])
            self._notify()

    def _on_update(self, message: Message) -> None:
        if self.messages.apply_update(message):
            self._notify()

    def _on_status_change(self, state: ConnectionState) -> None:
        self.connection_state = state
        if state != ConnectionState.DISCONNECTED:
            self.connection_exhausted = False
        self._notify()

    def _on_exhausted(self, error: ChannelConnectionError) -> None:
        logger.warning("Realtime for %s gave up: %s", self.scope, error.message)
        self.connection_exhausted = True
        self._notify()

    def _acknowledge(self, messages: List[Message]) -> None:
        if self._pipeline is None:
            return
        for message in messages:
            self._pipeline.acknowledge_delivered(message, self.viewer_is_admin)
        self._acknowledge_read(messages)

    def _acknowledge_read(self, messages: List[Message]) -> None:
        if self._pipeline is not None:
            self._pipeline.acknowledge_read(messages, self.viewer_is_admin, self.focused)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()

    # -- teardown --------------------------------------------------------------

    def close(self) -> None:
        """Synchronous teardown: no handler fires after this returns."""
        self._on_change = None
        if self._handle is not None:
            self._handle.close()
        if self._typing is not None:
            asyncio.get_running_loop().create_task(self._typing.close())

    async def aclose(self) -> None:
        self._on_change = None
        if self._handle is not None:
            await self._handle.aclose()
        if self._typing is not None:
            await self._typing.close()


TrackerFactory = Callable[[ScopeKey], TypingPresenceTracker]


class AdminConsole:
    """Admin side: live conversation list plus one open conversation at a time."""

    def __init__(
        self,
        gateway: MessageStoreGateway,
        manager: RealtimeSubscriptionManager,
        aggregator: ConversationAggregator,
        admin: AuthenticatedIdentity,
        *,
        pipeline: Optional[MessageStatusPipeline] = None,
        typing_factory: Optional[TrackerFactory] = None,
    ) -> None:
        self.admin = admin
        self.aggregator = aggregator
        self.current: Optional[ConversationSession] = None
        self._gateway = gateway
        self._manager = manager
        self._pipeline = pipeline
        self._typing_factory = typing_factory
        self._inbox: Optional[SubscriptionHandle] = None

    async def start(self, page: int = 1) -> List[Conversation]:
        self._inbox = await self._manager.open(
            ScopeKey.inbox(),
            SubscriptionHandlers(
                on_insert=self.aggregator.handle_insert,
                on_update=self.aggregator.apply_update,
            ),
        )
        try:
            return await self.aggregator.load_page(page)
        except FetchError:
            return []

    async def view(self, actor_id: str, actor_kind: ActorKind) -> ConversationSession:
        """Open a conversation, closing the previous one first."""
        if self.current is not None:
            await self.current.aclose()
            self.current = None
        scope = (
            ScopeKey.for_user(actor_id)
            if actor_kind == "user"
            else ScopeKey.for_session(actor_id)
        )
        session = ConversationSession(
            self._gateway,
            self._manager,
            scope,
            self.admin,
            viewer_is_admin=True,
            pipeline=self._pipeline,
            typing=self._typing_factory(scope) if self._typing_factory else None,
        )
        self.current = session
        await session.open()
        logger.info("Admin %s viewing %s", self.admin.user_id, scope)
        return session

    async def close(self) -> None:
        if self.current is not None:
            await self.current.aclose()
            self.current = None
        if self._inbox is not None:
            await self._inbox.aclose()
            self._inbox = None
