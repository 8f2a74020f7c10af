"""
Realtime Subscription Manager.

Owns exactly one logical subscription per conversation scope and runs its
connection state machine:

    connecting -> connected -> disconnected -> connecting (retry) -> ...

Once the retry budget is spent the handle stays disconnected, reports
on_exhausted once, and only refresh() reconnects it.

Every inbound change is parsed into a Message, passed through the scope
filter and de-duplicated before it reaches consumer handlers, which run
one at a time in transport delivery order.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, Union

from pydantic import ValidationError

from livechat.channels.base import ChannelStatus, RealtimeChannel, RealtimeClient
from livechat.config import Settings
from livechat.core.errors import ChannelConnectionError
from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.message import Message
from livechat.schemas.realtime import ChangeEventType, ConnectionState

logger = get_logger("subscription_manager")

CHANNEL_PREFIX = "messages"
SEEN_CACHE_SIZE = 2048

MaybeAwaitable = Union[None, Awaitable[None]]
MessageHandler = Callable[[Message], MaybeAwaitable]
StateHandler = Callable[[ConnectionState], MaybeAwaitable]
ExhaustedHandler = Callable[[ChannelConnectionError], MaybeAwaitable]


@dataclass
class SubscriptionHandlers:
    on_insert: Optional[MessageHandler] = None
    on_update: Optional[MessageHandler] = None
    on_status_change: Optional[StateHandler] = None
    on_exhausted: Optional[ExhaustedHandler] = None


class SeenCache:
    """Bounded insertion-ordered set."""

    def __init__(self, maxlen: int = SEEN_CACHE_SIZE) -> None:
        self._items: "OrderedDict[Hashable, None]" = OrderedDict()
        self._maxlen = maxlen

    def add(self, key: Hashable) -> bool:
        """Record key. Returns False if it was already present."""
        if key in self._items:
            self._items.move_to_end(key)
            return False
        self._items[key] = None
        if len(self._items) > self._maxlen:
            self._items.popitem(last=False)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def clear(self) -> None:
        self._items.clear()


def reconnect_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Capped exponential backoff: base, 2*base, 4*base ... never above max_delay."""
    return min(base_delay * (2 ** max(attempt - 1, 0)), max_delay)


class SubscriptionHandle:
    """A live subscription for one scope. Discard after close()."""

    def __init__(
        self,
        manager: "RealtimeSubscriptionManager",
        scope: ScopeKey,
        handlers: SubscriptionHandlers,
    ) -> None:
        self.scope = scope
        self._manager = manager
        self._client = manager.client
        self._handlers = handlers
        self._state = ConnectionState.CONNECTING
        self._channel: Optional[RealtimeChannel] = None
        self._generation = 0
        self._attempts = 0
        self._exhausted = False
        self._closed = False
        self._last_error: Optional[ChannelConnectionError] = None
        self._queue: "asyncio.Queue[Tuple[str, Any]]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._removal: Optional[asyncio.Task] = None
        self._seen_inserts = SeenCache()
        self._seen_updates = SeenCache()

    # -- public surface ----------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def exhausted(self) -> bool:
        """True once reconnects ran out; only refresh() recovers."""
        return self._exhausted

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def last_error(self) -> Optional[ChannelConnectionError]:
        return self._last_error

    @property
    def channel_name(self) -> Optional[str]:
        return self._channel.name if self._channel is not None else None

    def close(self) -> None:
        """
        Release the subscription now. Pending retries are cancelled and no
        handler runs after this returns; channel removal finishes in the background.
        """
        if self._closed:
            return
        self._closed = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
        if self._consumer is not None:
            self._consumer.cancel()
        channel, self._channel = self._channel, None
        self._manager._release(self)
        if channel is not None:
            self._removal = asyncio.get_running_loop().create_task(
                self._client.remove_channel(channel)
            )
        logger.info("Closed subscription for %s", self.scope)

    async def aclose(self) -> None:
        """close() and wait until the transport confirms the channel is gone."""
        self.close()
        if self._removal is not None:
            await self._removal

    async def refresh(self) -> None:
        """Manual reconnect, e.g. after retries were exhausted."""
        if self._closed:
            raise ChannelConnectionError("Subscription is closed")
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None
        self._attempts = 0
        self._exhausted = False
        self._last_error = None
        await self._replace_channel()

    async def flush(self) -> None:
        """Wait until every queued event has been handed to the handlers."""
        if not self._closed:
            await self._queue.join()

    # -- lifecycle -----------------------------------------------------------

    def _start(self) -> None:
        self._consumer = asyncio.get_running_loop().create_task(self._consume())
        self._connect()

    def _connect(self) -> None:
        self._generation += 1
        name = f"{self.scope.channel_name(CHANNEL_PREFIX)}:{self._generation}"
        channel = self._client.channel(name)
        channel.on(
            ChangeEventType.INSERT.value,
            None,
            lambda payload, ch=channel: self._on_change(ch, ChangeEventType.INSERT, payload),
        )
        channel.on(
            ChangeEventType.UPDATE.value,
            None,
            lambda payload, ch=channel: self._on_change(ch, ChangeEventType.UPDATE, payload),
        )
        self._channel = channel
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Subscribing %s on channel %s", self.scope, name)
        channel.subscribe(
            lambda status, error, ch=channel: self._on_channel_status(ch, status, error)
        )

    async def _replace_channel(self) -> None:
        old, self._channel = self._channel, None
        if old is not None:
            # The old channel must be confirmed closed before a new one opens.
            await self._client.remove_channel(old)
        if self._closed:
            return
        self._connect()

    def _on_channel_status(
        self,
        channel: RealtimeChannel,
        status: ChannelStatus,
        error: Optional[BaseException],
    ) -> None:
        if self._closed or channel is not self._channel:
            return
        if status == ChannelStatus.SUBSCRIBED:
            self._attempts = 0
            self._exhausted = False
            self._last_error = None
            self._set_state(ConnectionState.CONNECTED)
            return
        logger.warning("Channel %s reported %s", channel.name, status.value)
        self._last_error = ChannelConnectionError(
            f"Realtime channel {status.value}", cause=error
        )
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._exhausted:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        if self._attempts >= self._manager.max_attempts:
            self._exhausted = True
            logger.error(
                "Giving up on %s after %d reconnect attempts", self.scope, self._attempts
            )
            self._queue.put_nowait(("exhausted", self._last_error))
            return
        self._attempts += 1
        delay = reconnect_delay(
            self._attempts, self._manager.base_delay, self._manager.max_delay
        )
        logger.info(
            "Reconnecting %s in %.2fs (attempt %d/%d)",
            self.scope,
            delay,
            self._attempts,
            self._manager.max_attempts,
        )
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after(delay)
        )

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._closed:
            return
        await self._replace_channel()

    # -- event path ----------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state and state != ConnectionState.CONNECTING:
            return
        self._state = state
        self._queue.put_nowait(("status", state))

    def _on_change(
        self,
        channel: RealtimeChannel,
        event_type: ChangeEventType,
        payload: Dict[str, Any],
    ) -> None:
        if self._closed or channel is not self._channel:
            return
        try:
            message = Message.model_validate(payload["new"])
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("Dropping malformed %s event: %s", event_type.value, e)
            return
        if not self.scope.matches(message):
            logger.debug("Dropping out-of-scope message %s on %s", message.id, self.scope)
            return
        if event_type == ChangeEventType.INSERT:
            fresh = self._seen_inserts.add(message.id)
        else:
            fresh = self._seen_updates.add(
                (message.id, message.message_status, message.content, message.updated_at)
            )
        if not fresh:
            logger.debug("Dropping duplicate %s for %s", event_type.value, message.id)
            return
        self._queue.put_nowait((event_type.value, message))

    async def _consume(self) -> None:
        while True:
            kind, item = await self._queue.get()
            try:
                if self._closed:
                    continue
                if kind == "status":
                    handler = self._handlers.on_status_change
                elif kind == "exhausted":
                    handler = self._handlers.on_exhausted
                elif kind == ChangeEventType.INSERT.value:
                    handler = self._handlers.on_insert
                else:
                    handler = self._handlers.on_update
                if handler is None:
                    continue
                result = handler(item)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Subscription handler failed for %s", self.scope)
            finally:
                self._queue.task_done()


class RealtimeSubscriptionManager:
    """Registry of subscriptions, at most one per scope key."""

    def __init__(
        self,
        client: RealtimeClient,
        *,
        base_delay: float = 2.0,
        max_delay: float = 10.0,
        max_attempts: int = 5,
    ) -> None:
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")
        self.client = client
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._subscriptions: Dict[ScopeKey, SubscriptionHandle] = {}
        self._locks: Dict[ScopeKey, asyncio.Lock] = {}

    @classmethod
    def from_settings(
        cls, client: RealtimeClient, settings: Settings
    ) -> "RealtimeSubscriptionManager":
        return cls(
            client,
            base_delay=settings.realtime_reconnect_base_delay,
            max_delay=settings.realtime_reconnect_max_delay,
            max_attempts=settings.realtime_max_reconnect_attempts,
        )

    async def open(
        self, scope: ScopeKey, handlers: SubscriptionHandlers
    ) -> SubscriptionHandle:
        """Open the scope's subscription, closing any prior one first."""
        lock = self._locks.setdefault(scope, asyncio.Lock())
        async with lock:
            prior = self._subscriptions.get(scope)
            if prior is not None:
                await prior.aclose()
            handle = SubscriptionHandle(self, scope, handlers)
            self._subscriptions[scope] = handle
            handle._start()
            return handle

    def get(self, scope: ScopeKey) -> Optional[SubscriptionHandle]:
        return self._subscriptions.get(scope)

    def active_count(self, scope: ScopeKey) -> int:
        handle = self._subscriptions.get(scope)
        return 1 if handle is not None and not handle.closed else 0

    def _release(self, handle: SubscriptionHandle) -> None:
        if self._subscriptions.get(handle.scope) is handle:
            del self._subscriptions[handle.scope]
            lock = self._locks.get(handle.scope)
            if lock is not None and not lock.locked():
                del self._locks[handle.scope]

    async def close_all(self) -> None:
        for handle in list(self._subscriptions.values()):
            await handle.aclose()
