"""
Typing presence over the realtime presence facility.

Presence is scoped per conversation (one presence channel per scope key) and
is never written to the store. Every tracked state carries its own
``last_typed`` timestamp so readers can expire indicators whose "stopped"
broadcast was missed.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Iterable, List, Optional, Set

from pydantic import ValidationError

from livechat.channels.base import ChannelStatus, RealtimeChannel, RealtimeClient
from livechat.config import Settings
from livechat.core.errors import ChannelConnectionError
from livechat.core.identity import Identity
from livechat.core.scope_key import ScopeKey
from livechat.infra.logging_config import get_logger
from livechat.schemas.realtime import TypingIndicator

logger = get_logger("typing_presence")

CHANNEL_PREFIX = "typing"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def active_indicators(
    indicators: Iterable[TypingIndicator],
    now: datetime,
    window: float,
    exclude_actor: Optional[str] = None,
) -> List[TypingIndicator]:
    """Indicators that count as typing right now; stale ones never do."""
    return [
        indicator
        for indicator in indicators
        if indicator.is_active(now, window) and indicator.actor_id != exclude_actor
    ]


class TypingPresenceTracker:
    def __init__(
        self,
        client: RealtimeClient,
        scope: ScopeKey,
        *,
        idle_timeout: float = 1.5,
        stale_after: float = 10.0,
        clock: Clock = utcnow,
    ) -> None:
        self.scope = scope
        self._client = client
        self._idle_timeout = idle_timeout
        self._stale_after = stale_after
        self._clock = clock
        self._channel: Optional[RealtimeChannel] = None
        self._joined = asyncio.Event()
        self._closed = False
        self._subscribers: Set["asyncio.Queue[Optional[TypingIndicator]]"] = set()
        self._idle_task: Optional[asyncio.Task] = None
        self._announced_at: Optional[datetime] = None

    @classmethod
    def from_settings(
        cls, client: RealtimeClient, scope: ScopeKey, settings: Settings
    ) -> "TypingPresenceTracker":
        return cls(
            client,
            scope,
            idle_timeout=settings.typing_idle_timeout,
            stale_after=settings.typing_stale_after,
        )

    @property
    def channel_name(self) -> str:
        return self.scope.channel_name(CHANNEL_PREFIX)

    async def start(self, timeout: float = 10.0) -> None:
        """Join the scope's presence channel and wait for confirmation."""
        if self._channel is not None:
            return
        channel = self._client.channel(self.channel_name)
        channel.on_presence_sync(self._on_sync)
        self._channel = channel
        channel.subscribe(self._on_status)
        try:
            await asyncio.wait_for(self._joined.wait(), timeout)
        except asyncio.TimeoutError as e:
            raise ChannelConnectionError(
                f"Presence channel {self.channel_name} did not join", cause=e
            ) from e

    def _on_status(self, status: ChannelStatus, error: Optional[BaseException]) -> None:
        if status == ChannelStatus.SUBSCRIBED:
            self._joined.set()
        elif not self._closed:
            self._joined.clear()
            logger.warning(
                "Presence channel %s reported %s", self.channel_name, status.value
            )

    async def set_typing(
        self, identity: Identity, is_typing: bool, is_admin: bool = False
    ) -> None:
        """Broadcast this actor's typing state with a fresh timestamp."""
        if self._channel is None or self._closed:
            raise ChannelConnectionError("Typing presence is not started")
        now = self._clock()
        indicator = TypingIndicator(
            actor_id=identity.actor_id,
            is_typing=is_typing,
            last_typed=now,
            is_admin=is_admin,
        )
        await self._channel.track(indicator.model_dump(mode="json"))
        self._announced_at = now if is_typing else None

    def keystroke(self, identity: Identity, is_admin: bool = False) -> None:
        """
        Record a keystroke.

        The first keystroke after an idle period announces typing at once.
        "Stopped" is only announced after idle_timeout without keystrokes.
        """
        if self._closed:
            return
        loop = asyncio.get_running_loop()
        now = self._clock()
        refresh_after = timedelta(seconds=self._stale_after / 2)
        if self._announced_at is None or now - self._announced_at >= refresh_after:
            self._announced_at = now
            loop.create_task(self._safe_set(identity, True, is_admin))
        if self._idle_task is not None:
            self._idle_task.cancel()
        self._idle_task = loop.create_task(self._stop_after_idle(identity, is_admin))

    async def stop_typing(self, identity: Identity, is_admin: bool = False) -> None:
        """Announce "stopped" now, e.g. when the message is sent."""
        if self._idle_task is not None:
            self._idle_task.cancel()
            self._idle_task = None
        if self._announced_at is not None:
            await self._safe_set(identity, False, is_admin)

    async def _stop_after_idle(self, identity: Identity, is_admin: bool) -> None:
        await asyncio.sleep(self._idle_timeout)
        self._idle_task = None
        await self._safe_set(identity, False, is_admin)

    async def _safe_set(self, identity: Identity, is_typing: bool, is_admin: bool) -> None:
        try:
            await self.set_typing(identity, is_typing, is_admin)
        except (ChannelConnectionError, RuntimeError) as e:
            # Presence is best effort; a missed broadcast expires via staleness.
            logger.warning("Typing broadcast failed on %s: %s", self.channel_name, e)

    def indicators(self) -> List[TypingIndicator]:
        if self._channel is None:
            return []
        found: List[TypingIndicator] = []
        for entries in self._channel.presence_state().values():
            for state in entries:
                try:
                    found.append(TypingIndicator.model_validate(state))
                except ValidationError:
                    logger.warning("Ignoring malformed presence state on %s", self.channel_name)
        return found

    def typing_actors(self, exclude_actor: Optional[str] = None) -> List[str]:
        now = self._clock()
        return [
            indicator.actor_id
            for indicator in active_indicators(
                self.indicators(), now, self._stale_after, exclude_actor
            )
        ]

    def is_anyone_typing(self, exclude_actor: Optional[str] = None) -> bool:
        return bool(self.typing_actors(exclude_actor))

    async def subscribe(self) -> AsyncIterator[TypingIndicator]:
        """Stream of indicators as presence syncs arrive. Ends on close()."""
        queue: "asyncio.Queue[Optional[TypingIndicator]]" = asyncio.Queue()
        self._subscribers.add(queue)
        try:
            while True:
                indicator = await queue.get()
                if indicator is None:
                    return
                yield indicator
        finally:
            self._subscribers.discard(queue)

    def _on_sync(self) -> None:
        if self._closed:
            return
        current = self.indicators()
        for queue in list(self._subscribers):
            for indicator in current:
                queue.put_nowait(indicator)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._idle_task is not None:
            self._idle_task.cancel()
            self._idle_task = None
        for queue in list(self._subscribers):
            queue.put_nowait(None)
        channel, self._channel = self._channel, None
        if channel is not None:
            await self._client.remove_channel(channel)
