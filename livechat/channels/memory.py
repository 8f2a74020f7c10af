"""In-process realtime broker. Default backend for single-node runs and tests."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional, Tuple

from livechat.channels.base import (
    ChangeHandler,
    ChannelStatus,
    PresenceState,
    PresenceSyncHandler,
    StatusCallback,
    filter_matches,
)
from livechat.infra.logging_config import get_logger
from livechat.schemas.realtime import ChangeEvent

logger = get_logger("realtime.memory")

_LIVE_STATES = ("joining", "joined")


class InMemoryChannel:
    def __init__(self, client: "InMemoryRealtimeClient", name: str) -> None:
        self.name = name
        self.presence_key = uuid.uuid4().hex
        self.state = "idle"
        self._client = client
        self._bindings: List[Tuple[str, Optional[Dict[str, Any]], ChangeHandler]] = []
        self._presence_handlers: List[PresenceSyncHandler] = []
        self._status_callback: Optional[StatusCallback] = None

    def on(
        self, event: str, filter: Optional[Dict[str, Any]], handler: ChangeHandler
    ) -> "InMemoryChannel":
        self._bindings.append((event, filter, handler))
        return self

    def on_presence_sync(self, handler: PresenceSyncHandler) -> "InMemoryChannel":
        self._presence_handlers.append(handler)
        return self

    def subscribe(self, callback: Optional[StatusCallback] = None) -> "InMemoryChannel":
        self._status_callback = callback
        self.state = "joining"
        self._client._join(self)
        return self

    async def track(self, state: Dict[str, Any]) -> None:
        if self.state != "joined":
            raise RuntimeError(f"Channel {self.name} is not joined")
        self._client._track(self, state)

    def presence_state(self) -> PresenceState:
        return self._client._presence_state(self.name)

    def _emit_status(
        self, status: ChannelStatus, error: Optional[BaseException] = None
    ) -> None:
        if self._status_callback is not None:
            self._status_callback(status, error)

    def _dispatch(self, event: ChangeEvent) -> None:
        payload = event.model_dump(mode="json")
        for bound_event, flt, handler in list(self._bindings):
            if bound_event not in (event.type.value, "*"):
                continue
            if filter_matches(flt, event.new):
                handler(payload)

    def _sync_presence(self) -> None:
        for handler in list(self._presence_handlers):
            handler()


class InMemoryRealtimeClient:
    """
    Broadcasts change events to every joined channel.

    `auto_confirm=False` leaves channels in "joining" until `confirm_pending()`
    is called, which lets tests hold the subscribe handshake open.
    """

    def __init__(self, auto_confirm: bool = True) -> None:
        self.auto_confirm = auto_confirm
        self._channels: List[InMemoryChannel] = []
        self._presence: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.published: List[ChangeEvent] = []

    def channel(self, name: str) -> InMemoryChannel:
        return InMemoryChannel(self, name)

    def _join(self, channel: InMemoryChannel) -> None:
        self._channels.append(channel)
        if self.auto_confirm:
            asyncio.get_running_loop().call_soon(self._confirm, channel)

    def _confirm(self, channel: InMemoryChannel) -> None:
        if channel.state != "joining":
            return
        channel.state = "joined"
        channel._emit_status(ChannelStatus.SUBSCRIBED)
        channel._sync_presence()

    def confirm_pending(self) -> None:
        for channel in list(self._channels):
            self._confirm(channel)

    async def remove_channel(self, channel: InMemoryChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)
        was_live = channel.state in _LIVE_STATES
        channel.state = "closed"
        topic = self._presence.get(channel.name)
        if topic is not None and topic.pop(channel.presence_key, None) is not None:
            self._sync_topic(channel.name)
        if was_live:
            channel._emit_status(ChannelStatus.CLOSED)
        await asyncio.sleep(0)

    async def publish_change(self, event: ChangeEvent) -> None:
        self.published.append(event)
        for channel in list(self._channels):
            if channel.state == "joined":
                channel._dispatch(event)

    async def close(self) -> None:
        for channel in list(self._channels):
            await self.remove_channel(channel)

    def _track(self, channel: InMemoryChannel, state: Dict[str, Any]) -> None:
        self._presence.setdefault(channel.name, {})[channel.presence_key] = dict(state)
        self._sync_topic(channel.name)

    def _presence_state(self, name: str) -> PresenceState:
        return {key: [dict(state)] for key, state in self._presence.get(name, {}).items()}

    def _sync_topic(self, name: str) -> None:
        for channel in list(self._channels):
            if channel.name == name and channel.state == "joined":
                channel._sync_presence()

    # -- fault injection and introspection --------------------------------

    def fail_channel(
        self,
        name_prefix: str,
        status: ChannelStatus = ChannelStatus.CHANNEL_ERROR,
    ) -> int:
        """Drop every live channel whose name starts with the prefix."""
        failed = 0
        for channel in list(self._channels):
            if channel.name.startswith(name_prefix) and channel.state in _LIVE_STATES:
                channel.state = "errored"
                logger.info("Injected %s on %s", status.value, channel.name)
                channel._emit_status(status, RuntimeError(status.value))
                failed += 1
        return failed

    def active_channels(self, name_prefix: str = "") -> List[str]:
        return [
            c.name
            for c in self._channels
            if c.name.startswith(name_prefix) and c.state in _LIVE_STATES
        ]
