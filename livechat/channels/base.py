"""
Realtime channel service contracts.

Mirrors the hosted provider's surface: `client.channel(name).on(...).subscribe(cb)`,
`remove_channel`, and a presence facility. Delivery is at-least-once and
filters are best effort, so consumers must scope-filter and de-duplicate.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from livechat.schemas.realtime import ChangeEvent


class ChannelStatus(str, Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    TIMED_OUT = "TIMED_OUT"
    CLOSED = "CLOSED"


ChangeHandler = Callable[[Dict[str, Any]], None]
StatusCallback = Callable[[ChannelStatus, Optional[BaseException]], None]
PresenceSyncHandler = Callable[[], None]
PresenceState = Dict[str, List[Dict[str, Any]]]


def filter_matches(filter: Optional[Dict[str, Any]], record: Dict[str, Any]) -> bool:
    """Column-equality filter as understood by the transport. None matches all."""
    if not filter:
        return True
    return all(record.get(column) == value for column, value in filter.items())


class RealtimeChannel(Protocol):
    name: str

    def on(
        self, event: str, filter: Optional[Dict[str, Any]], handler: ChangeHandler
    ) -> "RealtimeChannel": ...

    def on_presence_sync(self, handler: PresenceSyncHandler) -> "RealtimeChannel": ...

    def subscribe(
        self, callback: Optional[StatusCallback] = None
    ) -> "RealtimeChannel": ...

    async def track(self, state: Dict[str, Any]) -> None: ...

    def presence_state(self) -> PresenceState: ...


class RealtimeClient(Protocol):
    def channel(self, name: str) -> RealtimeChannel: ...

    async def remove_channel(self, channel: RealtimeChannel) -> None: ...

    async def publish_change(self, event: ChangeEvent) -> None: ...

    async def close(self) -> None: ...
