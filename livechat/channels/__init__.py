"""Realtime channel service clients."""

from livechat.channels.base import ChannelStatus, RealtimeChannel, RealtimeClient
from livechat.channels.memory import InMemoryRealtimeClient
from livechat.config import Settings


def build_realtime_client(settings: Settings) -> RealtimeClient:
    """Pick the realtime backend from settings."""
    backend = (settings.realtime_backend or "memory").lower()
    if backend == "redis":
        from livechat.channels.redis import RedisRealtimeClient

        return RedisRealtimeClient.from_settings(settings)
    if backend != "memory":
        raise ValueError(f"Unknown realtime backend: {settings.realtime_backend}")
    return InMemoryRealtimeClient()


__all__ = [
    "ChannelStatus",
    "InMemoryRealtimeClient",
    "RealtimeChannel",
    "RealtimeClient",
    "build_realtime_client",
]
