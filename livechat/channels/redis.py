"""
Redis-backed realtime channels for multi-process deployments.

Change events go over one pub/sub topic per namespace; presence state lives
in a hash per channel name and every `track` publishes a sync ping.
"""

from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from livechat.channels.base import (
    ChangeHandler,
    ChannelStatus,
    PresenceState,
    PresenceSyncHandler,
    StatusCallback,
    filter_matches,
)
from livechat.config import Settings
from livechat.infra.logging_config import get_logger
from livechat.schemas.realtime import ChangeEvent

logger = get_logger("realtime.redis")

PRESENCE_TTL_SECONDS = 60
PRESENCE_SYNC = "sync"


class RedisChannel:
    def __init__(self, client: "RedisRealtimeClient", name: str) -> None:
        self.name = name
        self.presence_key = uuid.uuid4().hex
        self._client = client
        self._bindings: List[Tuple[str, Optional[Dict[str, Any]], ChangeHandler]] = []
        self._presence_handlers: List[PresenceSyncHandler] = []
        self._status_callback: Optional[StatusCallback] = None
        self._presence_cache: PresenceState = {}
        self._task: Optional[asyncio.Task] = None
        self._closing = False

    def on(
        self, event: str, filter: Optional[Dict[str, Any]], handler: ChangeHandler
    ) -> "RedisChannel":
        self._bindings.append((event, filter, handler))
        return self

    def on_presence_sync(self, handler: PresenceSyncHandler) -> "RedisChannel":
        self._presence_handlers.append(handler)
        return self

    def subscribe(self, callback: Optional[StatusCallback] = None) -> "RedisChannel":
        self._status_callback = callback
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    async def track(self, state: Dict[str, Any]) -> None:
        key = self._client.presence_hash(self.name)
        redis = self._client.redis
        await redis.hset(key, self.presence_key, json.dumps(state))
        await redis.expire(key, PRESENCE_TTL_SECONDS)
        await redis.publish(self._client.presence_topic(self.name), PRESENCE_SYNC)

    def presence_state(self) -> PresenceState:
        return dict(self._presence_cache)

    async def _run(self) -> None:
        pubsub = self._client.redis.pubsub()
        changes_topic = self._client.changes_topic
        presence_topic = self._client.presence_topic(self.name)
        try:
            await pubsub.subscribe(changes_topic, presence_topic)
            self._emit_status(ChannelStatus.SUBSCRIBED)
            await self._refresh_presence()
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue
                if message.get("channel") == changes_topic:
                    self._handle_change(message.get("data"))
                else:
                    await self._refresh_presence()
        except asyncio.CancelledError:
            raise
        except (RedisError, OSError) as e:
            logger.warning("Redis channel %s failed: %s", self.name, e)
            if not self._closing:
                self._emit_status(ChannelStatus.CHANNEL_ERROR, e)
        else:
            if not self._closing:
                self._emit_status(ChannelStatus.CLOSED)
        finally:
            try:
                await pubsub.unsubscribe()
                await pubsub.aclose()
            except (RedisError, OSError) as e:
                logger.debug("Ignoring pubsub close error on %s: %s", self.name, e)

    def _handle_change(self, data: Any) -> None:
        try:
            event = ChangeEvent.model_validate_json(data)
        except ValidationError as e:
            logger.warning("Dropping malformed change event on %s: %s", self.name, e)
            return
        payload = event.model_dump(mode="json")
        for bound_event, flt, handler in list(self._bindings):
            if bound_event in (event.type.value, "*") and filter_matches(flt, event.new):
                handler(payload)

    async def _refresh_presence(self) -> None:
        raw = await self._client.redis.hgetall(self._client.presence_hash(self.name))
        self._presence_cache = {key: [json.loads(value)] for key, value in raw.items()}
        for handler in list(self._presence_handlers):
            handler()

    async def close(self) -> None:
        self._closing = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        redis = self._client.redis
        try:
            removed = await redis.hdel(self._client.presence_hash(self.name), self.presence_key)
            if removed:
                await redis.publish(self._client.presence_topic(self.name), PRESENCE_SYNC)
        except (RedisError, OSError) as e:
            logger.warning("Could not clear presence for %s: %s", self.name, e)

    def _emit_status(
        self, status: ChannelStatus, error: Optional[BaseException] = None
    ) -> None:
        if self._status_callback is not None:
            self._status_callback(status, error)


class RedisRealtimeClient:
    def __init__(self, redis: Redis, namespace: str = "livechat") -> None:
        self.redis = redis
        self.namespace = namespace

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisRealtimeClient":
        redis = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            decode_responses=True,
        )
        return cls(redis, namespace=settings.redis_namespace)

    @property
    def changes_topic(self) -> str:
        return f"{self.namespace}:changes:messages"

    def presence_topic(self, name: str) -> str:
        return f"{self.namespace}:presence:{name}"

    def presence_hash(self, name: str) -> str:
        return f"{self.namespace}:presence-state:{name}"

    def channel(self, name: str) -> RedisChannel:
        return RedisChannel(self, name)

    async def remove_channel(self, channel: RedisChannel) -> None:
        await channel.close()

    async def publish_change(self, event: ChangeEvent) -> None:
        await self.redis.publish(self.changes_topic, event.model_dump_json())

    async def close(self) -> None:
        await self.redis.aclose()
