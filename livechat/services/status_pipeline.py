"""
Message Status Pipeline: sent -> delivered -> read.

"delivered" is acknowledged when the recipient side receives the realtime
insert; "read" when a message is rendered in an open conversation view that
has focus. Updates are fire-and-forget for callers, retried with bounded
backoff, and never block or hide the message itself.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, List, Optional, Set

from livechat.config import Settings
from livechat.core.errors import StatusError, StorePermissionError
from livechat.infra.logging_config import get_logger
from livechat.schemas.message import Message, MessageStatus
from livechat.services.message_gateway import MessageStoreGateway

logger = get_logger("status_pipeline")

WarningHandler = Callable[[str, MessageStatus, Exception], None]


def needs_ack_from(message: Message, viewer_is_admin: bool) -> bool:
    """Only the other party acknowledges a message."""
    return message.is_admin != viewer_is_admin


class MessageStatusPipeline:
    def __init__(
        self,
        gateway: MessageStoreGateway,
        *,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        batch_delay: float = 0.1,
        on_warning: Optional[WarningHandler] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._gateway = gateway
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._batch_delay = batch_delay
        self._on_warning = on_warning
        self._tasks: Set[asyncio.Task] = set()
        self._batch_lock = asyncio.Lock()
        self.warnings: List[str] = []

    @classmethod
    def from_settings(
        cls,
        gateway: MessageStoreGateway,
        settings: Settings,
        on_warning: Optional[WarningHandler] = None,
    ) -> "MessageStatusPipeline":
        return cls(
            gateway,
            max_attempts=settings.status_max_attempts,
            base_delay=settings.status_retry_base_delay,
            batch_delay=settings.status_batch_delay,
            on_warning=on_warning,
        )

    def acknowledge_delivered(
        self, message: Message, viewer_is_admin: bool
    ) -> Optional[asyncio.Task]:
        """Schedule a "delivered" update for an inbound message."""
        if not needs_ack_from(message, viewer_is_admin):
            return None
        if not MessageStatus.DELIVERED.advances_from(message.message_status):
            return None
        return self._spawn(self.update(message.id, MessageStatus.DELIVERED))

    def acknowledge_read(
        self, messages: Iterable[Message], viewer_is_admin: bool, focused: bool = True
    ) -> Optional[asyncio.Task]:
        """Schedule a serialized "read" batch for rendered messages."""
        pending = self.unread_for(messages, viewer_is_admin)
        if not focused or not pending:
            return None
        return self._spawn(self.mark_read([m.id for m in pending]))

    @staticmethod
    def unread_for(messages: Iterable[Message], viewer_is_admin: bool) -> List[Message]:
        return [
            m
            for m in messages
            if needs_ack_from(m, viewer_is_admin)
            and MessageStatus.READ.advances_from(m.message_status)
        ]

    async def mark_read(self, message_ids: Iterable[str]) -> int:
        """Mark messages read one at a time. Returns how many were applied."""
        applied = 0
        async with self._batch_lock:
            for index, message_id in enumerate(message_ids):
                if index:
                    await asyncio.sleep(self._batch_delay)
                if await self.update(message_id, MessageStatus.READ):
                    applied += 1
        return applied

    async def update(self, message_id: str, status: MessageStatus) -> bool:
        """
        Update with retries. Never raises for store failures: after the last
        attempt the failure becomes a warning and False is returned.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._gateway.update_status(message_id, status)
            except StorePermissionError as e:
                self._warn(message_id, status, e)
                return False
            except StatusError as e:
                if attempt >= self._max_attempts:
                    self._warn(message_id, status, e)
                    return False
                delay = self._base_delay * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying %s -> %s in %.2fs (%s)", message_id, status.value, delay, e
                )
                await asyncio.sleep(delay)

    def _warn(self, message_id: str, status: MessageStatus, error: Exception) -> None:
        text = f"Could not mark message {message_id} as {status.value}"
        self.warnings.append(text)
        logger.warning("%s: %s", text, error)
        if self._on_warning is not None:
            self._on_warning(message_id, status, error)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled update to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
