"""
Message list owned by one conversation view.

Entries are either Pending (sent locally, no store id yet) or Confirmed
(store-assigned id). Pending entries are reconciled only by the temporary id
handed out at send time, never by content. Confirmed entries are keyed by
message id, so re-delivered inserts and updates are idempotent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Literal, Optional, Union

from livechat.schemas.message import Message

PENDING_PREFIX = "pending-"


@dataclass(frozen=True)
class PendingEntry:
    temp_id: str
    content: str
    created_at: datetime
    is_admin: bool = False
    kind: Literal["pending"] = field(default="pending", init=False)

    @property
    def key(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class ConfirmedEntry:
    message: Message
    kind: Literal["confirmed"] = field(default="confirmed", init=False)

    @property
    def key(self) -> str:
        return self.message.id

    @property
    def created_at(self) -> datetime:
        return self.message.created_at


MessageEntry = Union[PendingEntry, ConfirmedEntry]


def merge_update(current: Message, incoming: Message) -> Message:
    """Apply an update without ever moving the status backwards."""
    status = current.message_status
    if incoming.message_status.advances_from(status):
        status = incoming.message_status
    return incoming.model_copy(update={"message_status": status})


class MessageList:
    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._confirmed: Dict[str, Message] = {}
        self._pending: Dict[str, PendingEntry] = {}
        for message in messages:
            self.apply_insert(message)

    def __len__(self) -> int:
        return len(self._confirmed) + len(self._pending)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._confirmed or message_id in self._pending

    def get(self, message_id: str) -> Optional[Message]:
        return self._confirmed.get(message_id)

    @property
    def messages(self) -> List[Message]:
        """Confirmed messages in render order."""
        return sorted(self._confirmed.values(), key=lambda m: (m.created_at, m.id))

    @property
    def pending(self) -> List[PendingEntry]:
        return sorted(self._pending.values(), key=lambda p: p.created_at)

    @property
    def entries(self) -> List[MessageEntry]:
        """Everything to render, by created_at; pending sorts by local send time."""
        items: List[MessageEntry] = [ConfirmedEntry(m) for m in self._confirmed.values()]
        items.extend(self._pending.values())
        return sorted(items, key=lambda e: (e.created_at, e.key))

    def add_pending(
        self, content: str, is_admin: bool = False, now: Optional[datetime] = None
    ) -> PendingEntry:
        entry = PendingEntry(
            temp_id=f"{PENDING_PREFIX}{uuid.uuid4()}",
            content=content,
            created_at=now or datetime.now(timezone.utc),
            is_admin=is_admin,
        )
        self._pending[entry.temp_id] = entry
        return entry

    def confirm(self, temp_id: str, message: Message) -> None:
        """Swap a pending entry for its stored message. The echo may already be here."""
        self._pending.pop(temp_id, None)
        self.apply_insert(message)

    def fail(self, temp_id: str) -> Optional[PendingEntry]:
        """Drop a pending entry whose send failed."""
        return self._pending.pop(temp_id, None)

    def apply_insert(self, message: Message) -> bool:
        """Add a confirmed message. Returns False if it was already present."""
        current = self._confirmed.get(message.id)
        if current is not None:
            self._confirmed[message.id] = merge_update(current, message)
            return False
        self._confirmed[message.id] = message
        return True

    def apply_update(self, message: Message) -> bool:
        """Patch a known message. Updates for unknown ids are ignored."""
        current = self._confirmed.get(message.id)
        if current is None:
            return False
        merged = merge_update(current, message)
        if merged == current:
            return False
        self._confirmed[message.id] = merged
        return True

    def merge_fetched(self, messages: Iterable[Message]) -> None:
        """Merge a fresh fetch. Pending entries survive."""
        for message in messages:
            self.apply_insert(message)
