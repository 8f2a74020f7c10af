"""Tests for MessageList: pending/confirmed reconciliation, ordering and status merging."""

from datetime import timedelta

from livechat.core.message_list import (
    PENDING_PREFIX,
    ConfirmedEntry,
    MessageList,
    PendingEntry,
    merge_update,
)
from livechat.schemas.message import MessageStatus


def test_messages_render_in_created_at_order_regardless_of_arrival(make_message):
    """Arrival order does not matter; render order is created_at ascending."""
    early = make_message(offset=1)
    middle = make_message(offset=2)
    late = make_message(offset=3)
    messages = MessageList([late, early])
    messages.apply_insert(middle)
    assert [m.id for m in messages.messages] == [early.id, middle.id, late.id]


def test_duplicate_insert_keeps_single_entry(make_message):
    """Re-delivering the same insert does not add a second entry."""
    message = make_message()
    messages = MessageList()
    assert messages.apply_insert(message) is True
    assert messages.apply_insert(message) is False
    assert len(messages) == 1


def test_pending_is_replaced_on_confirm(make_message):
    messages = MessageList()
    pending = messages.add_pending("hello")
    assert pending.temp_id.startswith(PENDING_PREFIX)
    assert pending.temp_id in messages

    stored = make_message("hello")
    messages.confirm(pending.temp_id, stored)

    assert messages.pending == []
    assert [m.id for m in messages.messages] == [stored.id]


def test_echo_before_confirm_does_not_duplicate(make_message):
    """The realtime echo may land before the send call returns."""
    messages = MessageList()
    pending = messages.add_pending("hello")
    stored = make_message("hello")

    messages.apply_insert(stored)
    messages.confirm(pending.temp_id, stored)

    assert len(messages) == 1
    assert messages.get(stored.id) == stored


def test_pending_entries_with_same_content_are_independent(make_message):
    """Reconciliation is by temporary id, never by content."""
    messages = MessageList()
    first = messages.add_pending("same")
    second = messages.add_pending("same")
    messages.confirm(first.temp_id, make_message("same"))
    assert [p.temp_id for p in messages.pending] == [second.temp_id]


def test_fail_removes_pending():
    messages = MessageList()
    pending = messages.add_pending("oops")
    assert messages.fail(pending.temp_id) == pending
    assert len(messages) == 0
    assert messages.fail(pending.temp_id) is None


def test_status_never_moves_backwards(make_message):
    """read followed by a late delivered update stays read."""
    message = make_message()
    messages = MessageList([message])

    read = message.model_copy(update={"message_status": MessageStatus.READ})
    delivered = message.model_copy(update={"message_status": MessageStatus.DELIVERED})

    assert messages.apply_update(read) is True
    assert messages.apply_update(delivered) is False
    assert messages.get(message.id).message_status == MessageStatus.READ


def test_update_for_unknown_id_is_ignored(make_message):
    messages = MessageList()
    assert messages.apply_update(make_message()) is False
    assert len(messages) == 0


def test_merge_update_keeps_new_content_but_higher_status(make_message):
    current = make_message("old", status=MessageStatus.READ)
    incoming = current.model_copy(
        update={"content": "edited", "message_status": MessageStatus.SENT}
    )
    merged = merge_update(current, incoming)
    assert merged.content == "edited"
    assert merged.message_status == MessageStatus.READ


def test_entries_interleave_pending_by_local_time(make_message):
    confirmed = make_message(offset=0)
    messages = MessageList([confirmed])
    pending = messages.add_pending("later", now=confirmed.created_at + timedelta(seconds=5))

    entries = messages.entries

    assert isinstance(entries[0], ConfirmedEntry)
    assert entries[0].key == confirmed.id
    assert isinstance(entries[1], PendingEntry)
    assert entries[1].key == pending.temp_id


def test_merge_fetched_keeps_pending(make_message):
    messages = MessageList()
    pending = messages.add_pending("draft")
    messages.merge_fetched([make_message(), make_message()])
    assert len(messages) == 3
    assert messages.pending[0].temp_id == pending.temp_id
