"""Tests for ConversationAggregator paging and realtime patching."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from livechat.adapters.base import BaseMessageStore
from livechat.core.errors import FetchError
from livechat.schemas.conversation import ConversationSummary, UserInfo
from livechat.schemas.message import MessageStatus
from livechat.services.conversation_aggregator import ConversationAggregator
from livechat.services.status_pipeline import MessageStatusPipeline


@pytest.fixture
def store():
    s = MagicMock(spec=BaseMessageStore)
    s.conversation_page = AsyncMock(return_value=([], 0))
    s.profiles = AsyncMock(return_value={})
    return s


@pytest.mark.asyncio
async def test_first_message_from_new_actor_creates_entry_at_front(store, make_message):
    """A new visitor on page 1 appears first with one unread message."""
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)

    first = make_message("hello", session_id="S1")
    entry = aggregator.apply_insert(first)

    assert aggregator.conversations[0] is entry
    assert entry.actor_id == "S1"
    assert entry.actor_kind == "session"
    assert entry.unread_count == 1
    assert aggregator.total == 1

    second = make_message("still there?", session_id="S1")
    aggregator.apply_insert(second)

    assert len(aggregator.conversations) == 1
    assert entry.last_message == "still there?"
    assert entry.last_message_timestamp == second.created_at
    assert entry.unread_count == 2


@pytest.mark.asyncio
async def test_reapplying_same_insert_changes_nothing(store, make_message):
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)
    message = make_message(session_id="S1")

    aggregator.apply_insert(message)
    snapshot = aggregator.get("S1").model_copy()
    aggregator.apply_insert(message)

    assert aggregator.get("S1") == snapshot
    assert aggregator.total == 1


@pytest.mark.asyncio
async def test_insert_moves_conversation_to_front(store, make_message):
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)
    aggregator.apply_insert(make_message(session_id="S1"))
    aggregator.apply_insert(make_message(sender_id="u2"))
    assert [c.actor_id for c in aggregator.conversations] == ["u2", "S1"]

    aggregator.apply_insert(make_message(sender_id="admin", recipient_id="S1", is_admin=True))

    assert [c.actor_id for c in aggregator.conversations] == ["S1", "u2"]
    assert aggregator.get("S1").unread_count == 1


@pytest.mark.asyncio
async def test_older_message_does_not_replace_last_message(store, make_message):
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)
    newer = make_message("newer", session_id="S1", offset=10)
    older = make_message("older", session_id="S1", offset=1)

    aggregator.apply_insert(newer)
    aggregator.apply_insert(older)

    assert aggregator.get("S1").last_message == "newer"
    assert aggregator.get("S1").unread_count == 2


@pytest.mark.asyncio
async def test_new_actor_off_first_page_is_ignored(store, make_message):
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(2)
    assert aggregator.apply_insert(make_message(session_id="S9")) is None
    assert aggregator.conversations == []


@pytest.mark.asyncio
async def test_update_to_read_decrements_unread_without_reordering(store, make_message):
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)
    m1 = make_message(session_id="S1")
    aggregator.apply_insert(m1)
    aggregator.apply_insert(make_message(session_id="S2"))

    aggregator.apply_update(m1.model_copy(update={"message_status": MessageStatus.READ}))

    assert aggregator.get("S1").unread_count == 0
    assert [c.actor_id for c in aggregator.conversations] == ["S2", "S1"]


@pytest.mark.asyncio
async def test_load_page_builds_entries_with_profiles(store, make_message):
    last = make_message("latest", sender_id="u1")
    store.conversation_page.return_value = (
        [
            ConversationSummary(
                actor_id="u1",
                actor_kind="user",
                last_message=last,
                first_message_at=last.created_at - timedelta(minutes=5),
                unread_ids=[last.id],
            )
        ],
        11,
    )
    store.profiles.return_value = {"u1": UserInfo(username="ana", name="Ana")}
    aggregator = ConversationAggregator(store, page_size=10)

    conversations = await aggregator.load_page(1)

    assert conversations[0].user_info.username == "ana"
    assert conversations[0].unread_count == 1
    assert aggregator.total_pages == 2
    # already counted by the page load
    aggregator.apply_insert(last)
    assert aggregator.get("u1").unread_count == 1


@pytest.mark.asyncio
async def test_profile_lookup_failure_is_best_effort(store, make_message):
    last = make_message(sender_id="u1")
    store.conversation_page.return_value = (
        [
            ConversationSummary(
                actor_id="u1",
                actor_kind="user",
                last_message=last,
                first_message_at=last.created_at,
            )
        ],
        1,
    )
    store.profiles.side_effect = FetchError("profiles down")
    aggregator = ConversationAggregator(store)

    conversations = await aggregator.load_page(1)

    assert conversations[0].user_info == UserInfo()


@pytest.mark.asyncio
async def test_load_page_failure_is_recorded_and_raised(store):
    store.conversation_page.side_effect = FetchError("db down")
    aggregator = ConversationAggregator(store)
    with pytest.raises(FetchError):
        await aggregator.load_page(1)
    assert aggregator.errors[0].type == "fetch"
    assert aggregator.loading is False


@pytest.mark.asyncio
async def test_handle_insert_hydrates_new_user_entry(store, make_message):
    store.profiles.return_value = {"u5": UserInfo(name="Bea")}
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)

    entry = await aggregator.handle_insert(make_message(sender_id="u5"))

    assert entry.user_info.name == "Bea"


@pytest.mark.asyncio
async def test_handle_insert_resolves_kind_of_conversation_opened_by_reply(
    store, make_message
):
    """A reply to a signed-in visitor not yet listed asks the store how they are addressed."""
    store.actor_kind = AsyncMock(return_value="user")
    store.profiles.return_value = {"u7": UserInfo(name="Cal")}
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)

    entry = await aggregator.handle_insert(
        make_message("reply", sender_id="admin", recipient_id="u7", is_admin=True)
    )

    store.actor_kind.assert_awaited_once_with("u7")
    assert entry.actor_kind == "user"
    assert entry.user_info.name == "Cal"


@pytest.mark.asyncio
async def test_handle_insert_keeps_session_kind_when_lookup_fails(store, make_message):
    store.actor_kind = AsyncMock(side_effect=FetchError("down"))
    aggregator = ConversationAggregator(store)
    await aggregator.load_page(1)

    entry = await aggregator.handle_insert(
        make_message("reply", sender_id="admin", recipient_id="S9", is_admin=True)
    )

    assert entry.actor_kind == "session"
    store.profiles.assert_not_awaited()


@pytest.mark.asyncio
async def test_mark_conversation_read_zeroes_unread_and_records_failures(store, make_message):
    pipeline = MagicMock(spec=MessageStatusPipeline)
    pipeline.warnings = []

    async def mark_read(ids):
        pipeline.warnings.append("could not mark")
        return len(ids) - 1

    pipeline.mark_read = AsyncMock(side_effect=mark_read)
    aggregator = ConversationAggregator(store, pipeline=pipeline)
    await aggregator.load_page(1)
    aggregator.apply_insert(make_message(session_id="S1"))
    aggregator.apply_insert(make_message(session_id="S1"))

    applied = await aggregator.mark_conversation_read("S1")

    assert applied == 1
    assert aggregator.get("S1").unread_count == 0
    assert len(pipeline.mark_read.await_args.args[0]) == 2
    assert aggregator.errors[-1].type == "update"


def test_set_typing(store, make_message):
    aggregator = ConversationAggregator(store)
    aggregator.apply_insert(make_message(session_id="S1"))
    aggregator.set_typing("S1", True)
    assert aggregator.get("S1").is_typing is True
    aggregator.set_typing("nobody", True)


@pytest.mark.asyncio
async def test_seen_ids_are_bounded(store, make_message):
    aggregator = ConversationAggregator(store, seen_limit=3)
    await aggregator.load_page(1)

    for i in range(10):
        aggregator.apply_insert(make_message(session_id=f"S{i}"))

    assert len(aggregator._seen) == 3
    assert len(aggregator.conversations) == 10
