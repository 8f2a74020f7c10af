"""Tests for typing presence: staleness, debounce and per-scope isolation."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from livechat.channels.memory import InMemoryRealtimeClient
from livechat.core.errors import ChannelConnectionError
from livechat.core.identity import AnonymousIdentity, AuthenticatedIdentity
from livechat.core.scope_key import ScopeKey
from livechat.schemas.realtime import TypingIndicator
from livechat.services.typing_presence import TypingPresenceTracker, active_indicators

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
VISITOR = AnonymousIdentity(session_id="S1")
ADMIN = AuthenticatedIdentity(user_id="admin-1")


def _indicator(actor_id, seconds_ago, is_typing=True):
    return TypingIndicator(
        actor_id=actor_id, is_typing=is_typing, last_typed=NOW - timedelta(seconds=seconds_ago)
    )


def test_stale_indicator_is_not_typing_whatever_its_flag():
    """An indicator older than the window counts as stopped."""
    fresh = _indicator("a", 2)
    stale = _indicator("b", 11)
    stopped = _indicator("c", 1, is_typing=False)
    assert active_indicators([fresh, stale, stopped], NOW, 10.0) == [fresh]


def test_active_indicators_exclude_viewer():
    assert active_indicators([_indicator("me", 1)], NOW, 10.0, exclude_actor="me") == []


async def _tracker(client, scope, **kwargs):
    kwargs.setdefault("idle_timeout", 0.05)
    tracker = TypingPresenceTracker(client, scope, **kwargs)
    await tracker.start(timeout=1)
    return tracker


@pytest.mark.asyncio
async def test_keystroke_announces_then_stops_after_idle():
    client = InMemoryRealtimeClient()
    scope = ScopeKey.for_session("S1")
    visitor = await _tracker(client, scope)
    admin = await _tracker(client, scope)

    visitor.keystroke(VISITOR)
    await asyncio.sleep(0.01)
    assert admin.typing_actors(exclude_actor=ADMIN.actor_id) == ["S1"]
    assert visitor.typing_actors(exclude_actor=VISITOR.actor_id) == []

    await asyncio.sleep(0.1)
    assert admin.typing_actors(exclude_actor=ADMIN.actor_id) == []

    await visitor.close()
    await admin.close()


@pytest.mark.asyncio
async def test_rapid_keystrokes_broadcast_once():
    """Keystrokes inside the refresh window do not re-announce."""
    client = InMemoryRealtimeClient()
    tracker = await _tracker(client, ScopeKey.for_session("S1"), idle_timeout=1.0)
    calls = []
    original = tracker.set_typing

    async def counting(identity, is_typing, is_admin=False):
        calls.append(is_typing)
        await original(identity, is_typing, is_admin)

    tracker.set_typing = counting
    for _ in range(5):
        tracker.keystroke(VISITOR)
    await asyncio.sleep(0.01)

    assert calls == [True]
    await tracker.close()


@pytest.mark.asyncio
async def test_presence_is_scoped_per_conversation():
    client = InMemoryRealtimeClient()
    s1 = await _tracker(client, ScopeKey.for_session("S1"))
    s2 = await _tracker(client, ScopeKey.for_session("S2"))

    s1.keystroke(VISITOR)
    await asyncio.sleep(0.01)

    assert s2.typing_actors() == []
    await s1.close()
    await s2.close()


@pytest.mark.asyncio
async def test_staleness_applies_to_reader_clock():
    """A reader whose clock is past the window sees no one typing."""
    client = InMemoryRealtimeClient()
    scope = ScopeKey.for_session("S1")
    writer = await _tracker(client, scope, idle_timeout=5.0)
    late = {"now": datetime.now(timezone.utc) + timedelta(seconds=20)}
    reader = await _tracker(client, scope, clock=lambda: late["now"])

    await writer.set_typing(VISITOR, True)

    assert reader.indicators()[0].is_typing is True
    assert reader.typing_actors() == []
    await writer.close()
    await reader.close()


@pytest.mark.asyncio
async def test_subscribe_streams_indicators_until_close():
    client = InMemoryRealtimeClient()
    scope = ScopeKey.for_session("S1")
    visitor = await _tracker(client, scope)
    admin = await _tracker(client, scope)

    stream = admin.subscribe()
    first = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)
    await visitor.set_typing(VISITOR, True)

    indicator = await asyncio.wait_for(first, 1)
    assert indicator.actor_id == "S1"
    assert indicator.is_typing is True

    await admin.close()
    with pytest.raises(StopAsyncIteration):
        await asyncio.wait_for(stream.__anext__(), 1)
    await visitor.close()


@pytest.mark.asyncio
async def test_set_typing_before_start_raises():
    tracker = TypingPresenceTracker(InMemoryRealtimeClient(), ScopeKey.for_session("S1"))
    with pytest.raises(ChannelConnectionError):
        await tracker.set_typing(VISITOR, True)


@pytest.mark.asyncio
async def test_start_times_out_when_channel_never_joins():
    client = InMemoryRealtimeClient(auto_confirm=False)
    tracker = TypingPresenceTracker(client, ScopeKey.for_session("S1"))
    with pytest.raises(ChannelConnectionError):
        await tracker.start(timeout=0.01)
