"""Tests for MessageStatusPipeline retries, warnings and serialized read batches."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from livechat.core.errors import StatusError, StorePermissionError
from livechat.schemas.message import MessageStatus
from livechat.services.message_gateway import MessageStoreGateway
from livechat.services.status_pipeline import MessageStatusPipeline, needs_ack_from


@pytest.fixture
def gateway():
    gw = MagicMock(spec=MessageStoreGateway)
    gw.update_status = AsyncMock(return_value=True)
    return gw


def _pipeline(gateway, **kwargs):
    kwargs.setdefault("base_delay", 0)
    kwargs.setdefault("batch_delay", 0)
    return MessageStatusPipeline(gateway, **kwargs)


def test_only_the_other_side_acknowledges(make_message):
    visitor_msg = make_message(session_id="S1")
    admin_msg = make_message(sender_id="a", recipient_id="S1", is_admin=True)
    assert needs_ack_from(visitor_msg, viewer_is_admin=True)
    assert not needs_ack_from(visitor_msg, viewer_is_admin=False)
    assert needs_ack_from(admin_msg, viewer_is_admin=False)


@pytest.mark.asyncio
async def test_update_retries_then_succeeds(gateway):
    gateway.update_status.side_effect = [StatusError("flaky"), True]
    pipeline = _pipeline(gateway)
    assert await pipeline.update("m1", MessageStatus.READ) is True
    assert gateway.update_status.await_count == 2
    assert pipeline.warnings == []


@pytest.mark.asyncio
async def test_update_gives_up_with_warning(gateway):
    """After the last attempt the failure becomes a warning, never an exception."""
    gateway.update_status.side_effect = StatusError("down")
    on_warning = MagicMock()
    pipeline = _pipeline(gateway, max_attempts=3, on_warning=on_warning)

    assert await pipeline.update("m1", MessageStatus.DELIVERED) is False

    assert gateway.update_status.await_count == 3
    assert len(pipeline.warnings) == 1
    message_id, status, error = on_warning.call_args.args
    assert (message_id, status) == ("m1", MessageStatus.DELIVERED)
    assert isinstance(error, StatusError)


@pytest.mark.asyncio
async def test_permission_error_is_not_retried(gateway):
    gateway.update_status.side_effect = StorePermissionError("denied")
    pipeline = _pipeline(gateway)
    assert await pipeline.update("m1", MessageStatus.READ) is False
    assert gateway.update_status.await_count == 1
    assert len(pipeline.warnings) == 1


@pytest.mark.asyncio
async def test_mark_read_runs_one_update_at_a_time(gateway):
    in_flight = 0
    peak = 0
    order = []

    async def update_status(message_id, status):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.005)
        order.append(message_id)
        in_flight -= 1
        return message_id != "m2"

    gateway.update_status.side_effect = update_status
    pipeline = _pipeline(gateway)

    results = await asyncio.gather(
        pipeline.mark_read(["m1", "m2"]), pipeline.mark_read(["m3"])
    )

    assert peak == 1
    assert order == ["m1", "m2", "m3"]
    assert results == [1, 1]


@pytest.mark.asyncio
async def test_acknowledge_delivered_only_for_inbound(gateway, make_message):
    pipeline = _pipeline(gateway)
    own = make_message(session_id="S1")
    reply = make_message(sender_id="a", recipient_id="S1", is_admin=True)
    already = make_message(
        sender_id="a", recipient_id="S1", is_admin=True, status=MessageStatus.READ
    )

    assert pipeline.acknowledge_delivered(own, viewer_is_admin=False) is None
    assert pipeline.acknowledge_delivered(already, viewer_is_admin=False) is None
    task = pipeline.acknowledge_delivered(reply, viewer_is_admin=False)
    await task

    gateway.update_status.assert_awaited_once_with(reply.id, MessageStatus.DELIVERED)


@pytest.mark.asyncio
async def test_acknowledge_read_requires_focus(gateway, make_message):
    pipeline = _pipeline(gateway)
    reply = make_message(sender_id="a", recipient_id="S1", is_admin=True)

    assert pipeline.acknowledge_read([reply], viewer_is_admin=False, focused=False) is None
    pipeline.acknowledge_read([reply], viewer_is_admin=False, focused=True)
    await pipeline.drain()

    gateway.update_status.assert_awaited_once_with(reply.id, MessageStatus.READ)


@pytest.mark.asyncio
async def test_aclose_cancels_scheduled_updates(gateway, make_message):
    async def never_finishes(message_id, status):
        await asyncio.sleep(10)

    gateway.update_status.side_effect = never_finishes
    pipeline = _pipeline(gateway)
    task = pipeline.acknowledge_delivered(
        make_message(sender_id="a", recipient_id="S1", is_admin=True), viewer_is_admin=False
    )
    await asyncio.sleep(0)
    await pipeline.aclose()
    assert task.cancelled()
