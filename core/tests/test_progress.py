"""
Tests for the bounded progress channel.
"""

import asyncio

import pytest

from intentflow.runtime.progress import ProgressChannel, ProgressEvent, ProgressStatus


def event(node_id, status=ProgressStatus.RUNNING):
    return ProgressEvent(node_id=node_id, status=status)


def test_drain_returns_events_in_order():
    channel = ProgressChannel()
    channel.emit(event("a"))
    channel.emit(event("b", ProgressStatus.SUCCEEDED))
    assert [(e.node_id, e.status) for e in channel.drain()] == [
        ("a", ProgressStatus.RUNNING),
        ("b", ProgressStatus.SUCCEEDED),
    ]
    assert channel.drain() == []


def test_overflow_drops_oldest():
    channel = ProgressChannel(maxsize=2)
    for node_id in ("a", "b", "c"):
        channel.emit(event(node_id))
    assert [e.node_id for e in channel.drain()] == ["b", "c"]
    assert channel.dropped == 1


def test_emit_after_close_is_ignored():
    channel = ProgressChannel()
    channel.close()
    channel.emit(event("late"))
    assert channel.drain() == []


def test_event_to_dict():
    data = ProgressEvent(node_id="a", status=ProgressStatus.RETRYING, data={"attempt": 1}).to_dict()
    assert data["status"] == "retrying"
    assert data["data"] == {"attempt": 1}


def test_rejects_zero_size():
    with pytest.raises(ValueError):
        ProgressChannel(maxsize=0)


@pytest.mark.asyncio
async def test_async_iteration_until_close():
    channel = ProgressChannel()
    received = []

    async def consume():
        async for item in channel:
            received.append(item.node_id)

    consumer = asyncio.create_task(consume())
    await asyncio.sleep(0)
    channel.emit(event("a"))
    await asyncio.sleep(0)
    channel.emit(event("b"))
    channel.close()
    await asyncio.wait_for(consumer, timeout=1)

    assert received == ["a", "b"]
