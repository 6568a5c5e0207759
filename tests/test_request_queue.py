"""Offline queue: ordering, single-flight drain, requeue, clear, eviction."""

import asyncio

import httpx
import pytest

from session_guard import (
    NetworkUnreachable,
    QueueCleared,
    RequestDescriptor,
    RequestEvicted,
    RequestQueue,
)
from tests.fixtures.virtual_clock import settle


def _ok(descriptor):
    return httpx.Response(200, json={"path": descriptor.path})


@pytest.mark.asyncio
async def test_enqueue_returns_pending_future(clock):
    queue = RequestQueue(clock=clock)
    future = queue.enqueue(RequestDescriptor("GET", "/a"))
    assert not future.done()
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_drain_is_single_flight(clock):
    queue = RequestQueue(clock=clock)
    replays = []
    release = asyncio.Event()

    async def replay(descriptor):
        replays.append(descriptor.path)
        await release.wait()
        return _ok(descriptor)

    futures = [queue.enqueue(RequestDescriptor("GET", path)) for path in ("/a", "/b")]
    first = queue.drain(replay)
    second = queue.drain(replay)
    assert first is second

    await settle()
    assert replays == ["/a"]
    release.set()
    assert await first == 2
    assert [f.result().json()["path"] for f in futures] == ["/a", "/b"]


@pytest.mark.asyncio
async def test_entries_added_during_drain_wait_unless_drain_requested(clock):
    queue = RequestQueue(clock=clock)
    queue.enqueue(RequestDescriptor("GET", "/a"))

    async def replay(descriptor):
        if descriptor.path == "/a":
            queue.enqueue(RequestDescriptor("GET", "/late"))
        return _ok(descriptor)

    assert await queue.drain(replay) == 1
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_drain_requested_while_running_picks_up_late_entries(clock):
    queue = RequestQueue(clock=clock)
    queue.enqueue(RequestDescriptor("GET", "/a"))
    late = []
    order = []

    async def replay(descriptor):
        order.append(descriptor.path)
        if descriptor.path == "/a":
            late.append(queue.enqueue(RequestDescriptor("GET", "/late")))
            queue.drain(replay)
        return _ok(descriptor)

    assert await queue.drain(replay) == 2
    assert order == ["/a", "/late"]
    assert late[0].result().json()["path"] == "/late"
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_failed_replay_rejects_only_that_entry(clock):
    queue = RequestQueue(clock=clock)
    a = queue.enqueue(RequestDescriptor("GET", "/a"))
    b = queue.enqueue(RequestDescriptor("GET", "/b"))

    async def replay(descriptor):
        if descriptor.path == "/a":
            raise ValueError("bad request")
        return _ok(descriptor)

    await queue.drain(replay)

    with pytest.raises(ValueError):
        a.result()
    assert b.result().status_code == 200


@pytest.mark.asyncio
async def test_network_loss_returns_rest_to_head_of_queue(clock):
    queue = RequestQueue(clock=clock)
    for path in ("/a", "/b", "/c"):
        queue.enqueue(RequestDescriptor("GET", path))

    async def replay(descriptor):
        if descriptor.path == "/b":
            raise NetworkUnreachable("gone")
        return _ok(descriptor)

    replayed = await queue.drain(replay)
    newer = queue.enqueue(RequestDescriptor("GET", "/d"))

    assert replayed == 1
    assert len(queue) == 3

    order = []

    async def record(descriptor):
        order.append(descriptor.path)
        return _ok(descriptor)

    await queue.drain(record)
    assert order == ["/b", "/c", "/d"]
    assert newer.done()


@pytest.mark.asyncio
async def test_clear_rejects_pending_and_in_flight_entries(clock):
    queue = RequestQueue(clock=clock)
    release = asyncio.Event()

    async def replay(descriptor):
        await release.wait()
        return _ok(descriptor)

    in_flight = queue.enqueue(RequestDescriptor("GET", "/a"))
    waiting = queue.enqueue(RequestDescriptor("GET", "/b"))
    drain = queue.drain(replay)
    await settle()
    later = queue.enqueue(RequestDescriptor("GET", "/c"))

    assert queue.clear() == 3
    release.set()
    await drain

    for future in (in_flight, waiting, later):
        with pytest.raises(QueueCleared, match="Request queue cleared"):
            future.result()
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_bound_evicts_oldest(clock):
    queue = RequestQueue(max_size=2, clock=clock)
    oldest = queue.enqueue(RequestDescriptor("GET", "/a"))
    queue.enqueue(RequestDescriptor("GET", "/b"))
    queue.enqueue(RequestDescriptor("GET", "/c"))

    with pytest.raises(RequestEvicted) as excinfo:
        oldest.result()
    assert excinfo.value.max_size == 2
    assert len(queue) == 2
    queue.clear()
