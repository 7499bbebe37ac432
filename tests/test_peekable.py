import asyncio

import pytest

from blobvault.peekable import CLOSED, PeekableReceiver, SlotOccupiedError


def _even(x):
    return x if x % 2 == 0 else None


def _pending():
    return asyncio.get_running_loop().create_future()


def _done():
    fut = asyncio.get_running_loop().create_future()
    fut.set_result(None)
    return fut


@pytest.mark.asyncio
async def test_recv_in_order_then_closed():
    queue = asyncio.Queue()
    for item in (1, 2, 3):
        queue.put_nowait(item)
    queue.put_nowait(CLOSED)
    rx = PeekableReceiver(queue)
    assert [await rx.recv() for _ in range(3)] == [1, 2, 3]
    assert await rx.recv() is None
    assert await rx.recv() is None


@pytest.mark.asyncio
async def test_push_back_is_received_first():
    queue = asyncio.Queue()
    queue.put_nowait("b")
    rx = PeekableReceiver(queue)
    rx.push_back("a")
    assert await rx.recv() == "a"
    assert await rx.recv() == "b"


@pytest.mark.asyncio
async def test_push_back_twice_fails():
    rx = PeekableReceiver(asyncio.Queue())
    rx.push_back("a")
    with pytest.raises(SlotOccupiedError) as info:
        rx.push_back("b")
    assert info.value.msg == "b"
    assert await rx.recv() == "a"


@pytest.mark.asyncio
async def test_extract_accepts_matching():
    queue = asyncio.Queue()
    queue.put_nowait(4)
    rx = PeekableReceiver(queue)
    assert await rx.extract(_even, _pending()) == 4


@pytest.mark.asyncio
async def test_extract_rejected_message_is_kept():
    queue = asyncio.Queue()
    queue.put_nowait(3)
    queue.put_nowait(6)
    rx = PeekableReceiver(queue)
    assert await rx.extract(_even, _pending()) is None
    assert await rx.recv() == 3
    assert await rx.extract(_even, _pending()) == 6


@pytest.mark.asyncio
async def test_extract_times_out_on_empty_queue():
    queue = asyncio.Queue()
    rx = PeekableReceiver(queue)
    deadline = asyncio.ensure_future(asyncio.sleep(0.01))
    assert await rx.extract(_even, deadline) is None
    queue.put_nowait(8)
    assert await rx.recv() == 8


@pytest.mark.asyncio
async def test_extract_with_expired_deadline_leaves_queue():
    queue = asyncio.Queue()
    rx = PeekableReceiver(queue)
    assert await rx.extract(_even, _done()) is None
    queue.put_nowait(2)
    assert await rx.extract(_even, _pending()) == 2


@pytest.mark.asyncio
async def test_extract_prefers_available_message_over_expired_deadline():
    queue = asyncio.Queue()
    queue.put_nowait(10)
    rx = PeekableReceiver(queue)
    assert await rx.extract(_even, _done()) == 10


@pytest.mark.asyncio
async def test_extract_after_close_returns_none():
    queue = asyncio.Queue()
    queue.put_nowait(CLOSED)
    rx = PeekableReceiver(queue)
    assert await rx.extract(_even, _pending()) is None
    assert await rx.recv() is None


@pytest.mark.asyncio
async def test_extract_waits_for_late_message():
    queue = asyncio.Queue()
    rx = PeekableReceiver(queue)

    async def later():
        await asyncio.sleep(0.01)
        queue.put_nowait(12)

    task = asyncio.ensure_future(later())
    assert await rx.extract(_even, _pending()) == 12
    await task


@pytest.mark.asyncio
async def test_shared_deadline_stops_batch():
    queue = asyncio.Queue()
    for item in (2, 4):
        queue.put_nowait(item)
    rx = PeekableReceiver(queue)
    deadline = asyncio.ensure_future(asyncio.sleep(0.02))
    got = []
    while (item := await rx.extract(_even, deadline)) is not None:
        got.append(item)
    assert got == [2, 4]
    assert deadline.done()