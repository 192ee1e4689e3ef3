from __future__ import annotations

import asyncio
import threading
import time

import pytest

from pyrailsense._publisher import ChangePublisher
from pyrailsense.state.events import EntityKind, StateChange


def _change(entity_id: int, value: str) -> StateChange:
    return StateChange(entity_kind=EntityKind.BLOCK, entity_id=entity_id, new_value=value)


@pytest.mark.asyncio
async def test_publisher_delivers_in_fifo_order_to_async_sink() -> None:
    received: list[tuple[int, str]] = []

    async def sink(change: StateChange) -> None:
        await asyncio.sleep(0)
        received.append((change.entity_id, change.new_value))

    publisher = ChangePublisher(sink, maxsize=4)
    publisher.start()
    for value in ("STANDING", "RUNNING", "OFF"):
        assert await publisher.publish(_change(1, value))
    await publisher.stop(flush=True)

    assert received == [(1, "STANDING"), (1, "RUNNING"), (1, "OFF")]
    assert publisher.published == 3
    assert not publisher.is_running


@pytest.mark.asyncio
async def test_publisher_drops_after_timeout_when_sink_is_stalled() -> None:
    release = asyncio.Event()
    dropped: list[StateChange] = []

    async def stalled_sink(_change: StateChange) -> None:
        await release.wait()

    publisher = ChangePublisher(stalled_sink, maxsize=1, put_timeout=0.05, on_drop=dropped.append)
    publisher.start()

    assert await publisher.publish(_change(1, "STANDING"))
    while publisher.pending:
        await asyncio.sleep(0)  # worker takes the first change and stalls
    assert await publisher.publish(_change(2, "STANDING"))  # fills the queue
    assert not await publisher.publish(_change(3, "STANDING"))

    assert publisher.dropped == 1
    assert [c.entity_id for c in dropped] == [3]

    release.set()
    await publisher.stop(flush=True)
    assert publisher.published == 2


@pytest.mark.asyncio
async def test_publisher_survives_sink_errors() -> None:
    received: list[int] = []

    def flaky_sink(change: StateChange) -> None:
        if change.entity_id == 1:
            raise RuntimeError("renderer broke")
        received.append(change.entity_id)

    publisher = ChangePublisher(flaky_sink)
    publisher.start()
    await publisher.publish(_change(1, "RUNNING"))
    await publisher.publish(_change(2, "RUNNING"))
    await publisher.stop(flush=True)

    assert received == [2]
    assert publisher.published == 1


@pytest.mark.asyncio
async def test_publisher_stop_gives_up_on_stalled_sink_and_reports_drops() -> None:
    dropped: list[StateChange] = []

    async def stalled_sink(_change: StateChange) -> None:
        await asyncio.Event().wait()

    publisher = ChangePublisher(stalled_sink, maxsize=4, flush_timeout=0.05, on_drop=dropped.append)
    publisher.start()
    for entity_id in (1, 2, 3):
        assert await publisher.publish(_change(entity_id, "RUNNING"))
    while publisher.pending == 3:
        await asyncio.sleep(0)  # worker takes the first change and stalls

    await asyncio.wait_for(publisher.stop(flush=True), timeout=2.0)

    # The in-flight change is reported first, then the queued ones in order.
    assert [c.entity_id for c in dropped] == [1, 2, 3]
    assert publisher.dropped == 3
    assert publisher.published == 0
    assert publisher.pending == 0
    assert not publisher.is_running


@pytest.mark.asyncio
async def test_publisher_runs_blocking_sink_off_the_event_loop() -> None:
    sink_threads: list[int] = []

    def blocking_sink(_change: StateChange) -> None:
        sink_threads.append(threading.get_ident())
        time.sleep(0.1)

    publisher = ChangePublisher(blocking_sink)
    publisher.start()
    assert await publisher.publish(_change(1, "RUNNING"))

    # The loop keeps ticking while the sink sleeps in the executor.
    ticks = 0
    started = time.monotonic()
    while time.monotonic() - started < 0.05:
        await asyncio.sleep(0.005)
        ticks += 1
    await publisher.stop(flush=True)

    assert ticks >= 3
    assert sink_threads and sink_threads[0] != threading.get_ident()
    assert publisher.published == 1
