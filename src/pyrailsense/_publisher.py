"""Hand-off of committed state changes to the rendering side.

The publisher owns a bounded :class:`asyncio.Queue` and one worker task
that calls the sink for each change in FIFO order, so changes for a given
entity reach the renderer in the order their lines were received.  A slow
sink only fills the queue; ingestion waits at most ``put_timeout`` seconds
for room and then drops the change.

Coroutine sinks are awaited on the loop.  Plain callables run in the
default executor, so a blocking renderer never holds up the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable

from pyrailsense.state.events import StateChange

_logger = logging.getLogger(__name__)

ChangeSink = Callable[[StateChange], Awaitable[None] | None]


class ChangePublisher:
    """Ordered, bounded, asynchronous delivery of :class:`StateChange`."""

    def __init__(
        self,
        sink: ChangeSink | None = None,
        *,
        maxsize: int = 256,
        put_timeout: float = 1.0,
        flush_timeout: float = 5.0,
        on_drop: Callable[[StateChange], None] | None = None,
    ) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[StateChange] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._flush_timeout = flush_timeout
        self._on_drop = on_drop
        self._worker: asyncio.Task[None] | None = None
        self._in_flight: StateChange | None = None
        self.published = 0
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        """Changes committed but not yet delivered."""
        return self._queue.qsize()

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run(), name="pyrailsense-publisher")
        _logger.debug("Change publisher started maxsize=%s", self._queue.maxsize)

    async def stop(self, *, flush: bool = True) -> None:
        """Stop the worker, delivering queued changes first when *flush*.

        Flushing waits at most ``flush_timeout`` seconds.  Whatever the
        sink has not accepted by then is dropped.
        """
        worker = self._worker
        if worker is None:
            return
        if flush and not worker.done():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._flush_timeout)
            except TimeoutError:
                _logger.warning(
                    "Renderer did not drain %s pending state change(s) within %.2fs",
                    self.pending + (self._in_flight is not None),
                    self._flush_timeout,
                )
        self._worker = None
        worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker

        if self._in_flight is not None:
            self._drop(self._in_flight, "renderer did not finish before shutdown")
            self._in_flight = None
        while not self._queue.empty():
            self._drop(self._queue.get_nowait(), "publisher stopped before delivery")
            self._queue.task_done()
        _logger.debug("Change publisher stopped published=%s dropped=%s", self.published, self.dropped)

    async def publish(self, change: StateChange) -> bool:
        """Queue *change* for delivery.

        Returns ``False`` when the queue stayed full for ``put_timeout``
        seconds; the change is then dropped, not retried.
        """
        try:
            await asyncio.wait_for(self._queue.put(change), timeout=self._put_timeout)
        except TimeoutError:
            self._drop(change, f"renderer hand-off full for {self._put_timeout:.2f}s")
            return False
        return True

    def _drop(self, change: StateChange, reason: str) -> None:
        self.dropped += 1
        _logger.warning(
            "Dropping state change %s %s=%s: %s",
            change.entity_kind,
            change.entity_id,
            change.new_value,
            reason,
        )
        if self._on_drop is not None:
            self._on_drop(change)

    async def _run(self) -> None:
        while True:
            change = await self._queue.get()
            self._in_flight = change
            try:
                await self._deliver(change)
                self._in_flight = None
            finally:
                self._queue.task_done()

    async def _deliver(self, change: StateChange) -> None:
        if self._sink is None:
            self.published += 1
            return
        try:
            if inspect.iscoroutinefunction(self._sink):
                await self._sink(change)
            else:
                result = await asyncio.get_running_loop().run_in_executor(None, self._sink, change)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.error("State change sink failed for %s %s", change.entity_kind, change.entity_id, exc_info=True)
            return
        self.published += 1
