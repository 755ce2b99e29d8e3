"""Encode progress events and the non-blocking channel that delivers them."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import asyncio
import contextlib
import inspect
import logging


log = logging.getLogger(__name__)

_DEFAULT_QUEUE_SIZE = 64
_DRAIN_TIMEOUT_SEC = 2.0


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    video_id: str
    quality: str
    percent: float
    current_kbps: float | None = None


ProgressSink = Callable[[ProgressEvent], Awaitable[None] | None]


class ProgressChannel:
    """Bounded drop-oldest queue between encode jobs and a progress sink.

    publish() never blocks and never raises, so a slow or broken consumer
    can't stall an encode. A pump task drains the queue into the sink.
    """

    def __init__(self, sink: ProgressSink | None, maxsize: int = _DEFAULT_QUEUE_SIZE) -> None:
        self._sink = sink
        self._queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue(maxsize=max(1, maxsize))
        self._task: asyncio.Task[None] | None = None
        self.dropped = 0
        self.delivered = 0

    def start(self) -> None:
        if self._sink is not None and self._task is None:
            self._task = asyncio.create_task(self._pump())

    def publish(self, event: ProgressEvent | None) -> None:
        """Enqueue without waiting; evicts the oldest event when full."""
        if self._sink is None:
            return
        while True:
            try:
                self._queue.put_nowait(event)
                return
            except asyncio.QueueFull:
                with contextlib.suppress(asyncio.QueueEmpty):
                    self._queue.get_nowait()
                    self.dropped += 1

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                result = self._sink(event)  # type: ignore[misc]
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
            except Exception as e:
                log.debug("Progress sink failed for %s/%s: %s", event.video_id, event.quality, e)

    async def close(self, timeout: float = _DRAIN_TIMEOUT_SEC) -> None:
        """Flush pending events (bounded by timeout), then stop the pump."""
        if self._task is None:
            return
        self.publish(None)
        try:
            await asyncio.wait_for(self._task, timeout=timeout)
        except TimeoutError:
            log.debug("Progress sink too slow, abandoned %d events", self._queue.qsize())
        finally:
            self._task = None
        if self.dropped:
            log.debug("Progress channel dropped %d events", self.dropped)
