"""Tests for events.py - non-blocking progress delivery."""

from __future__ import annotations

import asyncio

from events import ProgressChannel, ProgressEvent


def _event(percent: float) -> ProgressEvent:
    return ProgressEvent(video_id="v1", quality="HD_720", percent=percent)


class TestProgressChannel:
    def test_delivers_in_order(self):
        received: list[float] = []

        async def run():
            channel = ProgressChannel(lambda e: received.append(e.percent))
            channel.start()
            for pct in (10.0, 20.0, 30.0):
                channel.publish(_event(pct))
            await channel.close()
            return channel

        channel = asyncio.run(run())
        assert received == [10.0, 20.0, 30.0]
        assert channel.delivered == 3

    def test_async_sink(self):
        received: list[float] = []

        async def sink(event):
            await asyncio.sleep(0)
            received.append(event.percent)

        async def run():
            channel = ProgressChannel(sink)
            channel.start()
            channel.publish(_event(50.0))
            await channel.close()

        asyncio.run(run())
        assert received == [50.0]

    def test_full_queue_drops_oldest(self):
        received: list[float] = []

        async def run():
            channel = ProgressChannel(lambda e: received.append(e.percent), maxsize=2)
            # Pump not started yet, so nothing drains while publishing
            for pct in (1.0, 2.0, 3.0, 4.0):
                channel.publish(_event(pct))
            channel.start()
            await channel.close()
            return channel

        channel = asyncio.run(run())
        # close() itself needs a slot for its sentinel, evicting one more
        assert received == [4.0]
        assert channel.dropped == 3

    def test_publish_never_blocks_on_slow_sink(self):
        async def slow_sink(event):
            await asyncio.sleep(10)

        async def run():
            channel = ProgressChannel(slow_sink, maxsize=1)
            channel.start()
            for pct in range(100):
                channel.publish(_event(float(pct)))
            await channel.close(timeout=0.05)
            return channel

        channel = asyncio.run(run())
        assert channel.dropped > 0

    def test_sink_errors_are_swallowed(self):
        calls: list[float] = []

        def sink(event):
            calls.append(event.percent)
            raise ConnectionError("socket closed")

        async def run():
            channel = ProgressChannel(sink)
            channel.start()
            channel.publish(_event(1.0))
            channel.publish(_event(2.0))
            await channel.close()

        asyncio.run(run())
        assert calls == [1.0, 2.0]

    def test_no_sink_is_noop(self):
        async def run():
            channel = ProgressChannel(None)
            channel.start()
            channel.publish(_event(1.0))
            await channel.close()
            return channel

        channel = asyncio.run(run())
        assert channel.dropped == 0
        assert channel.delivered == 0


if __name__ == "__main__":
    from testing import run_tests

    run_tests(__file__)
