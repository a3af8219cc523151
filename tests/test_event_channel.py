"""Tests for the push-to-pull event channel."""

import asyncio
import logging

from flyerdeck.services.event_channel import EventChannel


async def drain(channel: EventChannel) -> list:
    return [value async for value in channel]


class TestOrdering:
    async def test_push_then_drain_preserves_order(self):
        channel = EventChannel()
        for value in (1, 2, 3):
            channel.push(value)
        channel.close()

        assert await drain(channel) == [1, 2, 3]

    async def test_waiting_consumer_receives_values_in_order(self):
        channel = EventChannel()
        consumer = asyncio.create_task(drain(channel))
        await asyncio.sleep(0)  # consumer is now waiting

        for value in (1, 2, 3):
            channel.push(value)
            await asyncio.sleep(0)
        channel.close()

        assert await consumer == [1, 2, 3]

    async def test_exactly_one_done_after_full_drain(self):
        channel = EventChannel()
        channel.push("a")
        channel.close()

        first = await channel.next()
        second = await channel.next()
        third = await channel.next()

        assert (first.done, first.value) == (False, "a")
        assert second.done is True
        assert third.done is True

    async def test_buffer_and_waiters_never_coexist(self):
        channel = EventChannel()
        pending = asyncio.create_task(channel.next())
        await asyncio.sleep(0)

        channel.push("x")
        assert len(channel) == 0
        assert (await pending).value == "x"


class TestClose:
    async def test_push_after_close_is_inert(self):
        channel = EventChannel()
        channel.push(1)
        channel.close()
        channel.push(2)

        assert await drain(channel) == [1]

    async def test_close_releases_waiting_consumer(self):
        channel = EventChannel()
        pending = asyncio.create_task(channel.next())
        await asyncio.sleep(0)

        channel.close()
        item = await asyncio.wait_for(pending, timeout=1)
        assert item.done is True

    async def test_close_is_idempotent(self):
        channel = EventChannel()
        channel.close()
        channel.close()
        assert channel.closed
        assert (await channel.next()).done

    async def test_cancelled_waiter_is_skipped(self):
        channel = EventChannel()
        abandoned = asyncio.create_task(channel.next())
        await asyncio.sleep(0)
        abandoned.cancel()
        await asyncio.sleep(0)

        channel.push("kept")
        channel.close()
        assert await drain(channel) == ["kept"]


class TestBackpressureWarning:
    async def test_warns_when_buffer_grows_past_threshold(self, caplog):
        channel = EventChannel(warn_threshold=3)
        with caplog.at_level(logging.WARNING, logger="flyerdeck.services.event_channel"):
            for value in range(5):
                channel.push(value)

        warnings = [r for r in caplog.records if "buffer reached" in r.getMessage()]
        assert len(warnings) == 1
        # Still unbounded
        assert len(channel) == 5
