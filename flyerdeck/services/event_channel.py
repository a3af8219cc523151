"""
Single-producer / single-consumer bridge from push-style callbacks to an
async iterator.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, AsyncIterator, Deque, Generic, Optional, TypeVar

from flyerdeck.agents.config import EVENT_CHANNEL_WARN_THRESHOLD

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ChannelItem(Generic[T]):
    value: Optional[T] = None
    done: bool = False


_DONE: ChannelItem[Any] = ChannelItem(done=True)


class EventChannel(Generic[T]):
    """Unbounded FIFO with a closed flag.

    A buffered value and a waiting consumer never coexist: ``push`` hands the
    value straight to a waiter when there is one. The buffer has no upper
    bound; crossing ``warn_threshold`` logs a warning once per crossing.
    """

    def __init__(self, warn_threshold: int = EVENT_CHANNEL_WARN_THRESHOLD):
        self._buffer: Deque[T] = deque()
        self._waiters: Deque[asyncio.Future] = deque()
        self._closed = False
        self._warn_threshold = warn_threshold
        self._warned = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._buffer)

    def push(self, value: T) -> None:
        if self._closed:
            return

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(ChannelItem(value=value))
                return

        self._buffer.append(value)
        if len(self._buffer) >= self._warn_threshold and not self._warned:
            self._warned = True
            logger.warning(f"[SSE] Event channel buffer reached {len(self._buffer)} items; consumer is falling behind")
        elif len(self._buffer) < self._warn_threshold:
            self._warned = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(_DONE)

    async def next(self) -> ChannelItem[T]:
        if self._buffer:
            return ChannelItem(value=self._buffer.popleft())
        if self._closed:
            return _DONE

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        return await waiter

    async def __aiter__(self) -> AsyncIterator[T]:
        while True:
            item = await self.next()
            if item.done:
                return
            yield item.value
