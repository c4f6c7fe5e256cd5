from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Deque, Generic, Optional, TypeVar


T = TypeVar("T")


class QueueClosed(Exception):
    pass


EvictPredicate = Callable[[T], bool]


class BoundedDequeQueue(Generic[T]):
    """
    Bounded async queue that never blocks producers.

    - put() on a full queue may evict the oldest item matching `evict`;
      otherwise the new item is refused.
    - Single consumer per queue (one listener writer task).
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize <= 0:
            raise ValueError("maxsize must be > 0")
        self._maxsize = int(maxsize)
        self._q: Deque[T] = deque()
        self._closed = False
        self._cv = asyncio.Condition()
        self.evictions = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def qsize(self) -> int:
        return len(self._q)

    def closed(self) -> bool:
        return self._closed

    async def put(self, item: T, *, evict: Optional[EvictPredicate[T]] = None) -> bool:
        async with self._cv:
            if self._closed:
                return False

            if len(self._q) >= self._maxsize:
                if evict is None:
                    return False
                victim = next((x for x in self._q if evict(x)), None)
                if victim is None:
                    return False
                self._q.remove(victim)
                self.evictions += 1

            self._q.append(item)
            self._cv.notify()
            return True

    async def get(self) -> T:
        async with self._cv:
            while not self._q and not self._closed:
                await self._cv.wait()

            if self._q:
                return self._q.popleft()

            raise QueueClosed()

    async def close(self) -> None:
        async with self._cv:
            self._closed = True
            self._q.clear()
            self._cv.notify_all()
