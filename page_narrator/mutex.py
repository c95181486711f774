"""Async mutual exclusion with an explicit FIFO queue of waiters."""
from __future__ import annotations

import asyncio
from collections import deque


class Release:
    """Single-use token handed to the current holder of a :class:`Mutex`."""

    def __init__(self, mutex: Mutex) -> None:
        self._mutex = mutex
        self.released = False

    def __call__(self) -> None:
        if self.released:
            return
        self.released = True
        self._mutex._hand_over()


class Mutex:
    def __init__(self) -> None:
        self._locked = False
        self._waiters: deque[asyncio.Future[Release]] = deque()

    @property
    def locked(self) -> bool:
        return self._locked

    async def lock(self) -> Release:
        if not self._locked:
            self._locked = True
            return Release(self)

        waiter: asyncio.Future[Release] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                waiter.result()()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def _hand_over(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(Release(self))
            return
        self._locked = False

    async def __aenter__(self) -> Release:
        self._release = await self.lock()
        return self._release

    async def __aexit__(self, *_exc_info: object) -> None:
        self._release()
