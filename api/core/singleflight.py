"""
Coalesce concurrent calls that share a key into one in-flight task.

The first caller for a key starts the work; callers arriving while it runs
await the same task and receive the same result or exception. Once the task
finishes the key is forgotten, so the next call starts fresh work.

A waiter that is cancelled (deadline, shutdown) leaves the work running for
the others; when the last waiter goes away the work is cancelled too.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

T = TypeVar("T")


class _Flight(Generic[T]):
    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task[T]) -> None:
        self.task = task
        self.waiters = 0


class SingleFlight(Generic[T]):
    def __init__(self) -> None:
        self._inflight: dict[Hashable, _Flight[T]] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        flight = self._inflight.get(key)
        if flight is None:
            flight = _Flight(asyncio.ensure_future(fn()))
            self._inflight[key] = flight
            flight.task.add_done_callback(lambda t, key=key: self._forget(key, t))

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
                # A cancelled task may still be unwinding; later callers start fresh work.
                if self._inflight.get(key) is flight:
                    del self._inflight[key]
            raise
        finally:
            flight.waiters -= 1

    def _forget(self, key: Hashable, task: asyncio.Task[T]) -> None:
        flight = self._inflight.get(key)
        if flight is not None and flight.task is task:
            del self._inflight[key]
