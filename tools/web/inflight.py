"""Keyed map of in-flight tasks for coalescing concurrent identical requests."""

import asyncio
from collections.abc import Awaitable, Callable, Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InflightTasks(Generic[K, V]):
    """
    First caller for a key creates the task; every later caller awaits it.

    start() inserts the task before any of its work runs, so a caller that
    arrives while the work is suspended finds the entry and shares it.
    No lock is needed: insertion is a single synchronous step on the event loop.
    """

    def __init__(self) -> None:
        self._tasks: dict[K, asyncio.Task[V]] = {}

    def get(self, key: K) -> asyncio.Task[V] | None:
        return self._tasks.get(key)

    def start(self, key: K, factory: Callable[[], Awaitable[V]]) -> asyncio.Task[V]:
        existing = self._tasks.get(key)
        if existing is not None:
            return existing
        task = asyncio.ensure_future(factory())
        self._tasks[key] = task
        return task

    def discard(self, key: K) -> None:
        self._tasks.pop(key, None)

    def items(self) -> Iterator[tuple[K, asyncio.Task[V]]]:
        return iter(list(self._tasks.items()))

    def clear(self) -> None:
        self._tasks.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)
