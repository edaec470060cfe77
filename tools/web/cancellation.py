"""Cancellation tokens combined with fixed timeouts."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from .errors import OperationAborted

T = TypeVar("T")


class CancellationToken:
    """
    Cooperative cancellation signal.

    A token created with linked() is cancelled as soon as any of its parents
    is, so a tool call can combine the host's signal with the session-wide
    abort-all sweep.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._children: set["CancellationToken"] = set()
        self._parents: list["CancellationToken"] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if self._event.is_set():
            return
        self._event.set()
        children = list(self._children)
        self._children.clear()
        for child in children:
            child.cancel()

    async def wait(self) -> None:
        await self._event.wait()

    @classmethod
    def linked(cls, *parents: "CancellationToken | None") -> "CancellationToken":
        token = cls()
        for parent in parents:
            if parent is None:
                continue
            if parent.cancelled:
                token.cancel()
            else:
                parent._children.add(token)
                token._parents.append(parent)
        return token

    def release(self) -> None:
        """Detach from every parent; the token no longer follows their cancellation."""
        for parent in self._parents:
            parent._children.discard(self)
        self._parents.clear()


async def run_with_cancellation(
    awaitable: Awaitable[T],
    *,
    signal: CancellationToken | None = None,
    timeout: float | None = None,
) -> T:
    """
    Await a coroutine raced against a cancellation token and a timeout.

    Raises:
        OperationAborted: the token fired first (or was already set)
        asyncio.TimeoutError: the timeout elapsed first
    """
    if signal is not None and signal.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationAborted("Aborted")

    work = asyncio.ensure_future(awaitable)
    if signal is None:
        return await asyncio.wait_for(work, timeout=timeout)

    watcher = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait(
            {work, watcher}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        watcher.cancel()

    if work in done:
        return work.result()

    work.cancel()
    try:
        await work
    except (asyncio.CancelledError, Exception):
        pass

    if watcher in done or signal.cancelled:
        raise OperationAborted("Aborted")
    raise asyncio.TimeoutError()
