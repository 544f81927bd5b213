"""Bounded fan-out helpers for per-file async work."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 16


async def gather_limited(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    limit: int = DEFAULT_CONCURRENCY,
    return_exceptions: bool = False,
) -> List[R]:
    """Run ``worker`` over ``items`` with at most ``limit`` calls in flight.

    Results come back in input order. With ``return_exceptions`` the raised
    exceptions are returned in place of results instead of propagating.
    """
    semaphore = asyncio.Semaphore(max(1, limit))

    async def _run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(
        *(_run(item) for item in items), return_exceptions=return_exceptions
    )


async def gather_or_cancel(awaitables: Iterable[Awaitable[R]]) -> List[R]:
    """Await ``awaitables`` concurrently; the first failure cancels the rest.

    The remaining tasks are cancelled and awaited before the failure
    propagates, so nothing keeps running behind the caller.
    """
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    if not tasks:
        return []
    try:
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    if pending:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    for task in tasks:
        error = None if task.cancelled() else task.exception()
        if error is not None:
            raise error
    return [task.result() for task in tasks]


def run_sync(awaitable: Awaitable[R]) -> R:
    """Drive a coroutine from synchronous code."""
    return asyncio.run(awaitable)  # type: ignore[arg-type]


__all__ = ["DEFAULT_CONCURRENCY", "gather_limited", "gather_or_cancel", "run_sync"]
