# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Race an operation against a timer and dispose of late results.

When the timer wins, the caller gets BrokerTimeoutError immediately. The
losing operation may still complete afterwards: its result is handed to the
dispose hook (e.g. closing a socket or stopping a tunnel) instead of leaking.

Blocking library calls (pymysql, sshtunnel) run on a shared worker pool via
run_in_thread() and call_with_deadline().
"""

from __future__ import annotations

import asyncio
import concurrent.futures as cf
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..errors import BrokerTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = cf.ThreadPoolExecutor(max_workers=32, thread_name_prefix="api-broker")

# Strong references to late-dispose tasks until they finish
_background: set[asyncio.Task[Any]] = set()


async def run_in_thread(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a blocking callable on the worker pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_executor, functools.partial(fn, *args, **kwargs))


def _run_dispose(dispose: Callable[[Any], Any], value: Any) -> None:
    try:
        outcome = dispose(value)
    except Exception as e:
        logger.warning("Disposing late result failed: %s", e)
        return
    if inspect.isawaitable(outcome):
        task = asyncio.ensure_future(outcome)
        _background.add(task)
        task.add_done_callback(_background.discard)


async def await_with_deadline(
    aw: Awaitable[T],
    timeout: float,
    *,
    dispose: Callable[[T], Any] | None = None,
    message: str | None = None,
) -> T:
    """Await aw for at most timeout seconds.

    On timeout (or when the caller itself is cancelled) the operation is
    cancelled. If it still produces a result, dispose(result) is called
    with it.

    Raises:
        BrokerTimeoutError: The timer won the race.
    """
    task = asyncio.ensure_future(aw)

    def late(finished: asyncio.Future[Any]) -> None:
        if finished.cancelled() or finished.exception() is not None:
            return
        logger.debug("Operation finished after its deadline, disposing result")
        if dispose is not None:
            _run_dispose(dispose, finished.result())

    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.add_done_callback(late)
        task.cancel()
        raise
    if task in done:
        return task.result()

    task.add_done_callback(late)
    task.cancel()
    raise BrokerTimeoutError(message or f"Operation timed out after {timeout:g} seconds")


async def call_with_deadline(
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    dispose: Callable[[T], Any] | None = None,
    message: str | None = None,
    finalize: Callable[[], Any] | None = None,
) -> T:
    """Run blocking fn on the worker pool for at most timeout seconds.

    A running thread cannot be interrupted: when the timer wins (or the
    caller is cancelled), the thread is left to finish and dispose(result)
    runs in that thread as soon as it returns. finalize() runs after that,
    also when the late call raised. Neither runs when fn beat the timer.

    Raises:
        BrokerTimeoutError: The timer won the race.
    """
    work = _executor.submit(fn, *args)
    waiter = asyncio.wrap_future(work)

    def late(finished: cf.Future[Any]) -> None:
        try:
            if finished.cancelled() or finished.exception() is not None:
                return
            logger.debug("Worker finished after its deadline, disposing result")
            if dispose is not None:
                try:
                    dispose(finished.result())
                except Exception as e:
                    logger.warning("Disposing late result failed: %s", e)
        finally:
            if finalize is not None:
                finalize()

    try:
        done, _ = await asyncio.wait({waiter}, timeout=timeout)
    except asyncio.CancelledError:
        work.add_done_callback(late)
        waiter.cancel()
        raise
    if waiter in done:
        return waiter.result()

    work.add_done_callback(late)
    waiter.cancel()
    raise BrokerTimeoutError(message or f"Operation timed out after {timeout:g} seconds")


__all__ = ["await_with_deadline", "call_with_deadline", "run_in_thread"]
