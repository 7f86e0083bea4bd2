"""Trailing-edge async throttle."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

__all__ = ["ThrottleState", "TrailingThrottle"]

T = TypeVar("T")


class ThrottleState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    EXECUTING = "executing"


class TrailingThrottle(Generic[T]):
    """Run ``func`` at most once per ``interval`` with the latest arguments.

    Calls made while an execution is pending coalesce into it: the arguments of
    the most recent call win and every coalesced caller receives that
    execution's result (or exception). Calls made while an execution is in
    flight are queued for the next one, which starts no sooner than
    ``interval`` seconds after the previous start.
    """

    def __init__(self, func: Callable[..., Awaitable[T]], interval: float) -> None:
        self._func = func
        self.interval = max(0.0, float(interval))
        self.state = ThrottleState.IDLE
        self.last_result: T | None = None
        self._last_started: float | None = None
        self._args: tuple[Any, ...] = ()
        self._kwargs: dict[str, Any] = {}
        self._waiter: asyncio.Future[T] | None = None
        self._task: asyncio.Task[None] | None = None

    async def __call__(self, *args: Any, **kwargs: Any) -> T:
        loop = asyncio.get_running_loop()
        self._args = args
        self._kwargs = kwargs
        if self._waiter is None:
            self._waiter = loop.create_future()
        waiter = self._waiter
        if self._task is None or self._task.done():
            self._task = loop.create_task(self._drain(), name="prompt-dj-throttle")
        if self.state is ThrottleState.IDLE:
            self.state = ThrottleState.PENDING
        return await asyncio.shield(waiter)

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        while self._waiter is not None:
            self.state = ThrottleState.PENDING
            if self._last_started is not None:
                delay = self._last_started + self.interval - loop.time()
                if delay > 0:
                    await asyncio.sleep(delay)

            waiter, self._waiter = self._waiter, None
            args, kwargs = self._args, self._kwargs
            self._last_started = loop.time()
            self.state = ThrottleState.EXECUTING
            try:
                result = await self._func(*args, **kwargs)
            except asyncio.CancelledError:
                if not waiter.done():
                    waiter.cancel()
                raise
            except Exception as exc:
                if not waiter.done():
                    waiter.set_exception(exc)
                    # retrieved here; coalesced callers may already be gone
                    waiter.exception()
            else:
                self.last_result = result
                if not waiter.done():
                    waiter.set_result(result)
        self.state = ThrottleState.IDLE

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.cancel()
        self.state = ThrottleState.IDLE
