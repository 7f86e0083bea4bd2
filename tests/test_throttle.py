"""Tests for the trailing throttle."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import pytest

from prompt_dj.throttle import ThrottleState, TrailingThrottle


def test_burst_coalesces_into_one_execution_with_latest_arguments():
    calls: list[int] = []

    async def record(value: int) -> int:
        calls.append(value)
        return value * 10

    async def scenario():
        throttle = TrailingThrottle(record, interval=0.05)
        results = await asyncio.gather(throttle(1), throttle(2), throttle(3))
        return throttle, results

    throttle, results = asyncio.run(scenario())

    assert calls == [3]
    assert results == [30, 30, 30]
    assert throttle.last_result == 30
    assert throttle.state is ThrottleState.IDLE


def test_calls_during_execution_run_on_trailing_edge_after_interval():
    calls: list[tuple[int, float]] = []

    async def scenario():
        loop = asyncio.get_running_loop()
        started = loop.time()

        async def slow(value: int) -> int:
            calls.append((value, loop.time() - started))
            await asyncio.sleep(0.02)
            return value

        throttle = TrailingThrottle(slow, interval=0.1)
        first = asyncio.ensure_future(throttle(1))
        await asyncio.sleep(0.01)
        assert throttle.state is ThrottleState.EXECUTING
        second = asyncio.ensure_future(throttle(2))
        third = asyncio.ensure_future(throttle(3))
        return await asyncio.gather(first, second, third)

    results = asyncio.run(scenario())

    assert results == [1, 3, 3]
    assert [value for value, _ in calls] == [1, 3]
    assert calls[1][1] - calls[0][1] >= 0.09


def test_exception_reaches_every_coalesced_caller():
    async def boom() -> None:
        raise RuntimeError("backend down")

    async def scenario():
        throttle = TrailingThrottle(boom, interval=0.0)
        return await asyncio.gather(throttle(), throttle(), return_exceptions=True)

    results = asyncio.run(scenario())

    assert len(results) == 2
    assert all(isinstance(result, RuntimeError) for result in results)


def test_cancel_returns_to_idle():
    async def never(value: int) -> int:
        await asyncio.sleep(10)
        return value

    async def scenario():
        throttle = TrailingThrottle(never, interval=0.0)
        pending = asyncio.ensure_future(throttle(1))
        await asyncio.sleep(0.01)
        throttle.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        return throttle

    throttle = asyncio.run(scenario())

    assert throttle.state is ThrottleState.IDLE
    assert throttle.last_result is None
