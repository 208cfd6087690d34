"""Concurrency utilities: bounded fan-out, timeouts, cancellation and coroutine hygiene."""

from __future__ import annotations

import asyncio
import gc
import sys
import warnings
from contextlib import contextmanager
from types import SimpleNamespace
from typing import TYPE_CHECKING

import pytest

from mfssia_orchestrator.utils.concurrency import (
    BoundedSemaphore,
    CancellationToken,
    WorkerPool,
    cancellable_sleep,
    run_with_timeout,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@contextmanager
def _capture_unraisable() -> Iterator[list[SimpleNamespace]]:
    captured: list[SimpleNamespace] = []
    original = sys.unraisablehook

    def hook(unraisable: object) -> None:
        captured.append(
            SimpleNamespace(
                exc_type=getattr(unraisable, "exc_type", None),
                err_msg=getattr(unraisable, "err_msg", None),
            )
        )

    sys.unraisablehook = hook
    try:
        yield captured
    finally:
        sys.unraisablehook = original


async def _slow() -> int:
    await asyncio.sleep(0.01)
    return 1


async def _slower() -> int:
    await asyncio.sleep(0.05)
    return 1


async def test_run_with_timeout_does_not_leak_coroutine_on_early_cancel() -> None:
    token = CancellationToken()
    token.cancel()

    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        coro = _slow()
        with pytest.raises(asyncio.CancelledError):
            await run_with_timeout(coro, 1.0, token)
        del coro
        gc.collect()

    assert leaked == []


async def test_run_with_timeout_timeout_path_does_not_leak_coroutine() -> None:
    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(TimeoutError):
            await run_with_timeout(_slower(), 0.001, None)
        gc.collect()

    assert leaked == []


async def test_run_with_timeout_returns_value_and_rejects_bad_timeout() -> None:
    assert await run_with_timeout(_slow(), 1.0) == 1
    with pytest.raises(ValueError, match="timeout_seconds"):
        await run_with_timeout(_slow(), 0)


async def test_run_with_timeout_observes_late_cancellation() -> None:
    token = CancellationToken()

    async def _cancel_soon() -> None:
        await asyncio.sleep(0.001)
        token.cancel()

    canceller = asyncio.create_task(_cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(asyncio.sleep(5), 1.0, token)
    await canceller


async def test_worker_pool_keeps_input_order_and_bounds_concurrency() -> None:
    pool: WorkerPool[int] = WorkerPool(max_concurrency=2)

    async def _job(value: int) -> int:
        await asyncio.sleep(0.001 * (5 - value))
        return value * 10

    results = await pool.run_ordered([lambda value=value: _job(value) for value in range(5)])

    assert results == [0, 10, 20, 30, 40]
    assert pool.peak_concurrency == 2


async def test_worker_pool_first_failure_cancels_the_rest() -> None:
    pool: WorkerPool[int] = WorkerPool(max_concurrency=3)
    finished: list[int] = []

    async def _ok() -> int:
        await asyncio.sleep(0.05)
        finished.append(1)
        return 1

    async def _boom() -> int:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        await pool.run_ordered([_ok, _boom, _ok])
    assert finished == []


async def test_worker_pool_honours_pre_cancelled_token() -> None:
    token = CancellationToken()
    token.cancel()
    pool: WorkerPool[int] = WorkerPool(max_concurrency=1, cancel_token=token)

    with _capture_unraisable() as leaked:
        with pytest.raises(asyncio.CancelledError):
            await pool.run_ordered([_slow])
        gc.collect()

    assert leaked == []


def test_worker_pool_and_semaphore_reject_non_positive_limits() -> None:
    with pytest.raises(ValueError):
        WorkerPool(max_concurrency=0)
    with pytest.raises(ValueError):
        BoundedSemaphore(0)


async def test_bounded_semaphore_tracks_usage() -> None:
    semaphore = BoundedSemaphore(2)

    async with semaphore.permit():
        async with semaphore.permit():
            assert semaphore.in_use == 2
    assert semaphore.in_use == 0
    assert semaphore.peak == 2
    assert semaphore.limit == 2


async def test_cancellable_sleep_wakes_on_cancel() -> None:
    token = CancellationToken()
    sleep = cancellable_sleep(token)

    task = asyncio.create_task(sleep(60))
    await asyncio.sleep(0)
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert token.is_cancelled


async def test_cancellable_sleep_zero_delay_yields() -> None:
    await cancellable_sleep(CancellationToken())(0)
