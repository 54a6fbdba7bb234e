from __future__ import annotations

import asyncio
import concurrent.futures
import gc
import time

import pytest

from tandem.bridge import (
    BridgedFuture,
    CoroutineHandle,
    FutureState,
    into_coroutine,
    into_future,
)
from tandem.exceptions import AlreadyConsumed, Cancelled, ConversionError, RuntimeNotFound

UNIT = 0.05


async def _sleep_then(value, delay=UNIT):
    await asyncio.sleep(delay)
    return value


def test_into_future_resolves_after_the_coroutine_sleeps(coordinator, interpreter, runtime) -> None:
    started = time.monotonic()
    future = into_future(_sleep_then(42), interpreter=interpreter)
    assert isinstance(future, BridgedFuture)
    assert future.poll() is FutureState.PENDING

    # A native worker blocks on the future while the host loop runs.
    waiter = into_coroutine(
        lambda: future.result(timeout=5), runtime=runtime, interpreter=interpreter
    )
    assert coordinator.run_until_complete(waiter) == 42
    assert time.monotonic() - started >= UNIT * 0.9
    assert future.poll() is FutureState.RESOLVED


def test_coroutine_does_not_start_until_the_loop_runs(coordinator, interpreter) -> None:
    ran = []

    async def body():
        ran.append(True)

    future = into_future(body(), interpreter=interpreter)
    time.sleep(UNIT)
    assert ran == []
    assert not future.running()

    coordinator.run_until_complete(future)
    assert ran == [True]


def test_converting_the_same_coroutine_twice_fails(coordinator, interpreter) -> None:
    coro = _sleep_then("once", delay=0)
    future = into_future(coro, interpreter=interpreter)
    with pytest.raises(AlreadyConsumed):
        into_future(coro, interpreter=interpreter)
    assert coordinator.run_until_complete(future) == "once"


def test_handle_rejects_non_coroutines() -> None:
    with pytest.raises(TypeError):
        CoroutineHandle(lambda: None)


def test_rejected_coroutine_reraises_on_result(coordinator, interpreter) -> None:
    async def fail():
        raise ValueError("bad input")

    future = into_future(fail(), interpreter=interpreter)
    with pytest.raises(ValueError, match="bad input"):
        coordinator.run_until_complete(future)
    assert future.poll() is FutureState.REJECTED
    assert isinstance(future.exception(timeout=0), ValueError)
    with pytest.raises(ValueError):
        future.result(timeout=0)


def test_result_times_out_while_pending(coordinator, interpreter) -> None:
    future = into_future(_sleep_then(1), interpreter=interpreter)
    with pytest.raises(concurrent.futures.TimeoutError):
        future.result(timeout=0.01)
    assert coordinator.run_until_complete(future) == 1


def test_converter_applies_to_native_side_values(coordinator, interpreter) -> None:
    doubled = into_future(_sleep_then(21, 0), interpreter=interpreter, convert=lambda v: v * 2)
    assert coordinator.run_until_complete(doubled) == 42

    def refuse(value):
        raise TypeError("not representable")

    refused = into_future(_sleep_then(object(), 0), interpreter=interpreter, convert=refuse)
    with pytest.raises(ConversionError, match="to native"):
        coordinator.run_until_complete(refused)


def test_cancel_before_start_never_runs_the_body(coordinator, interpreter) -> None:
    ran = []

    async def body():
        ran.append(True)

    future = into_future(body(), interpreter=interpreter)
    assert future.cancel()
    assert future.cancelled()
    assert future.cancel_requested

    coordinator.run_until_complete(asyncio.sleep(UNIT))
    assert ran == []
    with pytest.raises(Cancelled):
        future.result(timeout=0)
    assert not future.cancel()


def test_cancel_after_start_lands_at_the_next_suspension_point(coordinator, interpreter) -> None:
    reached = []

    async def body():
        reached.append("start")
        await asyncio.sleep(10)
        reached.append("end")

    future = into_future(body(), interpreter=interpreter)

    async def drive():
        await asyncio.sleep(UNIT)
        assert future.running()
        assert future.cancel()
        await asyncio.sleep(UNIT)

    coordinator.run_until_complete(drive())
    assert reached == ["start"]
    assert future.poll() is FutureState.CANCELLED


def test_done_callbacks_run_once_settled(coordinator, interpreter) -> None:
    calls = []
    future = into_future(_sleep_then("v", 0), interpreter=interpreter)
    future.add_done_callback(lambda f: calls.append(("early", f.result(timeout=0))))
    coordinator.run_until_complete(future)
    future.add_done_callback(lambda f: calls.append(("late", f.result(timeout=0))))
    assert calls == [("early", "v"), ("late", "v")]


def test_failing_done_callback_does_not_block_others(coordinator, interpreter) -> None:
    calls = []

    def broken(_):
        raise RuntimeError("callback bug")

    future = into_future(_sleep_then(1, 0), interpreter=interpreter)
    future.add_done_callback(broken)
    future.add_done_callback(lambda f: calls.append(f.done()))
    coordinator.run_until_complete(future)
    assert calls == [True]


def test_second_settlement_is_ignored(coordinator, interpreter, caplog) -> None:
    future = into_future(_sleep_then("first", 0), interpreter=interpreter)
    coordinator.run_until_complete(future)
    with caplog.at_level("WARNING", logger="tandem.bridge.future"):
        future._reject(RuntimeError("late"))
    assert future.result(timeout=0) == "first"
    assert "Ignoring settlement" in caplog.text


def test_dropping_an_unstarted_future_cancels_its_coroutine(coordinator, interpreter) -> None:
    ran = []

    async def body():
        ran.append(True)

    future = into_future(body(), interpreter=interpreter)
    del future
    gc.collect()

    coordinator.run_until_complete(asyncio.sleep(UNIT))
    assert ran == []


def test_into_future_tracks_the_future_on_a_runtime(coordinator, interpreter, runtime) -> None:
    future = into_future(_sleep_then(5), interpreter=interpreter, runtime=runtime)
    assert runtime.inflight == 1
    assert coordinator.run_until_complete(future) == 5
    assert runtime.inflight == 0


def test_unknown_runtime_leaves_the_coroutine_convertible(coordinator, interpreter) -> None:
    body = _sleep_then(7)
    with pytest.raises(RuntimeNotFound):
        into_future(body, interpreter=interpreter, runtime="missing")

    future = into_future(body, interpreter=interpreter)
    assert coordinator.run_until_complete(future) == 7
