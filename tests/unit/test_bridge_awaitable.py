from __future__ import annotations

import asyncio
import concurrent.futures
import gc
import threading

import pytest

from tandem.bridge import (
    BridgedAwaitable,
    bound_interpreter,
    into_coroutine,
    into_future,
    is_native_future,
)
from tandem.exceptions import Cancelled, ConversionError, NativePanic


def _failed(error: BaseException) -> concurrent.futures.Future:
    future: concurrent.futures.Future = concurrent.futures.Future()
    future.set_exception(error)
    return future


def _resolved(value) -> concurrent.futures.Future:
    future: concurrent.futures.Future = concurrent.futures.Future()
    future.set_result(value)
    return future


def test_native_error_surfaces_on_the_host(coordinator, interpreter) -> None:
    awaitable = into_coroutine(_failed(RuntimeError("boom")), interpreter=interpreter)
    with pytest.raises(RuntimeError, match="boom"):
        coordinator.run_until_complete(awaitable)
    assert awaitable.settled


def test_spawned_callable_error_surfaces_on_the_host(coordinator, interpreter, runtime) -> None:
    def explode():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        coordinator.run_until_complete(
            into_coroutine(explode, runtime=runtime, interpreter=interpreter)
        )


def test_spawned_callable_result_is_returned(coordinator, interpreter, runtime) -> None:
    thread_names = []

    def work():
        thread_names.append(threading.current_thread().name)
        return 7

    result = coordinator.run_until_complete(
        into_coroutine(work, runtime=runtime, interpreter=interpreter)
    )
    assert result == 7
    assert thread_names and thread_names[0] != threading.current_thread().name


def test_abnormal_native_termination_becomes_native_panic(coordinator, interpreter) -> None:
    awaitable = into_coroutine(_failed(SystemExit("fatal")), interpreter=interpreter)
    with pytest.raises(NativePanic, match="SystemExit") as info:
        coordinator.run_until_complete(awaitable)
    assert isinstance(info.value.original, SystemExit)


def test_stop_iteration_cannot_cross_to_the_host(coordinator, interpreter) -> None:
    awaitable = into_coroutine(_failed(StopIteration()), interpreter=interpreter)
    with pytest.raises(ConversionError, match="to host"):
        coordinator.run_until_complete(awaitable)


def test_cancelled_native_future_raises_cancelled(coordinator, interpreter) -> None:
    native: concurrent.futures.Future = concurrent.futures.Future()
    native.cancel()
    with pytest.raises(Cancelled):
        coordinator.run_until_complete(into_coroutine(native, interpreter=interpreter))


def test_second_settlement_is_logged_and_ignored(coordinator, interpreter, caplog) -> None:
    awaitable = into_coroutine(_resolved(5), interpreter=interpreter)
    assert coordinator.run_until_complete(awaitable) == 5

    with caplog.at_level("WARNING", logger="tandem.bridge.awaitable"):
        awaitable._settle()

    assert "Ignoring repeated settlement" in caplog.text
    assert coordinator.run_until_complete(awaitable) == 5


def test_converter_applies_to_host_side_values(coordinator, interpreter) -> None:
    assert (
        coordinator.run_until_complete(
            into_coroutine(_resolved(42), interpreter=interpreter, convert=str)
        )
        == "42"
    )

    def refuse(value):
        raise ValueError("no host equivalent")

    with pytest.raises(ConversionError, match="no host equivalent"):
        coordinator.run_until_complete(
            into_coroutine(_resolved(object()), interpreter=interpreter, convert=refuse)
        )


def test_round_trip_through_both_conversions(coordinator, interpreter) -> None:
    async def compute():
        await asyncio.sleep(0)
        return "ok"

    async def main():
        native = into_future(compute(), interpreter=interpreter)
        return await into_coroutine(native, interpreter=interpreter)

    assert coordinator.run_until_complete(main()) == "ok"


def test_host_cancellation_cancels_the_native_future(coordinator, interpreter) -> None:
    native: concurrent.futures.Future = concurrent.futures.Future()
    awaitable = into_coroutine(native, interpreter=interpreter)

    async def waiter():
        return await awaitable

    async def main():
        task = asyncio.ensure_future(waiter())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    coordinator.run_until_complete(main())
    assert native.cancelled()


def test_unawaited_awaitable_cancels_its_native_future(interpreter, caplog) -> None:
    native: concurrent.futures.Future = concurrent.futures.Future()
    awaitable = into_coroutine(native, interpreter=interpreter)
    assert isinstance(awaitable, BridgedAwaitable)

    with caplog.at_level("WARNING", logger="tandem.bridge.awaitable"):
        del awaitable
        gc.collect()

    assert native.cancelled()
    assert "never awaited" in caplog.text


def test_native_work_inherits_the_host_binding(coordinator, interpreter, runtime) -> None:
    async def main():
        return await into_coroutine(bound_interpreter, runtime=runtime, interpreter=interpreter)

    assert coordinator.run_until_complete(main()) is interpreter


def test_host_objects_are_rejected(interpreter) -> None:
    async def body():
        return None

    coro = body()
    with pytest.raises(TypeError):
        into_coroutine(coro, interpreter=interpreter)
    coro.close()
    with pytest.raises(TypeError):
        into_coroutine(42, interpreter=interpreter)


def test_is_native_future_excludes_asyncio_futures(interpreter) -> None:
    assert is_native_future(concurrent.futures.Future())
    assert not is_native_future(interpreter.loop.create_future())
    assert not is_native_future(object())
