from __future__ import annotations

import threading
import time

import pytest

from tandem.bridge import bound_interpreter, inherit, scope
from tandem.exceptions import InterpreterShutdown
from tandem.interpreter import (
    Interpreter,
    current_interpreter,
    get_interpreter,
    set_interpreter,
    with_interpreter,
)


def test_access_is_reentrant_for_the_owner() -> None:
    interp = Interpreter()
    with interp.acquire():
        with interp.acquire():
            assert interp.holds_access()
        assert interp.holds_access()
    assert not interp.holds_access()
    interp.shutdown()


def test_access_is_exclusive_across_threads() -> None:
    interp = Interpreter()
    order = []
    with interp.acquire():
        waiter = threading.Thread(
            target=lambda: interp.with_access(lambda _: order.append("other"))
        )
        waiter.start()
        time.sleep(0.05)
        order.append("owner")
    waiter.join(timeout=2)
    assert order == ["owner", "other"]
    interp.shutdown()


def test_allow_threads_releases_and_restores_depth() -> None:
    interp = Interpreter()
    seen = []
    with interp.acquire():
        with interp.acquire():
            with interp.allow_threads():
                assert not interp.holds_access()
                worker = threading.Thread(
                    target=lambda: seen.append(interp.with_access(lambda i: i.holds_access()))
                )
                worker.start()
                worker.join(timeout=2)
            assert interp.holds_access()
        assert interp.holds_access()
    assert not interp.holds_access()
    assert seen == [True]
    interp.shutdown()


def test_release_without_access_is_an_error() -> None:
    interp = Interpreter()
    with pytest.raises(RuntimeError):
        interp._release()
    interp.shutdown()


def test_shutdown_rejects_new_access_and_wakes_waiters() -> None:
    interp = Interpreter()
    errors = []

    def contend() -> None:
        try:
            interp.with_access(lambda _: None)
        except InterpreterShutdown as exc:
            errors.append(exc)

    with interp.acquire():
        waiter = threading.Thread(target=contend)
        waiter.start()
        time.sleep(0.05)
        interp.shutdown()
    waiter.join(timeout=2)

    assert len(errors) == 1
    assert interp.closed
    with pytest.raises(InterpreterShutdown):
        interp.loop
    with pytest.raises(InterpreterShutdown):
        with interp.acquire():
            pass


def test_loop_is_created_lazily_and_closed_on_shutdown() -> None:
    interp = Interpreter()
    loop = interp.loop
    assert interp.loop is loop
    interp.shutdown()
    assert loop.is_closed()


def test_close_loop_only_closes_after_shutdown() -> None:
    interp = Interpreter()
    loop = interp.loop
    assert not interp.close_loop()
    assert not loop.is_closed()
    interp.shutdown()
    assert interp.close_loop()
    assert loop.is_closed()


def test_with_interpreter_uses_the_bound_interpreter() -> None:
    interp = Interpreter(name="bound")
    with scope(interp):
        assert current_interpreter() is interp
        assert with_interpreter(lambda i: i.name) == "bound"
    assert bound_interpreter() is None
    interp.shutdown()


def test_set_interpreter_returns_previous_default() -> None:
    original = get_interpreter()
    replacement = Interpreter(name="replacement")
    try:
        assert set_interpreter(replacement) is original
        assert get_interpreter() is replacement
        assert current_interpreter() is replacement
    finally:
        set_interpreter(original)
        replacement.shutdown()


def test_inherit_carries_the_binding_to_other_threads() -> None:
    interp = Interpreter(name="carried")
    seen = []
    with scope(interp):
        thunk = inherit(lambda: bound_interpreter())
    worker = threading.Thread(target=lambda: seen.append(thunk()))
    worker.start()
    worker.join(timeout=2)
    assert seen == [interp]
    interp.shutdown()
