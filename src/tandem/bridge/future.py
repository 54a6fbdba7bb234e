"""Coroutine -> native future conversion.

``into_future`` claims a host coroutine and returns a :class:`BridgedFuture`
that native threads can block on, poll, or attach continuations to. The
coroutine itself only ever runs on the host loop: the first step is posted
with ``call_soon_threadsafe`` and the task's completion settles the future
from the loop thread.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import threading
import weakref
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional, Union

from ..exceptions import Cancelled, ConversionError, InterpreterShutdown, ValidationError
from ..interpreter import Interpreter, current_interpreter
from .handles import CoroutineHandle
from .locals import scope
from .values import TO_NATIVE, Converter, cross

if TYPE_CHECKING:
    from ..runtime.handle import RuntimeHandle

__all__ = ["BridgedFuture", "FutureState", "into_future"]

logger = logging.getLogger(__name__)

DoneCallback = Callable[["BridgedFuture"], None]


class FutureState(Enum):
    """Completion state of a bridged future."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class _TaskSlot:
    """Shared between a future and its finalizer; never references the future."""

    __slots__ = ("task",)

    def __init__(self) -> None:
        self.task: Optional[asyncio.Task] = None


class BridgedFuture:
    """Native future whose value is produced by a coroutine on the host loop."""

    def __init__(
        self,
        handle: CoroutineHandle,
        interpreter: Interpreter,
        *,
        convert: Optional[Converter] = None,
    ) -> None:
        self.name = handle.name
        self._handle = handle
        self._interpreter = interpreter
        self._convert = convert
        self._cond = threading.Condition()
        self._state = FutureState.PENDING
        self._value: Any = None
        self._error: Optional[BaseException] = None
        self._callbacks: List[DoneCallback] = []
        self._cancel_requested = False
        self._slot = _TaskSlot()
        self._finalizer = weakref.finalize(
            self, _abandon, interpreter, handle, self._slot
        )
        self._finalizer.atexit = False

    def __repr__(self) -> str:
        return f"<BridgedFuture {self.name} state={self._state.value}>"

    # ------------------------------------------------------------------ #
    # Inspection (never enters the interpreter)
    # ------------------------------------------------------------------ #
    def poll(self) -> FutureState:
        return self._state

    def done(self) -> bool:
        return self._state is not FutureState.PENDING

    def cancelled(self) -> bool:
        return self._state is FutureState.CANCELLED

    def running(self) -> bool:
        return self._state is FutureState.PENDING and self._slot.task is not None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until settled; return ``False`` on timeout."""
        with self._cond:
            return self._cond.wait_for(self.done, timeout)

    def result(self, timeout: Optional[float] = None) -> Any:
        if not self.wait(timeout):
            raise concurrent.futures.TimeoutError(f"{self.name} did not settle")
        if self._state is FutureState.CANCELLED:
            raise Cancelled(f"coroutine {self.name} was cancelled")
        if self._state is FutureState.REJECTED:
            assert self._error is not None
            raise self._error
        return self._value

    def exception(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        if not self.wait(timeout):
            raise concurrent.futures.TimeoutError(f"{self.name} did not settle")
        if self._state is FutureState.CANCELLED:
            raise Cancelled(f"coroutine {self.name} was cancelled")
        return self._error

    def add_done_callback(self, fn: DoneCallback) -> None:
        """Register a continuation; runs immediately when already settled."""
        with self._cond:
            if self._state is FutureState.PENDING:
                self._callbacks.append(fn)
                return
        self._invoke(fn)

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #
    def cancel(self) -> bool:
        """Request cancellation of the wrapped coroutine.

        Before the coroutine starts it is closed and the future is cancelled
        on the spot. Afterwards the request is posted to the host loop and
        the coroutine sees it at its next suspension point.
        """
        if self.done():
            return False
        try:
            with self._interpreter.acquire():
                if self.done():
                    return False
                self._cancel_requested = True
                task = self._slot.task
                if task is None:
                    self._handle.release()
                    return self._transition(FutureState.CANCELLED)
                self._interpreter.loop.call_soon_threadsafe(task.cancel)
                return True
        except (InterpreterShutdown, RuntimeError):
            # Nothing will ever drive the coroutine again.
            self._handle.release()
            return self._transition(FutureState.CANCELLED)

    # ------------------------------------------------------------------ #
    # Host-loop side
    # ------------------------------------------------------------------ #
    def _begin(self) -> None:
        with self._interpreter.acquire():
            if self.done():
                return
            coro = self._handle.claimed_coroutine()
            with scope(self._interpreter):
                task = self._interpreter.loop.create_task(coro)
            self._slot.task = task
            task.add_done_callback(functools.partial(_task_done, weakref.ref(self)))
        logger.debug("Started %s on host loop", self.name)

    def _resolve(self, value: Any) -> None:
        try:
            value = cross(value, self._convert, TO_NATIVE)
        except ConversionError as exc:
            self._reject(exc)
            return
        self._transition(FutureState.RESOLVED, value=value)

    def _reject(self, error: BaseException) -> None:
        self._transition(FutureState.REJECTED, error=error)

    def _transition(
        self,
        state: FutureState,
        *,
        value: Any = None,
        error: Optional[BaseException] = None,
    ) -> bool:
        with self._cond:
            if self._state is not FutureState.PENDING:
                logger.warning(
                    "Ignoring settlement of %s as %s: already %s",
                    self.name,
                    state.value,
                    self._state.value,
                )
                return False
            self._state = state
            self._value = value
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
            self._cond.notify_all()
        self._finalizer.detach()
        for fn in callbacks:
            self._invoke(fn)
        return True

    def _invoke(self, fn: DoneCallback) -> None:
        try:
            fn(self)
        except Exception:
            logger.exception("Done callback for %s raised", self.name)


def _task_done(ref: "weakref.ref[BridgedFuture]", task: asyncio.Task) -> None:
    future = ref()
    if future is None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Abandoned coroutine failed: %r", task.exception())
        return
    with future._interpreter.acquire():
        if task.cancelled():
            future._transition(FutureState.CANCELLED)
            return
        error = task.exception()
        if error is not None:
            future._reject(error)
        else:
            future._resolve(task.result())


def _start(ref: "weakref.ref[BridgedFuture]") -> None:
    future = ref()
    if future is not None:
        future._begin()


def _abandon(interpreter: Interpreter, handle: CoroutineHandle, slot: _TaskSlot) -> None:
    """Finalizer: a pending future was dropped, so cancel what it wraps."""
    task = slot.task
    try:
        loop = interpreter.loop
        if task is not None:
            if not task.done():
                loop.call_soon_threadsafe(task.cancel)
        else:
            loop.call_soon_threadsafe(_release_unstarted, interpreter, handle)
    except (InterpreterShutdown, RuntimeError):
        return
    logger.debug("Bridged future for %s dropped before settling", handle.name)


def _release_unstarted(interpreter: Interpreter, handle: CoroutineHandle) -> None:
    with interpreter.acquire():
        handle.release()


def into_future(
    coroutine_handle: Union[CoroutineHandle, Any],
    *,
    interpreter: Optional[Interpreter] = None,
    runtime: Union[str, "RuntimeHandle", None] = None,
    convert: Optional[Converter] = None,
) -> BridgedFuture:
    """Convert a host coroutine into a native :class:`BridgedFuture`.

    The coroutine does not start until the host loop runs. Converting the
    same coroutine twice raises ``AlreadyConsumed``.
    """
    handle = CoroutineHandle.of(coroutine_handle)
    target = interpreter or current_interpreter()
    tracker = None
    if runtime is not None:
        from ..runtime import resolve_runtime

        tracker = resolve_runtime(runtime, create=False)
    with target.acquire():
        handle.claim()
        future = BridgedFuture(handle, target, convert=convert)
        try:
            target.loop.call_soon_threadsafe(_start, weakref.ref(future))
        except RuntimeError as exc:
            future._finalizer.detach()
            handle.release()
            raise InterpreterShutdown(
                f"host loop of {target.name!r} is closed"
            ) from exc
    if tracker is not None:
        try:
            tracker.track(future)
        except ValidationError:
            future.cancel()
            raise
    return future
