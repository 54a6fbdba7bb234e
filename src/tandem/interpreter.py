"""Exclusive access to the host interpreter.

The host interpreter is the asyncio event loop that owns coroutine objects
together with the state they touch. Any thread that wants to inspect or
mutate that state (creating tasks, cancelling them, closing coroutines) must
do so while holding the interpreter's access lock. The lock is reentrant for
the owning thread and exclusive across threads, and it can be temporarily
released with :meth:`Interpreter.allow_threads` while the owner blocks in
the event loop's I/O wait.
"""

from __future__ import annotations

import asyncio
import contextvars
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, TypeVar

from .exceptions import InterpreterShutdown

__all__ = [
    "Interpreter",
    "current_interpreter",
    "get_interpreter",
    "set_interpreter",
    "with_interpreter",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ACTIVE: contextvars.ContextVar[Optional["Interpreter"]] = contextvars.ContextVar(
    "tandem_active_interpreter", default=None
)


class Interpreter:
    """Host event loop plus the lock that serializes access to it."""

    def __init__(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        *,
        name: str = "host",
    ) -> None:
        self.name = name
        self._loop = loop
        self._cond = threading.Condition(threading.Lock())
        self._owner: Optional[int] = None
        self._depth = 0
        self._closed = False

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Interpreter {self.name!r} {state}>"

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        """Return the host loop, creating it on first use."""
        with self._cond:
            if self._closed:
                raise InterpreterShutdown(f"interpreter {self.name!r} has shut down")
            if self._loop is None:
                self._loop = asyncio.new_event_loop()
            return self._loop

    def shutdown(self) -> None:
        """Tear the interpreter down; later acquisitions fail."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self.close_loop()
        logger.debug("Interpreter %s shut down", self.name)

    def close_loop(self) -> bool:
        """Close the host loop of a shut-down interpreter once it is idle.

        A loop still being driven is left open; its driver calls this again
        on the way out. Returns ``True`` when the loop is closed afterwards.
        """
        with self._cond:
            if not self._closed:
                return False
            loop = self._loop
        if loop is None or loop.is_closed():
            return True
        if loop.is_running():
            return False
        loop.close()
        return True

    # ------------------------------------------------------------------ #
    # Access lock
    # ------------------------------------------------------------------ #
    def holds_access(self) -> bool:
        """Return ``True`` when the calling thread owns the access lock."""
        return self._owner == threading.get_ident()

    def _acquire(self) -> None:
        me = threading.get_ident()
        with self._cond:
            if self._closed:
                raise InterpreterShutdown(f"interpreter {self.name!r} has shut down")
            if self._owner == me:
                self._depth += 1
                return
            while self._owner is not None:
                self._cond.wait()
                if self._closed:
                    raise InterpreterShutdown(
                        f"interpreter {self.name!r} has shut down"
                    )
            self._owner = me
            self._depth = 1

    def _release(self) -> None:
        with self._cond:
            if self._owner != threading.get_ident():
                raise RuntimeError("cannot release interpreter access not held")
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
                self._cond.notify()

    @contextmanager
    def acquire(self) -> Iterator["Interpreter"]:
        """Scoped acquisition of exclusive access."""
        self._acquire()
        try:
            yield self
        finally:
            self._release()

    def with_access(self, func: Callable[["Interpreter"], T]) -> T:
        with self.acquire():
            return func(self)

    @contextmanager
    def allow_threads(self) -> Iterator[None]:
        """Release access held by this thread for the duration of the block.

        The recursion depth is restored afterwards, even if the interpreter
        shut down in the meantime, so the caller's own release still pairs.
        """
        me = threading.get_ident()
        with self._cond:
            depth = self._depth if self._owner == me else 0
            if depth:
                self._owner = None
                self._depth = 0
                self._cond.notify()
        try:
            yield
        finally:
            if depth:
                with self._cond:
                    while self._owner is not None:
                        self._cond.wait()
                    self._owner = me
                    self._depth = depth


def with_interpreter(
    func: Callable[[Interpreter], T], interpreter: Optional[Interpreter] = None
) -> T:
    """Call ``func`` with exclusive access to ``interpreter``."""
    target = interpreter or current_interpreter()
    with target.acquire():
        return func(target)


_default_lock = threading.Lock()
_default: Optional[Interpreter] = None


def get_interpreter() -> Interpreter:
    """Return the process-wide default interpreter, creating it on first use."""
    global _default
    with _default_lock:
        if _default is None:
            _default = Interpreter()
        return _default


def set_interpreter(interpreter: Optional[Interpreter]) -> Optional[Interpreter]:
    """Replace the process-wide default interpreter, returning the previous one."""
    global _default
    with _default_lock:
        previous, _default = _default, interpreter
        return previous


def current_interpreter() -> Interpreter:
    """Return the interpreter bound to the calling context, else the default."""
    active = _ACTIVE.get()
    if active is not None:
        return active
    return get_interpreter()


def _bind(interpreter: Optional[Interpreter]) -> contextvars.Token:
    return _ACTIVE.set(interpreter)


def _unbind(token: contextvars.Token) -> None:
    _ACTIVE.reset(token)


def _bound() -> Optional[Interpreter]:
    return _ACTIVE.get()

