"""Coroutine handles: single-use claims on host coroutine objects."""

from __future__ import annotations

import inspect
import threading
import weakref
from typing import Any, Coroutine, Optional

from ..exceptions import AlreadyConsumed

__all__ = ["CoroutineHandle"]

_claimed: "weakref.WeakSet[Any]" = weakref.WeakSet()
_claimed_lock = threading.Lock()


class CoroutineHandle:
    """Non-owning reference to a host coroutine that may be consumed once."""

    __slots__ = ("_coro", "_consumed", "__weakref__")

    def __init__(self, coro: Coroutine[Any, Any, Any]) -> None:
        if not inspect.iscoroutine(coro):
            raise TypeError(
                f"expected a coroutine object, got {type(coro).__name__}"
            )
        self._coro: Optional[Coroutine[Any, Any, Any]] = coro
        self._consumed = False

    def __repr__(self) -> str:
        name = getattr(self._coro, "__qualname__", "?") if self._coro else "released"
        return f"<CoroutineHandle {name} consumed={self._consumed}>"

    @property
    def name(self) -> str:
        if self._coro is None:
            return "<released>"
        return getattr(self._coro, "__qualname__", type(self._coro).__name__)

    @property
    def consumed(self) -> bool:
        return self._consumed

    def claim(self) -> Coroutine[Any, Any, Any]:
        """Take the coroutine out of the handle; a second claim fails."""
        coro = self._coro
        if self._consumed or coro is None:
            raise AlreadyConsumed(f"coroutine {self.name} was already converted")
        if inspect.getcoroutinestate(coro) != inspect.CORO_CREATED:
            raise AlreadyConsumed(f"coroutine {self.name} was already awaited")
        with _claimed_lock:
            if coro in _claimed:
                raise AlreadyConsumed(f"coroutine {self.name} was already converted")
            _claimed.add(coro)
        self._consumed = True
        return coro

    def claimed_coroutine(self) -> Coroutine[Any, Any, Any]:
        """Return the coroutine taken by :meth:`claim`."""
        if not self._consumed or self._coro is None:
            raise AlreadyConsumed(f"coroutine {self.name} is not available")
        return self._coro

    def release(self) -> None:
        """Drop the reference; closes the coroutine if it never started."""
        coro, self._coro = self._coro, None
        if coro is not None and inspect.getcoroutinestate(coro) == inspect.CORO_CREATED:
            coro.close()

    @classmethod
    def of(cls, obj: Any) -> "CoroutineHandle":
        if isinstance(obj, cls):
            return obj
        return cls(obj)
