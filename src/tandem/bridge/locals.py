"""Context-local binding of the host interpreter.

Host tasks run inside the context the coordinator binds its interpreter in,
and native work spawned from them runs inside a copy of that context, so the
binding is inherited across the boundary without being passed around.
"""

from __future__ import annotations

import contextvars
import functools
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from ..interpreter import Interpreter, _bind, _bound, _unbind

__all__ = ["bound_interpreter", "inherit", "scope"]

T = TypeVar("T")


@contextmanager
def scope(interpreter: Interpreter) -> Iterator[Interpreter]:
    """Bind ``interpreter`` as the active one for the enclosed block."""
    token = _bind(interpreter)
    try:
        yield interpreter
    finally:
        _unbind(token)


def bound_interpreter() -> Optional[Interpreter]:
    """Return the interpreter bound to this context, if any."""
    return _bound()


def inherit(func: Callable[..., T], *args: Any, **kwargs: Any) -> Callable[[], T]:
    """Return a thunk that runs ``func`` in a snapshot of the caller's context."""
    ctx = contextvars.copy_context()
    return functools.partial(ctx.run, func, *args, **kwargs)
