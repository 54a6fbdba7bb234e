"""Conversion between host coroutines and native futures."""

from .awaitable import BridgedAwaitable, into_coroutine, is_native_future
from .future import BridgedFuture, FutureState, into_future
from .handles import CoroutineHandle
from .locals import bound_interpreter, inherit, scope
from .values import Converter, cross

__all__ = [
    "BridgedAwaitable",
    "BridgedFuture",
    "Converter",
    "CoroutineHandle",
    "FutureState",
    "bound_interpreter",
    "cross",
    "inherit",
    "into_coroutine",
    "into_future",
    "is_native_future",
    "scope",
]
