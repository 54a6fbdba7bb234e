"""Native future -> host awaitable conversion."""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import threading
import weakref
from typing import TYPE_CHECKING, Any, Callable, Generator, Optional, Union

from ..exceptions import Cancelled, ConversionError, NativePanic
from ..interpreter import Interpreter, current_interpreter
from .values import TO_HOST, Converter, cross

if TYPE_CHECKING:
    from ..runtime.handle import RuntimeHandle

__all__ = ["BridgedAwaitable", "into_coroutine", "is_native_future"]

logger = logging.getLogger(__name__)


def is_native_future(obj: Any) -> bool:
    """Return ``True`` for objects exposing the ``concurrent.futures`` surface."""
    if isinstance(obj, asyncio.Future):
        return False
    return all(
        callable(getattr(obj, attr, None))
        for attr in ("add_done_callback", "cancel", "cancelled", "done", "result")
    )


class BridgedAwaitable:
    """Host-side awaitable that settles when a native future completes.

    The native future may finish on any thread; its completion is posted to
    the awaiting loop with ``call_soon_threadsafe`` and translated there.
    """

    def __init__(
        self,
        native: Any,
        interpreter: Interpreter,
        *,
        convert: Optional[Converter] = None,
        name: Optional[str] = None,
    ) -> None:
        self.name = name or _describe(native)
        self._native = native
        self._interpreter = interpreter
        self._convert = convert
        self._lock = threading.Lock()
        self._host_future: Optional[asyncio.Future] = None
        self._settled = False
        self._finalizer = weakref.finalize(self, _orphaned, native, self.name)
        self._finalizer.atexit = False

    def __repr__(self) -> str:
        return f"<BridgedAwaitable {self.name} settled={self._settled}>"

    @property
    def native(self) -> Any:
        return self._native

    @property
    def settled(self) -> bool:
        return self._settled

    def __await__(self) -> Generator[Any, None, Any]:
        return self._host_side().__await__()

    def _host_side(self) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._host_future is not None:
                return self._host_future
            self._finalizer.detach()
            with self._interpreter.acquire():
                host_future = loop.create_future()
                host_future.add_done_callback(self._on_host_done)
                self._host_future = host_future
        self._native.add_done_callback(functools.partial(_notify, loop, self))
        return host_future

    def _settle(self) -> None:
        """Runs on the host loop once the native future has completed."""
        with self._interpreter.acquire():
            if self._settled:
                logger.warning("Ignoring repeated settlement of %s", self.name)
                return
            self._settled = True
            host_future = self._host_future
            if host_future is None or host_future.done():
                return
            try:
                value = _translate(self._native, self._convert, self.name)
            except BaseException as exc:
                host_future.set_exception(exc)
            else:
                host_future.set_result(value)

    def _on_host_done(self, host_future: asyncio.Future) -> None:
        if not host_future.cancelled() or self._native.done():
            return
        if self._native.cancel():
            logger.debug("Host side of %s cancelled; native future cancelled", self.name)
        else:
            logger.debug(
                "Host side of %s cancelled; native future could not be stopped",
                self.name,
            )


def _translate(native: Any, convert: Optional[Converter], name: str) -> Any:
    """Return the native outcome as a host value or raise its host error."""
    if native.cancelled():
        raise Cancelled(f"native future {name} was cancelled")
    try:
        error = native.exception(timeout=0)
    except (concurrent.futures.CancelledError, Cancelled) as exc:
        raise Cancelled(f"native future {name} was cancelled") from exc
    if error is None:
        return cross(native.result(timeout=0), convert, TO_HOST)
    if isinstance(error, StopIteration):
        raise ConversionError(TO_HOST, "StopIteration", str(error)) from error
    if isinstance(error, Exception):
        raise error
    raise NativePanic(error, name) from error


def _notify(loop: asyncio.AbstractEventLoop, awaitable: BridgedAwaitable, _: Any) -> None:
    try:
        loop.call_soon_threadsafe(awaitable._settle)
    except RuntimeError:
        logger.warning(
            "Host loop closed before %s could be settled", awaitable.name
        )


def _orphaned(native: Any, name: str) -> None:
    """Finalizer: the awaitable was dropped without ever being awaited."""
    if native.done():
        return
    logger.warning("%s was never awaited; cancelling its native future", name)
    try:
        native.cancel()
    except Exception:
        logger.exception("Failed to cancel orphaned native future %s", name)


def _describe(obj: Any) -> str:
    for attr in ("name", "__qualname__"):
        value = getattr(obj, attr, None)
        if isinstance(value, str) and value:
            return value
    return type(obj).__name__


def into_coroutine(
    native_future: Union[Any, Callable[[], Any]],
    *,
    runtime: Union[str, "RuntimeHandle", None] = None,
    interpreter: Optional[Interpreter] = None,
    convert: Optional[Converter] = None,
) -> BridgedAwaitable:
    """Expose a native future (or a callable to spawn) as a host awaitable."""
    target = interpreter or current_interpreter()
    if is_native_future(native_future):
        native = native_future
        name = _describe(native_future)
    elif asyncio.iscoroutine(native_future) or isinstance(native_future, asyncio.Future):
        raise TypeError(
            f"{type(native_future).__name__} is already a host awaitable; "
            "use into_future() for host coroutines"
        )
    elif callable(native_future):
        from ..runtime import resolve_runtime

        name = _describe(native_future)
        native = resolve_runtime(runtime, create=True).spawn(native_future)
    else:
        raise TypeError(
            f"expected a native future or callable, got {type(native_future).__name__}"
        )
    return BridgedAwaitable(native, target, convert=convert, name=name)
