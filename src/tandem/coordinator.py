"""Event-loop ownership: which thread drives the host loop, and for how long.

The host loop must run on the main thread so it can own signal handling.
Native runtimes live on their own background threads via the runtime
registry. The coordinator's blocking drivers hand the main thread to the
host loop and take it back when the target settles or a stop is requested.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from .bridge.awaitable import BridgedAwaitable, into_coroutine, is_native_future
from .bridge.locals import scope
from .bridge.values import Converter
from .exceptions import AlreadyRunning, InterpreterShutdown, ValidationError
from .interpreter import Interpreter, get_interpreter, set_interpreter
from .runtime import (
    DEFAULT_RUNTIME,
    RuntimeConfig,
    RuntimeRegistry,
    ShutdownReport,
    default_registry,
    use_registry,
)
from .utils.platform_utils import on_main_thread, shutdown_signals

__all__ = ["EventLoopCoordinator", "LoopState", "main", "run"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

STOP_POLL_INTERVAL = 0.05


class LoopState(Enum):
    """Coordinator lifecycle."""

    NOT_STARTED = "not_started"
    HOST_LOOP_RUNNING = "host_loop_running"
    STOPPED = "stopped"


class EventLoopCoordinator:
    """Owns the main thread's host loop and its blocking drivers."""

    def __init__(
        self,
        interpreter: Optional[Interpreter] = None,
        *,
        registry: Optional[RuntimeRegistry] = None,
        require_main_thread: bool = True,
        handle_signals: bool = True,
    ) -> None:
        self.interpreter = interpreter or get_interpreter()
        self.registry = registry
        self.require_main_thread = require_main_thread
        self.handle_signals = handle_signals
        self._lock = threading.Lock()
        self._state = LoopState.NOT_STARTED
        self._closed = False

    def __repr__(self) -> str:
        return f"<EventLoopCoordinator {self._state.value} {self.interpreter!r}>"

    @property
    def state(self) -> LoopState:
        return self._state

    # ------------------------------------------------------------------ #
    # Blocking drivers
    # ------------------------------------------------------------------ #
    def run_until_complete(self, target: Any, *, convert: Optional[Converter] = None) -> Any:
        """Drive the host loop until ``target`` settles and return its result.

        ``target`` may be a coroutine, any host awaitable (including a
        ``BridgedAwaitable``), a native future, or a callable to spawn on the
        default runtime. With signal handling enabled, SIGINT/SIGTERM cancel
        the driven task and surface here as ``KeyboardInterrupt``.
        """
        self._enter(target)
        loop: Optional[asyncio.AbstractEventLoop] = None
        installed: List[int] = []
        interrupted: List[bool] = []
        try:
            loop = self.interpreter.loop
            with scope(self.interpreter), use_registry(self.registry):
                coro = self._as_coroutine(target, convert)
                task = loop.create_task(coro)
                if self.handle_signals and on_main_thread():
                    installed = self._install_signal_handlers(
                        loop, functools.partial(_interrupt, task, interrupted)
                    )
                with self.interpreter.allow_threads():
                    asyncio.set_event_loop(loop)
                    try:
                        return loop.run_until_complete(task)
                    except asyncio.CancelledError:
                        if interrupted:
                            raise KeyboardInterrupt from None
                        raise
                    finally:
                        asyncio.set_event_loop(None)
        finally:
            self._remove_signal_handlers(loop, installed)
            self._leave()

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        """Drive the host loop until a stop is requested.

        A stop comes from :meth:`request_stop` (any thread), from
        ``stop_event`` being set, or from SIGINT/SIGTERM when signal handling
        is enabled.
        """
        self._enter(None)
        loop: Optional[asyncio.AbstractEventLoop] = None
        installed: List[int] = []
        try:
            loop = self.interpreter.loop
            if self.handle_signals and on_main_thread():
                installed = self._install_signal_handlers(loop, self.request_stop)
            if stop_event is not None:
                loop.call_soon(self._poll_stop_event, loop, stop_event)
            with self.interpreter.allow_threads(), scope(self.interpreter), use_registry(
                self.registry
            ):
                asyncio.set_event_loop(loop)
                try:
                    loop.run_forever()
                finally:
                    asyncio.set_event_loop(None)
        finally:
            self._remove_signal_handlers(loop, installed)
            self._leave()

    def request_stop(self) -> None:
        """Ask the running host loop to stop; safe from any thread."""
        if self._state is not LoopState.HOST_LOOP_RUNNING:
            return
        try:
            self.interpreter.loop.call_soon_threadsafe(self.interpreter.loop.stop)
        except RuntimeError:
            logger.debug("Stop requested after host loop closed")

    # ------------------------------------------------------------------ #
    # Teardown
    # ------------------------------------------------------------------ #
    def close(self, grace_period: Optional[float] = None) -> List[ShutdownReport]:
        """Cancel leftover host tasks, shut down runtimes, tear down the host."""
        with self._lock:
            if self._state is LoopState.HOST_LOOP_RUNNING:
                raise AlreadyRunning("cannot close the coordinator while its loop runs")
            if self._closed:
                return []
            self._closed = True

        reports: List[ShutdownReport] = []
        try:
            if not self.interpreter.closed:
                loop = self.interpreter.loop
                with self.interpreter.allow_threads(), scope(self.interpreter):
                    _cancel_all_tasks(loop)
                    loop.run_until_complete(loop.shutdown_asyncgens())
                    loop.run_until_complete(loop.shutdown_default_executor())
            registry = self.registry or default_registry()
            reports = registry.shutdown_all(grace_period)
        finally:
            self.interpreter.shutdown()
            self._state = LoopState.STOPPED
        logger.info("Coordinator closed (%d runtime(s) shut down)", len(reports))
        return reports

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _enter(self, target: Any) -> None:
        try:
            with self._lock:
                if self._state is LoopState.HOST_LOOP_RUNNING or _loop_running():
                    raise AlreadyRunning("a blocking driver is already active")
                if self.require_main_thread and not on_main_thread():
                    raise ValidationError("the host loop must be driven from the main thread")
                if self.interpreter.closed:
                    raise InterpreterShutdown(
                        f"interpreter {self.interpreter.name!r} has shut down"
                    )
                self._state = LoopState.HOST_LOOP_RUNNING
        except BaseException:
            if inspect.iscoroutine(target):
                target.close()
            raise

    def _leave(self) -> None:
        with self._lock:
            self._state = LoopState.STOPPED
        if self.interpreter.closed:
            self.interpreter.close_loop()

    def _as_coroutine(self, target: Any, convert: Optional[Converter]) -> Awaitable[Any]:
        if inspect.iscoroutine(target):
            return target
        if inspect.iscoroutinefunction(target):
            return target()
        if isinstance(target, BridgedAwaitable) or inspect.isawaitable(target):
            return _await(target)
        if is_native_future(target) or callable(target):
            return _await(
                into_coroutine(target, interpreter=self.interpreter, convert=convert)
            )
        raise TypeError(f"cannot drive {type(target).__name__} on the host loop")

    def _install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop, callback: Callable[[], None]
    ) -> List[int]:
        installed = []
        for signum in shutdown_signals():
            try:
                loop.add_signal_handler(signum, callback)
            except (NotImplementedError, RuntimeError, ValueError):
                continue
            installed.append(signum)
        return installed

    @staticmethod
    def _remove_signal_handlers(
        loop: Optional[asyncio.AbstractEventLoop], installed: List[int]
    ) -> None:
        if loop is None or loop.is_closed():
            return
        for signum in installed:
            loop.remove_signal_handler(signum)

    def _poll_stop_event(
        self, loop: asyncio.AbstractEventLoop, stop_event: threading.Event
    ) -> None:
        if stop_event.is_set():
            loop.stop()
            return
        loop.call_later(STOP_POLL_INTERVAL, self._poll_stop_event, loop, stop_event)


async def _await(awaitable: Awaitable[T]) -> T:
    return await awaitable


def _interrupt(task: "asyncio.Task[Any]", interrupted: List[bool]) -> None:
    logger.info("Shutdown signal received; cancelling %s", task.get_name())
    interrupted.append(True)
    task.cancel()


def _loop_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


def _cancel_all_tasks(loop: asyncio.AbstractEventLoop) -> None:
    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    if not pending:
        return
    for task in pending:
        task.cancel()
    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    for task in pending:
        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                "Host task %s failed during shutdown: %r",
                task.get_name(),
                task.exception(),
            )


def run(
    entry: Any,
    *,
    runtime_config: Optional[RuntimeConfig] = None,
    registry: Optional[RuntimeRegistry] = None,
    grace_period: Optional[float] = None,
) -> Any:
    """Program entry point: initialize the default runtime, drive ``entry`` once.

    ``entry`` is a coroutine, a coroutine function, or anything
    :meth:`EventLoopCoordinator.run_until_complete` accepts. A fresh host
    interpreter is installed as the process default for the duration.
    """
    registry = registry or default_registry()
    options: Dict[str, Any] = {}
    try:
        if runtime_config is None:
            from .config import configure_registry, load_config

            config = load_config()
            runtime_config = configure_registry(registry, config)
            options = dict(config.get("coordinator") or {})
        registry.initialize(DEFAULT_RUNTIME, runtime_config, strict=False)
    except BaseException:
        if inspect.iscoroutine(entry):
            entry.close()
        raise

    interpreter = Interpreter()
    previous = set_interpreter(interpreter)
    coordinator = EventLoopCoordinator(
        interpreter,
        registry=registry,
        require_main_thread=bool(options.get("require_main_thread", True)),
        handle_signals=bool(options.get("handle_signals", True)),
    )
    try:
        return coordinator.run_until_complete(entry)
    finally:
        try:
            coordinator.close(grace_period)
        finally:
            set_interpreter(previous)


def main(
    func: Optional[Callable[..., Awaitable[Any]]] = None,
    *,
    runtime_config: Optional[RuntimeConfig] = None,
) -> Any:
    """Decorator turning an ``async def`` into a blocking program entry point."""

    def decorate(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Any]:
        if not inspect.iscoroutinefunction(fn):
            raise ValidationError(f"{fn.__qualname__} must be an async function")

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return run(fn(*args, **kwargs), runtime_config=runtime_config)

        return wrapper

    if func is not None:
        return decorate(func)
    return decorate
