"""Runtime handles: a named executor plus its in-flight bookkeeping."""

from __future__ import annotations

import functools
import inspect
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..bridge.locals import inherit
from ..exceptions import ValidationError
from .config import RuntimeConfig
from .executors import AsyncioDriver

__all__ = ["RuntimeHandle", "RuntimeState", "ShutdownReport"]

logger = logging.getLogger(__name__)


class RuntimeState(Enum):
    """Lifecycle of a registry entry."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    RUNNING = "running"
    SHUT_DOWN = "shut_down"


@dataclass
class ShutdownReport:
    """Outcome of draining a runtime."""

    runtime: str
    drained: int = 0
    cancelled: List[str] = field(default_factory=list)
    still_running: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.cancelled and not self.still_running


class RuntimeHandle:
    """Spawns native work and drains it on shutdown."""

    def __init__(
        self,
        name: str,
        executor: Executor,
        config: RuntimeConfig,
        *,
        io_driver: Optional[AsyncioDriver] = None,
        on_shutdown: Optional[Callable[["RuntimeHandle"], None]] = None,
    ) -> None:
        self.name = name
        self.config = config
        self._executor = executor
        self._io = io_driver
        self._blocking: Optional[ThreadPoolExecutor] = None
        self._on_shutdown = on_shutdown
        self._cond = threading.Condition()
        self._inflight: Dict[int, Tuple[Any, str]] = {}
        self._closing = False
        self._state = RuntimeState.RUNNING

    def __repr__(self) -> str:
        return f"<RuntimeHandle {self.name!r} {self._state.value}>"

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def executor(self) -> Executor:
        return self._executor

    @property
    def inflight(self) -> int:
        with self._cond:
            return len(self._inflight)

    @property
    def has_io_driver(self) -> bool:
        return self._io is not None

    # ------------------------------------------------------------------ #
    # Spawning
    # ------------------------------------------------------------------ #
    def spawn(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``fn`` on this runtime and return its native future.

        Plain callables go to the executor; coroutine functions go to the
        asyncio I/O driver. Either way the work runs in a copy of the
        caller's context.
        """
        self._check_open()
        label = _label(fn)
        if inspect.iscoroutinefunction(fn):
            if self._io is None:
                raise ValidationError(
                    f"runtime {self.name!r} has no asyncio I/O driver for {label}"
                )
            future = self._io.submit(fn(*args, **kwargs))
        else:
            future = self._executor.submit(inherit(fn, *args, **kwargs))
        self.track(future, label=label)
        return future

    def spawn_blocking(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``fn`` on the dedicated pool for long blocking calls."""
        self._check_open()
        with self._cond:
            if self._blocking is None:
                self._blocking = ThreadPoolExecutor(
                    max_workers=self.config.blocking_threads,
                    thread_name_prefix=f"tandem-{self.name}-blocking",
                )
            pool = self._blocking
        future = pool.submit(inherit(fn, *args, **kwargs))
        self.track(future, label=_label(fn))
        return future

    def track(self, future: Any, label: Optional[str] = None) -> None:
        """Include ``future`` in this runtime's shutdown drain."""
        key = id(future)
        with self._cond:
            self._check_open()
            self._inflight[key] = (future, label or _label(future))
        future.add_done_callback(functools.partial(self._untrack, key))

    def _untrack(self, key: int, _future: Any) -> None:
        with self._cond:
            self._inflight.pop(key, None)
            self._cond.notify_all()

    def _check_open(self) -> None:
        if self._closing or self._state is RuntimeState.SHUT_DOWN:
            raise ValidationError(f"runtime {self.name!r} is shutting down")

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #
    def shutdown(self, grace_period: Optional[float] = None) -> ShutdownReport:
        """Drain in-flight work, force-cancel stragglers, stop the executor."""
        grace = self.config.grace_period if grace_period is None else grace_period
        with self._cond:
            if self._closing or self._state is RuntimeState.SHUT_DOWN:
                return ShutdownReport(self.name)
            self._closing = True
            total = len(self._inflight)
            self._cond.wait_for(lambda: not self._inflight, timeout=grace)
            leftovers = list(self._inflight.values())

        report = ShutdownReport(self.name, drained=total - len(leftovers))
        for future, label in leftovers:
            if future.cancel():
                report.cancelled.append(label)
            else:
                report.still_running.append(label)
        if report.cancelled:
            logger.warning(
                "Runtime %s force-cancelled %d task(s) after %.1fs grace: %s",
                self.name,
                len(report.cancelled),
                grace,
                ", ".join(report.cancelled),
            )
        if report.still_running:
            logger.warning(
                "Runtime %s abandoned %d running task(s) that could not be cancelled: %s",
                self.name,
                len(report.still_running),
                ", ".join(report.still_running),
            )

        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._blocking is not None:
            self._blocking.shutdown(wait=False, cancel_futures=True)
        if self._io is not None:
            self._io.stop()

        with self._cond:
            self._state = RuntimeState.SHUT_DOWN
        if self._on_shutdown is not None:
            self._on_shutdown(self)
        logger.info(
            "Runtime %s shut down (drained=%d, cancelled=%d, still_running=%d)",
            self.name,
            report.drained,
            len(report.cancelled),
            len(report.still_running),
        )
        return report


def _label(obj: Any) -> str:
    for attr in ("name", "__qualname__"):
        value = getattr(obj, attr, None)
        if isinstance(value, str) and value:
            return value
    return type(obj).__name__
