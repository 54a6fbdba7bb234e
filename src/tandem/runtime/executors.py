"""Executor factories and the optional asyncio I/O driver."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Coroutine, Dict, Optional

from .config import RuntimeConfig

__all__ = [
    "AVAILABLE_EXECUTORS",
    "AsyncioDriver",
    "ExecutorFactory",
    "current_thread",
    "thread_pool",
]

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[str, RuntimeConfig], Executor]


def _prefix(name: str, config: RuntimeConfig) -> str:
    return config.thread_name_prefix or f"tandem-{name}"


def thread_pool(name: str, config: RuntimeConfig) -> Executor:
    """Multi-threaded executor sized by ``config.worker_threads``."""
    return ThreadPoolExecutor(
        max_workers=config.resolved_workers(),
        thread_name_prefix=_prefix(name, config),
    )


def current_thread(name: str, config: RuntimeConfig) -> Executor:
    """Single worker thread; work runs strictly in submission order."""
    if config.worker_threads not in (None, 1):
        logger.warning(
            "Runtime %s uses a single-threaded executor; ignoring worker_threads=%s",
            name,
            config.worker_threads,
        )
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix=_prefix(name, config))


AVAILABLE_EXECUTORS: Dict[str, ExecutorFactory] = {
    "thread_pool": thread_pool,
    "current_thread": current_thread,
}


class AsyncioDriver:
    """Background thread running a private asyncio loop for native async work."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._loop is not None and self._loop.is_running()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            loop = asyncio.new_event_loop()
            ready = threading.Event()

            def _run_loop() -> None:
                asyncio.set_event_loop(loop)
                loop.call_soon(ready.set)
                try:
                    loop.run_forever()
                finally:
                    _drain(loop)
                    loop.close()

            thread = threading.Thread(
                target=_run_loop, daemon=True, name=f"tandem-{self.name}-io"
            )
            thread.start()
            ready.wait()
            self._loop = loop
            self._thread = thread

    def submit(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        loop = self._loop
        if loop is None:
            coro.close()
            raise RuntimeError(f"I/O driver {self.name} is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = None
            self._thread = None
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("I/O driver %s did not stop within %.1fs", self.name, timeout)


def _drain(loop: asyncio.AbstractEventLoop) -> None:
    pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
    loop.run_until_complete(loop.shutdown_asyncgens())
