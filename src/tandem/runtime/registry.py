"""Process-wide table of named native runtimes."""

from __future__ import annotations

import contextvars
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

from ..exceptions import AlreadyInitialized, RuntimeNotFound
from .config import RuntimeConfig
from .executors import AsyncioDriver, ExecutorFactory, thread_pool
from .handle import RuntimeHandle, RuntimeState, ShutdownReport

__all__ = [
    "DEFAULT_RUNTIME",
    "RuntimeRegistry",
    "active_registry",
    "default_registry",
    "reset_default_registry",
    "resolve_runtime",
    "spawn",
    "spawn_blocking",
    "use_registry",
]

logger = logging.getLogger(__name__)

DEFAULT_RUNTIME = "default"


@dataclass
class _Entry:
    name: str
    factory: ExecutorFactory
    state: RuntimeState = RuntimeState.UNINITIALIZED
    handle: Optional[RuntimeHandle] = None
    cond: threading.Condition = field(default_factory=threading.Condition)


class RuntimeRegistry:
    """Named runtimes with one-time, race-free initialization.

    ``strict`` selects what a repeated ``initialize`` does once a runtime is
    running: return the existing handle (default) or raise
    ``AlreadyInitialized``.
    """

    def __init__(self, *, strict: bool = False) -> None:
        self.strict = strict
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def register(self, name: str, executor_factory: ExecutorFactory) -> None:
        with self._lock:
            entry = self._entries.get(name)
            if entry is not None:
                with entry.cond:
                    if entry.state in (RuntimeState.INITIALIZING, RuntimeState.RUNNING):
                        raise AlreadyInitialized(
                            f"runtime {name!r} is {entry.state.value}; cannot re-register"
                        )
            self._entries[name] = _Entry(name=name, factory=executor_factory)
        logger.debug("Registered runtime %s", name)

    def names(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def state(self, name: str) -> RuntimeState:
        return self._entry(name).state

    def initialize(
        self,
        name: str,
        config: Optional[RuntimeConfig] = None,
        *,
        strict: Optional[bool] = None,
    ) -> RuntimeHandle:
        """Bring ``name`` to RUNNING exactly once and return its handle."""
        entry = self._entry(name)
        strict = self.strict if strict is None else strict
        config = (config or RuntimeConfig()).validate()

        with entry.cond:
            while entry.state is RuntimeState.INITIALIZING:
                entry.cond.wait()
            if entry.state is RuntimeState.RUNNING:
                if strict:
                    raise AlreadyInitialized(f"runtime {name!r} is already initialized")
                assert entry.handle is not None
                return entry.handle
            entry.state = RuntimeState.INITIALIZING

        try:
            handle = self._build(entry, config)
        except BaseException:
            with entry.cond:
                entry.state = RuntimeState.UNINITIALIZED
                entry.cond.notify_all()
            raise

        with entry.cond:
            entry.handle = handle
            entry.state = RuntimeState.RUNNING
            entry.cond.notify_all()
        logger.info(
            "Runtime %s initialized (workers=%d, io_driver=%s)",
            name,
            config.resolved_workers(),
            config.io_driver,
        )
        return handle

    def get(self, name: str) -> RuntimeHandle:
        with self._lock:
            entry = self._entries.get(name)
        if entry is None or entry.state is not RuntimeState.RUNNING:
            raise RuntimeNotFound(f"runtime {name!r} is not initialized")
        assert entry.handle is not None
        return entry.handle

    def ensure(self, name: str, config: Optional[RuntimeConfig] = None) -> RuntimeHandle:
        """Return the running handle for ``name``, initializing it if needed."""
        try:
            return self.get(name)
        except RuntimeNotFound:
            return self.initialize(name, config, strict=False)

    def shutdown(self, name: str, grace_period: Optional[float] = None) -> ShutdownReport:
        return self.get(name).shutdown(grace_period)

    def shutdown_all(self, grace_period: Optional[float] = None) -> List[ShutdownReport]:
        reports = []
        for name in self.names():
            try:
                handle = self.get(name)
            except RuntimeNotFound:
                continue
            reports.append(handle.shutdown(grace_period))
        return reports

    def _entry(self, name: str) -> _Entry:
        with self._lock:
            entry = self._entries.get(name)
        if entry is None:
            raise RuntimeNotFound(
                f"Unknown runtime: {name}. Registered: {self.names()}"
            )
        return entry

    def _build(self, entry: _Entry, config: RuntimeConfig) -> RuntimeHandle:
        executor = entry.factory(entry.name, config)
        io_driver = None
        if config.io_driver == "asyncio":
            io_driver = AsyncioDriver(entry.name)
            try:
                io_driver.start()
            except BaseException:
                executor.shutdown(wait=False)
                raise
        return RuntimeHandle(
            entry.name,
            executor,
            config,
            io_driver=io_driver,
            on_shutdown=lambda handle: self._mark_shut_down(entry, handle),
        )

    def _mark_shut_down(self, entry: _Entry, handle: RuntimeHandle) -> None:
        with entry.cond:
            if entry.handle is handle:
                entry.state = RuntimeState.SHUT_DOWN
                entry.cond.notify_all()


_default_lock = threading.Lock()
_default_registry: Optional[RuntimeRegistry] = None


def default_registry() -> RuntimeRegistry:
    """Return the process-wide registry, with ``"default"`` pre-registered."""
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            registry = RuntimeRegistry()
            registry.register(DEFAULT_RUNTIME, thread_pool)
            _default_registry = registry
        return _default_registry


def reset_default_registry(grace_period: float = 0.0) -> List[ShutdownReport]:
    """Shut down and forget the process-wide registry."""
    global _default_registry
    with _default_lock:
        registry, _default_registry = _default_registry, None
    if registry is None:
        return []
    return registry.shutdown_all(grace_period)


_ACTIVE_REGISTRY: contextvars.ContextVar[Optional[RuntimeRegistry]] = (
    contextvars.ContextVar("tandem_active_registry", default=None)
)


def active_registry() -> RuntimeRegistry:
    """Return the registry bound to the calling context, else the default."""
    bound = _ACTIVE_REGISTRY.get()
    if bound is not None:
        return bound
    return default_registry()


@contextmanager
def use_registry(registry: Optional[RuntimeRegistry]) -> Iterator[None]:
    """Resolve runtime names against ``registry`` for the duration of the block.

    ``None`` leaves the current binding in place. Work spawned inside the
    block inherits the binding through the copied context.
    """
    if registry is None:
        yield
        return
    token = _ACTIVE_REGISTRY.set(registry)
    try:
        yield
    finally:
        _ACTIVE_REGISTRY.reset(token)


def resolve_runtime(
    runtime: Union[str, RuntimeHandle, None], *, create: bool = True
) -> RuntimeHandle:
    """Turn a runtime name (or ``None`` for the default) into a handle."""
    if isinstance(runtime, RuntimeHandle):
        return runtime
    name = runtime or DEFAULT_RUNTIME
    registry = active_registry()
    if create:
        return registry.ensure(name)
    return registry.get(name)


def spawn(
    fn: Callable[..., Any],
    *args: Any,
    runtime: Union[str, RuntimeHandle, None] = None,
    **kwargs: Any,
) -> Any:
    """Spawn ``fn`` on a runtime and return the native future."""
    return resolve_runtime(runtime).spawn(fn, *args, **kwargs)


def spawn_blocking(
    fn: Callable[..., Any],
    *args: Any,
    runtime: Union[str, RuntimeHandle, None] = None,
    **kwargs: Any,
) -> Any:
    """Spawn a long blocking call on a runtime's blocking pool."""
    return resolve_runtime(runtime).spawn_blocking(fn, *args, **kwargs)
