"""Native runtimes: configuration, executors and the process-wide registry."""

from .config import IO_DRIVERS, RuntimeConfig
from .executors import (
    AVAILABLE_EXECUTORS,
    AsyncioDriver,
    ExecutorFactory,
    current_thread,
    thread_pool,
)
from .handle import RuntimeHandle, RuntimeState, ShutdownReport
from .registry import (
    DEFAULT_RUNTIME,
    RuntimeRegistry,
    active_registry,
    default_registry,
    reset_default_registry,
    resolve_runtime,
    spawn,
    spawn_blocking,
    use_registry,
)

__all__ = [
    "AVAILABLE_EXECUTORS",
    "AsyncioDriver",
    "DEFAULT_RUNTIME",
    "ExecutorFactory",
    "IO_DRIVERS",
    "RuntimeConfig",
    "RuntimeHandle",
    "RuntimeRegistry",
    "RuntimeState",
    "ShutdownReport",
    "active_registry",
    "current_thread",
    "default_registry",
    "reset_default_registry",
    "resolve_runtime",
    "spawn",
    "spawn_blocking",
    "thread_pool",
    "use_registry",
]
