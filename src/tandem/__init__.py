"""Tandem public API surface.

Bridges asyncio coroutines on the host loop with futures produced by native
thread-pool runtimes, in both directions. Everything not re-exported here
should be considered internal and may change.
"""

from .bridge import (
    BridgedAwaitable,
    BridgedFuture,
    FutureState,
    into_coroutine,
    into_future,
)
from .coordinator import EventLoopCoordinator, LoopState, main, run
from .exceptions import (
    AlreadyConsumed,
    AlreadyInitialized,
    AlreadyRunning,
    BridgeError,
    Cancelled,
    ConversionError,
    InterpreterShutdown,
    NativePanic,
    RuntimeNotFound,
    ValidationError,
)
from .interpreter import Interpreter, get_interpreter, set_interpreter, with_interpreter
from .runtime import (
    RuntimeConfig,
    RuntimeRegistry,
    default_registry,
    spawn,
    spawn_blocking,
    use_registry,
)
from .version import __version__

__all__ = [
    "AlreadyConsumed",
    "AlreadyInitialized",
    "AlreadyRunning",
    "BridgeError",
    "BridgedAwaitable",
    "BridgedFuture",
    "Cancelled",
    "ConversionError",
    "EventLoopCoordinator",
    "FutureState",
    "Interpreter",
    "InterpreterShutdown",
    "LoopState",
    "NativePanic",
    "RuntimeConfig",
    "RuntimeNotFound",
    "RuntimeRegistry",
    "ValidationError",
    "__version__",
    "default_registry",
    "get_interpreter",
    "into_coroutine",
    "into_future",
    "main",
    "run",
    "set_interpreter",
    "spawn",
    "spawn_blocking",
    "use_registry",
    "with_interpreter",
]
