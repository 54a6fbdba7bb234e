"""Tandem exception hierarchy."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "AlreadyConsumed",
    "AlreadyInitialized",
    "AlreadyRunning",
    "BridgeError",
    "Cancelled",
    "ConversionError",
    "InterpreterShutdown",
    "NativePanic",
    "RuntimeNotFound",
    "ValidationError",
]


class BridgeError(Exception):
    """Base class for Tandem exceptions."""


class AlreadyConsumed(BridgeError):
    """Raised when a coroutine handle is converted or awaited a second time."""


class AlreadyInitialized(BridgeError):
    """Raised when a runtime name is initialized again under strict policy."""


class RuntimeNotFound(BridgeError):
    """Raised when no successfully initialized runtime exists for a name."""


class AlreadyRunning(BridgeError):
    """Raised when a blocking driver is entered while another is active."""


class InterpreterShutdown(BridgeError):
    """Raised when the host interpreter is accessed after teardown."""


class ValidationError(BridgeError):
    """Raised when configuration or declarations fail validation."""


class Cancelled(BridgeError):
    """Raised when a bridged computation was cancelled before it settled."""


class ConversionError(BridgeError):
    """Raised when a value cannot cross the host/native boundary."""

    def __init__(self, direction: str, value_type: str, message: str = "") -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"cannot convert {value_type} {direction}{detail}")
        self.direction = direction
        self.value_type = value_type
        self.message = message


class NativePanic(BridgeError):
    """Raised on the host side when a native task aborted abnormally."""

    def __init__(self, original: BaseException, task: Optional[str] = None) -> None:
        where = f" in {task}" if task else ""
        text = str(original) or type(original).__name__
        super().__init__(
            f"native task aborted{where}: {type(original).__name__}: {text}"
        )
        self.original = original
        self.task = task
