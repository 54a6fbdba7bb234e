"""Value conversion at the host/native boundary."""

from __future__ import annotations

from typing import Any, Callable, Optional

from ..exceptions import ConversionError

__all__ = ["Converter", "TO_HOST", "TO_NATIVE", "cross"]

Converter = Callable[[Any], Any]

TO_HOST = "to host"
TO_NATIVE = "to native"


def cross(value: Any, converter: Optional[Converter], direction: str) -> Any:
    """Apply ``converter`` to ``value``; failures become ``ConversionError``."""
    if converter is None:
        return value
    try:
        return converter(value)
    except ConversionError:
        raise
    except Exception as exc:
        raise ConversionError(direction, type(value).__name__, str(exc)) from exc
