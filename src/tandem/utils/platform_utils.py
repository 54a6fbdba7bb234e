"""Cross-platform helpers for Tandem."""

from __future__ import annotations

import platform
import signal
import threading
from typing import Dict, List

__all__ = ["get_platform_info", "on_main_thread", "shutdown_signals"]


def get_platform_info() -> Dict[str, object]:
    """Return basic identifiers for the current platform."""
    system = platform.system()
    return {
        "system": system,
        "machine": platform.machine(),
        "python_version": platform.python_version(),
        "implementation": platform.python_implementation(),
        "is_windows": system == "Windows",
        "main_thread": on_main_thread(),
    }


def on_main_thread() -> bool:
    return threading.current_thread() is threading.main_thread()


def shutdown_signals() -> List[signal.Signals]:
    """Signals that should interrupt a host loop driven by the coordinator.

    Windows event loops do not support ``add_signal_handler``.
    """
    if platform.system() == "Windows":
        return []
    return [signal.SIGINT, signal.SIGTERM]
