"""Runtime configuration records."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from ..exceptions import ValidationError

__all__ = ["IO_DRIVERS", "RuntimeConfig"]

IO_DRIVERS = ("none", "asyncio")


@dataclass
class RuntimeConfig:
    """One-time setup options for a native runtime."""

    worker_threads: Optional[int] = None  # None -> os.cpu_count()
    blocking_threads: int = 16
    io_driver: str = "none"
    thread_name_prefix: Optional[str] = None
    grace_period: float = 5.0  # seconds to drain in-flight work on shutdown

    def validate(self) -> "RuntimeConfig":
        if self.worker_threads is not None and self.worker_threads < 1:
            raise ValidationError(
                f"worker_threads must be >= 1, got {self.worker_threads}"
            )
        if self.blocking_threads < 1:
            raise ValidationError(
                f"blocking_threads must be >= 1, got {self.blocking_threads}"
            )
        if self.io_driver not in IO_DRIVERS:
            raise ValidationError(
                f"Unknown io_driver: {self.io_driver}. Available: {list(IO_DRIVERS)}"
            )
        if self.grace_period < 0:
            raise ValidationError(
                f"grace_period must be >= 0, got {self.grace_period}"
            )
        return self

    def resolved_workers(self) -> int:
        return self.worker_threads or os.cpu_count() or 1
