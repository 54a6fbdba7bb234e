from __future__ import annotations

from typing import Iterator

import pytest

from tandem.coordinator import EventLoopCoordinator
from tandem.interpreter import Interpreter, set_interpreter
from tandem.runtime import (
    DEFAULT_RUNTIME,
    RuntimeConfig,
    RuntimeHandle,
    RuntimeRegistry,
    reset_default_registry,
    thread_pool,
)

@pytest.fixture(autouse=True)
def _fresh_default_registry() -> Iterator[None]:
    yield
    reset_default_registry(grace_period=0.5)


@pytest.fixture
def interpreter() -> Iterator[Interpreter]:
    interp = Interpreter(name="test")
    previous = set_interpreter(interp)
    try:
        yield interp
    finally:
        set_interpreter(previous)
        interp.shutdown()


@pytest.fixture
def registry() -> Iterator[RuntimeRegistry]:
    reg = RuntimeRegistry()
    reg.register(DEFAULT_RUNTIME, thread_pool)
    try:
        yield reg
    finally:
        reg.shutdown_all(grace_period=0.5)


@pytest.fixture
def runtime(registry: RuntimeRegistry) -> RuntimeHandle:
    return registry.initialize(
        DEFAULT_RUNTIME, RuntimeConfig(worker_threads=4, grace_period=1.0)
    )


@pytest.fixture
def coordinator(
    interpreter: Interpreter, registry: RuntimeRegistry
) -> Iterator[EventLoopCoordinator]:
    coord = EventLoopCoordinator(interpreter, registry=registry, handle_signals=False)
    try:
        yield coord
    finally:
        coord.close(grace_period=0.5)
