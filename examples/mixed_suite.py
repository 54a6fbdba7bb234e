"""
Example harness suite mixing async and sync cases.

Run it with:

    tandem test examples/mixed_suite.py
    tandem test examples/mixed_suite.py --filter native
    python examples/mixed_suite.py --list
"""

from __future__ import annotations

import asyncio
import time

from tandem import into_coroutine, into_future
from tandem.testing import Suite, main

SUITE = Suite("mixed")


@SUITE.case()
async def host_sleep() -> None:
    await asyncio.sleep(0.05)


@SUITE.case()
def native_sleep() -> None:
    time.sleep(0.05)


@SUITE.case()
async def native_result_on_host() -> None:
    value = await into_coroutine(lambda: sum(range(10)))
    assert value == 45


@SUITE.case()
async def host_result_on_native() -> bool:
    async def compute() -> str:
        await asyncio.sleep(0)
        return "ready"

    future = into_future(compute())
    return await into_coroutine(future) == "ready"


if __name__ == "__main__":
    main(SUITE.name, SUITE)
