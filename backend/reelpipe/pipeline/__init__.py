"""Pipeline stage implementations.

Each stage is a plain async function that takes the collaborators it
needs, routes every external call through the ErrorPolicy and registers
every file it produces with the job's TempScope. Status transitions and
cancellation checks belong to the orchestrator, not the stages.
"""

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


async def settle(calls: list[Awaitable[T]]) -> list[T]:
    """Await every call, then raise the first failure if any.

    Unlike a bare gather, no call is still running when the error surfaces,
    so nothing can register a temp file after the job's cleanup.
    """
    results = await asyncio.gather(*calls, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
