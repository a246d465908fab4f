"""Deadline helper for bounding embedding and store operations."""

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from codeindex.errors import OperationTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], timeout: float | None, operation: str) -> T:
    """Await with a deadline, converting expiry into OperationTimeoutError.

    Args:
        awaitable: The operation to run.
        timeout: Seconds to wait, or None for no limit.
        operation: Name used in the error message.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except TimeoutError as e:
        raise OperationTimeoutError(f"{operation} timed out after {timeout:g}s") from e
