"""Deadline applied to every remote call made by the data layer."""

import asyncio
from typing import Awaitable, TypeVar

from src.services.storage.interface import StoreTimeoutError


T = TypeVar("T")


async def remote_call(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Raises:
        StoreTimeoutError: If the deadline passes first
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise StoreTimeoutError(f"{operation} timed out after {timeout:g}s")
