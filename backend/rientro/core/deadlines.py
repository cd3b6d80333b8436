"""
Bounded per-call deadlines.

Supabase calls are blocking, so they run in the default executor and are
awaited under asyncio.wait_for. A stuck call raises DeadlineExceededError
instead of holding up the rest of a sweep or dispatch batch.
"""
import asyncio
from functools import partial
from typing import Any, Awaitable, Callable, TypeVar

from .exceptions import DeadlineExceededError


T = TypeVar("T")


async def run_blocking(
    operation: str,
    func: Callable[..., T],
    *args: Any,
    timeout: float,
    **kwargs: Any
) -> T:
    """Run a blocking callable in the executor with a deadline."""
    loop = asyncio.get_running_loop()
    try:
        return await asyncio.wait_for(
            loop.run_in_executor(None, partial(func, *args, **kwargs)),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        raise DeadlineExceededError(operation, timeout) from None


async def await_with_deadline(
    operation: str,
    awaitable: Awaitable[T],
    *,
    timeout: float
) -> T:
    """Await a coroutine with a deadline."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise DeadlineExceededError(operation, timeout) from None
