"""Backoff and timeout helpers for graph algorithm calls.

Algorithms run on a private copy of the graph, so re-running or abandoning
one is safe.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.utils.errors import AlgorithmFailureError

P = ParamSpec("P")
T = TypeVar("T")


def _log_retry(state: RetryCallState) -> None:
    exc = state.outcome.exception() if state.outcome else None
    name = getattr(state.fn, "__name__", "call")
    logger.warning(f"Retrying {name} (attempt {state.attempt_number} failed): {exc}")


def build_retrying(
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    retry_on: tuple[type[BaseException], ...] = (AlgorithmFailureError,),
) -> Retrying:
    """Create a tenacity controller with exponential backoff.

    Args:
        max_attempts: Total attempts including the first call.
        base_delay: Initial delay between attempts in seconds.
        max_delay: Cap on the delay between attempts in seconds.
        retry_on: Exception types that trigger another attempt.

    Returns:
        Configured ``Retrying`` instance that re-raises the last error.

    """
    return Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


def with_timeout(
    timeout_seconds: float,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator bounding an async function's execution time.

    Raises:
        asyncio.TimeoutError: If the coroutine exceeds the timeout.
        TypeError: If applied to a regular function.

    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError("with_timeout can only be applied to async functions")

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)

        return wrapper

    return decorator
