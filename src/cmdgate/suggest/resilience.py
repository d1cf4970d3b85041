"""Retry with exponential backoff for suggestion engines.

Only recoverable failures are retried: transport errors and CmdGateErrors
flagged ``recoverable`` (rate limits, 5xx). Credential failures surface on
the first attempt.
"""

import asyncio
from functools import wraps
from typing import Awaitable, Callable, Iterator, ParamSpec, TypeVar

import httpx

from cmdgate.errors import CmdGateError
from cmdgate.logging import Loggers

logger = Loggers.suggest()

P = ParamSpec("P")
T = TypeVar("T")

TRANSPORT_ERRORS: tuple[type[Exception], ...] = (httpx.TransportError,)


def backoff_delays(attempts: int, base_delay: float, max_delay: float, factor: float = 2.0) -> Iterator[float]:
    """Pauses between consecutive attempts: one fewer than ``attempts``."""
    for n in range(attempts - 1):
        yield min(base_delay * factor**n, max_delay)


def is_retryable(error: BaseException, transport_errors: tuple[type[Exception], ...]) -> bool:
    if isinstance(error, CmdGateError):
        return error.recoverable
    return isinstance(error, transport_errors)


def retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 4.0,
    factor: float = 2.0,
    transport_errors: tuple[type[Exception], ...] = TRANSPORT_ERRORS,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry a coroutine function on recoverable failures.

    The last failure is re-raised once ``max_attempts`` calls have failed.

    Example:
        complete = retry(max_attempts=2)(engine._complete)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delays = backoff_delays(max(max_attempts, 1), base_delay, max_delay, factor)
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    delay = next(delays, None) if is_retryable(e, transport_errors) else None
                    if delay is None:
                        raise
                    logger.debug("retrying", function=func.__name__, attempt=attempt, delay=delay, error=str(e))
                attempt += 1
                await asyncio.sleep(delay)

        return wrapper

    return decorator
