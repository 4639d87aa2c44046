"""Backoff for idempotent vCO reads.

Execution status reads may be repeated freely; workflow submissions may
not, because each one starts a new remote job. Only the former are
decorated here.

Example:
    @retry(on=on_status_code(0, 502, 503, 504), attempts=3, base_delay=0.5)
    async def fetch_execution(...):
        ...
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable, Iterator

from loguru import logger

type ShouldRetry = Callable[[Exception], bool]


def backoff_delays(retries: int, base_delay: float, max_delay: float) -> Iterator[float]:
    """Doubling delays capped at ``max_delay``, each scaled into its upper half at random."""
    for n in range(retries):
        ceiling = min(base_delay * 2**n, max_delay)
        yield ceiling * random.uniform(0.5, 1.0)


def retry[**P, T](
    on: ShouldRetry,
    *,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Re-run an async read while ``on`` accepts the failure, at most ``attempts`` times."""

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        log = logger.bind(component="retry")

        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            delays = backoff_delays(attempts - 1, base_delay, max_delay)
            tried = 0
            while True:
                tried += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    delay = next(delays, None) if on(e) else None
                    if delay is None:
                        raise
                    log.warning(
                        "{fn} failed ({err}), attempt {n}/{total}; retrying in {delay:.2f}s",
                        fn=func.__qualname__, err=e, n=tried, total=attempts, delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def on_status_code(*codes: int) -> ShouldRetry:
    """Accept failures whose ``status`` is one of ``codes`` (0 means no reply)."""

    def accept(e: Exception) -> bool:
        return getattr(e, "status", None) in codes

    return accept
