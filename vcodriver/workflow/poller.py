"""Wait/poll loop for workflow executions."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from .types import ExecutionHandle

type QueryFn = Callable[[str, str], Awaitable[ExecutionHandle]]


async def wait_for(
    handle: ExecutionHandle,
    query: QueryFn,
    *,
    max_wait: float,
    poll_interval: float,
    clock: Callable[[], float] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ExecutionHandle:
    """Poll ``handle`` until it leaves pending/running or ``max_wait`` elapses.

    Does not raise on timeout: the last handle seen is returned with
    ``alive`` still true, and the caller decides whether that is fatal.
    A failed execution is returned as-is for the same reason.

    Args:
        handle: Execution to follow.
        query: ``(workflow_id, execution_id) -> handle`` status fetch.
        max_wait: Deadline in seconds, measured from the call.
        poll_interval: Seconds slept before each re-fetch.
        clock: Monotonic clock, defaults to the running loop's.
        sleep: Suspension primitive, injectable for tests.

    Returns:
        The latest handle.
    """
    clock = clock or asyncio.get_running_loop().time
    log = logger.bind(component="poller", execution=handle.execution_id)
    start = clock()
    polls = 0

    while handle.alive and clock() - start < max_wait:
        await sleep(poll_interval)
        handle = await query(handle.workflow_id, handle.execution_id)
        polls += 1
        log.trace(
            "Poll {n}: {name} is {state}", n=polls, name=handle.name, state=handle.state
        )

    elapsed = clock() - start
    if handle.alive:
        log.warning(
            "Gave up on {execution} after {elapsed:.1f}s ({state})",
            execution=handle.execution_id, elapsed=elapsed, state=handle.state,
        )
    else:
        log.debug(
            "{execution} reached {state} after {elapsed:.1f}s",
            execution=handle.execution_id, state=handle.state, elapsed=elapsed,
        )
    return handle
