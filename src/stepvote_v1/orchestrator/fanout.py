from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Optional, Sequence

import structlog

from ..proposer_api import PROPOSER_TIMEOUT, BaseProposer, RawResponse

logger = structlog.get_logger(__name__)


def proposer_name(proposer: BaseProposer) -> str:
    name = getattr(proposer, "proposer_id", None)
    return name if isinstance(name, str) else type(proposer).__name__


async def _call_with_deadline(
    proposer: BaseProposer,
    state: Any,
    history: Sequence[Any],
    timeout_s: float,
    semaphore: Optional[asyncio.Semaphore],
) -> RawResponse:
    name = proposer_name(proposer)

    async def _call() -> RawResponse:
        try:
            return await asyncio.wait_for(proposer.propose(state, history), timeout=timeout_s)
        except asyncio.TimeoutError:
            return RawResponse.failure(name, PROPOSER_TIMEOUT, timeout_s=timeout_s)
        except Exception as exc:
            logger.warning("proposer_failed", proposer_id=name, error=repr(exc))
            return RawResponse.failure(name, f"PROPOSER_ERROR:{type(exc).__name__}")

    if semaphore is None:
        return await _call()
    async with semaphore:
        return await _call()


async def fan_out(
    proposer: BaseProposer,
    state: Any,
    history: Sequence[Any],
    count: int,
    timeout_s: float,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> AsyncIterator[RawResponse]:
    """Issue ``count`` independent proposals concurrently.

    Responses are yielded in completion order. A call that misses its
    deadline comes back as a ``PROPOSER_TIMEOUT`` failure instead of
    blocking the round. Closing the generator early cancels every request
    still in flight, so late stragglers are never observed.
    """
    tasks = [
        asyncio.create_task(_call_with_deadline(proposer, state, history, timeout_s, semaphore))
        for _ in range(count)
    ]
    try:
        for next_done in asyncio.as_completed(tasks):
            yield await next_done
    finally:
        outstanding = [task for task in tasks if not task.done()]
        for task in outstanding:
            task.cancel()
        if outstanding:
            await asyncio.gather(*outstanding, return_exceptions=True)
