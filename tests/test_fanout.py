import asyncio
from contextlib import aclosing
from typing import Any, List, Sequence

from stepvote_v1.orchestrator.fanout import fan_out, proposer_name
from stepvote_v1.proposer_api import PROPOSER_TIMEOUT, RawResponse


class SlowProposer:
    proposer_id = "slow"

    def __init__(self, delays: List[float]) -> None:
        self.delays = list(delays)
        self.cancelled = 0
        self.finished = 0
        self.active = 0
        self.peak = 0

    async def propose(self, state: Any, history: Sequence[Any]) -> RawResponse:
        delay = self.delays.pop(0) if self.delays else 0.0
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1
        self.finished += 1
        return RawResponse(text=f"after {delay}", proposer_id=self.proposer_id)


class ExplodingProposer:
    async def propose(self, state: Any, history: Sequence[Any]) -> RawResponse:
        raise RuntimeError("backend unavailable")


async def _collect(stream: Any) -> List[RawResponse]:
    return [response async for response in stream]


def test_responses_arrive_in_completion_order() -> None:
    proposer = SlowProposer([0.2, 0.0, 0.1])
    responses = asyncio.run(_collect(fan_out(proposer, None, (), count=3, timeout_s=5.0)))
    assert [response.text for response in responses] == ["after 0.0", "after 0.1", "after 0.2"]


def test_deadline_turns_into_timeout_failure() -> None:
    proposer = SlowProposer([10.0, 0.0])
    responses = asyncio.run(_collect(fan_out(proposer, None, (), count=2, timeout_s=0.05)))
    atoms = [response.error_atom for response in responses]
    assert atoms == [None, PROPOSER_TIMEOUT]
    assert responses[1].proposer_id == "slow"
    assert proposer.cancelled == 1


def test_exception_becomes_proposer_error() -> None:
    responses = asyncio.run(
        _collect(fan_out(ExplodingProposer(), None, (), count=2, timeout_s=1.0))
    )
    assert len(responses) == 2
    assert all(response.error_atom == "PROPOSER_ERROR:RuntimeError" for response in responses)
    assert all(response.proposer_id == "ExplodingProposer" for response in responses)


def test_closing_early_cancels_outstanding_requests() -> None:
    proposer = SlowProposer([0.0, 5.0, 5.0, 5.0])

    async def first_only() -> RawResponse:
        async with aclosing(fan_out(proposer, None, (), count=4, timeout_s=10.0)) as stream:
            async for response in stream:
                return response
        raise AssertionError("no response")

    response = asyncio.run(first_only())
    assert response.text == "after 0.0"
    assert proposer.finished == 1
    assert proposer.cancelled == 3


def test_semaphore_bounds_requests_in_flight() -> None:
    proposer = SlowProposer([0.02] * 6)

    async def bounded() -> List[RawResponse]:
        semaphore = asyncio.Semaphore(2)
        return await _collect(
            fan_out(proposer, None, (), count=6, timeout_s=5.0, semaphore=semaphore)
        )

    responses = asyncio.run(bounded())
    assert len(responses) == 6
    assert proposer.peak == 2


def test_proposer_name_falls_back_to_type() -> None:
    assert proposer_name(SlowProposer([])) == "slow"
    assert proposer_name(ExplodingProposer()) == "ExplodingProposer"
