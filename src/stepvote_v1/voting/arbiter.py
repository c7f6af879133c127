from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Literal, Union

import structlog

from ..config import Settings
from ..proposer_api import PROPOSER_TIMEOUT
from ..redflag.outcomes import ScreenResult, Valid
from ..schemas import Candidate
from .tally import VoteTally, leading_fingerprint

logger = structlog.get_logger(__name__)

RoundSource = Callable[[int], AsyncIterator[ScreenResult]]


@dataclass
class DecisionStats:
    rounds: int = 0
    samples: int = 0
    discarded: int = 0
    timeouts: int = 0
    discard_atoms: Dict[str, int] = field(default_factory=dict)

    def record_flag(self, atom: str) -> None:
        if atom == PROPOSER_TIMEOUT:
            self.timeouts += 1
            return
        self.samples += 1
        self.discarded += 1
        self.discard_atoms[atom] = self.discard_atoms.get(atom, 0) + 1


@dataclass(frozen=True)
class AcceptedMove:
    candidate: Candidate
    tally: Dict[str, int]
    margin: int
    stats: DecisionStats


@dataclass(frozen=True)
class Inconclusive:
    tally: Dict[str, int]
    margin: int
    stats: DecisionStats


Decision = Union[AcceptedMove, Inconclusive]


class VotingArbiter:
    """First-to-ahead-by-k arbitration over rounds of screened candidates.

    ``sample_round(i)`` must be an async generator yielding the screened
    results of round ``i``; the orchestrator backs it with a concurrent
    fan-out to the proposer.
    Every call to :meth:`decide` starts from an empty tally and gives up
    after ``max_rounds`` rounds.
    """

    def __init__(
        self,
        k: int,
        max_rounds: int,
        decision_check: Literal["round", "candidate"] = "round",
    ) -> None:
        if k < 1:
            raise ValueError("k must be >= 1")
        if max_rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        if decision_check not in {"round", "candidate"}:
            raise ValueError(f"unknown decision_check {decision_check!r}")
        self.k = k
        self.max_rounds = max_rounds
        self.decision_check = decision_check

    @classmethod
    def from_settings(cls, settings: Settings) -> "VotingArbiter":
        return cls(
            k=settings.k,
            max_rounds=settings.max_rounds,
            decision_check=settings.decision_check,
        )

    def _accept(self, tally: VoteTally, fingerprint: str, stats: DecisionStats) -> AcceptedMove:
        return AcceptedMove(
            candidate=tally.exemplars[fingerprint],
            tally=tally.snapshot(),
            margin=tally.margin(),
            stats=stats,
        )

    async def decide(self, sample_round: RoundSource) -> Decision:
        tally = VoteTally()
        stats = DecisionStats()
        per_candidate = self.decision_check == "candidate"
        for round_index in range(self.max_rounds):
            stats.rounds = round_index + 1
            async with aclosing(sample_round(round_index)) as results:
                async for result in results:
                    if isinstance(result, Valid):
                        stats.samples += 1
                        tally.add(result.candidate)
                    else:
                        stats.record_flag(result.atom)
                    if per_candidate:
                        winner = leading_fingerprint(tally, self.k)
                        if winner is not None:
                            return self._accept(tally, winner, stats)
            winner = leading_fingerprint(tally, self.k)
            logger.debug(
                "round_tallied",
                round_index=round_index,
                distinct=len(tally.counts),
                margin=tally.margin(),
                discarded=stats.discarded,
            )
            if winner is not None:
                return self._accept(tally, winner, stats)
        logger.warning(
            "arbiter_inconclusive",
            rounds=stats.rounds,
            margin=tally.margin(),
            tally=tally.snapshot(),
        )
        return Inconclusive(tally=tally.snapshot(), margin=tally.margin(), stats=stats)
