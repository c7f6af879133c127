from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Protocol, Sequence, overload

import structlog

from ..config import Settings
from ..domain.transition import TransitionSystem
from ..errors import InvariantViolation, RunAborted
from ..proposer_api import BaseProposer
from ..redflag.outcomes import ScreenResult
from ..redflag.screen import RedFlagFilter
from ..schemas import RunState, StepRecord
from ..utils import monotonic_ns, stable_hash, to_jsonable
from ..voting.arbiter import AcceptedMove, Decision, Inconclusive, RoundSource, VotingArbiter
from .fanout import fan_out

logger = structlog.get_logger(__name__)

ABORT_INCONCLUSIVE = "INCONCLUSIVE"
ABORT_STEP_LIMIT = "STEP_LIMIT"
ABORT_INVARIANT = "INVARIANT_VIOLATION"


class RunStatus(str, Enum):
    IDLE = "IDLE"
    STEPPING = "STEPPING"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class MetricsSink(Protocol):
    def emit(self, event_type: str, payload: Dict[str, Any]) -> Any:
        ...


class HistoryView(Sequence[Any]):
    """Read-only prefix of the accepted-move history.

    The orchestrator only ever appends, so a view taken at step ``n`` keeps
    showing exactly ``n`` moves without copying the list.
    """

    def __init__(self, moves: List[Any], length: int) -> None:
        self._moves = moves
        self._length = length

    def __len__(self) -> int:
        return self._length

    @overload
    def __getitem__(self, index: int) -> Any:
        ...

    @overload
    def __getitem__(self, index: slice) -> List[Any]:
        ...

    def __getitem__(self, index: Any) -> Any:
        if isinstance(index, slice):
            return [self._moves[i] for i in range(self._length)[index]]
        return self._moves[range(self._length)[index]]

    def __iter__(self) -> Iterator[Any]:
        for i in range(self._length):
            yield self._moves[i]


@dataclass(frozen=True)
class AbortDiagnostic:
    step_index: int
    reason: str
    state: Any
    tally: Dict[str, int] = field(default_factory=dict)
    rounds: int = 0
    discard_atoms: Dict[str, int] = field(default_factory=dict)

    def report(self) -> Dict[str, Any]:
        return {
            "step_index": self.step_index,
            "reason": self.reason,
            "state": to_jsonable(self.state),
            "tally": dict(self.tally),
            "rounds": self.rounds,
            "discard_atoms": dict(self.discard_atoms),
        }


@dataclass
class RunHandle:
    run_id: str
    initial_state: Any
    run_state: RunState
    status: RunStatus = RunStatus.IDLE
    final_state: Any = None
    records: List[StepRecord] = field(default_factory=list)
    diagnostic: Optional[AbortDiagnostic] = None

    @property
    def done(self) -> bool:
        return self.status in {RunStatus.COMPLETED, RunStatus.ABORTED}

    def raise_for_status(self) -> None:
        if self.status == RunStatus.ABORTED and self.diagnostic is not None:
            raise RunAborted(
                self.diagnostic.step_index, self.diagnostic.reason, self.diagnostic.tally
            )

    def report(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "run_id": self.run_id,
            "status": self.status.value,
            "steps": len(self.records),
            "final_state": to_jsonable(self.final_state),
            "run_state": self.run_state.report(),
        }
        if self.diagnostic is not None:
            payload["diagnostic"] = self.diagnostic.report()
        return payload


class StepOrchestrator:
    """Drives a task from its initial state to the goal, one voted step at a time."""

    def __init__(
        self,
        system: TransitionSystem[Any, Any],
        proposer: BaseProposer,
        settings: Optional[Settings] = None,
        sink: Optional[MetricsSink] = None,
    ) -> None:
        self.system = system
        self.proposer = proposer
        self.settings = settings or Settings()
        self.sink = sink
        self.filter = RedFlagFilter(system, token_ceiling=self.settings.flag_token_ceiling)
        self.arbiter = VotingArbiter.from_settings(self.settings)
        self.handle: Optional[RunHandle] = None

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.sink is None:
            return
        try:
            self.sink.emit(event_type, payload)
        except Exception as exc:
            logger.warning("sink_emit_failed", event_type=event_type, error=repr(exc))

    def _run_id(self, initial_state: Any) -> str:
        payload = {
            "domain": self.system.name,
            "initial_state": initial_state,
            "settings": self.settings.model_dump(),
        }
        return stable_hash(payload, length=16)

    def _round_source(
        self, state: Any, history: Sequence[Any], semaphore: asyncio.Semaphore
    ) -> RoundSource:
        settings = self.settings

        async def sample_round(round_index: int) -> AsyncIterator[ScreenResult]:
            _ = round_index
            responses = fan_out(
                self.proposer,
                state,
                history,
                count=settings.round_batch_size,
                timeout_s=settings.proposer_timeout_s,
                semaphore=semaphore,
            )
            async with aclosing(responses) as stream:
                async for response in stream:
                    yield self.filter.screen(response, state)

        return sample_round

    def _apply_accepted(
        self,
        handle: RunHandle,
        state: Any,
        decision: AcceptedMove,
        started_ns: int,
    ) -> StepRecord:
        candidate = decision.candidate
        step_index = handle.run_state.step_index
        if not self.system.is_legal(state, candidate.move):
            raise InvariantViolation(
                f"accepted move {candidate.move!r} is illegal at step {step_index}"
            )
        post_state = self.system.apply(state, candidate.move)
        if post_state != candidate.resulting_state:
            raise InvariantViolation(
                f"accepted state disagrees with apply() at step {step_index}"
            )
        stats = decision.stats
        return StepRecord(
            step_index=step_index,
            move=candidate.move,
            pre_state=state,
            post_state=post_state,
            fingerprint=candidate.fingerprint,
            rounds=stats.rounds,
            samples=stats.samples,
            discarded=stats.discarded,
            timeouts=stats.timeouts,
            margin=decision.margin,
            elapsed_ns=monotonic_ns() - started_ns,
        )

    def _abort(
        self,
        handle: RunHandle,
        state: Any,
        reason: str,
        decision: Optional[Decision] = None,
    ) -> None:
        handle.status = RunStatus.ABORTED
        handle.final_state = state
        handle.diagnostic = AbortDiagnostic(
            step_index=handle.run_state.step_index,
            reason=reason,
            state=state,
            tally=dict(decision.tally) if decision else {},
            rounds=decision.stats.rounds if decision else 0,
            discard_atoms=dict(decision.stats.discard_atoms) if decision else {},
        )
        logger.error("run_aborted", **handle.diagnostic.report())
        self._emit("RUN_ABORTED", handle.diagnostic.report())

    async def start(self, initial_state: Any = None, run_id: Optional[str] = None) -> RunHandle:
        """Run the task to completion or abort and return the handle.

        An ``InvariantViolation`` still propagates, but only after the run
        is marked ABORTED; ``self.handle`` keeps the handle for inspection.
        """
        state = self.system.initial_state() if initial_state is None else initial_state
        run_id = run_id or self._run_id(state)
        handle = RunHandle(run_id=run_id, initial_state=state, run_state=RunState(run_id=run_id))
        self.handle = handle
        structlog.contextvars.bind_contextvars(run_id=run_id)
        try:
            await self._drive(handle, state)
        finally:
            structlog.contextvars.unbind_contextvars("run_id")
        return handle

    async def _drive(self, handle: RunHandle, state: Any) -> None:
        settings = self.settings
        semaphore = asyncio.Semaphore(settings.concurrency())
        history: List[Any] = []
        handle.status = RunStatus.STEPPING
        logger.info("run_started", domain=self.system.name, k=settings.k)
        self._emit(
            "RUN_START",
            {
                "run_id": handle.run_id,
                "domain": self.system.name,
                "initial_state": to_jsonable(state),
                "settings": settings.model_dump(),
            },
        )
        while not self.system.is_goal(state):
            if settings.max_steps and handle.run_state.step_index >= settings.max_steps:
                self._abort(handle, state, ABORT_STEP_LIMIT)
                return
            started_ns = monotonic_ns()
            view = HistoryView(history, len(history))
            decision = await self.arbiter.decide(self._round_source(state, view, semaphore))
            if isinstance(decision, Inconclusive):
                handle.run_state.undecided_steps += 1
                self._abort(handle, state, ABORT_INCONCLUSIVE, decision)
                return
            try:
                record = self._apply_accepted(handle, state, decision, started_ns)
            except InvariantViolation:
                self._abort(handle, state, ABORT_INVARIANT, decision)
                raise
            handle.records.append(record)
            handle.run_state.record_step(record)
            history.append(record.move)
            state = record.post_state
            logger.debug(
                "step_accepted",
                step_index=record.step_index,
                rounds=record.rounds,
                margin=record.margin,
                discarded=record.discarded,
            )
            self._emit("STEP_ACCEPTED", record.report())
            self._emit("RUN_STATE", handle.run_state.report())
        handle.status = RunStatus.COMPLETED
        handle.final_state = state
        logger.info(
            "run_completed",
            steps=len(handle.records),
            discards=handle.run_state.cumulative_discards,
        )
        self._emit("RUN_COMPLETED", handle.report())


def run_task(
    system: TransitionSystem[Any, Any],
    proposer: BaseProposer,
    settings: Optional[Settings] = None,
    sink: Optional[MetricsSink] = None,
    initial_state: Any = None,
    run_id: Optional[str] = None,
) -> RunHandle:
    orchestrator = StepOrchestrator(system, proposer, settings=settings, sink=sink)
    return asyncio.run(orchestrator.start(initial_state, run_id=run_id))
