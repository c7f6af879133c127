from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

import orjson

from .domain.hanoi import HanoiMove, HanoiState, TowersOfHanoi
from .domain.transition import TransitionSystem
from .utils import canonical_dumps, to_jsonable

PROPOSER_TIMEOUT = "PROPOSER_TIMEOUT"


def format_response(move: Any, resulting_state: Any, rationale: str = "") -> str:
    move_text = canonical_dumps(move).decode("utf-8")
    state_text = canonical_dumps(resulting_state).decode("utf-8")
    lines = [rationale] if rationale else []
    lines.append(f"move = {move_text}")
    lines.append(f"next_state = {state_text}")
    return "\n".join(lines)


@dataclass(frozen=True)
class RawResponse:
    text: str
    proposer_id: str
    error_atom: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, proposer_id: str, error_atom: str, **metadata: Any) -> "RawResponse":
        return cls(text="", proposer_id=proposer_id, error_atom=error_atom, metadata=metadata)

    @property
    def ok(self) -> bool:
        return self.error_atom is None

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "text": self.text,
            "proposer_id": self.proposer_id,
            "metadata": to_jsonable(self.metadata),
        }
        if self.error_atom:
            record["error_atom"] = self.error_atom
        return record


class BaseProposer(Protocol):
    async def propose(self, state: Any, history: Sequence[Any]) -> RawResponse:
        ...


class OracleProposer:
    """Always proposes the optimal move with its true successor state."""

    def __init__(self, system: TowersOfHanoi, proposer_id: str = "oracle") -> None:
        self.system = system
        self.proposer_id = proposer_id

    async def propose(self, state: HanoiState, history: Sequence[HanoiMove]) -> RawResponse:
        _ = history
        move = self.system.optimal_move(state)
        if move is None:
            return RawResponse.failure(self.proposer_id, "PROPOSER_NO_MOVE")
        next_state = self.system.apply(state, move)
        return RawResponse(
            text=format_response(move, next_state, "moving along the optimal plan"),
            proposer_id=self.proposer_id,
        )


class NoisyProposer:
    """Correct with probability ``p_correct``, otherwise a legal but wrong move.

    Extra noise channels draw from the remaining probability mass in order:
    ``p_malformed`` (unparseable text), ``p_verbose`` (rationale padded past
    any sane token ceiling) and ``p_wrong_state`` (correct move with a
    corrupted successor state).
    """

    def __init__(
        self,
        system: TowersOfHanoi,
        p_correct: float,
        seed: int = 0,
        p_malformed: float = 0.0,
        p_verbose: float = 0.0,
        p_wrong_state: float = 0.0,
        proposer_id: str = "noisy",
    ) -> None:
        if not 0.0 <= p_correct <= 1.0:
            raise ValueError("p_correct must be within [0, 1]")
        if p_correct + p_malformed + p_verbose + p_wrong_state > 1.0:
            raise ValueError("noise probabilities sum above 1")
        self.system = system
        self.p_correct = p_correct
        self.p_malformed = p_malformed
        self.p_verbose = p_verbose
        self.p_wrong_state = p_wrong_state
        self.proposer_id = proposer_id
        self.rng = random.Random(seed)

    def _wrong_move(self, state: HanoiState, correct: HanoiMove) -> HanoiMove:
        options = [move for move in self.system.legal_moves(state) if move != correct]
        if not options:
            return correct
        return self.rng.choice(options)

    def _corrupt(self, state: HanoiState) -> List[List[int]]:
        pegs = [list(peg) for peg in state]
        non_empty = [index for index, peg in enumerate(pegs) if peg]
        src = self.rng.choice(non_empty)
        dst = (src + 1) % len(pegs)
        pegs[dst].append(pegs[src].pop(0))
        return pegs

    async def propose(self, state: HanoiState, history: Sequence[HanoiMove]) -> RawResponse:
        _ = history
        correct = self.system.optimal_move(state)
        if correct is None:
            return RawResponse.failure(self.proposer_id, "PROPOSER_NO_MOVE")
        roll = self.rng.random()
        if roll < self.p_correct:
            move = correct
            return RawResponse(
                text=format_response(move, self.system.apply(state, move)),
                proposer_id=self.proposer_id,
                metadata={"kind": "correct"},
            )
        roll -= self.p_correct
        if roll < self.p_malformed:
            return RawResponse(
                text="move = [the smallest disk, left, right]",
                proposer_id=self.proposer_id,
                metadata={"kind": "malformed"},
            )
        roll -= self.p_malformed
        if roll < self.p_verbose:
            padding = "wait, let me reconsider the previous step. " * 400
            return RawResponse(
                text=format_response(correct, self.system.apply(state, correct), padding),
                proposer_id=self.proposer_id,
                metadata={"kind": "verbose"},
            )
        roll -= self.p_verbose
        if roll < self.p_wrong_state:
            return RawResponse(
                text=format_response(correct, self._corrupt(state)),
                proposer_id=self.proposer_id,
                metadata={"kind": "wrong_state"},
            )
        move = self._wrong_move(state, correct)
        return RawResponse(
            text=format_response(move, self.system.apply(state, move)),
            proposer_id=self.proposer_id,
            metadata={"kind": "wrong_move"},
        )


class ReplayProposer:
    """Replays recorded responses keyed by step index.

    Each JSONL record is ``{"step": int, "response": str}``; responses for a
    step are served round-robin so a short recording can feed many samples.
    """

    def __init__(self, replay_path: Path, proposer_id: str = "replay") -> None:
        self.replay_path = Path(replay_path)
        self.proposer_id = proposer_id
        self.records = self._load_records(self.replay_path)
        self._cursor: Dict[int, int] = {}

    def _load_records(self, path: Path) -> Dict[int, List[str]]:
        if not path.exists():
            return {}
        indexed: Dict[int, List[str]] = {}
        for line in path.read_bytes().splitlines():
            if not line:
                continue
            try:
                record = orjson.loads(line)
            except orjson.JSONDecodeError:
                continue
            if not isinstance(record, dict):
                continue
            step = record.get("step")
            response = record.get("response")
            if isinstance(step, int) and isinstance(response, str):
                indexed.setdefault(step, []).append(response)
        return indexed

    async def propose(self, state: Any, history: Sequence[Any]) -> RawResponse:
        _ = state
        step = len(history)
        responses = self.records.get(step)
        if not responses:
            return RawResponse.failure(self.proposer_id, "PROPOSER_MISSING", step=step)
        cursor = self._cursor.get(step, 0)
        self._cursor[step] = cursor + 1
        return RawResponse(
            text=responses[cursor % len(responses)],
            proposer_id=self.proposer_id,
            metadata={"step": step},
        )


class SubprocessProposer:
    """Runs an external command per proposal.

    The command receives ``{"state", "history", "history_text", "step",
    "domain"}`` as JSON on stdin and must print ``{"response": str}``.
    """

    def __init__(
        self,
        command: List[str],
        system: TransitionSystem[Any, Any],
        proposer_id: str = "subprocess",
    ) -> None:
        self.command = list(command)
        self.system = system
        self.proposer_id = proposer_id

    def _error(self, reason: str) -> RawResponse:
        return RawResponse.failure(
            self.proposer_id, f"PROPOSER_ERROR:{reason}", reason=reason
        )

    async def propose(self, state: Any, history: Sequence[Any]) -> RawResponse:
        payload = {
            "state": state,
            "history": list(history),
            "history_text": self.system.render_history(history),
            "step": len(history),
            "domain": self.system.name,
        }
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return self._error("spawn_failed")
        try:
            stdout, _ = await process.communicate(canonical_dumps(payload))
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise
        if process.returncode != 0:
            return self._error("nonzero")
        try:
            output = orjson.loads(stdout or b"{}")
        except orjson.JSONDecodeError:
            return self._error("bad_json")
        if not isinstance(output, dict):
            return self._error("bad_json")
        response = output.get("response")
        if not isinstance(response, str):
            return self._error("missing_response")
        metadata = output.get("metadata", {})
        return RawResponse(
            text=response,
            proposer_id=self.proposer_id,
            metadata=metadata if isinstance(metadata, dict) else {},
        )
