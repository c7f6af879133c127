from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .utils import CANONICALIZATION, HASH_ALGORITHM, stable_hash, to_jsonable


def candidate_fingerprint(move: Any, resulting_state: Any) -> str:
    return stable_hash({"move": move, "state": resulting_state})


@dataclass(frozen=True)
class Candidate:
    move: Any
    resulting_state: Any
    fingerprint: str
    rationale: str = ""
    proposer_id: str = ""
    is_flagged: bool = False
    flag_atoms: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def build(
        cls,
        move: Any,
        resulting_state: Any,
        rationale: str = "",
        proposer_id: str = "",
    ) -> "Candidate":
        return cls(
            move=move,
            resulting_state=resulting_state,
            fingerprint=candidate_fingerprint(move, resulting_state),
            rationale=rationale,
            proposer_id=proposer_id,
        )

    def flagged(self, *atoms: str) -> "Candidate":
        return Candidate(
            move=self.move,
            resulting_state=self.resulting_state,
            fingerprint=self.fingerprint,
            rationale=self.rationale,
            proposer_id=self.proposer_id,
            is_flagged=True,
            flag_atoms=self.flag_atoms + tuple(atoms),
        )


class HashableModel(BaseModel):
    schema_version: str = "v1"
    canonicalization: str = CANONICALIZATION
    hash_algorithm: str = HASH_ALGORITHM
    hash_inputs: List[str] = Field(default_factory=list)

    def hash_payload(self) -> Dict[str, Any]:
        data = self.model_dump()
        keys = self.hash_inputs or [key for key in data.keys() if key != "hash_inputs"]
        return {key: data[key] for key in keys if key in data}

    def stable_hash(self) -> str:
        return stable_hash(self.hash_payload())


class StepRecord(HashableModel):
    model_config = ConfigDict(frozen=True)

    step_index: int
    move: Any
    pre_state: Any
    post_state: Any
    fingerprint: str
    rounds: int
    samples: int
    discarded: int
    timeouts: int = 0
    margin: int
    elapsed_ns: int = 0

    @model_validator(mode="before")
    @classmethod
    def _set_hash_inputs(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("hash_inputs"):
            data = dict(data)
            # timing is excluded so replays of the same run hash identically
            data["hash_inputs"] = [
                "schema_version",
                "canonicalization",
                "hash_algorithm",
                "step_index",
                "move",
                "pre_state",
                "post_state",
                "fingerprint",
                "rounds",
                "samples",
                "discarded",
                "timeouts",
                "margin",
            ]
        return data

    def report(self) -> Dict[str, Any]:
        return to_jsonable(self.model_dump(exclude={"hash_inputs"}))


class RunState(BaseModel):
    run_id: str
    step_index: int = 0
    cumulative_rounds: int = 0
    cumulative_samples: int = 0
    cumulative_discards: int = 0
    cumulative_timeouts: int = 0
    undecided_steps: int = 0

    def record_step(self, record: StepRecord) -> None:
        self.step_index = record.step_index + 1
        self.cumulative_rounds += record.rounds
        self.cumulative_samples += record.samples
        self.cumulative_discards += record.discarded
        self.cumulative_timeouts += record.timeouts

    def discard_rate(self) -> float:
        if not self.cumulative_samples:
            return 0.0
        return self.cumulative_discards / self.cumulative_samples

    def mean_rounds_per_step(self) -> float:
        if not self.step_index:
            return 0.0
        return self.cumulative_rounds / self.step_index

    def report(self) -> Dict[str, Any]:
        payload = self.model_dump()
        payload["discard_rate"] = self.discard_rate()
        payload["mean_rounds_per_step"] = self.mean_rounds_per_step()
        return to_jsonable(payload)
