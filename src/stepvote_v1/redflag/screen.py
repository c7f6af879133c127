from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..domain.transition import TransitionSystem
from ..proposer_api import RawResponse
from ..schemas import Candidate
from ..utils import estimate_tokens
from .outcomes import (
    REDFLAG_ILLEGAL_MOVE,
    REDFLAG_STATE_MISMATCH,
    REDFLAG_TOO_LONG,
    IllegalMove,
    Malformed,
    ScreenResult,
    Valid,
)
from .parser import parse_response


@dataclass(frozen=True)
class RedFlagFilter:
    system: TransitionSystem[Any, Any]
    token_ceiling: int = 750

    def screen(self, response: RawResponse, state: Any) -> ScreenResult:
        if response.error_atom:
            return Malformed(response.error_atom, proposer_id=response.proposer_id)
        tokens = estimate_tokens(response.text)
        if tokens > self.token_ceiling:
            return Malformed(
                REDFLAG_TOO_LONG,
                proposer_id=response.proposer_id,
                detail=f"{tokens} > {self.token_ceiling}",
            )
        parsed = parse_response(response.text, self.system)
        if isinstance(parsed, Malformed):
            return Malformed(parsed.atom, proposer_id=response.proposer_id, detail=parsed.detail)
        candidate = Candidate.build(
            parsed.move,
            parsed.resulting_state,
            rationale=parsed.rationale,
            proposer_id=response.proposer_id,
        )
        # apply() is undefined for an illegal move, so legality is decided first
        if not self.system.is_legal(state, parsed.move):
            return IllegalMove(REDFLAG_ILLEGAL_MOVE, candidate.flagged(REDFLAG_ILLEGAL_MOVE))
        if self.system.apply(state, parsed.move) != parsed.resulting_state:
            return IllegalMove(
                REDFLAG_STATE_MISMATCH, candidate.flagged(REDFLAG_STATE_MISMATCH)
            )
        return Valid(candidate)
