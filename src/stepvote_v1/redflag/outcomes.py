from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from ..schemas import Candidate

REDFLAG_TOO_LONG = "REDFLAG_TOO_LONG"
REDFLAG_UNPARSEABLE = "REDFLAG_UNPARSEABLE"
REDFLAG_BAD_SHAPE = "REDFLAG_BAD_SHAPE"
REDFLAG_STATE_MISMATCH = "REDFLAG_STATE_MISMATCH"
REDFLAG_ILLEGAL_MOVE = "REDFLAG_ILLEGAL_MOVE"


@dataclass(frozen=True)
class Parsed:
    move: Any
    resulting_state: Any
    rationale: str


@dataclass(frozen=True)
class Valid:
    candidate: Candidate

    @property
    def is_flagged(self) -> bool:
        return False


@dataclass(frozen=True)
class Malformed:
    atom: str
    proposer_id: str = ""
    detail: str = ""

    @property
    def is_flagged(self) -> bool:
        return True


@dataclass(frozen=True)
class IllegalMove:
    atom: str
    candidate: Candidate

    @property
    def is_flagged(self) -> bool:
        return True


ParseResult = Union[Parsed, Malformed]
ScreenResult = Union[Valid, Malformed, IllegalMove]
