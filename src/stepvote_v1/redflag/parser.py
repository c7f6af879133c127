from __future__ import annotations

import re
from typing import Any, Tuple

import orjson

from ..domain.transition import TransitionSystem
from ..errors import MalformedResponse
from .outcomes import REDFLAG_BAD_SHAPE, REDFLAG_UNPARSEABLE, Malformed, ParseResult, Parsed

_MOVE_RE = re.compile(r"^\s*move\s*=\s*(\[.*\])\s*$", re.MULTILINE)
_STATE_RE = re.compile(r"^\s*next_state\s*=\s*(\[.*\])\s*$", re.MULTILINE)


def _last_literal(pattern: re.Pattern[str], text: str, label: str) -> Tuple[Any, int]:
    matches = list(pattern.finditer(text))
    if not matches:
        raise MalformedResponse(REDFLAG_UNPARSEABLE, f"missing {label} line")
    last = matches[-1]
    try:
        return orjson.loads(last.group(1)), last.start()
    except orjson.JSONDecodeError as exc:
        raise MalformedResponse(REDFLAG_UNPARSEABLE, f"{label} is not valid JSON") from exc


def _extract(text: str, system: TransitionSystem[Any, Any]) -> Parsed:
    raw_move, move_at = _last_literal(_MOVE_RE, text, "move")
    raw_state, state_at = _last_literal(_STATE_RE, text, "next_state")
    move = system.coerce_move(raw_move)
    if move is None:
        raise MalformedResponse(REDFLAG_BAD_SHAPE, "move has the wrong shape")
    resulting_state = system.coerce_state(raw_state)
    if resulting_state is None:
        raise MalformedResponse(REDFLAG_BAD_SHAPE, "next_state is not a valid state")
    rationale = text[: min(move_at, state_at)].strip()
    return Parsed(move=move, resulting_state=resulting_state, rationale=rationale)


def parse_response(text: str, system: TransitionSystem[Any, Any]) -> ParseResult:
    """Extract ``move`` and ``next_state`` from a proposer response.

    Malformed text is discarded, never repaired: a response that needs
    fixing is treated as a symptom of confused reasoning.
    """
    try:
        return _extract(text, system)
    except MalformedResponse as exc:
        return Malformed(exc.atom, detail=exc.detail)
