from __future__ import annotations

from typing import Any, Dict, Optional


class StepvoteError(Exception):
    """Base class for errors raised by the arbitration engine."""


class ConfigError(StepvoteError):
    pass


class MalformedResponse(StepvoteError):
    """A proposer response that does not parse into a move and a state."""

    def __init__(self, atom: str, detail: str = "") -> None:
        super().__init__(f"{atom}: {detail}" if detail else atom)
        self.atom = atom
        self.detail = detail


class IllegalTransition(StepvoteError):
    def __init__(self, state: Any, move: Any, reason: str = "") -> None:
        message = f"illegal move {move!r} from {state!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.state = state
        self.move = move
        self.reason = reason


class InvariantViolation(StepvoteError):
    """An accepted move failed validation at application time.

    The filter only lets legal moves vote, so reaching this means the
    arbiter or the filter broke their contract.
    """


class RunAborted(StepvoteError):
    def __init__(
        self, step_index: int, reason: str, tally: Optional[Dict[str, int]] = None
    ) -> None:
        super().__init__(f"run aborted at step {step_index}: {reason}")
        self.step_index = step_index
        self.reason = reason
        self.tally = dict(tally or {})
