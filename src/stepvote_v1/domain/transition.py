from __future__ import annotations

from typing import Any, Hashable, List, Optional, Protocol, Sequence, TypeVar

State = TypeVar("State", bound=Hashable)
Move = TypeVar("Move", bound=Hashable)


class TransitionSystem(Protocol[State, Move]):
    """Contract the arbitration engine needs from a task domain.

    States and moves must be immutable, hashable and convertible to plain
    JSON (lists and ints) so that candidates can be fingerprinted.
    """

    name: str

    def initial_state(self) -> State:
        ...

    def is_legal(self, state: State, move: Move) -> bool:
        ...

    def apply(self, state: State, move: Move) -> State:
        ...

    def is_goal(self, state: State) -> bool:
        ...

    def legal_moves(self, state: State) -> List[Move]:
        ...

    def coerce_move(self, raw: Any) -> Optional[Move]:
        ...

    def coerce_state(self, raw: Any) -> Optional[State]:
        ...

    def render_history(self, history: Sequence[Move]) -> str:
        ...
