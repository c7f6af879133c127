"""Towers of Hanoi as the reference transition system.

A state is a tuple of pegs; each peg lists disk sizes bottom to top, so
``((3, 1), (2,), ())`` has disk 1 resting on disk 3. A move is
``(disk, from_peg, to_peg)`` with 0-indexed pegs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from ..errors import IllegalTransition

Peg = Tuple[int, ...]
HanoiState = Tuple[Peg, ...]
HanoiMove = Tuple[int, int, int]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class TowersOfHanoi:
    disks: int
    pegs: int = 3
    source: int = 0
    target: int = 2
    name: str = "hanoi"

    def __post_init__(self) -> None:
        if self.disks < 1:
            raise ValueError("disks must be >= 1")
        if self.pegs < 3:
            raise ValueError("pegs must be >= 3")
        for peg in (self.source, self.target):
            if not 0 <= peg < self.pegs:
                raise ValueError(f"peg index {peg} out of range")
        if self.source == self.target:
            raise ValueError("source and target pegs must differ")

    def initial_state(self) -> HanoiState:
        pegs: List[Peg] = [() for _ in range(self.pegs)]
        pegs[self.source] = tuple(range(self.disks, 0, -1))
        return tuple(pegs)

    def goal_state(self) -> HanoiState:
        pegs: List[Peg] = [() for _ in range(self.pegs)]
        pegs[self.target] = tuple(range(self.disks, 0, -1))
        return tuple(pegs)

    def minimal_steps(self) -> int:
        return 2**self.disks - 1

    def is_valid_state(self, state: HanoiState) -> bool:
        if len(state) != self.pegs:
            return False
        seen: List[int] = []
        for peg in state:
            for lower, upper in zip(peg, peg[1:]):
                if upper >= lower:
                    return False
            seen.extend(peg)
        return sorted(seen) == list(range(1, self.disks + 1))

    def is_legal(self, state: HanoiState, move: HanoiMove) -> bool:
        disk, src, dst = move
        if not (0 <= src < self.pegs and 0 <= dst < self.pegs) or src == dst:
            return False
        if len(state) != self.pegs:
            return False
        source_peg = state[src]
        if not source_peg or source_peg[-1] != disk:
            return False
        dest_peg = state[dst]
        return not dest_peg or dest_peg[-1] > disk

    def apply(self, state: HanoiState, move: HanoiMove) -> HanoiState:
        if not self.is_legal(state, move):
            raise IllegalTransition(state, move)
        disk, src, dst = move
        pegs = list(state)
        pegs[src] = state[src][:-1]
        pegs[dst] = state[dst] + (disk,)
        return tuple(pegs)

    def is_goal(self, state: HanoiState) -> bool:
        return state == self.goal_state()

    def legal_moves(self, state: HanoiState) -> List[HanoiMove]:
        moves: List[HanoiMove] = []
        for src, peg in enumerate(state):
            if not peg:
                continue
            for dst in range(self.pegs):
                move = (peg[-1], src, dst)
                if self.is_legal(state, move):
                    moves.append(move)
        return moves

    def optimal_move(self, state: HanoiState) -> Optional[HanoiMove]:
        """First move of the shortest plan from ``state`` to the goal.

        Only defined for three pegs. Returns ``None`` at the goal.
        """
        if self.pegs != 3:
            raise ValueError("optimal_move requires exactly three pegs")
        location = {disk: index for index, peg in enumerate(state) for disk in peg}
        disk = self.disks
        target = self.target
        move: Optional[HanoiMove] = None
        # walk from the largest disk down; the last misplaced disk whose
        # smaller disks already sit on the spare peg is the one to move
        while disk >= 1:
            if location[disk] == target:
                disk -= 1
                continue
            spare = 3 - location[disk] - target
            move = (disk, location[disk], target)
            target = spare
            disk -= 1
        return move

    def coerce_move(self, raw: Any) -> Optional[HanoiMove]:
        if not isinstance(raw, (list, tuple)) or len(raw) != 3:
            return None
        if not all(_is_int(item) for item in raw):
            return None
        disk, src, dst = raw
        if not 1 <= disk <= self.disks:
            return None
        return (disk, src, dst)

    def coerce_state(self, raw: Any) -> Optional[HanoiState]:
        if not isinstance(raw, (list, tuple)) or len(raw) != self.pegs:
            return None
        pegs: List[Peg] = []
        for peg in raw:
            if not isinstance(peg, (list, tuple)):
                return None
            if not all(_is_int(item) for item in peg):
                return None
            pegs.append(tuple(peg))
        state = tuple(pegs)
        if not self.is_valid_state(state):
            return None
        return state

    def render_history(self, history: Sequence[HanoiMove]) -> str:
        if not history:
            return "none"
        disk, src, dst = history[-1]
        return f"previous move = [{disk}, {src}, {dst}]"
