from .hanoi import HanoiMove, HanoiState, TowersOfHanoi
from .transition import TransitionSystem

__all__ = [
    "HanoiMove",
    "HanoiState",
    "TowersOfHanoi",
    "TransitionSystem",
]
