from .arbiter import AcceptedMove, Decision, DecisionStats, Inconclusive, VotingArbiter
from .tally import VoteTally, leading_fingerprint

__all__ = [
    "AcceptedMove",
    "Decision",
    "DecisionStats",
    "Inconclusive",
    "VotingArbiter",
    "VoteTally",
    "leading_fingerprint",
]
