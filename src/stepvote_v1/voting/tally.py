from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..schemas import Candidate


@dataclass
class VoteTally:
    """Votes for one step's decision, keyed by candidate fingerprint.

    First-seen order is kept only so reports list outcomes stably; it never
    breaks a tie.
    """

    counts: Dict[str, int] = field(default_factory=dict)
    order: List[str] = field(default_factory=list)
    exemplars: Dict[str, Candidate] = field(default_factory=dict)

    def add(self, candidate: Candidate) -> int:
        fingerprint = candidate.fingerprint
        if fingerprint not in self.counts:
            self.counts[fingerprint] = 0
            self.order.append(fingerprint)
            self.exemplars[fingerprint] = candidate
        self.counts[fingerprint] += 1
        return self.counts[fingerprint]

    def total(self) -> int:
        return sum(self.counts.values())

    def ranked(self) -> List[Tuple[str, int]]:
        position = {fingerprint: index for index, fingerprint in enumerate(self.order)}
        return sorted(self.counts.items(), key=lambda item: (-item[1], position[item[0]]))

    def top_two(self) -> Tuple[int, int]:
        ranked = self.ranked()
        v1 = ranked[0][1] if ranked else 0
        v2 = ranked[1][1] if len(ranked) > 1 else 0
        return v1, v2

    def margin(self) -> int:
        v1, v2 = self.top_two()
        return v1 - v2

    def snapshot(self) -> Dict[str, int]:
        return {fingerprint: self.counts[fingerprint] for fingerprint in self.order}


def leading_fingerprint(tally: VoteTally, k: int) -> Optional[str]:
    """The first-to-ahead-by-k stopping rule.

    Returns the fingerprint holding the highest count when it leads the
    runner-up by at least ``k``; otherwise ``None``. A tie for first place
    has margin zero and is never decided here.
    """
    if k < 1:
        raise ValueError("k must be >= 1")
    ranked = tally.ranked()
    if not ranked:
        return None
    leader, v1 = ranked[0]
    v2 = ranked[1][1] if len(ranked) > 1 else 0
    if v1 - v2 >= k:
        return leader
    return None
