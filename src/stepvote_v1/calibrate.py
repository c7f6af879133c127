"""Choosing the vote margin ``k`` from a measured per-sample accuracy.

With per-sample accuracy ``p`` split against ``alternatives`` equally likely
wrong outcomes (each with probability ``q = (1 - p) / alternatives``), the
difference between the correct count and one wrong count is a random walk
drifting upward. The chance that a given wrong outcome ever gets ``k``
votes ahead of the correct one is at most ``(q / p) ** k`` (gambler's ruin),
so a step is decided wrongly with probability at most
``alternatives * (q / p) ** k``. Checking the tally only at round
boundaries can only lower that figure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .domain.hanoi import HanoiState, TowersOfHanoi
from .errors import ConfigError
from .proposer_api import BaseProposer
from .redflag.outcomes import Valid
from .redflag.screen import RedFlagFilter

MAX_MARGIN = 500


def step_error_bound(p: float, k: int, alternatives: int = 1) -> float:
    if alternatives < 1:
        raise ValueError("alternatives must be >= 1")
    if p <= 0.0:
        return 1.0
    q = (1.0 - p) / alternatives
    if q >= p:
        return 1.0
    return min(1.0, alternatives * (q / p) ** k)


def required_margin(
    p: float,
    total_steps: int,
    target_success: float = 0.99,
    alternatives: int = 1,
) -> int:
    """Smallest ``k`` whose union bound over ``total_steps`` meets the target."""
    if not 0.0 < target_success < 1.0:
        raise ConfigError("target_success must be within (0, 1)")
    if p * alternatives <= 1.0 - p:
        raise ConfigError(
            f"p={p:.3f} does not beat each wrong outcome; voting cannot converge"
        )
    budget = 1.0 - target_success
    for k in range(1, MAX_MARGIN + 1):
        if total_steps * step_error_bound(p, k, alternatives) <= budget:
            return k
    raise ConfigError(f"no margin up to {MAX_MARGIN} meets the target")


def expected_samples(p: float, valid_rate: float, k: int, alternatives: int = 1) -> float:
    q = (1.0 - p) / alternatives
    drift = (p - q) * valid_rate
    if drift <= 0.0:
        return float("inf")
    return k / drift


@dataclass(frozen=True)
class CalibrationResult:
    p_correct: float
    valid_rate: float
    samples: int
    recommended_k: int
    target_success: float
    total_steps: int
    alternatives: int
    step_error_bound: float
    expected_samples_per_step: float

    def report(self) -> Dict[str, Any]:
        return {
            "p_correct": round(self.p_correct, 6),
            "valid_rate": round(self.valid_rate, 6),
            "samples": self.samples,
            "recommended_k": self.recommended_k,
            "target_success": self.target_success,
            "total_steps": self.total_steps,
            "alternatives": self.alternatives,
            "step_error_bound": self.step_error_bound,
            "expected_samples_per_step": round(self.expected_samples_per_step, 3),
        }


async def estimate_rates(
    proposer: BaseProposer,
    system: TowersOfHanoi,
    samples: int,
    red_flag: RedFlagFilter,
) -> tuple[float, float]:
    """Sample the proposer along the optimal trajectory.

    Returns ``(p, v)``: accuracy among unflagged responses and the unflagged
    rate. Samples cycle through the trajectory so early and late states are
    both represented.
    """
    if samples < 1:
        raise ValueError("samples must be >= 1")
    trajectory: list[HanoiState] = []
    history: list[Any] = []
    state = system.initial_state()
    while not system.is_goal(state):
        trajectory.append(state)
        move = system.optimal_move(state)
        if move is None:
            raise ConfigError(f"no optimal move from non-goal state {state!r}")
        history.append(move)
        state = system.apply(state, move)
    if not trajectory:
        raise ConfigError("the initial state is already the goal")
    valid = 0
    correct = 0
    for index in range(samples):
        position = index % len(trajectory)
        state = trajectory[position]
        response = await proposer.propose(state, tuple(history[:position]))
        result = red_flag.screen(response, state)
        if not isinstance(result, Valid):
            continue
        valid += 1
        if result.candidate.move == system.optimal_move(state):
            correct += 1
    valid_rate = valid / samples
    p = correct / valid if valid else 0.0
    return p, valid_rate


async def calibrate(
    proposer: BaseProposer,
    system: TowersOfHanoi,
    samples: int = 200,
    target_success: float = 0.99,
    alternatives: int = 1,
    token_ceiling: int = 750,
) -> CalibrationResult:
    red_flag = RedFlagFilter(system, token_ceiling=token_ceiling)
    p, valid_rate = await estimate_rates(proposer, system, samples, red_flag)
    total_steps = system.minimal_steps()
    k = required_margin(p, total_steps, target_success, alternatives)
    return CalibrationResult(
        p_correct=p,
        valid_rate=valid_rate,
        samples=samples,
        recommended_k=k,
        target_success=target_success,
        total_steps=total_steps,
        alternatives=alternatives,
        step_error_bound=step_error_bound(p, k, alternatives),
        expected_samples_per_step=expected_samples(p, valid_rate, k, alternatives),
    )
