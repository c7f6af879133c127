from typing import Tuple

import pytest

from stepvote_v1.calibrate import required_margin
from stepvote_v1.config import Settings
from stepvote_v1.domain.hanoi import TowersOfHanoi
from stepvote_v1.orchestrator.run import RunStatus, run_task
from stepvote_v1.proposer_api import NoisyProposer

DISKS = 5
P_CORRECT = 0.6
RUNS = 100


def _wrong_acceptances(settings: Settings, runs: int = RUNS) -> Tuple[int, int, int]:
    system = TowersOfHanoi(disks=DISKS)
    wrong = 0
    steps = 0
    completed = 0
    for seed in range(runs):
        proposer = NoisyProposer(system, p_correct=P_CORRECT, seed=seed)
        handle = run_task(system, proposer, settings=settings, run_id=f"noisy-{seed}")
        for record in handle.records:
            steps += 1
            if record.move != system.optimal_move(record.pre_state):
                wrong += 1
        if handle.status == RunStatus.COMPLETED:
            completed += 1
    return wrong, steps, completed


def test_margin_three_keeps_wrong_acceptances_well_below_sample_error() -> None:
    minimal = TowersOfHanoi(disks=DISKS).minimal_steps()
    settings = Settings(k=3, round_batch_size=5, max_steps=4 * minimal)
    wrong, steps, completed = _wrong_acceptances(settings)
    assert steps >= RUNS * minimal
    assert wrong / steps < 0.1
    assert completed > RUNS // 2


@pytest.mark.slow
def test_calibrated_margin_makes_no_wrong_acceptances() -> None:
    minimal = TowersOfHanoi(disks=DISKS).minimal_steps()
    k = required_margin(P_CORRECT, RUNS * minimal, target_success=0.999)
    settings = Settings(k=k, round_batch_size=5, max_rounds=500)
    wrong, steps, completed = _wrong_acceptances(settings)
    assert wrong == 0
    assert completed == RUNS
    assert steps == RUNS * minimal
