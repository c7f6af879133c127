import asyncio

import pytest

from stepvote_v1.calibrate import (
    calibrate,
    estimate_rates,
    expected_samples,
    required_margin,
    step_error_bound,
)
from stepvote_v1.domain.hanoi import TowersOfHanoi
from stepvote_v1.errors import ConfigError
from stepvote_v1.proposer_api import NoisyProposer, OracleProposer
from stepvote_v1.redflag import RedFlagFilter


def test_step_error_bound_decays_geometrically() -> None:
    assert step_error_bound(0.6, 3) == pytest.approx((0.4 / 0.6) ** 3)
    assert step_error_bound(0.6, 3, alternatives=2) == pytest.approx(2 * (0.2 / 0.6) ** 3)
    assert step_error_bound(0.6, 6) < step_error_bound(0.6, 3)
    assert step_error_bound(0.5, 10) == 1.0
    assert step_error_bound(0.0, 10) == 1.0


def test_required_margin_meets_target() -> None:
    k = required_margin(0.6, 31, target_success=0.99)
    assert 31 * step_error_bound(0.6, k) <= 0.01
    assert 31 * step_error_bound(0.6, k - 1) > 0.01
    assert required_margin(0.99, 1_000_000, target_success=0.99) < 10
    assert required_margin(1.0, 1_000_000) == 1


def test_required_margin_grows_logarithmically_with_length() -> None:
    short = required_margin(0.8, 1_000)
    long = required_margin(0.8, 1_000_000)
    assert long > short
    assert long - short <= 6


def test_required_margin_rejects_hopeless_inputs() -> None:
    with pytest.raises(ConfigError):
        required_margin(0.5, 100)
    with pytest.raises(ConfigError):
        required_margin(0.3, 100, alternatives=2)
    with pytest.raises(ConfigError):
        required_margin(0.9, 100, target_success=1.0)


def test_expected_samples() -> None:
    assert expected_samples(0.6, 1.0, 3) == pytest.approx(3 / 0.2)
    assert expected_samples(0.6, 0.5, 3) == pytest.approx(3 / 0.1)
    assert expected_samples(0.5, 1.0, 3) == float("inf")


def test_estimate_rates_with_oracle() -> None:
    system = TowersOfHanoi(disks=3)
    red_flag = RedFlagFilter(system)
    p, valid_rate = asyncio.run(estimate_rates(OracleProposer(system), system, 21, red_flag))
    assert p == 1.0
    assert valid_rate == 1.0


def test_estimate_rates_counts_malformed_as_invalid() -> None:
    system = TowersOfHanoi(disks=3)
    proposer = NoisyProposer(system, p_correct=0.0, p_malformed=1.0, seed=3)
    p, valid_rate = asyncio.run(
        estimate_rates(proposer, system, 10, RedFlagFilter(system))
    )
    assert valid_rate == 0.0
    assert p == 0.0


def test_estimate_rates_tracks_noise() -> None:
    system = TowersOfHanoi(disks=4)
    proposer = NoisyProposer(system, p_correct=0.6, p_malformed=0.2, seed=5)
    p, valid_rate = asyncio.run(
        estimate_rates(proposer, system, 2000, RedFlagFilter(system))
    )
    assert 0.70 < p < 0.80
    assert 0.75 < valid_rate < 0.85


def test_calibrate_recommends_margin() -> None:
    system = TowersOfHanoi(disks=3)
    result = asyncio.run(calibrate(OracleProposer(system), system, samples=14))
    assert result.recommended_k == 1
    assert result.total_steps == 7
    report = result.report()
    assert report["p_correct"] == 1.0
    assert report["recommended_k"] == 1


def test_calibrate_rejects_useless_proposer() -> None:
    system = TowersOfHanoi(disks=3)
    proposer = NoisyProposer(system, p_correct=0.0, p_malformed=1.0, seed=1)
    with pytest.raises(ConfigError):
        asyncio.run(calibrate(proposer, system, samples=10))


class _PlanlessHanoi(TowersOfHanoi):
    def optimal_move(self, state):  # type: ignore[override]
        return None


def test_estimate_rates_without_a_plan_is_a_config_error() -> None:
    system = _PlanlessHanoi(disks=2)
    with pytest.raises(ConfigError):
        asyncio.run(estimate_rates(OracleProposer(system), system, 4, RedFlagFilter(system)))
