from __future__ import annotations

import random

import pytest

from jr_engine.bandit import DEFAULT_REWARDS, Sampler, action_to_reward, build_reward_table, simulate


def test_action_to_reward_defaults_and_unknown() -> None:
    assert action_to_reward("view") == pytest.approx(0.1)
    assert action_to_reward("click") == pytest.approx(1.0)
    assert action_to_reward("SAVE") == pytest.approx(1.5)
    assert action_to_reward("apply") == pytest.approx(3.0)
    assert action_to_reward("reject") == pytest.approx(-2.0)
    assert action_to_reward("share") == 0.0


def test_build_reward_table_overrides_without_mutating_defaults() -> None:
    table = build_reward_table({"Apply": 5})
    assert table["apply"] == 5.0
    assert table["view"] == DEFAULT_REWARDS["view"]
    assert DEFAULT_REWARDS["apply"] == 3.0
    assert action_to_reward("apply", table) == 5.0


def test_simulate_prefers_the_paying_arm() -> None:
    rng = random.Random(8)
    payout = [0.1, 0.8, 0.3]

    def reward_fn(index: int) -> float:
        return 1.0 if rng.random() < payout[index] else -1.0

    result = simulate(3, 1500, reward_fn, sampler=Sampler(seed=8))
    assert len(result.selections) == 1500
    counts = [result.selections.count(index) for index in range(3)]
    assert counts[1] == max(counts)
    assert sum(arm.total_pulls for arm in result.arms) == 1500


def test_simulate_deterministic_rewards_regret() -> None:
    result = simulate(2, 50, lambda index: float(index), sampler=Sampler(seed=1))
    zeros = result.selections.count(0)
    assert result.total_reward == pytest.approx(50 - zeros)
    assert result.regret == pytest.approx(zeros)


def test_simulate_validates_arguments() -> None:
    with pytest.raises(ValueError):
        simulate(0, 10, lambda _index: 1.0)
    with pytest.raises(ValueError):
        simulate(2, -1, lambda _index: 1.0)
    assert simulate(2, 0, lambda _index: 1.0).selections == []
