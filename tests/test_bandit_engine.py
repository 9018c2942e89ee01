from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from jr_engine.bandit import PARAM_FLOOR, Sampler, ThompsonSamplingBandit
from jr_engine.errors import InvalidInputError, NumericDomainError, UnknownArmError
from jr_engine.models import Arm

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class _ConstantSampler(Sampler):
    def beta(self, alpha: float, beta: float) -> float:
        return 0.5


def _bandit(**kwargs) -> ThompsonSamplingBandit:
    kwargs.setdefault("sampler", Sampler(seed=42))
    kwargs.setdefault("clock", lambda: T0)
    return ThompsonSamplingBandit(**kwargs)


def test_add_arm_is_idempotent_with_uniform_prior() -> None:
    bandit = _bandit()
    bandit.add_arm("job-1")
    bandit.update_reward("job-1", 1.0)
    bandit.add_arm("job-1")
    assert len(bandit) == 1
    arm = bandit.get_arm("job-1")
    assert arm is not None
    assert (arm.alpha, arm.beta, arm.total_pulls) == (2.0, 1.0, 1)


def test_add_arm_rejects_blank_id() -> None:
    with pytest.raises(InvalidInputError):
        _bandit().add_arm("  ")


def test_select_arms_empty_and_non_positive_count() -> None:
    bandit = _bandit()
    assert bandit.select_arms(3) == []
    bandit.add_arm("a")
    assert bandit.select_arms(0) == []
    assert bandit.select_arms(-1) == []


def test_select_arms_ties_break_by_arm_id() -> None:
    bandit = _bandit(sampler=_ConstantSampler())
    for job_id in ["c", "a", "b"]:
        bandit.add_arm(job_id)
    assert bandit.select_arms(3) == ["a", "b", "c"]
    assert bandit.select_arms(2) == ["a", "b"]


def test_select_arms_is_reproducible_with_seeded_sampler() -> None:
    picks = []
    for _ in range(2):
        bandit = _bandit(sampler=Sampler(seed=5))
        for job_id in ["x", "y", "z", "w"]:
            bandit.add_arm(job_id)
        picks.append(bandit.select_arms(4))
    assert picks[0] == picks[1]
    assert sorted(picks[0]) == ["w", "x", "y", "z"]


def test_update_reward_positive_and_negative() -> None:
    bandit = _bandit()
    bandit.add_arm("job")
    bandit.update_reward("job", 1.5)
    bandit.update_reward("job", -2.0)
    arm = bandit.get_arm("job")
    assert arm is not None
    assert arm.alpha == pytest.approx(2.5)
    assert arm.beta == pytest.approx(3.0)
    assert arm.total_pulls == 2
    assert arm.total_reward == pytest.approx(-0.5)
    assert bandit.average_reward("job") == pytest.approx(-0.25)
    assert arm.last_updated == T0


def test_update_reward_unknown_arm_leaves_state_untouched(caplog) -> None:
    bandit = _bandit()
    bandit.add_arm("known")
    bandit.update_reward("known", 1.0)
    before = bandit.serialize()
    assert bandit.update_reward("missing", 3.0) is None
    assert bandit.serialize() == before
    assert "unknown arm" in caplog.text


@pytest.mark.parametrize(
    "reward, error",
    [
        (float("nan"), NumericDomainError),
        (float("inf"), NumericDomainError),
        ("abc", InvalidInputError),
        (None, InvalidInputError),
    ],
)
def test_update_reward_rejects_bad_values_before_mutation(reward, error) -> None:
    bandit = _bandit()
    bandit.add_arm("job")
    before = bandit.serialize()
    with pytest.raises(error):
        bandit.update_reward("job", reward)
    assert bandit.serialize() == before


def test_positive_rewards_strictly_increase_expected_value() -> None:
    bandit = _bandit()
    bandit.add_arm("job")
    previous = bandit.expected_value("job")
    for _ in range(10):
        bandit.update_reward("job", 1.0)
        current = bandit.expected_value("job")
        assert current > previous
        previous = current


def test_rewarded_arm_is_selected_more_often_than_static_competitor() -> None:
    bandit = _bandit(sampler=Sampler(seed=2024))
    bandit.add_arm("rewarded")
    bandit.add_arm("static")
    for _ in range(20):
        bandit.update_reward("rewarded", 1.0)
    wins = sum(1 for _ in range(2000) if bandit.select_arms(1) == ["rewarded"])
    assert wins > 1600


def test_update_action_uses_reward_table() -> None:
    bandit = _bandit()
    bandit.add_arm("job")
    bandit.update_action("job", "apply")
    bandit.update_action("job", " Reject ")
    bandit.update_action("job", "unknown-action")
    arm = bandit.get_arm("job")
    assert arm is not None
    assert arm.alpha == pytest.approx(4.0)
    assert arm.beta == pytest.approx(3.0)
    assert arm.total_pulls == 3


def test_update_multiple_rewards() -> None:
    bandit = _bandit()
    bandit.add_arm("a")
    results = bandit.update_multiple_rewards([("a", 1.0), ("b", 1.0)])
    assert results[0] is not None
    assert results[1] is None


def test_expected_value_and_top_arms() -> None:
    bandit = _bandit()
    for job_id in ["a", "b", "c"]:
        bandit.add_arm(job_id)
    bandit.update_reward("b", 3.0)
    bandit.update_reward("c", -1.0)
    assert bandit.expected_value("b") == pytest.approx(0.8)
    assert bandit.expected_value("missing") == 0.0
    assert [arm.arm_id for arm in bandit.top_arms(3)] == ["b", "a", "c"]
    assert bandit.top_arms(0) == []


def test_hydrate_overwrites_posterior_and_keeps_newer_timestamp() -> None:
    bandit = _bandit()
    older = T0 - timedelta(days=3)
    newer = T0 + timedelta(days=1)
    bandit.hydrate("a", {"alpha": 3, "beta": 2, "total_pulls": 4, "total_reward": 2.0, "last_updated": older})
    bandit.hydrate("b", Arm(arm_id="b", alpha=5.0, beta=1.0, total_pulls=5, total_reward=4.0, last_updated=newer))
    a = bandit.get_arm("a")
    b = bandit.get_arm("b")
    assert a is not None and b is not None
    assert (a.alpha, a.beta, a.total_pulls, a.total_reward) == (3.0, 2.0, 4, 2.0)
    assert a.last_updated == T0
    assert b.last_updated == newer


def test_hydrate_clamps_degenerate_parameters(caplog) -> None:
    bandit = _bandit()
    arm = bandit.hydrate("job", {"alpha": -4, "beta": float("nan")})
    assert arm.alpha == PARAM_FLOOR
    assert arm.beta == PARAM_FLOOR
    assert "clamped" in caplog.text


def test_serialize_deserialize_round_trip() -> None:
    bandit = _bandit()
    for job_id in ["b", "a"]:
        bandit.add_arm(job_id)
    bandit.update_reward("a", 1.5)
    bandit.update_reward("b", -0.5)
    restored = ThompsonSamplingBandit.deserialize(bandit.serialize())
    original = {arm.arm_id: arm for arm in bandit.arms()}
    copied = {arm.arm_id: arm for arm in restored.arms()}
    assert original.keys() == copied.keys()
    for job_id, arm in original.items():
        assert copied[job_id].alpha == pytest.approx(arm.alpha)
        assert copied[job_id].beta == pytest.approx(arm.beta)
        assert copied[job_id].total_pulls == arm.total_pulls
        assert copied[job_id].total_reward == pytest.approx(arm.total_reward)
        assert copied[job_id].last_updated == arm.last_updated
    assert [row["arm_id"] for row in bandit.serialize()] == ["a", "b"]


def test_remove_arm_and_reset() -> None:
    bandit = _bandit()
    bandit.add_arm("a")
    bandit.add_arm("b")
    bandit.remove_arm("a")
    assert "a" not in bandit
    assert "b" in bandit
    bandit.reset()
    assert len(bandit) == 0


def test_require_arm_raises_for_unknown_job() -> None:
    bandit = _bandit()
    bandit.add_arm("a")
    assert bandit.require_arm("a").arm_id == "a"
    with pytest.raises(UnknownArmError) as excinfo:
        bandit.require_arm("missing")
    assert excinfo.value.job_id == "missing"
    assert isinstance(excinfo.value, KeyError)


def test_get_arm_returns_copy() -> None:
    bandit = _bandit()
    bandit.add_arm("a")
    arm = bandit.get_arm("a")
    assert arm is not None
    arm.alpha = 100.0
    assert bandit.expected_value("a") == pytest.approx(0.5)
