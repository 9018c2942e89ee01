from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from jr_engine.models import Arm

from .engine import ThompsonSamplingBandit
from .sampler import Sampler


@dataclass(frozen=True)
class SimulationResult:
    total_reward: float
    regret: float
    arms: List[Arm]
    selections: List[int]


def _arm_index(arm_id: str) -> int:
    return int(arm_id.split("-", 1)[1])


def simulate(
    arm_count: int,
    iterations: int,
    reward_fn: Callable[[int], float],
    *,
    sampler: Optional[Sampler] = None,
) -> SimulationResult:
    """
    Offline replay: pull one arm per iteration and feed `reward_fn(arm_index)` back.

    Regret is the running sum of (best reward available this round - reward
    received), with `reward_fn` evaluated for every arm each round. Those extra
    draws are independent of the reward actually received, so regret is only
    meaningful for a deterministic `reward_fn`; a stochastic one can drive it
    negative.
    """
    if arm_count < 1:
        raise ValueError("arm_count must be >= 1")
    if iterations < 0:
        raise ValueError("iterations must be >= 0")

    bandit = ThompsonSamplingBandit(sampler=sampler)
    for index in range(arm_count):
        bandit.add_arm(f"arm-{index}")

    total_reward = 0.0
    regret = 0.0
    selections: List[int] = []
    for _ in range(iterations):
        chosen = bandit.select_arms(1)[0]
        index = _arm_index(chosen)
        reward = float(reward_fn(index))
        bandit.update_reward(chosen, reward)
        total_reward += reward
        selections.append(index)
        optimal = max(float(reward_fn(i)) for i in range(arm_count))
        regret += optimal - reward

    return SimulationResult(total_reward=total_reward, regret=regret, arms=bandit.arms(), selections=selections)
