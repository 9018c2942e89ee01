"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from jr_engine.errors import InvalidInputError, NumericDomainError, UnknownArmError
from jr_engine.models import Arm
from jr_engine.utils.time import parse_timestamp, utc_now

from .rewards import DEFAULT_REWARDS, action_to_reward
from .sampler import PARAM_FLOOR, Sampler, clamp_positive

logger = logging.getLogger(__name__)

ArmSnapshot = Union[Arm, Mapping[str, Any]]


def _require_job_id(job_id: object) -> str:
    value = str(job_id).strip() if job_id is not None else ""
    if not value:
        raise InvalidInputError("job_id is required")
    return value


class ThompsonSamplingBandit:
    """
    Request-scoped Thompson Sampling over job arms.

    Holds an arena of `Arm` records keyed by job id. Instances are meant to be
    built per request from a policy store snapshot and discarded afterwards;
    mutations are persisted explicitly by the caller.

    The posterior update adds the raw reward magnitude to alpha (reward > 0) or
    beta (reward <= 0). This is a heuristic, not a Bernoulli conjugate update,
    and it is kept for parity with stored policies.
    """

    def __init__(
        self,
        arms: Optional[Iterable[ArmSnapshot]] = None,
        *,
        sampler: Optional[Sampler] = None,
        rewards: Optional[Mapping[str, float]] = None,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self.sampler = sampler or Sampler()
        self.rewards = dict(rewards) if rewards is not None else dict(DEFAULT_REWARDS)
        self._clock = clock
        self._arms: Dict[str, Arm] = {}
        for snapshot in arms or []:
            arm = snapshot.copy() if isinstance(snapshot, Arm) else Arm.from_dict(snapshot)
            self._arms[arm.arm_id] = self._sanitized(arm)

    def __len__(self) -> int:
        return len(self._arms)

    def __contains__(self, job_id: object) -> bool:
        return str(job_id) in self._arms

    @staticmethod
    def _sanitized(arm: Arm) -> Arm:
        arm.alpha = clamp_positive(arm.alpha, PARAM_FLOOR)
        arm.beta = clamp_positive(arm.beta, PARAM_FLOOR)
        arm.total_pulls = max(0, int(arm.total_pulls))
        if not math.isfinite(arm.total_reward):
            arm.total_reward = 0.0
        return arm

    def add_arm(self, job_id: str) -> Arm:
        key = _require_job_id(job_id)
        arm = self._arms.get(key)
        if arm is None:
            arm = Arm(arm_id=key, alpha=1.0, beta=1.0, last_updated=self._clock())
            self._arms[key] = arm
        return arm

    def hydrate(self, job_id: str, snapshot: ArmSnapshot) -> Arm:
        """
        Overwrite an arm's posterior from a persisted snapshot.

        `last_updated` only moves forward: an older (or missing) snapshot
        timestamp keeps the in-memory value.
        """
        key = _require_job_id(job_id)
        if isinstance(snapshot, Arm):
            incoming = snapshot
            incoming_ts = snapshot.last_updated
        else:
            incoming = Arm.from_dict({**dict(snapshot), "arm_id": key})
            raw_ts = snapshot.get("last_updated", snapshot.get("lastUpdated"))
            incoming_ts = parse_timestamp(raw_ts) if raw_ts is not None else None

        arm = self.add_arm(key)
        before = (arm.alpha, arm.beta)
        arm.alpha = clamp_positive(incoming.alpha, PARAM_FLOOR)
        arm.beta = clamp_positive(incoming.beta, PARAM_FLOOR)
        if (arm.alpha, arm.beta) != (incoming.alpha, incoming.beta):
            logger.warning(
                "[bandit][hydrate] clamped job=%s alpha=%r beta=%r",
                key,
                incoming.alpha,
                incoming.beta,
            )
        arm.total_pulls = max(0, int(incoming.total_pulls))
        arm.total_reward = float(incoming.total_reward) if math.isfinite(incoming.total_reward) else 0.0
        if incoming_ts is not None and incoming_ts > arm.last_updated:
            arm.last_updated = incoming_ts
        logger.debug("[bandit][hydrate] job=%s prior=%s posterior=%s", key, before, (arm.alpha, arm.beta))
        return arm

    def select_arms(self, count: int) -> List[str]:
        """
        Draw one Beta sample per arm and return the `count` best job ids.

        Arms are sampled in job-id order and ties on the sampled value break by
        job id, so a seeded sampler yields a reproducible selection.
        """
        if count <= 0 or not self._arms:
            return []
        samples: List[Tuple[float, str]] = []
        for job_id in sorted(self._arms):
            arm = self._arms[job_id]
            samples.append((self.sampler.beta(arm.alpha, arm.beta), job_id))
        samples.sort(key=lambda item: (-item[0], item[1]))
        return [job_id for _, job_id in samples[:count]]

    def update_reward(self, job_id: str, reward: float) -> Optional[Arm]:
        key = _require_job_id(job_id)
        try:
            value = float(reward)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"reward must be numeric: {reward!r}") from exc
        if not math.isfinite(value):
            raise NumericDomainError(f"reward must be finite: {reward!r}")

        arm = self._arms.get(key)
        if arm is None:
            logger.warning("[bandit][update] unknown arm job=%s reward=%s; ignoring", key, value)
            return None

        if value > 0:
            arm.alpha += value
        else:
            arm.beta += abs(value)
        arm.total_pulls += 1
        arm.total_reward += value
        arm.last_updated = self._clock()
        return arm

    def update_action(self, job_id: str, action: str) -> Optional[Arm]:
        return self.update_reward(job_id, action_to_reward(action, self.rewards))

    def update_multiple_rewards(self, updates: Iterable[Tuple[str, float]]) -> List[Optional[Arm]]:
        return [self.update_reward(job_id, reward) for job_id, reward in updates]

    def get_arm(self, job_id: str) -> Optional[Arm]:
        arm = self._arms.get(str(job_id))
        return arm.copy() if arm is not None else None

    def require_arm(self, job_id: str) -> Arm:
        arm = self.get_arm(job_id)
        if arm is None:
            raise UnknownArmError(str(job_id))
        return arm

    def arms(self) -> List[Arm]:
        return [self._arms[key].copy() for key in sorted(self._arms)]

    def expected_value(self, job_id: str) -> float:
        arm = self._arms.get(str(job_id))
        if arm is None:
            return 0.0
        return arm.expected_value

    def average_reward(self, job_id: str) -> float:
        arm = self._arms.get(str(job_id))
        if arm is None:
            return 0.0
        return arm.average_reward

    def top_arms(self, count: int) -> List[Arm]:
        if count <= 0:
            return []
        ordered = sorted(self._arms.values(), key=lambda arm: (-arm.expected_value, arm.arm_id))
        return [arm.copy() for arm in ordered[:count]]

    def remove_arm(self, job_id: str) -> None:
        self._arms.pop(str(job_id), None)

    def reset(self) -> None:
        self._arms.clear()

    def serialize(self) -> List[Dict[str, Any]]:
        return [self._arms[key].to_dict() for key in sorted(self._arms)]

    @classmethod
    def deserialize(
        cls,
        data: Sequence[Mapping[str, Any]],
        *,
        sampler: Optional[Sampler] = None,
        rewards: Optional[Mapping[str, float]] = None,
    ) -> "ThompsonSamplingBandit":
        return cls(data, sampler=sampler, rewards=rewards)


__all__ = ["ArmSnapshot", "ThompsonSamplingBandit"]
