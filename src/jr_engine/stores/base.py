"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence

from jr_engine.bandit.engine import ThompsonSamplingBandit
from jr_engine.errors import PersistenceConflictError
from jr_engine.models import Arm, BehaviorEvent, Candidate
from jr_engine.providers.retry import backoff_delay
from jr_engine.utils.time import to_iso_z

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyRecord:
    """Persisted arm for one (user, job) pair; `version` increments on every write."""

    user_id: str
    job_id: str
    arm: Arm
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "job_id": self.job_id,
            "alpha": self.arm.alpha,
            "beta": self.arm.beta,
            "total_pulls": self.arm.total_pulls,
            "total_reward": self.arm.total_reward,
            "expected_value": self.arm.expected_value,
            "last_updated": to_iso_z(self.arm.last_updated),
            "version": self.version,
        }


class CandidateSupply(Protocol):
    async def get_candidates(self, user_id: str, count: int, match_threshold: float) -> List[Candidate]: ...


class RecentJobsSource(Protocol):
    async def list_recent_job_ids(self, limit: int) -> List[str]: ...


class PolicyStore(Protocol):
    async def load_policy(self, user_id: str, *, limit: Optional[int] = None) -> Dict[str, PolicyRecord]: ...

    async def load_arms(self, user_id: str, job_ids: Sequence[str]) -> Dict[str, PolicyRecord]:
        """Stored rows for exactly `job_ids`; ids with no row are absent from the result."""
        ...

    async def get_arm(self, user_id: str, job_id: str) -> Optional[PolicyRecord]: ...

    async def save_arm(
        self,
        user_id: str,
        job_id: str,
        arm: Arm,
        *,
        expected_version: Optional[int],
    ) -> PolicyRecord:
        """
        Compare-and-swap write. `expected_version=None` means the row must not
        exist yet. Raises `PersistenceConflictError` when the stored version
        differs.
        """
        ...


class BehaviorLog(Protocol):
    async def append_event(self, event: BehaviorEvent) -> str:
        """Store `event` and return its id. A repeated `event_id` is ignored."""
        ...

    async def list_events(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BehaviorEvent]: ...

    async def list_recent_job_ids(self, limit: int) -> List[str]: ...


ArmMutation = Callable[[ThompsonSamplingBandit, str], Any]


async def update_arm_with_retry(
    store: PolicyStore,
    user_id: str,
    job_id: str,
    mutate: ArmMutation,
    *,
    rewards: Optional[Mapping[str, float]] = None,
    max_attempts: int = 5,
    backoff_base_s: float = 0.05,
    backoff_max_s: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PolicyRecord:
    """
    Read-modify-write one persisted arm through a throwaway bandit.

    The mutation runs against a fresh hydrate of the latest stored row and the
    result is written with compare-and-swap; version conflicts are retried with
    capped exponential backoff.
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        current = await store.get_arm(user_id, job_id)
        bandit = ThompsonSamplingBandit(rewards=rewards)
        if current is not None:
            bandit.hydrate(job_id, current.arm)
        else:
            bandit.add_arm(job_id)
        mutate(bandit, job_id)
        arm = bandit.require_arm(job_id)
        try:
            return await store.save_arm(
                user_id,
                job_id,
                arm,
                expected_version=current.version if current is not None else None,
            )
        except PersistenceConflictError:
            if attempt >= attempts:
                logger.warning(
                    "[policy_store][conflict] user=%s job=%s giving up after %s attempts", user_id, job_id, attempts
                )
                raise
            delay = backoff_delay(attempt, backoff_base_s, backoff_max_s)
            logger.info(
                "[policy_store][conflict] user=%s job=%s attempt=%s sleep_s=%.3f",
                user_id,
                job_id,
                attempt,
                delay,
            )
            await sleep(delay)

    raise RuntimeError("Unreachable")


__all__ = [
    "ArmMutation",
    "BehaviorLog",
    "CandidateSupply",
    "PolicyRecord",
    "PolicyStore",
    "RecentJobsSource",
    "update_arm_with_retry",
]
