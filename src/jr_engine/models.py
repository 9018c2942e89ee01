"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from jr_engine.errors import InvalidInputError
from jr_engine.utils.time import parse_timestamp, to_iso_z, utc_now

ACTION_TYPES = ("view", "click", "save", "apply", "reject")


def normalize_action(value: object) -> str:
    return " ".join(str(value).split()).strip().lower()


def _first_present(payload: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload and payload[key] is not None:
            return payload[key]
    return default


@dataclass
class Arm:
    """
    Posterior belief about one job for one user: Beta(alpha, beta) plus pull bookkeeping.
    """

    arm_id: str
    alpha: float = 1.0
    beta: float = 1.0
    total_pulls: int = 0
    total_reward: float = 0.0
    last_updated: datetime = field(default_factory=utc_now)

    @property
    def expected_value(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def average_reward(self) -> float:
        if self.total_pulls == 0:
            return 0.0
        return self.total_reward / self.total_pulls

    def copy(self) -> "Arm":
        return Arm(
            arm_id=self.arm_id,
            alpha=self.alpha,
            beta=self.beta,
            total_pulls=self.total_pulls,
            total_reward=self.total_reward,
            last_updated=self.last_updated,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "arm_id": self.arm_id,
            "alpha": self.alpha,
            "beta": self.beta,
            "total_pulls": self.total_pulls,
            "total_reward": self.total_reward,
            "last_updated": to_iso_z(self.last_updated),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Arm":
        arm_id = _first_present(payload, "arm_id", "job_id", "jobId")
        if arm_id is None or not str(arm_id).strip():
            raise InvalidInputError("arm record is missing arm_id")
        last_updated = _first_present(payload, "last_updated", "lastUpdated")
        return cls(
            arm_id=str(arm_id).strip(),
            alpha=float(_first_present(payload, "alpha", default=1.0)),
            beta=float(_first_present(payload, "beta", default=1.0)),
            total_pulls=int(_first_present(payload, "total_pulls", "totalPulls", default=0)),
            total_reward=float(_first_present(payload, "total_reward", "totalReward", default=0.0)),
            last_updated=parse_timestamp(last_updated) if last_updated is not None else utc_now(),
        )


@dataclass(frozen=True)
class BehaviorEvent:
    """One immutable entry of the user action log."""

    user_id: str
    job_id: str
    action_type: str
    timestamp: datetime
    scroll_depth: Optional[float] = None
    dwell_time: Optional[float] = None
    session_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    event_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not str(self.user_id or "").strip():
            raise InvalidInputError("behavior event is missing user_id")
        if not str(self.job_id or "").strip():
            raise InvalidInputError("behavior event is missing job_id")
        action = normalize_action(self.action_type)
        if action not in ACTION_TYPES:
            raise InvalidInputError(f"unsupported action_type: {self.action_type!r}")
        object.__setattr__(self, "action_type", action)
        object.__setattr__(self, "timestamp", parse_timestamp(self.timestamp))
        if self.scroll_depth is not None:
            depth = float(self.scroll_depth)
            if not math.isfinite(depth) or depth < 0 or depth > 100:
                raise InvalidInputError(f"scroll_depth must be within 0..100: {self.scroll_depth!r}")
        if self.dwell_time is not None:
            dwell = float(self.dwell_time)
            if not math.isfinite(dwell) or dwell < 0:
                raise InvalidInputError(f"dwell_time must be >= 0 seconds: {self.dwell_time!r}")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "user_id": self.user_id,
            "job_id": self.job_id,
            "action_type": self.action_type,
            "timestamp": to_iso_z(self.timestamp),
        }
        if self.event_id:
            out["event_id"] = self.event_id
        if self.scroll_depth is not None:
            out["scroll_depth"] = self.scroll_depth
        if self.dwell_time is not None:
            out["dwell_time"] = self.dwell_time
        if self.session_id:
            out["session_id"] = self.session_id
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out


@dataclass(frozen=True)
class Candidate:
    job_id: str
    vector_score: float = 0.0


@dataclass
class RankedCandidate:
    job_id: str
    vector_score: float
    bandit_expected_value: float
    hybrid_score: float
    selection_rank: int
    total_pulls: int = 0
    average_reward: float = 0.0
    behavior_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        scores: Dict[str, Any] = {
            "vector": self.vector_score,
            "bandit": self.bandit_expected_value,
            "hybrid": self.hybrid_score,
        }
        if self.behavior_score is not None:
            scores["behavior"] = self.behavior_score
        return {
            "job_id": self.job_id,
            "selection_rank": self.selection_rank,
            "scores": scores,
            "bandit_stats": {
                "expected_value": self.bandit_expected_value,
                "total_pulls": self.total_pulls,
                "average_reward": self.average_reward,
            },
        }
