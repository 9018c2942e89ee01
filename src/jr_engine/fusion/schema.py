from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from jr_engine.config import sanitize_job_id, sanitize_user_id
from jr_engine.models import ACTION_TYPES, normalize_action

MAX_RECOMMENDATION_COUNT = 50


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class RankingRequest(BaseModel):
    """
    Ranking request. Fields accept snake_case and the camelCase names used by
    browser clients; unset weights fall back to the ranking config.
    """

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(validation_alias=_alias("user_id", "userId"))
    candidate_job_ids: Optional[List[str]] = Field(
        default=None, validation_alias=_alias("candidate_job_ids", "candidateJobIds")
    )
    count: int = Field(default=10, ge=1, le=MAX_RECOMMENDATION_COUNT)
    vector_weight: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, validation_alias=_alias("vector_weight", "vectorWeight")
    )
    bandit_weight: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, validation_alias=_alias("bandit_weight", "banditWeight")
    )
    match_threshold: Optional[float] = Field(
        default=None, ge=0.0, le=1.0, validation_alias=_alias("match_threshold", "matchThreshold")
    )
    log_exposure: Optional[bool] = Field(
        default=None, validation_alias=_alias("log_exposure", "updatePolicy", "update_policy")
    )

    @field_validator("user_id")
    @classmethod
    def _validate_user_id(cls, value: str) -> str:
        return sanitize_user_id(value)

    @field_validator("candidate_job_ids")
    @classmethod
    def _validate_candidate_job_ids(cls, value: Optional[List[str]]) -> Optional[List[str]]:
        if value is None:
            return None
        seen: Dict[str, None] = {}
        for job_id in value:
            seen.setdefault(sanitize_job_id(job_id), None)
        return list(seen)


class FeedbackRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(validation_alias=_alias("user_id", "userId"))
    job_id: str = Field(validation_alias=_alias("job_id", "jobId"))
    action: str
    scroll_depth: Optional[float] = Field(
        default=None, ge=0.0, le=100.0, validation_alias=_alias("scroll_depth", "scrollDepth")
    )
    dwell_time: Optional[float] = Field(default=None, ge=0.0, validation_alias=_alias("dwell_time", "dwellTime"))
    session_id: Optional[str] = Field(default=None, validation_alias=_alias("session_id", "sessionId"))
    metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[str] = None

    @field_validator("user_id")
    @classmethod
    def _validate_user_id(cls, value: str) -> str:
        return sanitize_user_id(value)

    @field_validator("job_id")
    @classmethod
    def _validate_job_id(cls, value: str) -> str:
        return sanitize_job_id(value)

    @field_validator("action")
    @classmethod
    def _validate_action(cls, value: str) -> str:
        action = normalize_action(value)
        if action not in ACTION_TYPES:
            raise ValueError(f"action must be one of {list(ACTION_TYPES)}")
        return action


__all__ = ["MAX_RECOMMENDATION_COUNT", "FeedbackRequest", "RankingRequest"]
