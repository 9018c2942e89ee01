from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class RankingConfigError(ValueError):
    pass


class RankingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=1)
    vector_weight: float = Field(default=0.6, ge=0.0, le=1.0)
    bandit_weight: float = Field(default=0.4, ge=0.0, le=1.0)
    behavior_weight: float = Field(default=0.0, ge=0.0, le=1.0)
    candidate_multiplier: int = Field(default=3, ge=1)
    max_candidate_pool: int = Field(default=50, ge=1)
    fallback_limit: int = Field(default=50, ge=1)
    exposure_top_n: int = Field(default=3, ge=0)
    decay_lambda: float = Field(default=0.05, gt=0.0)
    default_match_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    policy_load_limit: int = Field(default=1000, ge=1)
    store_max_attempts: int = Field(default=5, ge=1)
    store_backoff_base_s: float = Field(default=0.05, ge=0.0)
    store_backoff_max_s: float = Field(default=1.0, ge=0.0)
    rewards: Dict[str, float] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_schema_version(self) -> "RankingConfig":
        if self.schema_version != 1:
            raise ValueError("unsupported ranking schema_version")
        return self

    def candidate_pool_size(self, count: int) -> int:
        return min(max(0, count) * self.candidate_multiplier, self.max_candidate_pool)


_ENV_FIELDS = {
    "JOBREC_VECTOR_WEIGHT": "vector_weight",
    "JOBREC_BANDIT_WEIGHT": "bandit_weight",
    "JOBREC_BEHAVIOR_WEIGHT": "behavior_weight",
    "JOBREC_CANDIDATE_MULTIPLIER": "candidate_multiplier",
    "JOBREC_MAX_CANDIDATE_POOL": "max_candidate_pool",
    "JOBREC_FALLBACK_LIMIT": "fallback_limit",
    "JOBREC_EXPOSURE_TOP_N": "exposure_top_n",
    "JOBREC_DECAY_LAMBDA": "decay_lambda",
    "JOBREC_MATCH_THRESHOLD": "default_match_threshold",
    "JOBREC_POLICY_LOAD_LIMIT": "policy_load_limit",
    "JOBREC_STORE_MAX_ATTEMPTS": "store_max_attempts",
    "JOBREC_STORE_BACKOFF_BASE_S": "store_backoff_base_s",
    "JOBREC_STORE_BACKOFF_MAX_S": "store_backoff_max_s",
}


def load_ranking_config(path: Path) -> RankingConfig:
    if not path.exists():
        raise RankingConfigError(f"ranking config missing: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise RankingConfigError(f"invalid ranking config JSON: {path}: {exc}") from exc
    try:
        config = RankingConfig.model_validate(payload)
    except ValidationError as exc:
        raise RankingConfigError(f"invalid ranking config: {path}: {exc}") from exc
    return config


def ranking_config_from_env(
    base: Optional[RankingConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RankingConfig:
    """
    Overlay `JOBREC_*` environment overrides on `base` (or the defaults).

    Each override is validated on its own; a value that does not parse or
    violates its bound is ignored with a warning.
    """
    env = os.environ if environ is None else environ
    config = base or RankingConfig()
    for env_name, field_name in _ENV_FIELDS.items():
        raw = env.get(env_name)
        if raw is None or not raw.strip():
            continue
        update: Dict[str, Any] = {**config.model_dump(), field_name: raw.strip()}
        try:
            config = RankingConfig.model_validate(update)
        except ValidationError:
            logger.warning("[ranking_config][env] ignoring invalid %s=%r", env_name, raw)
    return config


def resolve_ranking_config(path: Optional[str] = None) -> RankingConfig:
    base = load_ranking_config(Path(path)) if path else None
    return ranking_config_from_env(base)


__all__ = [
    "RankingConfig",
    "RankingConfigError",
    "load_ranking_config",
    "ranking_config_from_env",
    "resolve_ranking_config",
]
