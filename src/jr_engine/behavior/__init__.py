from .decay import (
    DEFAULT_LAMBDA,
    LAMBDA_PRESETS,
    decay,
    half_life_for_lambda,
    lambda_for_half_life,
    simulate_decay,
)
from .scorer import (
    BASE_WEIGHTS,
    aggregate_by_job,
    base_weight,
    dwell_time_bonus,
    score_event,
    scroll_depth_bonus,
    summarize_events,
    total_score,
)

__all__ = [
    "DEFAULT_LAMBDA",
    "LAMBDA_PRESETS",
    "decay",
    "half_life_for_lambda",
    "lambda_for_half_life",
    "simulate_decay",
    "BASE_WEIGHTS",
    "aggregate_by_job",
    "base_weight",
    "dwell_time_bonus",
    "score_event",
    "scroll_depth_bonus",
    "summarize_events",
    "total_score",
]
