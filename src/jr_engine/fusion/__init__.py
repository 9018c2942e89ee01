from .contract import (
    RankingConfig,
    RankingConfigError,
    load_ranking_config,
    ranking_config_from_env,
    resolve_ranking_config,
)
from .exposure_queue import Exposure, ExposureQueue, ExposureQueueStats
from .orchestrator import (
    ALGORITHM_BANDIT,
    ALGORITHM_HYBRID,
    RankingResult,
    RankingStage,
    RecommendationOrchestrator,
)
from .schema import FeedbackRequest, RankingRequest

__all__ = [
    "RankingConfig",
    "RankingConfigError",
    "load_ranking_config",
    "ranking_config_from_env",
    "resolve_ranking_config",
    "Exposure",
    "ExposureQueue",
    "ExposureQueueStats",
    "ALGORITHM_BANDIT",
    "ALGORITHM_HYBRID",
    "RankingResult",
    "RankingStage",
    "RecommendationOrchestrator",
    "FeedbackRequest",
    "RankingRequest",
]
