from .base import (
    BehaviorLog,
    CandidateSupply,
    PolicyRecord,
    PolicyStore,
    RecentJobsSource,
    update_arm_with_retry,
)
from .memory import InMemoryBehaviorLog, InMemoryPolicyStore, StaticCandidateSupply, StaticJobCatalog
from .sqlite import SqliteBehaviorLog, SqlitePolicyStore

__all__ = [
    "BehaviorLog",
    "CandidateSupply",
    "PolicyRecord",
    "PolicyStore",
    "RecentJobsSource",
    "update_arm_with_retry",
    "InMemoryBehaviorLog",
    "InMemoryPolicyStore",
    "StaticCandidateSupply",
    "StaticJobCatalog",
    "SqliteBehaviorLog",
    "SqlitePolicyStore",
]
