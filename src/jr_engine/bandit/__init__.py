from .engine import ArmSnapshot, ThompsonSamplingBandit
from .rewards import DEFAULT_REWARDS, action_to_reward, build_reward_table
from .sampler import MAX_REJECTION_ITERATIONS, PARAM_FLOOR, Sampler, clamp_positive
from .simulate import SimulationResult, simulate

__all__ = [
    "ArmSnapshot",
    "ThompsonSamplingBandit",
    "DEFAULT_REWARDS",
    "action_to_reward",
    "build_reward_table",
    "MAX_REJECTION_ITERATIONS",
    "PARAM_FLOOR",
    "Sampler",
    "clamp_positive",
    "SimulationResult",
    "simulate",
]
