from __future__ import annotations

from typing import Dict, Mapping, Optional

from jr_engine.models import ACTION_TYPES, normalize_action

DEFAULT_REWARDS: Dict[str, float] = {
    "view": 0.1,
    "click": 1.0,
    "save": 1.5,
    "apply": 3.0,
    "reject": -2.0,
}


def action_to_reward(action: str, rewards: Optional[Mapping[str, float]] = None) -> float:
    """Map a user action onto the bandit reward scale. Unrecognised actions are worth 0."""
    table = DEFAULT_REWARDS if rewards is None else rewards
    return float(table.get(normalize_action(action), 0.0))


def build_reward_table(overrides: Optional[Mapping[str, float]] = None) -> Dict[str, float]:
    table = dict(DEFAULT_REWARDS)
    for action, value in (overrides or {}).items():
        table[normalize_action(action)] = float(value)
    return table
