"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import math
from typing import Dict, List

from jr_engine.errors import InvalidInputError

# Decay rates per day. Half-lives: ~70d, ~23d, ~14d, ~7d, ~3.5d.
LAMBDA_PRESETS: Dict[str, float] = {
    "VERY_SLOW": 0.01,
    "SLOW": 0.03,
    "MODERATE": 0.05,
    "FAST": 0.1,
    "VERY_FAST": 0.2,
}
DEFAULT_LAMBDA = LAMBDA_PRESETS["MODERATE"]


def _finite(value: float, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{name} must be numeric: {value!r}") from exc
    if not math.isfinite(number):
        raise InvalidInputError(f"{name} must be finite: {value!r}")
    return number


def decay(base_weight: float, lam: float, delta_days: float) -> float:
    """weight = base_weight * e^(-lam * delta_days)."""
    weight = _finite(base_weight, "base_weight")
    rate = _finite(lam, "lambda")
    days = _finite(delta_days, "delta_days")
    if days < 0:
        raise InvalidInputError(f"elapsed time must be >= 0 days: {delta_days!r}")
    if rate < 0:
        raise InvalidInputError(f"lambda must be >= 0: {lam!r}")
    if days == 0:
        return weight
    return weight * math.exp(-rate * days)


def lambda_for_half_life(days: float, ratio: float = 0.5) -> float:
    """Rate at which a weight falls to `ratio` of its value after `days`."""
    target_days = _finite(days, "days")
    target_ratio = _finite(ratio, "ratio")
    if target_ratio <= 0 or target_ratio >= 1:
        raise InvalidInputError(f"ratio must be strictly between 0 and 1: {ratio!r}")
    if target_days <= 0:
        raise InvalidInputError(f"days must be > 0: {days!r}")
    return -math.log(target_ratio) / target_days


def half_life_for_lambda(lam: float) -> float:
    rate = _finite(lam, "lambda")
    if rate <= 0:
        raise InvalidInputError(f"lambda must be > 0: {lam!r}")
    return math.log(2.0) / rate


def simulate_decay(base_weight: float, lam: float, max_days: int) -> List[Dict[str, float]]:
    if max_days < 0:
        raise InvalidInputError(f"max_days must be >= 0: {max_days!r}")
    return [{"day": day, "weight": decay(base_weight, lam, day)} for day in range(int(max_days) + 1)]
