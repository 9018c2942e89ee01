"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Optional

logger = logging.getLogger(__name__)

PARAM_FLOOR = 1e-3
MAX_REJECTION_ITERATIONS = 1000


def clamp_positive(value: float, floor: float = PARAM_FLOOR) -> float:
    """Force a distribution parameter into [floor, inf). NaN and -inf map to floor, +inf to a large finite value."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return floor
    if math.isnan(number) or number < floor:
        return floor
    if math.isinf(number):
        return 1e12
    return number


class Sampler:
    """
    Normal, Gamma and Beta draws on top of an injectable uniform source.

    Pass a seeded `random.Random` (or `seed=`) for reproducible draws. Every
    parameter goes through `clamp_positive`, so degenerate inputs never yield
    NaN or infinity.
    """

    def __init__(self, rng: Optional[random.Random] = None, *, seed: Optional[int] = None) -> None:
        if rng is not None and seed is not None:
            raise ValueError("pass either rng or seed, not both")
        self.rng = rng if rng is not None else random.Random(seed)

    def _open_uniform(self) -> float:
        # (0, 1]: safe for log() and for fractional powers.
        return 1.0 - self.rng.random()

    def normal(self, mean: float = 0.0, stddev: float = 1.0) -> float:
        u1 = self._open_uniform()
        u2 = self.rng.random()
        z0 = math.sqrt(-2.0 * math.log(u1)) * math.cos(2.0 * math.pi * u2)
        return mean + z0 * stddev

    def gamma(self, shape: float, scale: float = 1.0) -> float:
        shape = clamp_positive(shape)
        scale = clamp_positive(scale)
        if shape < 1.0:
            u = self._open_uniform()
            return self.gamma(shape + 1.0, scale) * math.pow(u, 1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / math.sqrt(9.0 * d)
        best: Optional[float] = None
        for _ in range(MAX_REJECTION_ITERATIONS):
            x = self.normal(0.0, 1.0)
            v = 1.0 + c * x
            if v <= 0.0:
                continue
            v = v * v * v
            best = d * v * scale
            u = self._open_uniform()
            x_squared = x * x
            if u < 1.0 - 0.331 * x_squared * x_squared:
                return best
            if math.log(u) < 0.5 * x_squared + d * (1.0 - v + math.log(v)):
                return best

        logger.warning(
            "[sampler][gamma] rejection cap reached shape=%.6f scale=%.6f iterations=%s",
            shape,
            scale,
            MAX_REJECTION_ITERATIONS,
        )
        return best if best is not None else d * scale

    def beta(self, alpha: float, beta: float) -> float:
        alpha = clamp_positive(alpha)
        beta = clamp_positive(beta)
        gamma1 = self.gamma(alpha, 1.0)
        gamma2 = self.gamma(beta, 1.0)
        total = gamma1 + gamma2
        if not math.isfinite(total) or total <= 0.0:
            # Both draws underflowed (tiny shapes); fall back to the posterior mean.
            return alpha / (alpha + beta)
        return gamma1 / total


__all__ = ["MAX_REJECTION_ITERATIONS", "PARAM_FLOOR", "Sampler", "clamp_positive"]
