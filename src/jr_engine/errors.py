"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

from typing import Optional


class RecommendationError(Exception):
    """Root of every error raised by the recommendation core."""


class InvalidInputError(RecommendationError, ValueError):
    pass


class UnknownArmError(RecommendationError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"unknown arm: {self.job_id!r}"


class UpstreamUnavailableError(RecommendationError):
    def __init__(self, source: str, reason: str, *, attempts: Optional[int] = None):
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason
        self.attempts = attempts


class PersistenceConflictError(RecommendationError):
    def __init__(self, user_id: str, job_id: str, expected_version: Optional[int], actual_version: Optional[int]):
        super().__init__(
            f"policy write conflict user={user_id} job={job_id} "
            f"expected_version={expected_version} actual_version={actual_version}"
        )
        self.user_id = user_id
        self.job_id = job_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class NumericDomainError(RecommendationError, ArithmeticError):
    pass


__all__ = [
    "RecommendationError",
    "InvalidInputError",
    "UnknownArmError",
    "UpstreamUnavailableError",
    "PersistenceConflictError",
    "NumericDomainError",
]
