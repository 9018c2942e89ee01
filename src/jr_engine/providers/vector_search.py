"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Any, Dict, List, Optional

from jr_engine.errors import UpstreamUnavailableError
from jr_engine.models import Candidate

from .retry import ProviderFetchError, post_json_with_retry

logger = logging.getLogger(__name__)

UPSTREAM_ID = "vector_search"


def _clamp_unit(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(score):
        return 0.0
    return max(0.0, min(1.0, score))


def parse_candidates(payload: Dict[str, Any]) -> List[Candidate]:
    """
    Read `{"jobs": [{"id"|"job_id": ..., "similarity_score": ...}]}`.

    Rows without an id are skipped; duplicate ids keep their best score and
    first position.
    """
    rows = payload.get("jobs")
    if not isinstance(rows, list):
        return []
    best: Dict[str, float] = {}
    for row in rows:
        if not isinstance(row, dict):
            continue
        job_id = str(row.get("id") or row.get("job_id") or "").strip()
        if not job_id:
            continue
        score = _clamp_unit(row.get("similarity_score", row.get("similarity", 0.0)))
        if job_id not in best or score > best[job_id]:
            best[job_id] = score
    return [Candidate(job_id=job_id, vector_score=score) for job_id, score in best.items()]


class VectorSearchClient:
    """Candidate supply backed by the similarity-search HTTP service."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout_s: float = 10.0,
        max_attempts: Optional[int] = None,
    ) -> None:
        if not base_url:
            raise ValueError("vector search base_url is required")
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def fetch_candidates(self, user_id: str, count: int, match_threshold: float) -> List[Candidate]:
        payload = {"userId": user_id, "matchThreshold": match_threshold, "matchCount": count}
        try:
            data = post_json_with_retry(
                self.base_url,
                headers=self._headers(),
                payload=payload,
                timeout_s=self.timeout_s,
                max_attempts=self.max_attempts,
                upstream_id=UPSTREAM_ID,
            )
        except ProviderFetchError as exc:
            raise UpstreamUnavailableError(UPSTREAM_ID, exc.reason, attempts=exc.attempts) from exc
        candidates = parse_candidates(data)
        logger.debug("[vector_search] user=%s requested=%s received=%s", user_id, count, len(candidates))
        return candidates[: max(0, count)]

    async def get_candidates(self, user_id: str, count: int, match_threshold: float) -> List[Candidate]:
        return await asyncio.to_thread(self.fetch_candidates, user_id, count, match_threshold)


__all__ = ["UPSTREAM_ID", "VectorSearchClient", "parse_candidates"]
