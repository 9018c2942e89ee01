"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from jr_engine.bandit.engine import ThompsonSamplingBandit
from jr_engine.bandit.rewards import action_to_reward, build_reward_table
from jr_engine.bandit.sampler import Sampler
from jr_engine.behavior.scorer import aggregate_by_job, summarize_events
from jr_engine.errors import RecommendationError, UpstreamUnavailableError
from jr_engine.models import BehaviorEvent, Candidate, RankedCandidate
from jr_engine.stores.base import (
    BehaviorLog,
    CandidateSupply,
    PolicyRecord,
    PolicyStore,
    RecentJobsSource,
    update_arm_with_retry,
)
from jr_engine.utils.time import parse_timestamp, utc_now

from .contract import RankingConfig
from .exposure_queue import Exposure, ExposureQueue
from .schema import FeedbackRequest, RankingRequest

logger = logging.getLogger(__name__)

ALGORITHM_BANDIT = "thompson_sampling"
ALGORITHM_HYBRID = "hybrid"

SOURCE_REQUEST = "request"
SOURCE_VECTOR_SEARCH = "vector_search"
SOURCE_FALLBACK = "recent_jobs"
SOURCE_NONE = "none"

_STORE_ERRORS = (RecommendationError, OSError, sqlite3.Error)


class RankingStage(str, Enum):
    CANDIDATES_FETCHED = "candidates_fetched"
    ARMS_HYDRATED = "arms_hydrated"
    SELECTED = "selected"
    SCORED = "scored"
    EMITTED = "emitted"


@dataclass
class RankingResult:
    user_id: str
    algorithm: str
    jobs: List[RankedCandidate]
    total_candidates: int
    selected_count: int
    candidate_source: str
    weights: Dict[str, float]
    stages: List[RankingStage] = field(default_factory=list)
    exposures_enqueued: int = 0

    @property
    def job_ids(self) -> List[str]:
        return [job.job_id for job in self.jobs]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "user_id": self.user_id,
            "jobs": [job.to_dict() for job in self.jobs],
            "algorithm": self.algorithm,
            "totalCandidates": self.total_candidates,
            "selectedCount": self.selected_count,
            "candidate_source": self.candidate_source,
            "weights": dict(self.weights),
        }


class RecommendationOrchestrator:
    """
    Per-request ranking pipeline:
    candidates -> hydrate arms -> Thompson selection -> hybrid scoring -> emit.

    Holds no per-user state between requests. Every call builds a fresh bandit
    from the policy store, and arm writes go back through compare-and-swap.
    """

    def __init__(
        self,
        *,
        policy_store: PolicyStore,
        behavior_log: Optional[BehaviorLog] = None,
        candidate_supply: Optional[CandidateSupply] = None,
        recent_jobs: Optional[RecentJobsSource] = None,
        config: Optional[RankingConfig] = None,
        sampler: Optional[Sampler] = None,
        exposure_queue: Optional[ExposureQueue] = None,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self.policy_store = policy_store
        self.behavior_log = behavior_log
        self.candidate_supply = candidate_supply
        self.recent_jobs = recent_jobs if recent_jobs is not None else behavior_log
        self.config = config or RankingConfig()
        self.sampler = sampler or Sampler()
        self.exposure_queue = exposure_queue
        self.rewards = build_reward_table(self.config.rewards)
        self._clock = clock

    def attach_exposure_queue(self, **kwargs: Any) -> ExposureQueue:
        """Create an `ExposureQueue` that delivers into `record_exposure`."""
        queue = ExposureQueue(self.record_exposure, **kwargs)
        self.exposure_queue = queue
        return queue

    def _stage(self, result_stages: List[RankingStage], stage: RankingStage, user_id: str, **details: Any) -> None:
        result_stages.append(stage)
        logger.debug("[orchestrator][stage] user=%s stage=%s %s", user_id, stage.value, details)

    async def recommend(self, request: RankingRequest) -> RankingResult:
        """
        Rank jobs for one user.

        With explicit `candidate_job_ids` this is bandit-only mode: results are
        presented in Thompson selection order. Otherwise candidates come from
        the similarity search and the selected subset is presented by hybrid
        score.
        """
        if request.candidate_job_ids is not None:
            return await self.recommend_bandit(request)
        return await self.recommend_hybrid(request)

    async def recommend_bandit(self, request: RankingRequest) -> RankingResult:
        """Thompson selection over `candidate_job_ids`, or over recent jobs when none are given."""
        return await self._rank(request, algorithm=ALGORITHM_BANDIT)

    async def recommend_hybrid(self, request: RankingRequest) -> RankingResult:
        return await self._rank(request, algorithm=ALGORITHM_HYBRID)

    async def _rank(self, request: RankingRequest, *, algorithm: str) -> RankingResult:
        user_id = request.user_id
        stages: List[RankingStage] = []
        weights = {
            "vector": self.config.vector_weight if request.vector_weight is None else request.vector_weight,
            "bandit": self.config.bandit_weight if request.bandit_weight is None else request.bandit_weight,
        }
        if self.config.behavior_weight > 0:
            weights["behavior"] = self.config.behavior_weight

        pool_size = self.config.candidate_pool_size(request.count)
        if algorithm == ALGORITHM_BANDIT and request.candidate_job_ids:
            candidates = [Candidate(job_id=job_id) for job_id in request.candidate_job_ids]
            source = SOURCE_REQUEST
        elif algorithm == ALGORITHM_BANDIT:
            candidates, source = await self._fallback_candidates(user_id, pool_size), SOURCE_FALLBACK
        else:
            threshold = (
                self.config.default_match_threshold if request.match_threshold is None else request.match_threshold
            )
            candidates, source = await self._fetch_candidates(user_id, pool_size, threshold)
        if not candidates:
            source = SOURCE_NONE
        self._stage(stages, RankingStage.CANDIDATES_FETCHED, user_id, source=source, count=len(candidates))

        bandit = await self._hydrate(user_id, candidates)
        self._stage(stages, RankingStage.ARMS_HYDRATED, user_id, arms=len(bandit))

        selected = bandit.select_arms(min(request.count, len(candidates)))
        self._stage(stages, RankingStage.SELECTED, user_id, selected=selected)

        vector_scores = {candidate.job_id: candidate.vector_score for candidate in candidates}
        behavior_scores = await self._behavior_scores(user_id, selected) if "behavior" in weights else {}
        ranked: List[RankedCandidate] = []
        for rank, job_id in enumerate(selected, start=1):
            vector_score = vector_scores.get(job_id, 0.0)
            expected_value = bandit.expected_value(job_id)
            hybrid_score = weights["vector"] * vector_score + weights["bandit"] * expected_value
            behavior_score: Optional[float] = None
            if "behavior" in weights:
                behavior_score = behavior_scores.get(job_id, 0.0)
                hybrid_score += weights["behavior"] * behavior_score
            arm = bandit.get_arm(job_id)
            ranked.append(
                RankedCandidate(
                    job_id=job_id,
                    vector_score=vector_score,
                    bandit_expected_value=expected_value,
                    hybrid_score=hybrid_score,
                    selection_rank=rank,
                    total_pulls=arm.total_pulls if arm is not None else 0,
                    average_reward=bandit.average_reward(job_id),
                    behavior_score=behavior_score,
                )
            )
        if algorithm == ALGORITHM_HYBRID:
            ranked.sort(key=lambda item: (-item.hybrid_score, item.selection_rank))
        self._stage(stages, RankingStage.SCORED, user_id, order=[item.job_id for item in ranked])

        result = RankingResult(
            user_id=user_id,
            algorithm=algorithm,
            jobs=ranked,
            total_candidates=len(candidates),
            selected_count=len(selected),
            candidate_source=source,
            weights=weights,
            stages=stages,
        )
        log_exposure = request.log_exposure
        if log_exposure is None:
            log_exposure = algorithm == ALGORITHM_HYBRID
        if log_exposure:
            result.exposures_enqueued = self._enqueue_exposures(user_id, ranked)
        self._stage(stages, RankingStage.EMITTED, user_id, jobs=len(ranked), exposures=result.exposures_enqueued)
        return result

    async def _fetch_candidates(self, user_id: str, pool_size: int, threshold: float) -> tuple[List[Candidate], str]:
        candidates: List[Candidate] = []
        if self.candidate_supply is not None:
            try:
                candidates = await self.candidate_supply.get_candidates(user_id, pool_size, threshold)
            except _STORE_ERRORS as exc:
                logger.warning("[orchestrator][fallback] candidate search failed user=%s error=%s", user_id, exc)
                candidates = []
        candidates = _dedupe(candidates)[:pool_size]
        if candidates:
            return candidates, SOURCE_VECTOR_SEARCH
        logger.warning("[orchestrator][fallback] no search candidates user=%s; using recent jobs", user_id)
        return await self._fallback_candidates(user_id, pool_size), SOURCE_FALLBACK

    async def _fallback_candidates(self, user_id: str, pool_size: int) -> List[Candidate]:
        if self.recent_jobs is None:
            return []
        limit = min(pool_size, self.config.fallback_limit)
        try:
            job_ids = await self.recent_jobs.list_recent_job_ids(limit)
        except _STORE_ERRORS as exc:
            raise UpstreamUnavailableError("recent_jobs", str(exc)) from exc
        return _dedupe([Candidate(job_id=job_id) for job_id in job_ids])[:limit]

    async def _load_arms(self, user_id: str, job_ids: List[str]) -> Dict[str, PolicyRecord]:
        try:
            return await self.policy_store.load_arms(user_id, job_ids)
        except _STORE_ERRORS as exc:
            logger.warning("[orchestrator][policy] load failed user=%s error=%s; using priors", user_id, exc)
            return {}

    async def _hydrate(self, user_id: str, candidates: List[Candidate]) -> ThompsonSamplingBandit:
        job_ids = [candidate.job_id for candidate in candidates]
        policy = await self._load_arms(user_id, job_ids) if job_ids else {}
        bandit = ThompsonSamplingBandit(sampler=self.sampler, rewards=self.rewards, clock=self._clock)
        for job_id in job_ids:
            bandit.add_arm(job_id)
            record = policy.get(job_id)
            if record is not None:
                bandit.hydrate(job_id, record.arm)
        return bandit

    async def _behavior_scores(self, user_id: str, job_ids: List[str]) -> Dict[str, float]:
        """Decayed behavior score per job, scaled into [-1, 1] by the largest magnitude among `job_ids`."""
        if self.behavior_log is None or not job_ids:
            return {}
        try:
            events = await self.behavior_log.list_events(user_id, limit=self.config.policy_load_limit)
        except _STORE_ERRORS as exc:
            logger.warning("[orchestrator][behavior] load failed user=%s error=%s", user_id, exc)
            return {}
        wanted = set(job_ids)
        now = self._clock()
        raw = aggregate_by_job(
            [event for event in events if event.job_id in wanted and event.timestamp <= now],
            now,
            self.config.decay_lambda,
        )
        scale = max((abs(value) for value in raw.values()), default=0.0)
        if scale == 0:
            return {}
        return {job_id: value / scale for job_id, value in raw.items()}

    def _enqueue_exposures(self, user_id: str, ranked: List[RankedCandidate]) -> int:
        top = ranked[: self.config.exposure_top_n]
        if not top:
            return 0
        if self.exposure_queue is None:
            logger.debug("[orchestrator][exposure] no queue attached; skipping user=%s", user_id)
            return 0
        now = self._clock()
        accepted = 0
        for position, item in enumerate(top, start=1):
            exposure = Exposure(user_id=user_id, job_id=item.job_id, rank=position, occurred_at=now)
            if self.exposure_queue.submit(exposure):
                accepted += 1
        return accepted

    async def record_exposure(self, exposure: Exposure) -> PolicyRecord:
        """
        Exposure sink: log a view event and apply the view reward to the arm.

        The event is keyed by `exposure.event_id`, so a redelivery after a
        failed arm write does not log the view twice.
        """
        if self.behavior_log is not None:
            await self.behavior_log.append_event(
                BehaviorEvent(
                    user_id=exposure.user_id,
                    job_id=exposure.job_id,
                    action_type=exposure.action,
                    timestamp=exposure.occurred_at,
                    metadata={"source": "exposure", "rank": exposure.rank},
                    event_id=exposure.event_id,
                )
            )
        return await self._apply_action(exposure.user_id, exposure.job_id, exposure.action)

    async def _apply_action(self, user_id: str, job_id: str, action: str) -> PolicyRecord:
        return await update_arm_with_retry(
            self.policy_store,
            user_id,
            job_id,
            lambda bandit, key: bandit.update_action(key, action),
            rewards=self.rewards,
            max_attempts=self.config.store_max_attempts,
            backoff_base_s=self.config.store_backoff_base_s,
            backoff_max_s=self.config.store_backoff_max_s,
        )

    async def record_feedback(self, request: FeedbackRequest) -> Dict[str, Any]:
        """
        Append the action to the behavior log, then fold its reward into the
        persisted arm. Returns the updated policy snapshot.
        """
        timestamp = parse_timestamp(request.timestamp) if request.timestamp else self._clock()
        event = BehaviorEvent(
            user_id=request.user_id,
            job_id=request.job_id,
            action_type=request.action,
            timestamp=timestamp,
            scroll_depth=request.scroll_depth,
            dwell_time=request.dwell_time,
            session_id=request.session_id,
            metadata=request.metadata,
        )
        event_id: Optional[str] = None
        if self.behavior_log is not None:
            event_id = await self.behavior_log.append_event(event)
        record = await self._apply_action(request.user_id, request.job_id, request.action)
        logger.info(
            "[orchestrator][feedback] user=%s job=%s action=%s version=%s",
            request.user_id,
            request.job_id,
            request.action,
            record.version,
        )
        return {
            "success": True,
            "event_id": event_id,
            "reward": action_to_reward(request.action, self.rewards),
            "policy": record.to_dict(),
        }

    async def user_stats(self, user_id: str, days: int = 30, *, top_n: int = 10) -> Dict[str, Any]:
        now = self._clock()
        events: List[BehaviorEvent] = []
        if self.behavior_log is not None:
            events = await self.behavior_log.list_events(user_id, since=now - timedelta(days=days))
            events = [event for event in events if event.timestamp <= now]
        policy = await self.policy_store.load_policy(user_id, limit=self.config.policy_load_limit)
        top_arms = sorted(policy.values(), key=lambda record: (-record.arm.expected_value, record.job_id))[:top_n]
        decayed = aggregate_by_job(events, now, self.config.decay_lambda)
        top_behavior = sorted(decayed.items(), key=lambda item: (-item[1], item[0]))[:top_n]
        return {
            "success": True,
            "user_id": user_id,
            "behavior": summarize_events(events, now, days),
            "policy_size": len(policy),
            "top_arms": [record.to_dict() for record in top_arms],
            "behavior_scores": [{"job_id": job_id, "score": round(score, 6)} for job_id, score in top_behavior],
        }

    async def compare(self, user_id: str, *, count: int = 10, top_n: int = 5) -> Dict[str, Any]:
        """
        Run vector-only, bandit-only and hybrid ranking side by side.

        Modes run concurrently and never log exposures. A mode that fails is
        reported with `status="error"` while the others still return.
        """
        modes = {
            "vector": self.recommend_hybrid(
                RankingRequest(user_id=user_id, count=count, vector_weight=1.0, bandit_weight=0.0, log_exposure=False)
            ),
            "bandit": self.recommend_bandit(
                RankingRequest(user_id=user_id, count=count, candidate_job_ids=[], log_exposure=False)
            ),
            "hybrid": self.recommend_hybrid(RankingRequest(user_id=user_id, count=count, log_exposure=False)),
        }
        settled = await asyncio.gather(*(self._settle(name, ranking, top_n) for name, ranking in modes.items()))
        return {"success": True, "user_id": user_id, "comparison": dict(zip(modes, settled))}

    async def _settle(self, mode: str, ranking: Awaitable[RankingResult], top_n: int) -> Dict[str, Any]:
        try:
            result = await ranking
        except _STORE_ERRORS as exc:
            logger.warning("[orchestrator][compare] mode=%s failed error=%s", mode, exc)
            return {"status": "error", "jobCount": 0, "jobs": [], "error": str(exc)}
        return {
            "status": "success",
            "jobCount": len(result.jobs),
            "jobs": [job.to_dict() for job in result.jobs[:top_n]],
            "candidate_source": result.candidate_source,
        }


def _dedupe(candidates: List[Candidate]) -> List[Candidate]:
    seen: Dict[str, Candidate] = {}
    for candidate in candidates:
        seen.setdefault(candidate.job_id, candidate)
    return list(seen.values())


__all__ = [
    "ALGORITHM_BANDIT",
    "ALGORITHM_HYBRID",
    "RankingResult",
    "RankingStage",
    "RecommendationOrchestrator",
]
