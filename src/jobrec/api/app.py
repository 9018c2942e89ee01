"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

try:
    from fastapi import FastAPI, HTTPException, Query, Request
except ModuleNotFoundError as exc:  # pragma: no cover - exercised in environments without api extras
    raise RuntimeError("API dependencies are not installed. Install with: pip install -e '.[api]'") from exc

from jr_engine import config
from jr_engine.errors import InvalidInputError, PersistenceConflictError, UpstreamUnavailableError
from jr_engine.fusion.contract import RankingConfigError, resolve_ranking_config
from jr_engine.fusion.orchestrator import RankingResult, RecommendationOrchestrator
from jr_engine.fusion.schema import MAX_RECOMMENDATION_COUNT, FeedbackRequest, RankingRequest
from jr_engine.providers.vector_search import VectorSearchClient
from jr_engine.stores.sqlite import SqliteBehaviorLog, SqlitePolicyStore

logger = logging.getLogger(__name__)

EXPOSURE_QUEUE_SIZE = 1000
EXPOSURE_CONCURRENCY = 2
COMPARE_COUNT = 10
COMPARE_TOP_N = 5


def build_orchestrator() -> RecommendationOrchestrator:
    try:
        ranking = resolve_ranking_config(config.RANKING_CONFIG_PATH)
    except RankingConfigError as exc:
        raise RuntimeError(str(exc)) from exc
    supply = None
    if config.VECTOR_SEARCH_URL:
        supply = VectorSearchClient(config.VECTOR_SEARCH_URL, api_key=config.VECTOR_SEARCH_API_KEY)
    return RecommendationOrchestrator(
        policy_store=SqlitePolicyStore(config.POLICY_DB_PATH),
        behavior_log=SqliteBehaviorLog(config.BEHAVIOR_DB_PATH),
        candidate_supply=supply,
        config=ranking,
    )


def create_app(orchestrator: Optional[RecommendationOrchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        current = _orchestrator(app)
        queue = current.exposure_queue or current.attach_exposure_queue(
            max_size=EXPOSURE_QUEUE_SIZE, concurrency=EXPOSURE_CONCURRENCY
        )
        await queue.start()
        try:
            yield
        finally:
            await queue.stop()
            logger.info("[api][shutdown] exposure stats=%s", queue.stats.to_dict())

    app = FastAPI(title="Job Recommendation API", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.get("/healthz")
    def healthz() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/recommendations/bandit")
    async def bandit_recommend(body: RankingRequest, request: Request) -> Dict[str, Any]:
        current = _orchestrator(request.app)
        result = await _guard(current.recommend_bandit(body))
        return _ranking_response(result)

    @app.put("/recommendations/bandit")
    async def bandit_feedback(body: FeedbackRequest, request: Request) -> Dict[str, Any]:
        current = _orchestrator(request.app)
        return await _guard(current.record_feedback(body))

    @app.get("/recommendations/bandit")
    async def bandit_stats(
        request: Request,
        user_id: str = Query(...),
        days: int = Query(30, ge=1, le=365),
    ) -> Dict[str, Any]:
        try:
            safe_user = config.sanitize_user_id(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_user_id") from exc
        current = _orchestrator(request.app)
        return await _guard(current.user_stats(safe_user, days))

    @app.post("/recommendations/hybrid")
    async def hybrid_recommend(body: RankingRequest, request: Request) -> Dict[str, Any]:
        current = _orchestrator(request.app)
        result = await _guard(current.recommend_hybrid(body))
        return _ranking_response(result)

    @app.get("/recommendations/hybrid/compare")
    async def hybrid_compare(
        request: Request,
        user_id: str = Query(...),
        count: int = Query(COMPARE_COUNT, ge=1, le=MAX_RECOMMENDATION_COUNT),
    ) -> Dict[str, Any]:
        try:
            safe_user = config.sanitize_user_id(user_id)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="invalid_user_id") from exc
        current = _orchestrator(request.app)
        return await current.compare(safe_user, count=count, top_n=COMPARE_TOP_N)

    return app


def _orchestrator(app: FastAPI) -> RecommendationOrchestrator:
    current = getattr(app.state, "orchestrator", None)
    if current is None:
        current = build_orchestrator()
        app.state.orchestrator = current
    return current


async def _guard(awaitable: Any) -> Any:
    try:
        return await awaitable
    except InvalidInputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PersistenceConflictError as exc:
        logger.warning("[api][conflict] %s", exc)
        raise HTTPException(status_code=409, detail="policy_write_conflict") from exc
    except UpstreamUnavailableError as exc:
        logger.warning("[api][unavailable] source=%s reason=%s", exc.source, exc.reason)
        raise HTTPException(status_code=503, detail=f"{exc.source}_unavailable") from exc


def _ranking_response(result: RankingResult) -> Dict[str, Any]:
    payload = result.to_dict()
    if not result.jobs:
        payload["message"] = "no jobs to recommend"
    return payload


app = create_app()
