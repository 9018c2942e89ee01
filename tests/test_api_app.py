from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

fastapi = pytest.importorskip("fastapi")
from fastapi.testclient import TestClient  # noqa: E402

from jr_engine.bandit.sampler import Sampler  # noqa: E402
from jr_engine.fusion.orchestrator import RecommendationOrchestrator  # noqa: E402
from jr_engine.stores.memory import (  # noqa: E402
    InMemoryBehaviorLog,
    InMemoryPolicyStore,
    StaticCandidateSupply,
)


class _BrokenCatalog:
    async def list_recent_job_ids(self, limit):
        raise OSError("disk gone")


def _client(**kwargs) -> TestClient:
    from jobrec.api.app import create_app

    kwargs.setdefault("policy_store", InMemoryPolicyStore())
    kwargs.setdefault("behavior_log", InMemoryBehaviorLog())
    kwargs.setdefault("sampler", Sampler(seed=3))
    orchestrator = RecommendationOrchestrator(**kwargs)
    return TestClient(create_app(orchestrator))


def test_healthz() -> None:
    with _client() as client:
        resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_hybrid_recommendations_and_exposures() -> None:
    log = InMemoryBehaviorLog()
    supply = StaticCandidateSupply([("a", 0.9), ("b", 0.8), ("c", 0.7), ("d", 0.6)])
    with _client(behavior_log=log, candidate_supply=supply) as client:
        resp = client.post("/recommendations/hybrid", json={"userId": "u1", "count": 4, "vectorWeight": 0.7})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["algorithm"] == "hybrid"
        assert body["candidate_source"] == "vector_search"
        assert body["weights"] == {"vector": 0.7, "bandit": 0.4}
        assert body["selectedCount"] == 4
        hybrid = [job["scores"]["hybrid"] for job in body["jobs"]]
        assert hybrid == sorted(hybrid, reverse=True)
        exposed = {job["job_id"] for job in body["jobs"][:3]}

    stats = client.app.state.orchestrator.exposure_queue.stats
    assert stats.delivered == 3

    events = asyncio.run(log.list_events("u1"))
    assert {event.job_id for event in events} == exposed


def test_bandit_recommend_feedback_and_stats() -> None:
    with _client() as client:
        resp = client.post("/recommendations/bandit", json={"userId": "u1", "candidateJobIds": ["j1", "j2", "j3"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["algorithm"] == "thompson_sampling"
        assert body["candidate_source"] == "request"
        assert body["totalCandidates"] == 3
        assert [job["selection_rank"] for job in body["jobs"]] == [1, 2, 3]

        resp = client.put(
            "/recommendations/bandit",
            json={"userId": "u1", "jobId": "j2", "action": "save", "scrollDepth": 80, "sessionId": "s-1"},
        )
        assert resp.status_code == 200
        feedback = resp.json()
        assert feedback["reward"] == 1.5
        assert feedback["policy"]["alpha"] == 2.5
        assert feedback["policy"]["version"] == 1

        resp = client.get("/recommendations/bandit", params={"user_id": "u1", "days": 7})
        assert resp.status_code == 200
        stats = resp.json()
        assert stats["policy_size"] == 1
        assert stats["top_arms"][0]["job_id"] == "j2"
        assert stats["behavior"]["counts"] == {"save": 1}


def test_invalid_requests_are_rejected() -> None:
    with _client() as client:
        assert client.post("/recommendations/bandit", json={"userId": "bad user!"}).status_code == 422
        assert client.post("/recommendations/hybrid", json={"userId": "u1", "count": 0}).status_code == 422
        assert client.post("/recommendations/hybrid", json={"userId": "u1", "extra": 1}).status_code == 422
        assert (
            client.put("/recommendations/bandit", json={"userId": "u1", "jobId": "j1", "action": "like"}).status_code
            == 422
        )
        resp = client.get("/recommendations/bandit", params={"user_id": "bad user!"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "invalid_user_id"


def test_empty_and_unavailable_candidates() -> None:
    with _client() as client:
        resp = client.post("/recommendations/hybrid", json={"userId": "u1"})
        assert resp.status_code == 200
        assert resp.json()["jobs"] == []
        assert resp.json()["message"] == "no jobs to recommend"

    with _client(recent_jobs=_BrokenCatalog()) as client:
        resp = client.post("/recommendations/bandit", json={"userId": "u1"})
        assert resp.status_code == 503
        assert resp.json()["detail"] == "recent_jobs_unavailable"


def test_compare_endpoint_reports_each_mode() -> None:
    supply = StaticCandidateSupply([("a", 0.9), ("b", 0.8), ("c", 0.7)])
    with _client(candidate_supply=supply, recent_jobs=_BrokenCatalog()) as client:
        resp = client.get("/recommendations/hybrid/compare", params={"user_id": "u1"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        comparison = body["comparison"]
        assert comparison["vector"]["status"] == "success"
        assert [job["job_id"] for job in comparison["vector"]["jobs"]] == ["a", "b", "c"]
        assert comparison["hybrid"]["jobCount"] == 3
        assert comparison["bandit"]["status"] == "error"
        assert comparison["bandit"]["jobs"] == []

        assert client.get("/recommendations/hybrid/compare", params={"user_id": "bad user!"}).status_code == 400
        assert client.get("/recommendations/hybrid/compare").status_code == 422

    assert client.app.state.orchestrator.exposure_queue.stats.enqueued == 0


def test_default_app_persists_to_sqlite(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("JOBREC_STATE_DIR", str(tmp_path / "state"))

    import importlib

    import jobrec.api.app as api
    import jr_engine.config as config

    importlib.reload(config)
    api = importlib.reload(api)

    with TestClient(api.app) as client:
        resp = client.post(
            "/recommendations/bandit",
            json={"userId": "u1", "candidateJobIds": ["j1", "j2"], "updatePolicy": True},
        )
        assert resp.status_code == 200
        assert len(resp.json()["jobs"]) == 2

    from jr_engine.stores.sqlite import SqliteBehaviorLog, SqlitePolicyStore

    assert config.POLICY_DB_PATH == tmp_path / "state" / "bandit_policy.sqlite3"
    events = SqliteBehaviorLog(config.BEHAVIOR_DB_PATH).list_events_sync("u1")
    assert sorted(event.job_id for event in events) == ["j1", "j2"]
    policy = SqlitePolicyStore(config.POLICY_DB_PATH).load_policy_sync("u1")
    assert sorted(policy) == ["j1", "j2"]
    assert all(record.version == 1 for record in policy.values())
