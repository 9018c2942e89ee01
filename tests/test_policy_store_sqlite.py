from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from jr_engine.errors import PersistenceConflictError
from jr_engine.models import Arm, BehaviorEvent
from jr_engine.stores import SqliteBehaviorLog, SqlitePolicyStore

T0 = datetime(2026, 4, 1, 8, 30, 15, 250000, tzinfo=timezone.utc)


def test_policy_store_schema_and_wal(tmp_path: Path) -> None:
    db_path = tmp_path / "state" / "policy.sqlite3"
    SqlitePolicyStore(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = conn.execute("SELECT value FROM schema_meta WHERE key='schema_version'").fetchone()[0]
        mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
    finally:
        conn.close()
    assert version == "1"
    assert mode.lower() == "wal"


def test_policy_store_compare_and_swap(tmp_path: Path) -> None:
    store = SqlitePolicyStore(tmp_path / "policy.sqlite3")
    created = store.save_arm_sync("u1", "j1", Arm(arm_id="j1", last_updated=T0), expected_version=None)
    assert created.version == 1
    assert created.arm.last_updated == T0

    with pytest.raises(PersistenceConflictError) as excinfo:
        store.save_arm_sync("u1", "j1", Arm(arm_id="j1"), expected_version=None)
    assert excinfo.value.actual_version == 1

    updated = store.save_arm_sync(
        "u1", "j1", Arm(arm_id="j1", alpha=2.0, total_pulls=1, total_reward=1.0), expected_version=1
    )
    assert updated.version == 2
    assert updated.arm.alpha == 2.0

    with pytest.raises(PersistenceConflictError) as stale:
        store.save_arm_sync("u1", "j1", Arm(arm_id="j1", alpha=9.0), expected_version=1)
    assert stale.value.expected_version == 1
    assert stale.value.actual_version == 2
    record = store.get_arm_sync("u1", "j1")
    assert record is not None
    assert record.arm.alpha == 2.0


def test_policy_store_load_orders_by_expected_value(tmp_path: Path) -> None:
    store = SqlitePolicyStore(tmp_path / "policy.sqlite3")
    store.save_arm_sync("u1", "low", Arm(arm_id="low", alpha=1, beta=4), expected_version=None)
    store.save_arm_sync("u1", "high", Arm(arm_id="high", alpha=4, beta=1), expected_version=None)
    store.save_arm_sync("u1", "mid", Arm(arm_id="mid", alpha=1, beta=1), expected_version=None)
    store.save_arm_sync("u2", "other", Arm(arm_id="other", alpha=9, beta=1), expected_version=None)

    policy = store.load_policy_sync("u1")
    assert list(policy) == ["high", "mid", "low"]
    assert list(store.load_policy_sync("u1", limit=2)) == ["high", "mid"]
    assert store.get_arm_sync("u1", "other") is None


def test_policy_store_async_wrappers(tmp_path: Path) -> None:
    store = SqlitePolicyStore(tmp_path / "policy.sqlite3")

    async def run():
        await store.save_arm("u1", "j1", Arm(arm_id="j1", alpha=3.0), expected_version=None)
        return await store.load_policy("u1"), await store.get_arm("u1", "missing")

    policy, missing = asyncio.run(run())
    assert policy["j1"].arm.alpha == 3.0
    assert missing is None


def test_behavior_log_append_and_list(tmp_path: Path) -> None:
    log = SqliteBehaviorLog(tmp_path / "behavior.sqlite3")
    first = log.append_event_sync(
        BehaviorEvent(user_id="u1", job_id="a", action_type="view", timestamp=T0 - timedelta(days=2))
    )
    second = log.append_event_sync(
        BehaviorEvent(
            user_id="u1",
            job_id="b",
            action_type="apply",
            timestamp=T0,
            scroll_depth=80,
            dwell_time=65,
            session_id="s1",
            metadata={"source": "feed"},
        )
    )
    log.append_event_sync(BehaviorEvent(user_id="u2", job_id="c", action_type="save", timestamp=T0 - timedelta(days=1)))
    assert first != second

    events = log.list_events_sync("u1")
    assert [event.job_id for event in events] == ["b", "a"]
    assert events[0].event_id == second
    assert events[0].timestamp == T0
    assert events[0].metadata == {"source": "feed"}
    assert events[0].scroll_depth == 80
    assert events[0].session_id == "s1"

    recent = log.list_events_sync("u1", since=T0 - timedelta(days=1))
    assert [event.job_id for event in recent] == ["b"]
    assert len(log.list_events_sync("u1", limit=1)) == 1

    assert log.list_recent_job_ids_sync(10) == ["b", "c", "a"]
    assert log.list_recent_job_ids_sync(1) == ["b"]


def test_behavior_log_async_wrappers(tmp_path: Path) -> None:
    log = SqliteBehaviorLog(tmp_path / "behavior.sqlite3")

    async def run():
        await log.append_event(BehaviorEvent(user_id="u1", job_id="a", action_type="click", timestamp=T0))
        return await log.list_events("u1"), await log.list_recent_job_ids(5)

    events, recent = asyncio.run(run())
    assert events[0].action_type == "click"
    assert recent == ["a"]


def test_policy_store_load_arms_by_job_id(tmp_path: Path) -> None:
    store = SqlitePolicyStore(tmp_path / "policy.sqlite3")
    store.save_arm_sync("u1", "top", Arm(arm_id="top", alpha=9, beta=1), expected_version=None)
    store.save_arm_sync("u1", "low", Arm(arm_id="low", alpha=1, beta=40), expected_version=None)
    store.save_arm_sync("u2", "low", Arm(arm_id="low", alpha=5, beta=5), expected_version=None)

    assert list(store.load_policy_sync("u1", limit=1)) == ["top"]
    arms = store.load_arms_sync("u1", ["low", "unseen", "low"])
    assert list(arms) == ["low"]
    assert arms["low"].arm.beta == 40
    assert store.load_arms_sync("u1", []) == {}

    many = [f"job-{index}" for index in range(1200)] + ["top"]
    assert list(asyncio.run(store.load_arms("u1", many))) == ["top"]


def test_behavior_log_ignores_repeated_event_id(tmp_path: Path) -> None:
    log = SqliteBehaviorLog(tmp_path / "behavior.sqlite3")
    event = BehaviorEvent(user_id="u1", job_id="a", action_type="view", timestamp=T0, event_id="exp-1")

    assert log.append_event_sync(event) == "exp-1"
    assert log.append_event_sync(event) == "exp-1"
    events = log.list_events_sync("u1")
    assert len(events) == 1
    assert events[0].event_id == "exp-1"
