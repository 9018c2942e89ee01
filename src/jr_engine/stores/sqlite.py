"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import asyncio
import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from jr_engine.errors import PersistenceConflictError
from jr_engine.models import Arm, BehaviorEvent
from jr_engine.utils.time import parse_timestamp

from .base import PolicyRecord

SCHEMA_VERSION = 1
# Stays under SQLite's default bound-parameter limit.
_IN_CHUNK = 500


def _db_ts(value: datetime) -> str:
    # Fixed-width so lexical order matches chronological order.
    return parse_timestamp(value).astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _connect(db_path: Path) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def _write_schema(db_path: Path, ddl: str) -> None:
    conn = _connect(db_path)
    try:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS schema_meta(
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
            """
            + ddl
        )
        conn.execute(
            "INSERT OR REPLACE INTO schema_meta(key, value) VALUES('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        conn.commit()
    finally:
        conn.close()


def _row_to_record(row: sqlite3.Row) -> PolicyRecord:
    arm = Arm(
        arm_id=row["job_id"],
        alpha=row["alpha"],
        beta=row["beta"],
        total_pulls=row["total_pulls"],
        total_reward=row["total_reward"],
        last_updated=parse_timestamp(row["last_updated"]),
    )
    return PolicyRecord(user_id=row["user_id"], job_id=row["job_id"], arm=arm, version=row["version"])


class SqlitePolicyStore:
    """
    Per-(user, job) arm rows with a version column.

    Writes are compare-and-swap on `version`, so concurrent read-modify-write
    cycles surface as `PersistenceConflictError` instead of lost updates.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        _write_schema(
            self.db_path,
            """
            CREATE TABLE IF NOT EXISTS bandit_policy_v1(
                user_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                alpha REAL NOT NULL,
                beta REAL NOT NULL,
                total_pulls INTEGER NOT NULL,
                total_reward REAL NOT NULL,
                last_updated TEXT NOT NULL,
                version INTEGER NOT NULL,
                PRIMARY KEY(user_id, job_id)
            );
            """,
        )

    def load_policy_sync(self, user_id: str, *, limit: Optional[int] = None) -> Dict[str, PolicyRecord]:
        safe_limit = -1 if limit is None else max(0, int(limit))
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT user_id, job_id, alpha, beta, total_pulls, total_reward, last_updated, version
                FROM bandit_policy_v1
                WHERE user_id = ?
                ORDER BY alpha / (alpha + beta) DESC, job_id ASC
                LIMIT ?
                """,
                (user_id, safe_limit),
            ).fetchall()
        finally:
            conn.close()
        return {row["job_id"]: _row_to_record(row) for row in rows}

    def load_arms_sync(self, user_id: str, job_ids: Sequence[str]) -> Dict[str, PolicyRecord]:
        wanted = sorted(set(job_ids))
        records: Dict[str, PolicyRecord] = {}
        conn = _connect(self.db_path)
        try:
            for start in range(0, len(wanted), _IN_CHUNK):
                chunk = wanted[start : start + _IN_CHUNK]
                placeholders = ", ".join("?" for _ in chunk)
                rows = conn.execute(
                    f"""
                    SELECT user_id, job_id, alpha, beta, total_pulls, total_reward, last_updated, version
                    FROM bandit_policy_v1
                    WHERE user_id = ? AND job_id IN ({placeholders})
                    """,
                    (user_id, *chunk),
                ).fetchall()
                records.update({row["job_id"]: _row_to_record(row) for row in rows})
        finally:
            conn.close()
        return records

    def get_arm_sync(self, user_id: str, job_id: str) -> Optional[PolicyRecord]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute(
                """
                SELECT user_id, job_id, alpha, beta, total_pulls, total_reward, last_updated, version
                FROM bandit_policy_v1
                WHERE user_id = ? AND job_id = ?
                """,
                (user_id, job_id),
            ).fetchone()
        finally:
            conn.close()
        return _row_to_record(row) if row is not None else None

    def save_arm_sync(
        self,
        user_id: str,
        job_id: str,
        arm: Arm,
        *,
        expected_version: Optional[int],
    ) -> PolicyRecord:
        values = (arm.alpha, arm.beta, arm.total_pulls, arm.total_reward, _db_ts(arm.last_updated))
        conn = _connect(self.db_path)
        try:
            if expected_version is None:
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO bandit_policy_v1(
                        alpha, beta, total_pulls, total_reward, last_updated, user_id, job_id, version
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, 1)
                    """,
                    (*values, user_id, job_id),
                )
            else:
                cursor = conn.execute(
                    """
                    UPDATE bandit_policy_v1
                    SET alpha = ?, beta = ?, total_pulls = ?, total_reward = ?, last_updated = ?,
                        version = version + 1
                    WHERE user_id = ? AND job_id = ? AND version = ?
                    """,
                    (*values, user_id, job_id, expected_version),
                )
            if cursor.rowcount != 1:
                conn.rollback()
                row = conn.execute(
                    "SELECT version FROM bandit_policy_v1 WHERE user_id = ? AND job_id = ?",
                    (user_id, job_id),
                ).fetchone()
                raise PersistenceConflictError(user_id, job_id, expected_version, row["version"] if row else None)
            conn.commit()
        finally:
            conn.close()
        record = self.get_arm_sync(user_id, job_id)
        if record is None:
            raise PersistenceConflictError(user_id, job_id, expected_version, None)
        return record

    async def load_policy(self, user_id: str, *, limit: Optional[int] = None) -> Dict[str, PolicyRecord]:
        return await asyncio.to_thread(self.load_policy_sync, user_id, limit=limit)

    async def load_arms(self, user_id: str, job_ids: Sequence[str]) -> Dict[str, PolicyRecord]:
        return await asyncio.to_thread(self.load_arms_sync, user_id, list(job_ids))

    async def get_arm(self, user_id: str, job_id: str) -> Optional[PolicyRecord]:
        return await asyncio.to_thread(self.get_arm_sync, user_id, job_id)

    async def save_arm(
        self,
        user_id: str,
        job_id: str,
        arm: Arm,
        *,
        expected_version: Optional[int],
    ) -> PolicyRecord:
        return await asyncio.to_thread(self.save_arm_sync, user_id, job_id, arm, expected_version=expected_version)


class SqliteBehaviorLog:
    """
    Append-only action log. Rows are never updated or deleted.

    Appending an event whose `event_id` is already stored is a no-op, so
    redelivering the same event does not double count it.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        _write_schema(
            self.db_path,
            """
            CREATE TABLE IF NOT EXISTS behavior_events_v1(
                event_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                job_id TEXT NOT NULL,
                action_type TEXT NOT NULL,
                occurred_at TEXT NOT NULL,
                scroll_depth REAL NULL,
                dwell_time REAL NULL,
                session_id TEXT NULL,
                metadata_json TEXT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_behavior_events_v1_user_time
                ON behavior_events_v1(user_id, occurred_at DESC);
            CREATE INDEX IF NOT EXISTS idx_behavior_events_v1_time
                ON behavior_events_v1(occurred_at DESC);
            """,
        )

    def append_event_sync(self, event: BehaviorEvent) -> str:
        event_id = event.event_id or uuid.uuid4().hex
        metadata_json = json.dumps(event.metadata, sort_keys=True, ensure_ascii=False) if event.metadata else None
        conn = _connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT OR IGNORE INTO behavior_events_v1(
                    event_id, user_id, job_id, action_type, occurred_at,
                    scroll_depth, dwell_time, session_id, metadata_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event_id,
                    event.user_id,
                    event.job_id,
                    event.action_type,
                    _db_ts(event.timestamp),
                    event.scroll_depth,
                    event.dwell_time,
                    event.session_id,
                    metadata_json,
                ),
            )
            conn.commit()
        finally:
            conn.close()
        return event_id

    def list_events_sync(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BehaviorEvent]:
        safe_limit = -1 if limit is None else max(0, int(limit))
        since_value = _db_ts(since) if since is not None else ""
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT event_id, user_id, job_id, action_type, occurred_at,
                       scroll_depth, dwell_time, session_id, metadata_json
                FROM behavior_events_v1
                WHERE user_id = ? AND occurred_at >= ?
                ORDER BY occurred_at DESC, event_id DESC
                LIMIT ?
                """,
                (user_id, since_value, safe_limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            BehaviorEvent(
                user_id=row["user_id"],
                job_id=row["job_id"],
                action_type=row["action_type"],
                timestamp=parse_timestamp(row["occurred_at"]),
                scroll_depth=row["scroll_depth"],
                dwell_time=row["dwell_time"],
                session_id=row["session_id"],
                metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else None,
                event_id=row["event_id"],
            )
            for row in rows
        ]

    def list_recent_job_ids_sync(self, limit: int) -> List[str]:
        conn = _connect(self.db_path)
        try:
            rows = conn.execute(
                """
                SELECT job_id, MAX(occurred_at) AS last_seen
                FROM behavior_events_v1
                GROUP BY job_id
                ORDER BY last_seen DESC, job_id ASC
                LIMIT ?
                """,
                (max(0, int(limit)),),
            ).fetchall()
        finally:
            conn.close()
        return [row["job_id"] for row in rows]

    async def append_event(self, event: BehaviorEvent) -> str:
        return await asyncio.to_thread(self.append_event_sync, event)

    async def list_events(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BehaviorEvent]:
        return await asyncio.to_thread(self.list_events_sync, user_id, since=since, limit=limit)

    async def list_recent_job_ids(self, limit: int) -> List[str]:
        return await asyncio.to_thread(self.list_recent_job_ids_sync, limit)
