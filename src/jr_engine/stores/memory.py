from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from jr_engine.errors import PersistenceConflictError
from jr_engine.models import Arm, BehaviorEvent, Candidate
from jr_engine.utils.time import parse_timestamp

from .base import PolicyRecord


class InMemoryPolicyStore:
    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, str], PolicyRecord] = {}

    async def load_policy(self, user_id: str, *, limit: Optional[int] = None) -> Dict[str, PolicyRecord]:
        rows = [record for (uid, _), record in self._rows.items() if uid == user_id]
        rows.sort(key=lambda record: (-record.arm.expected_value, record.job_id))
        if limit is not None:
            rows = rows[: max(0, limit)]
        return {record.job_id: record for record in rows}

    async def load_arms(self, user_id: str, job_ids: Sequence[str]) -> Dict[str, PolicyRecord]:
        return {job_id: self._rows[(user_id, job_id)] for job_id in job_ids if (user_id, job_id) in self._rows}

    async def get_arm(self, user_id: str, job_id: str) -> Optional[PolicyRecord]:
        return self._rows.get((user_id, job_id))

    async def save_arm(
        self,
        user_id: str,
        job_id: str,
        arm: Arm,
        *,
        expected_version: Optional[int],
    ) -> PolicyRecord:
        current = self._rows.get((user_id, job_id))
        actual_version = current.version if current is not None else None
        if actual_version != expected_version:
            raise PersistenceConflictError(user_id, job_id, expected_version, actual_version)
        record = PolicyRecord(user_id=user_id, job_id=job_id, arm=arm.copy(), version=(actual_version or 0) + 1)
        self._rows[(user_id, job_id)] = record
        return record


class InMemoryBehaviorLog:
    def __init__(self, events: Iterable[BehaviorEvent] = ()) -> None:
        self._events: List[BehaviorEvent] = []
        self._ids: Set[str] = set()
        for event in events:
            self._store(event)

    def _store(self, event: BehaviorEvent) -> str:
        event_id = event.event_id or uuid.uuid4().hex
        if event_id in self._ids:
            return event_id
        self._ids.add(event_id)
        self._events.append(
            BehaviorEvent(
                user_id=event.user_id,
                job_id=event.job_id,
                action_type=event.action_type,
                timestamp=event.timestamp,
                scroll_depth=event.scroll_depth,
                dwell_time=event.dwell_time,
                session_id=event.session_id,
                metadata=dict(event.metadata) if event.metadata else None,
                event_id=event_id,
            )
        )
        return event_id

    async def append_event(self, event: BehaviorEvent) -> str:
        return self._store(event)

    async def list_events(
        self,
        user_id: str,
        *,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[BehaviorEvent]:
        cutoff = parse_timestamp(since) if since is not None else None
        rows = [
            event
            for event in self._events
            if event.user_id == user_id and (cutoff is None or event.timestamp >= cutoff)
        ]
        rows.sort(key=lambda event: event.timestamp, reverse=True)
        if limit is not None:
            rows = rows[: max(0, limit)]
        return rows

    async def list_recent_job_ids(self, limit: int) -> List[str]:
        latest: Dict[str, datetime] = {}
        for event in self._events:
            if event.job_id not in latest or event.timestamp > latest[event.job_id]:
                latest[event.job_id] = event.timestamp
        ordered = sorted(latest.items(), key=lambda item: (-item[1].timestamp(), item[0]))
        return [job_id for job_id, _ in ordered[: max(0, limit)]]


class StaticCandidateSupply:
    """Fixed candidate pool, mainly for tests and offline runs."""

    def __init__(self, candidates: Sequence[Union[Candidate, Tuple[str, float]]]) -> None:
        self._candidates = [
            item if isinstance(item, Candidate) else Candidate(job_id=item[0], vector_score=float(item[1]))
            for item in candidates
        ]

    async def get_candidates(self, user_id: str, count: int, match_threshold: float) -> List[Candidate]:
        eligible = [candidate for candidate in self._candidates if candidate.vector_score >= match_threshold]
        return eligible[: max(0, count)]


class StaticJobCatalog:
    def __init__(self, job_ids: Sequence[str]) -> None:
        self._job_ids = list(job_ids)

    async def list_recent_job_ids(self, limit: int) -> List[str]:
        return self._job_ids[: max(0, limit)]
