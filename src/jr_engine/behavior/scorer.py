from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

from jr_engine.models import BehaviorEvent
from jr_engine.utils.time import elapsed_days, parse_timestamp, utc_now

from .decay import DEFAULT_LAMBDA, decay

BASE_WEIGHTS: Dict[str, float] = {
    "view": 1.0,
    "save": 2.0,
    "apply": 3.0,
    "reject": -2.0,
}

# (threshold, bonus), checked highest first.
SCROLL_BONUSES = ((100.0, 1.0), (75.0, 0.75), (50.0, 0.5))
DWELL_BONUSES = ((120.0, 1.5), (60.0, 1.0), (30.0, 0.5))


def base_weight(action_type: str) -> float:
    # click has no behavior weight of its own; only its engagement bonuses count.
    return BASE_WEIGHTS.get(action_type, 0.0)


def scroll_depth_bonus(scroll_depth: Optional[float]) -> float:
    if scroll_depth is None:
        return 0.0
    for threshold, bonus in SCROLL_BONUSES:
        if scroll_depth >= threshold:
            return bonus
    return 0.0


def dwell_time_bonus(dwell_time: Optional[float]) -> float:
    if dwell_time is None:
        return 0.0
    for threshold, bonus in DWELL_BONUSES:
        if dwell_time >= threshold:
            return bonus
    return 0.0


def score_event(event: BehaviorEvent, now: Optional[datetime] = None, lam: float = DEFAULT_LAMBDA) -> float:
    weight = base_weight(event.action_type)
    weight += scroll_depth_bonus(event.scroll_depth)
    weight += dwell_time_bonus(event.dwell_time)
    current = parse_timestamp(now) if now is not None else utc_now()
    return decay(weight, lam, elapsed_days(event.timestamp, current))


def total_score(events: Iterable[BehaviorEvent], now: Optional[datetime] = None, lam: float = DEFAULT_LAMBDA) -> float:
    current = parse_timestamp(now) if now is not None else utc_now()
    return sum(score_event(event, current, lam) for event in events)


def aggregate_by_job(
    events: Iterable[BehaviorEvent],
    now: Optional[datetime] = None,
    lam: float = DEFAULT_LAMBDA,
) -> Dict[str, float]:
    """Sum of decayed event scores per job id, in first-seen order."""
    current = parse_timestamp(now) if now is not None else utc_now()
    scores: Dict[str, float] = {}
    for event in events:
        scores[event.job_id] = scores.get(event.job_id, 0.0) + score_event(event, current, lam)
    return scores


def summarize_events(
    events: Iterable[BehaviorEvent],
    now: Optional[datetime] = None,
    days: int = 30,
) -> Dict[str, Any]:
    current = parse_timestamp(now) if now is not None else utc_now()
    since = current - timedelta(days=days)
    window = [event for event in events if since <= event.timestamp <= current]

    counts = Counter(event.action_type for event in window)
    dwell = [event.dwell_time for event in window if event.dwell_time is not None]
    scroll = [event.scroll_depth for event in window if event.scroll_depth is not None]
    views = counts.get("view", 0)
    applies = counts.get("apply", 0)
    return {
        "days": days,
        "total_events": len(window),
        "distinct_jobs": len({event.job_id for event in window}),
        "counts": {action: counts[action] for action in sorted(counts)},
        "avg_dwell_time": round(sum(dwell) / len(dwell), 3) if dwell else None,
        "avg_scroll_depth": round(sum(scroll) / len(scroll), 3) if scroll else None,
        "apply_rate": round(applies / views, 6) if views else None,
    }
