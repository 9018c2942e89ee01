"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple, TypeVar
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

T = TypeVar("T", int, float)

# Failures worth another attempt; they also count toward the circuit breaker.
RETRYABLE_REASONS = frozenset({"network_error", "timeout", "rate_limited", "server_error"})


@dataclass
class ProviderFetchError(RuntimeError):
    reason: str
    attempts: int
    status_code: Optional[int] = None

    def __str__(self) -> str:
        parts = [self.reason, f"attempts={self.attempts}"]
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return "ProviderFetchError(" + ", ".join(parts) + ")"


def _env_value(base: str, upstream_id: Optional[str], cast: Callable[[str], T], default: T) -> T:
    """`<base>_<UPSTREAM>` wins over `<base>`, which wins over `default`. Unparseable values are skipped."""
    names = [base]
    if upstream_id:
        suffix = "".join(ch if ch.isalnum() else "_" for ch in upstream_id.upper())
        names.insert(0, f"{base}_{suffix}")
    for name in names:
        raw = os.environ.get(name)
        if raw is None:
            continue
        try:
            return cast(raw)
        except ValueError:
            logger.warning("[upstream_retry][env] ignoring invalid %s=%r", name, raw)
    return default


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_s: float = 0.25
    backoff_max_s: float = 2.0
    jitter_s: float = 0.0
    max_consecutive_failures: int = 3
    cooldown_s: float = 60.0
    max_inflight_per_host: int = 4

    @classmethod
    def for_upstream(
        cls,
        upstream_id: Optional[str] = None,
        *,
        max_attempts: Optional[int] = None,
        backoff_base_s: Optional[float] = None,
        backoff_max_s: Optional[float] = None,
    ) -> "RetryPolicy":
        """Resolve `JOBREC_UPSTREAM_*` settings; explicit arguments take precedence."""
        defaults = cls()
        return cls(
            max_attempts=max_attempts
            or _env_value("JOBREC_UPSTREAM_MAX_ATTEMPTS", upstream_id, int, defaults.max_attempts),
            backoff_base_s=backoff_base_s
            if backoff_base_s is not None
            else _env_value("JOBREC_UPSTREAM_BACKOFF_BASE", upstream_id, float, defaults.backoff_base_s),
            backoff_max_s=backoff_max_s
            if backoff_max_s is not None
            else _env_value("JOBREC_UPSTREAM_BACKOFF_MAX", upstream_id, float, defaults.backoff_max_s),
            jitter_s=_env_value("JOBREC_UPSTREAM_BACKOFF_JITTER_S", upstream_id, float, defaults.jitter_s),
            max_consecutive_failures=_env_value(
                "JOBREC_UPSTREAM_MAX_CONSEC_FAILS", upstream_id, int, defaults.max_consecutive_failures
            ),
            cooldown_s=_env_value("JOBREC_UPSTREAM_COOLDOWN_S", upstream_id, float, defaults.cooldown_s),
            max_inflight_per_host=_env_value(
                "JOBREC_UPSTREAM_MAX_INFLIGHT_PER_HOST", upstream_id, int, defaults.max_inflight_per_host
            ),
        )


def backoff_delay(attempt: int, base_s: float, max_s: float, jitter_s: float = 0.0) -> float:
    """Capped exponential delay before retry number `attempt` (1-based)."""
    return min(max_s, base_s * (2 ** (max(1, attempt) - 1))) + max(0.0, jitter_s)


def _reason_for_status(status: int) -> str:
    if status in (401, 403):
        return "auth_error"
    if status in (404, 410):
        return "unavailable"
    if status == 429:
        return "rate_limited"
    if status in (408, 504):
        return "timeout"
    if status >= 500:
        return "server_error"
    return "bad_request"


class _UpstreamHealth:
    """Consecutive-failure counts, open circuits and per-host concurrency slots."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: Dict[str, int] = {}
        self._open_until: Dict[str, float] = {}
        self._slots: Dict[Tuple[str, int], threading.BoundedSemaphore] = {}

    def check(self, upstream_id: Optional[str], policy: RetryPolicy) -> None:
        if not upstream_id or policy.max_consecutive_failures <= 0:
            return
        now = time.monotonic()
        with self._lock:
            open_until = self._open_until.get(upstream_id)
            if open_until is None:
                return
            if now < open_until:
                raise ProviderFetchError("circuit_breaker", attempts=0)
            # cooldown elapsed: half-open, next failure re-trips immediately
            del self._open_until[upstream_id]
            self._failures[upstream_id] = policy.max_consecutive_failures - 1

    def failed(self, upstream_id: Optional[str], reason: str, policy: RetryPolicy) -> None:
        if not upstream_id or reason not in RETRYABLE_REASONS or policy.max_consecutive_failures <= 0:
            return
        with self._lock:
            count = self._failures.get(upstream_id, 0) + 1
            self._failures[upstream_id] = count
            if count < policy.max_consecutive_failures:
                return
            if policy.cooldown_s > 0:
                self._open_until[upstream_id] = time.monotonic() + policy.cooldown_s
        logger.warning(
            "[upstream_retry][circuit_breaker] upstream=%s failures=%s cooldown_s=%.3f",
            upstream_id,
            count,
            policy.cooldown_s,
        )

    def succeeded(self, upstream_id: Optional[str]) -> None:
        if not upstream_id:
            return
        with self._lock:
            self._failures.pop(upstream_id, None)
            self._open_until.pop(upstream_id, None)

    @contextmanager
    def slot(self, host: str, limit: int) -> Iterator[None]:
        if limit <= 0:
            yield
            return
        with self._lock:
            semaphore = self._slots.setdefault((host, limit), threading.BoundedSemaphore(limit))
        with semaphore:
            yield

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._open_until.clear()
            self._slots.clear()


_HEALTH = _UpstreamHealth()


def reset_upstream_state() -> None:
    _HEALTH.reset()


def post_json_with_retry(
    url: str,
    *,
    headers: Optional[Dict[str, str]] = None,
    payload: Optional[Dict[str, object]] = None,
    timeout_s: float = 10,
    max_attempts: Optional[int] = None,
    backoff_base_s: Optional[float] = None,
    backoff_max_s: Optional[float] = None,
    upstream_id: Optional[str] = None,
) -> dict:
    """
    POST `payload` as JSON and return the decoded object body.

    Transient failures (connection errors, timeouts, 429 and 5xx) are retried
    with capped exponential backoff. Anything else, or running out of
    attempts, raises `ProviderFetchError`. With `upstream_id` set, repeated
    transient failures open a circuit that rejects calls until its cooldown
    passes.
    """
    policy = RetryPolicy.for_upstream(
        upstream_id,
        max_attempts=max_attempts,
        backoff_base_s=backoff_base_s,
        backoff_max_s=backoff_max_s,
    )
    _HEALTH.check(upstream_id, policy)
    host = urlparse(url).netloc
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        status: Optional[int] = None
        try:
            with _HEALTH.slot(host, policy.max_inflight_per_host):
                resp = requests.post(url, headers=headers or {}, json=payload or {}, timeout=timeout_s)
        except requests.Timeout:
            reason = "timeout"
        except requests.RequestException:
            reason = "network_error"
        else:
            status = resp.status_code
            if status == 200:
                try:
                    data = resp.json()
                except ValueError as exc:
                    raise ProviderFetchError("invalid_response", attempt, status) from exc
                if not isinstance(data, dict):
                    raise ProviderFetchError("invalid_response", attempt, status)
                _HEALTH.succeeded(upstream_id)
                return data
            reason = _reason_for_status(status)

        if reason not in RETRYABLE_REASONS or attempt >= attempts:
            _HEALTH.failed(upstream_id, reason, policy)
            raise ProviderFetchError(reason, attempt, status)
        delay = backoff_delay(attempt, policy.backoff_base_s, policy.backoff_max_s, policy.jitter_s)
        logger.info(
            "[upstream_retry][backoff] upstream=%s attempt=%s sleep_s=%.3f reason=%s status=%s",
            upstream_id,
            attempt,
            delay,
            reason,
            status,
        )
        time.sleep(delay)

    raise RuntimeError("Unreachable")


__all__ = [
    "RETRYABLE_REASONS",
    "ProviderFetchError",
    "RetryPolicy",
    "backoff_delay",
    "post_json_with_retry",
    "reset_upstream_state",
]
