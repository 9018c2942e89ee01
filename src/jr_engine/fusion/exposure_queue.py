"""
SignalCraft
Copyright (c) 2026 Chris Menendez.
All Rights Reserved.
See LICENSE for permitted use.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from jr_engine.providers.retry import backoff_delay
from jr_engine.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Exposure:
    user_id: str
    job_id: str
    rank: int
    action: str = "view"
    occurred_at: datetime = field(default_factory=utc_now)
    # Stable across redelivery so the behavior log can drop duplicates.
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ExposureQueueStats:
    enqueued: int = 0
    delivered: int = 0
    retried: int = 0
    dropped: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


ExposureSink = Callable[[Exposure], Awaitable[Any]]


class ExposureQueue:
    """
    Bounded fire-and-forget delivery of exposure events.

    `submit` never waits: a full queue drops the item. Workers retry a failing
    sink with capped exponential backoff and drop the item after
    `max_attempts`, so a slow or broken sink never reaches the ranking path.
    """

    def __init__(
        self,
        sink: ExposureSink,
        *,
        max_size: int = 1000,
        concurrency: int = 2,
        max_attempts: int = 3,
        backoff_base_s: float = 0.05,
        backoff_max_s: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._sink = sink
        self._queue: "asyncio.Queue[Exposure]" = asyncio.Queue(maxsize=max_size)
        self._concurrency = concurrency
        self._max_attempts = max(1, max_attempts)
        self._backoff_base_s = backoff_base_s
        self._backoff_max_s = backoff_max_s
        self._sleep = sleep
        self._workers: List["asyncio.Task[None]"] = []
        self.stats = ExposureQueueStats()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, item: Exposure) -> bool:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("[exposure_queue][drop] queue full user=%s job=%s", item.user_id, item.job_id)
            return False
        self.stats.enqueued += 1
        return True

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(index), name=f"exposure-worker-{index}")
            for index in range(self._concurrency)
        ]

    async def drain(self) -> None:
        await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain and self._workers:
            await self.drain()
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def _worker(self, index: int) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._deliver(item)
            finally:
                self._queue.task_done()

    async def _deliver(self, item: Exposure) -> Optional[Any]:
        for attempt in range(1, self._max_attempts + 1):
            try:
                result = await self._sink(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if attempt >= self._max_attempts:
                    self.stats.dropped += 1
                    logger.warning(
                        "[exposure_queue][drop] user=%s job=%s attempts=%s error=%s",
                        item.user_id,
                        item.job_id,
                        attempt,
                        exc,
                    )
                    return None
                self.stats.retried += 1
                delay = backoff_delay(attempt, self._backoff_base_s, self._backoff_max_s)
                logger.info(
                    "[exposure_queue][retry] user=%s job=%s attempt=%s sleep_s=%.3f error=%s",
                    item.user_id,
                    item.job_id,
                    attempt,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                continue
            self.stats.delivered += 1
            return result
        return None


__all__ = ["Exposure", "ExposureQueue", "ExposureQueueStats", "ExposureSink"]
