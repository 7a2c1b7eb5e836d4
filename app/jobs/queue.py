"""Queue of pending campaign recalculations for the background worker.

Policy registration and link removal enqueue a ``RecalculationJob`` per
affected campaign; the worker drains it. Jobs are keyed by campaign
(``job.key()``), so a campaign that already waits in the queue is not queued
again: bursts of policy events collapse into one recalculation, which reads
the latest links anyway.

Jobs that may run now sit in the ``_due`` heap ordered by (priority, arrival).
Retries carry a backoff delay and wait in ``_deferred`` ordered by the time
they become runnable; ``dequeue`` moves them over once that time passes. A
deferred retry therefore never blocks a fresh policy event behind it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional
import heapq
import itertools
import threading
import time

from app.config import QUEUE_SETTINGS
from app.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    key: Optional[str]
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int


def _job_key(job: Any) -> Optional[str]:
    key_fn = getattr(job, "key", None)
    return key_fn() if callable(key_fn) else None


class PriorityDelayQueue:
    """Thread-safe, in-process. Lower priority value runs first."""

    def __init__(self) -> None:
        priorities = QUEUE_SETTINGS.get("priorities", {})
        self._priorities: dict[str, int] = priorities if isinstance(priorities, dict) else {"normal": 5}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._capacity = int(QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._cv = threading.Condition(threading.RLock())
        self._due: list[tuple[int, int, QueueItem]] = []
        self._deferred: list[tuple[float, int, QueueItem]] = []
        self._by_key: dict[str, QueueItem] = {}
        self._counter = itertools.count(1)
        self._coalesced = 0
        self._closed = False

    def _release_deferred(self, now_ts: float) -> None:
        while self._deferred and self._deferred[0][0] <= now_ts:
            _, _, item = heapq.heappop(self._deferred)
            heapq.heappush(self._due, (item.priority_value, item.seq, item))

    def _seconds_until_next(self, now_ts: float) -> Optional[float]:
        if not self._deferred:
            return None
        return max(0.0, self._deferred[0][0] - now_ts)

    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        """Queue ``job``; a campaign already waiting gets its pending item back."""
        with self._cv:
            if self._closed:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priorities:
                raise ValueError(f"Unknown priority '{priority}'")
            key = _job_key(job)
            if key is not None and key in self._by_key:
                self._coalesced += 1
                logger.debug("Recalculation already pending, coalesced", key=key)
                return self._by_key[key]
            if self.depth() >= self._capacity:
                raise OverflowError("Queue capacity exceeded")

            now_ts = time.time()
            item = QueueItem(
                job=job,
                key=key,
                priority_label=priority,
                priority_value=self._priorities[priority],
                enqueued_at=now_ts,
                ready_at=now_ts + max(0.0, delay_seconds),
                seq=next(self._counter),
            )
            if item.ready_at > now_ts:
                heapq.heappush(self._deferred, (item.ready_at, item.seq, item))
            else:
                heapq.heappush(self._due, (item.priority_value, item.seq, item))
            if key is not None:
                self._by_key[key] = item

            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Recalculation queue is backing up", depth=depth)
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Next runnable job, or None when closed and drained, non-blocking and empty, or timed out."""
        deadline = None if timeout is None else time.time() + timeout
        with self._cv:
            while True:
                now_ts = time.time()
                self._release_deferred(now_ts)
                if self._due:
                    _, _, item = heapq.heappop(self._due)
                    if item.key is not None:
                        self._by_key.pop(item.key, None)
                    return item.job
                if self._closed and not self._deferred:
                    return None
                if not block:
                    return None

                wait = self._seconds_until_next(now_ts)
                if deadline is not None:
                    left = deadline - now_ts
                    if left <= 0:
                        return None
                    wait = left if wait is None else min(wait, left)
                self._cv.wait(timeout=wait)

    def is_pending(self, key: str) -> bool:
        with self._cv:
            return key in self._by_key

    def pending_job(self, key: str) -> Any:
        """Job waiting under ``key`` (due or deferred), or None."""
        with self._cv:
            item = self._by_key.get(key)
            return item.job if item is not None else None

    def shutdown(self) -> None:
        with self._cv:
            self._closed = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Forget every waiting job."""
        with self._cv:
            self._due.clear()
            self._deferred.clear()
            self._by_key.clear()
            self._cv.notify_all()

    def depth(self) -> int:
        return len(self._due) + len(self._deferred)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._cv:
            return {
                "depth": self.depth(),
                "ready": len(self._due),
                "scheduled": len(self._deferred),
                "coalesced": self._coalesced,
                "shutdown": self._closed,
            }


__all__ = ["PriorityDelayQueue", "QueueItem"]
