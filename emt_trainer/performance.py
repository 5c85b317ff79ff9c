"""
Per-topic performance tracking with an online running mean.
Answers "weakest topic" queries for adaptive practice.
"""
import logging
import threading
import weakref
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Sequence, Tuple

from .config import FALLBACK_TOPICS, MAX_WRITE_RETRIES
from .errors import PerformanceConflictError
from .models import PerformanceRecord, ProgressSummary, order_weakest

logger = logging.getLogger(__name__)


class PerformanceStore(Protocol):
    def get_performance(self, user_id: str, topic: str) -> Optional[PerformanceRecord]: ...

    def list_performance(self, user_id: str) -> List[PerformanceRecord]: ...

    def insert_performance(self, user_id: str, record: PerformanceRecord) -> bool: ...

    def update_performance(self, user_id: str, record: PerformanceRecord, expected_attempts: int) -> bool: ...


def online_mean(prev_accuracy: float, prev_attempts: int, correct: bool) -> Tuple[float, int]:
    """
    Fold one observation into a running mean.

    new_acc = (prev_acc * n + x) / (n + 1), x = 1 if correct else 0
    """
    x = 1.0 if correct else 0.0
    attempts = prev_attempts + 1
    return (prev_accuracy * prev_attempts + x) / attempts, attempts


class PerformanceTracker:
    """Tracks accuracy per topic for one learner."""

    # Shared across trackers so two tracker instances in the same process
    # still serialize writes to the same (user, topic). An entry lives only
    # while some caller still references its lock.
    _locks: "weakref.WeakValueDictionary[Tuple[str, str], threading.Lock]" = weakref.WeakValueDictionary()
    _locks_guard = threading.Lock()

    def __init__(self, store: PerformanceStore, user_id: str, max_retries: int = MAX_WRITE_RETRIES):
        self.store = store
        self.user_id = user_id
        self.max_retries = max_retries

    def _lock_for(self, topic: str) -> threading.Lock:
        key = (self.user_id, topic)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def record_attempt(self, topic: str, correct: bool) -> PerformanceRecord:
        """
        Fold one attempt into the topic's running accuracy and persist it.

        The read-modify-write is serialized in-process by a per-topic lock and
        across processes by a compare-and-set on `attempts`: if another writer
        got there first the row is re-read and the mean recomputed.

        Returns:
            The record as written.
        """
        with self._lock_for(topic):
            for attempt in range(1, self.max_retries + 1):
                prev = self.store.get_performance(self.user_id, topic)
                prev_acc = prev.accuracy if prev else 0.0
                prev_n = prev.attempts if prev else 0

                accuracy, attempts = online_mean(prev_acc, prev_n, correct)
                record = PerformanceRecord(
                    topic=topic,
                    accuracy=accuracy,
                    attempts=attempts,
                    last_practiced=datetime.now(timezone.utc),
                )

                if prev is None:
                    written = self.store.insert_performance(self.user_id, record)
                else:
                    written = self.store.update_performance(self.user_id, record, expected_attempts=prev_n)

                if written:
                    logger.debug(f"Performance {topic}: acc={accuracy:.3f} n={attempts}")
                    return record

                logger.warning(
                    "Concurrent write on performance(%s, %s), retry %d/%d",
                    self.user_id, topic, attempt, self.max_retries,
                )

        raise PerformanceConflictError(
            f"Could not record attempt for topic {topic!r} after {self.max_retries} retries"
        )

    def weakest_topic(self, fallbacks: Sequence[str] = FALLBACK_TOPICS) -> str:
        """Lowest-accuracy topic (ties: alphabetical). No history -> fallbacks[0]."""
        records = self.store.list_performance(self.user_id)
        if records:
            return order_weakest(records)[0].topic
        if not fallbacks:
            raise ValueError("No performance history and no fallback topics given")
        return fallbacks[0]

    def top_weak_topics(self, k: int = 3) -> List[PerformanceRecord]:
        if k <= 0:
            return []
        return order_weakest(self.store.list_performance(self.user_id))[:k]

    def summary(self) -> ProgressSummary:
        """Attempt-weighted overall accuracy across topics."""
        records = self.store.list_performance(self.user_id)
        attempts = sum(r.attempts for r in records)
        weighted = sum(r.accuracy * r.attempts for r in records)
        stamps = [r.last_practiced for r in records if r.last_practiced is not None]
        return ProgressSummary(
            topics=len(records),
            attempts=attempts,
            overall_accuracy=weighted / attempts if attempts else 0.0,
            last_practiced=max(stamps) if stamps else None,
        )
