"""
Processing Stats

Running counters shared by the consume loop and the HTTP metrics thread.
"""

from threading import Lock
from datetime import datetime
from typing import Optional

from sensor_ingest.core.models import ProcessingStats, utcnow


class StatsTracker:
    """
    Monotonic processed/failed counters plus the last successful write time.

    Every reading is counted once, in the chunk it was persisted with, so
    processed + failed always equals the readings that finished a
    persistence attempt. The lock is a plain threading.Lock because
    snapshots are taken from the metrics server thread.
    """

    def __init__(self):
        self._lock = Lock()
        self._processed = 0
        self._failed = 0
        self._last_processed_at: Optional[datetime] = None

    def record_success(self, count: int, at: Optional[datetime] = None) -> None:
        at = at or utcnow()
        with self._lock:
            self._processed += count
            if self._last_processed_at is None or at > self._last_processed_at:
                self._last_processed_at = at

    def record_failure(self, count: int) -> None:
        with self._lock:
            self._failed += count

    def snapshot(self) -> ProcessingStats:
        with self._lock:
            return ProcessingStats(
                processed_messages=self._processed,
                failed_messages=self._failed,
                last_processed_at=self._last_processed_at,
                processing_rate_per_second=0.0,
            )
