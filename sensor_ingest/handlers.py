"""
Batch Handlers

Connects decoded reading batches to the store and the stats tracker.
This is the ONLY place readings meet persistence.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol, Sequence

from sensor_ingest.core.database import StoreWriteError
from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.metrics import metrics
from sensor_ingest.core.models import NormalizedReadingInput, PersistedReading, RawReading, utcnow
from sensor_ingest.core.stats import StatsTracker

logger = get_logger("handlers", labels={"component": "handlers"})


class ReadingStore(Protocol):
    async def insert_batch(self, data_batch: list[NormalizedReadingInput]) -> list[PersistedReading]:
        ...


@dataclass
class ChunkOutcome:
    index: int
    size: int
    ok: bool
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Per-chunk results of one handled batch."""
    chunks: list[ChunkOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def total(self) -> int:
        return sum(c.size for c in self.chunks)

    @property
    def processed(self) -> int:
        return sum(c.size for c in self.chunks if c.ok)

    @property
    def failed(self) -> int:
        return sum(c.size for c in self.chunks if not c.ok)

    @property
    def rate_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.total / self.elapsed_seconds

    def has_failures(self) -> bool:
        return self.failed > 0


class BatchHandler(ABC):
    """
    What the consume loop calls for every decoded delivery.

    Recorded per-chunk failures come back in the report; raising means
    the handler could not run to completion.
    """

    @abstractmethod
    async def handle(self, readings: list[RawReading]) -> BatchReport:
        pass


def chunked(items: Sequence, size: int) -> Iterator[Sequence]:
    """Split items into consecutive slices of `size`; the last may be shorter."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SensorBatchHandler(BatchHandler):
    """
    Stamps readings, writes them in fixed-size chunks and records
    each chunk's outcome.

    A failed chunk never blocks the chunks after it, and chunks that
    already succeeded are never retried, so redelivering the message
    would only duplicate rows.

    Example:
        handler = SensorBatchHandler(store, stats, batch_size=100)
        report = await handler.handle(readings)
    """

    def __init__(self, store: ReadingStore, stats: StatsTracker, batch_size: int = 100):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.store = store
        self.stats = stats
        self.batch_size = batch_size

    async def handle(self, readings: list[RawReading]) -> BatchReport:
        start = time.perf_counter()
        now = utcnow()
        inputs = [reading.normalize(now) for reading in readings]

        report = BatchReport()
        for index, chunk in enumerate(chunked(inputs, self.batch_size)):
            report.chunks.append(await self._write_chunk(index, chunk))

        report.elapsed_seconds = time.perf_counter() - start
        metrics.batch_rate.set(report.rate_per_second)
        logger.info(
            f"Processed {report.total} sensor readings in {report.elapsed_seconds:.3f}s "
            f"(rate: {report.rate_per_second:.2f} msg/s)",
            extra={"labels": {
                "readings": report.total,
                "processed": report.processed,
                "failed": report.failed,
                "chunks": len(report.chunks),
            }},
        )
        return report

    async def _write_chunk(self, index: int, chunk: Sequence[NormalizedReadingInput]) -> ChunkOutcome:
        try:
            with metrics.chunk_insert_seconds.time():
                await self.store.insert_batch(list(chunk))
        except Exception as e:
            # Any insert error fails only this chunk; later chunks still run
            self.stats.record_failure(len(chunk))
            metrics.readings_failed.inc(len(chunk))
            logger.error(
                f"Failed to insert batch: {e}",
                exc_info=not isinstance(e, StoreWriteError),
                extra={"labels": {"chunk": index, "size": len(chunk)}},
            )
            return ChunkOutcome(index=index, size=len(chunk), ok=False, error=str(e))

        self.stats.record_success(len(chunk))
        metrics.readings_processed.inc(len(chunk))
        return ChunkOutcome(index=index, size=len(chunk), ok=True)
