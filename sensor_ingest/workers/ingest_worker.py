"""
Ingest Worker

RabbitMQ sensor-reading queue → PostgreSQL sensor_readings.
Owns the process-level lifecycle: store, broker connection, topology,
metrics server, signal handling and shutdown.
"""

import asyncio
import signal
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from aio_pika.abc import AbstractRobustConnection

from sensor_ingest.core.broker import connect, declare_topology, open_channel
from sensor_ingest.core.config import Config
from sensor_ingest.core.database import Database, SensorReadingStore
from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.metrics import MetricsServer
from sensor_ingest.core.models import ProcessingStats
from sensor_ingest.core.stats import StatsTracker
from sensor_ingest.handlers import SensorBatchHandler
from sensor_ingest.workers.base import ConsumptionLoop

logger = get_logger("worker.ingest", labels={"component": "ingest-worker"})


class WorkerState(Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class WorkerConfig:
    """Configuration for the ingest worker."""
    amqp_url: str
    exchange_name: str
    queue_name: str
    routing_key: str
    database_url: str
    consumer_tag: str = "data-processor"
    batch_size: int = 100
    poll_timeout_ms: int = 1000
    prefetch_count: int = 1
    retry_attempts: int = 3
    retry_delay_ms: int = 1000
    db_max_connections: int = 10
    db_min_connections: int = 1
    db_acquire_timeout_seconds: int = 30
    metrics_port: Optional[int] = 9090

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        return cls(
            amqp_url=Config.AMQP_URL,
            exchange_name=Config.EXCHANGE_NAME,
            queue_name=Config.QUEUE_NAME,
            routing_key=Config.ROUTING_KEY,
            database_url=Config.POSTGRES_URL,
            consumer_tag=Config.CONSUMER_TAG,
            batch_size=Config.BATCH_SIZE,
            poll_timeout_ms=Config.POLL_TIMEOUT_MS,
            prefetch_count=Config.PREFETCH_COUNT,
            retry_attempts=Config.RETRY_ATTEMPTS,
            retry_delay_ms=Config.RETRY_DELAY_MS,
            db_max_connections=Config.DB_MAX_CONNECTIONS,
            db_min_connections=Config.DB_MIN_CONNECTIONS,
            db_acquire_timeout_seconds=Config.DB_ACQUIRE_TIMEOUT_SECONDS,
            metrics_port=Config.METRICS_PORT,
        )


class IngestWorker:
    """
    The data processor service.

    Startup failures (broker or store unreachable, topology conflict)
    propagate out of run(); once the loop is running, per-delivery
    errors are contained by the loop.
    """

    def __init__(self, config: WorkerConfig):
        self.config = config
        self.state = WorkerState.STOPPED
        self.stats = StatsTracker()
        self.database: Optional[Database] = None
        self.store: Optional[SensorReadingStore] = None
        self.loop: Optional[ConsumptionLoop] = None
        self._connection: Optional[AbstractRobustConnection] = None
        self._metrics_server: Optional[MetricsServer] = None
        self._stop_requested = False

    @property
    def name(self) -> str:
        return self.config.consumer_tag

    async def setup(self) -> None:
        """Connect store and broker, declare topology, build the loop."""
        self.database = Database(
            self.config.database_url,
            max_connections=self.config.db_max_connections,
            min_connections=self.config.db_min_connections,
            acquire_timeout=self.config.db_acquire_timeout_seconds,
        )
        await asyncio.to_thread(self.database.create_tables)
        self.store = SensorReadingStore(self.database)
        logger.info("Database connection established")

        self._connection = await connect(
            self.config.amqp_url,
            attempts=self.config.retry_attempts,
            retry_delay=self.config.retry_delay_ms / 1000,
        )
        channel = await open_channel(self._connection, prefetch_count=self.config.prefetch_count)
        topology = await declare_topology(
            channel,
            self.config.exchange_name,
            self.config.queue_name,
            self.config.routing_key,
        )

        handler = SensorBatchHandler(self.store, self.stats, batch_size=self.config.batch_size)
        self.loop = ConsumptionLoop(
            topology.queue,
            handler,
            consumer_tag=self.config.consumer_tag,
            poll_timeout=self.config.poll_timeout_ms / 1000,
        )
        if self._stop_requested:
            self.loop.request_stop()

    async def run(self) -> None:
        """Main entry point - runs the worker."""
        self.state = WorkerState.STARTING
        logger.info(f"Starting worker: {self.name}", extra={"labels": {"worker": self.name}})

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.setup()

            if self.config.metrics_port is not None:
                self._metrics_server = MetricsServer(
                    self.config.metrics_port,
                    health_check=self.store.ping,
                    stats_provider=self.stats.snapshot,
                )
                self._metrics_server.start()
                logger.info(f"Metrics server on port {self._metrics_server.port}", extra={"labels": {"worker": self.name}})

            self.state = WorkerState.RUNNING
            await self.loop.run()
        finally:
            await self._shutdown()

    def request_stop(self) -> None:
        self._stop_requested = True
        if self.loop:
            self.loop.request_stop()

    def _signal_handler(self):
        logger.warning("Shutdown signal received", extra={"labels": {"worker": self.name}})
        self.request_stop()

    async def get_stats(self) -> ProcessingStats:
        return self.stats.snapshot()

    async def health_check(self) -> bool:
        # Broker liveness is not probed
        if self.store is None:
            return False
        return await self.store.health_check()

    async def _shutdown(self) -> None:
        if self.state == WorkerState.STOPPED:
            return

        self.state = WorkerState.STOPPING
        logger.info("Shutting down...", extra={"labels": {"worker": self.name}})

        if self.loop:
            await self.loop.stop()

        if self._connection and not self._connection.is_closed:
            await self._connection.close()

        if self._metrics_server:
            self._metrics_server.stop()

        if self.database:
            self.database.dispose()

        self.state = WorkerState.STOPPED
        logger.info("Stopped", extra={"labels": {"worker": self.name}})


def run_worker(worker: IngestWorker):
    asyncio.run(worker.run())
