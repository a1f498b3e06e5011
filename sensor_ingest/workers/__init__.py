"""
Ingest Workers

The consumption loop and the process-level worker that wires it
to RabbitMQ, PostgreSQL and the metrics server.
"""

from sensor_ingest.workers.base import ConsumptionLoop, LoopState
from sensor_ingest.workers.ingest_worker import IngestWorker, WorkerConfig, run_worker

__all__ = ["ConsumptionLoop", "LoopState", "IngestWorker", "WorkerConfig", "run_worker"]
