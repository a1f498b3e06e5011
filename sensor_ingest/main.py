"""
Sensor Ingest Service Entry Point

Two modes:
1. consume (default): RabbitMQ sensor readings → PostgreSQL
2. simulate: publish simulated meter readings onto the exchange

Usage:
    python -m sensor_ingest.main
    python -m sensor_ingest.main simulate --batches 10 --size 150
"""

import argparse
import asyncio
import sys

from sensor_ingest.core.logging import get_logger

logger = get_logger("main", labels={"component": "main"})


def run_consume() -> int:
    from sensor_ingest.workers.ingest_worker import IngestWorker, WorkerConfig, run_worker

    config = WorkerConfig.from_env()
    logger.info(
        "Starting Data Processor Service...",
        extra={"labels": {"exchange": config.exchange_name, "queue": config.queue_name, "batch_size": config.batch_size}},
    )
    try:
        run_worker(IngestWorker(config))
    except Exception as e:
        logger.error(f"Data processor failed: {e}", exc_info=True)
        return 1
    return 0


def run_simulate(args) -> int:
    from sensor_ingest.simulator import simulate

    try:
        result = asyncio.run(simulate(args.batches, args.size, args.interval_ms, args.routing_key))
    except Exception as e:
        logger.error(f"Simulator failed: {e}", exc_info=True)
        return 1
    return 0 if result.rejected == 0 else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sensor Ingest Service")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("consume", help="Consume sensor batches and persist them (default)")

    sim = sub.add_parser("simulate", help="Publish simulated sensor batches")
    sim.add_argument("--batches", "-n", type=int, default=10, help="Number of batches to publish")
    sim.add_argument("--size", "-s", type=int, default=100, help="Readings per batch")
    sim.add_argument("--interval-ms", type=int, default=1000, help="Pause between batches")
    sim.add_argument("--routing-key", type=str, default=None, help="Override ROUTING_KEY")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "simulate":
        return run_simulate(args)
    return run_consume()


if __name__ == "__main__":
    sys.exit(main())
