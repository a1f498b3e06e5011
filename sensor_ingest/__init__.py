"""Sensor ingest service: RabbitMQ sensor-reading batches into PostgreSQL."""

__version__ = "0.1.0"
