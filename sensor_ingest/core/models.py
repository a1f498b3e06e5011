"""
Sensor Reading Models

Wire format, normalized records, persisted rows and processing stats.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID


class DeserializationError(ValueError):
    """Delivery body is not a JSON array of sensor readings."""


@dataclass
class RawReading:
    type: str
    name: str
    payload: Any

    @classmethod
    def from_dict(cls, data: dict) -> "RawReading":
        if not isinstance(data, dict):
            raise DeserializationError(f"reading must be an object, got {type(data).__name__}")
        missing = [key for key in ("type", "name", "payload") if key not in data]
        if missing:
            raise DeserializationError(f"reading missing fields: {', '.join(missing)}")
        if not isinstance(data["type"], str) or not isinstance(data["name"], str):
            raise DeserializationError("reading 'type' and 'name' must be strings")
        return cls(type=data["type"], name=data["name"], payload=data["payload"])

    def to_dict(self) -> dict:
        return {"type": self.type, "name": self.name, "payload": self.payload}

    def normalize(self, timestamp: datetime) -> "NormalizedReadingInput":
        """Stamp with the ingestion instant; the source carries no reliable time."""
        return NormalizedReadingInput(
            sensor_type=self.type,
            sensor_name=self.name,
            payload=self.payload,
            timestamp=timestamp,
        )


@dataclass
class NormalizedReadingInput:
    sensor_type: str
    sensor_name: str
    payload: Any
    timestamp: datetime


@dataclass
class PersistedReading:
    id: UUID
    sensor_type: str
    sensor_name: str
    payload: Any
    timestamp: datetime
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "sensor_type": self.sensor_type,
            "sensor_name": self.sensor_name,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class ProcessingStats:
    processed_messages: int = 0
    failed_messages: int = 0
    last_processed_at: Optional[datetime] = None
    # Throughput is only logged and exported as a gauge.
    processing_rate_per_second: float = 0.0

    def to_dict(self) -> dict:
        return {
            "processed_messages": self.processed_messages,
            "failed_messages": self.failed_messages,
            "last_processed_at": self.last_processed_at.isoformat() if self.last_processed_at else None,
            "processing_rate_per_second": self.processing_rate_per_second,
        }


# Payload shapes published by known meter types. The ingest path keeps
# payloads opaque; these are used when generating readings.
@dataclass
class EnergyPayload:
    energy: float


@dataclass
class AirQualityPayload:
    co2: int
    pm25: int
    humidity: int


@dataclass
class MotionPayload:
    motion_detected: bool


def decode_batch(body: bytes) -> list[RawReading]:
    """Parse a delivery body into readings, preserving payload order."""
    try:
        data = json.loads(body.decode("utf-8"), parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise DeserializationError(f"invalid JSON body: {e}") from e
    if not isinstance(data, list):
        raise DeserializationError(f"body must be a JSON array, got {type(data).__name__}")
    return [RawReading.from_dict(item) for item in data]


def encode_batch(readings: list[RawReading]) -> bytes:
    return json.dumps([r.to_dict() for r in readings], allow_nan=False).encode("utf-8")


def _reject_constant(name: str):
    # NaN / Infinity / -Infinity are not JSON
    raise ValueError(f"non-JSON constant {name}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
