import json
from datetime import datetime, timezone

import pytest

from sensor_ingest.core.models import (
    DeserializationError,
    ProcessingStats,
    RawReading,
    decode_batch,
    encode_batch,
)


class TestDecodeBatch:
    def test_single_energy_reading(self):
        body = b'[{"type":"energy","name":"m1","payload":{"energy":12.5}}]'
        readings = decode_batch(body)

        assert len(readings) == 1
        assert readings[0].type == "energy"
        assert readings[0].name == "m1"
        assert readings[0].payload == {"energy": 12.5}

    def test_preserves_order(self):
        body = json.dumps([
            {"type": "energy", "name": f"m{i}", "payload": {"energy": i}} for i in range(5)
        ]).encode()
        assert [r.name for r in decode_batch(body)] == ["m0", "m1", "m2", "m3", "m4"]

    def test_payload_is_opaque(self):
        body = json.dumps([
            {"type": "motion", "name": "pir1", "payload": {"motion_detected": True}},
            {"type": "raw", "name": "x", "payload": [1, 2, 3]},
            {"type": "raw", "name": "y", "payload": None},
        ]).encode()
        payloads = [r.payload for r in decode_batch(body)]
        assert payloads == [{"motion_detected": True}, [1, 2, 3], None]

    def test_empty_array(self):
        assert decode_batch(b"[]") == []

    def test_invalid_json(self):
        with pytest.raises(DeserializationError):
            decode_batch(b"{not json")

    def test_invalid_utf8(self):
        with pytest.raises(DeserializationError):
            decode_batch(b"\xff\xfe[]")

    def test_object_instead_of_array(self):
        with pytest.raises(DeserializationError):
            decode_batch(b'{"type":"energy","name":"m1","payload":{}}')

    def test_missing_field(self):
        with pytest.raises(DeserializationError, match="payload"):
            decode_batch(b'[{"type":"energy","name":"m1"}]')

    def test_non_string_name(self):
        with pytest.raises(DeserializationError):
            decode_batch(b'[{"type":"energy","name":42,"payload":{}}]')

    def test_non_object_item(self):
        with pytest.raises(DeserializationError):
            decode_batch(b'[1, 2]')

    @pytest.mark.parametrize("literal", [b"NaN", b"Infinity", b"-Infinity"])
    def test_non_json_number_literals(self, literal):
        body = b'[{"type":"energy","name":"m1","payload":{"energy":' + literal + b"}}]"
        with pytest.raises(DeserializationError):
            decode_batch(body)

    def test_is_a_value_error(self):
        assert issubclass(DeserializationError, ValueError)


class TestEncodeBatch:
    def test_refuses_nan(self):
        with pytest.raises(ValueError):
            encode_batch([RawReading(type="energy", name="m1", payload={"energy": float("nan")})])

    def test_wire_fields(self):
        body = encode_batch([RawReading(type="energy", name="m1", payload={"energy": 1.0})])
        assert json.loads(body.decode("utf-8")) == [
            {"type": "energy", "name": "m1", "payload": {"energy": 1.0}}
        ]


class TestNormalize:
    def test_stamps_ingestion_time(self):
        ts = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        normalized = RawReading(type="energy", name="m1", payload={"energy": 3}).normalize(ts)

        assert normalized.sensor_type == "energy"
        assert normalized.sensor_name == "m1"
        assert normalized.payload == {"energy": 3}
        assert normalized.timestamp == ts


class TestProcessingStats:
    def test_defaults(self):
        stats = ProcessingStats()
        assert stats.processed_messages == 0
        assert stats.failed_messages == 0
        assert stats.last_processed_at is None
        assert stats.processing_rate_per_second == 0.0

    def test_to_dict(self):
        ts = datetime(2024, 6, 20, 14, 45, 30, tzinfo=timezone.utc)
        data = ProcessingStats(processed_messages=3, failed_messages=1, last_processed_at=ts).to_dict()

        assert data["processed_messages"] == 3
        assert data["failed_messages"] == 1
        assert data["last_processed_at"] == "2024-06-20T14:45:30+00:00"
