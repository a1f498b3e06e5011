import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import UUID

import pytest

from sensor_ingest.core.database import Database, SensorReadingRow, SensorReadingStore, StoreWriteError
from sensor_ingest.core.models import NormalizedReadingInput

T0 = datetime(2024, 1, 15, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def store():
    database = Database("sqlite://")
    database.create_tables()
    yield SensorReadingStore(database)
    database.dispose()


def reading(sensor_type="energy", name="m1", payload=None, ts=T0):
    return NormalizedReadingInput(
        sensor_type=sensor_type,
        sensor_name=name,
        payload=payload if payload is not None else {"energy": 12.5},
        timestamp=ts,
    )


class TestInsert:
    def test_insert_one_assigns_identity(self, store):
        row = asyncio.run(store.insert_one(reading()))

        assert isinstance(row.id, UUID)
        assert row.sensor_type == "energy"
        assert row.sensor_name == "m1"
        assert row.payload == {"energy": 12.5}
        assert row.timestamp == T0
        assert row.created_at.tzinfo is not None

    def test_insert_batch_returns_rows_in_order(self, store):
        batch = [reading(name=f"m{i}") for i in range(5)]
        rows = asyncio.run(store.insert_batch(batch))

        assert [r.sensor_name for r in rows] == ["m0", "m1", "m2", "m3", "m4"]
        assert len({r.id for r in rows}) == 5

    def test_insert_empty_batch(self, store):
        assert asyncio.run(store.insert_batch([])) == []

    def test_constraint_failure_raises_store_write_error(self, store):
        with pytest.raises(StoreWriteError):
            asyncio.run(store.insert_one(reading(sensor_type=None)))

    def test_failed_batch_persists_nothing(self, store):
        batch = [reading(name="ok-1"), reading(sensor_type=None), reading(name="ok-2")]
        with pytest.raises(StoreWriteError):
            asyncio.run(store.insert_batch(batch))

        assert asyncio.run(store.get_latest(10)) == []

    def test_driver_value_error_raises_store_write_error(self, store):
        session = MagicMock()
        session.commit.side_effect = ValueError("A string literal cannot contain NUL (0x00) characters.")
        store.database.session = lambda: session

        with pytest.raises(StoreWriteError):
            asyncio.run(store.insert_one(reading(name="m\x00")))
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_store_usable_after_failure(self, store):
        with pytest.raises(StoreWriteError):
            asyncio.run(store.insert_one(reading(sensor_type=None)))

        asyncio.run(store.insert_one(reading()))
        assert len(asyncio.run(store.get_latest(10))) == 1


class TestQueries:
    @pytest.fixture
    def seeded(self, store):
        batch = [
            reading("energy", "m1", {"energy": 1}, T0),
            reading("energy", "m2", {"energy": 2}, T0 + timedelta(minutes=1)),
            reading("air_quality", "aq1", {"co2": 500, "pm25": 10, "humidity": 40}, T0 + timedelta(minutes=2)),
            reading("motion", "pir1", {"motion_detected": True}, T0 + timedelta(minutes=3)),
        ]
        asyncio.run(store.insert_batch(batch))
        return store

    def test_by_type(self, seeded):
        rows = asyncio.run(seeded.get_by_type("energy"))
        assert [r.sensor_name for r in rows] == ["m2", "m1"]

    def test_by_name(self, seeded):
        rows = asyncio.run(seeded.get_by_name("aq1"))
        assert len(rows) == 1
        assert rows[0].payload["co2"] == 500

    def test_latest_is_newest_first(self, seeded):
        rows = asyncio.run(seeded.get_latest(2))
        assert [r.sensor_name for r in rows] == ["pir1", "aq1"]

    def test_time_range_is_inclusive(self, seeded):
        rows = asyncio.run(seeded.get_by_time_range(T0 + timedelta(minutes=1), T0 + timedelta(minutes=2)))
        assert [r.sensor_name for r in rows] == ["aq1", "m2"]

    def test_unknown_type(self, seeded):
        assert asyncio.run(seeded.get_by_type("pressure")) == []


class TestHealth:
    def test_healthy(self, store):
        assert asyncio.run(store.health_check()) is True

    def test_unreachable_database(self, tmp_path):
        database = Database(f"sqlite:///{tmp_path}/missing/dir/readings.db")
        assert SensorReadingStore(database).ping() is False


class TestSchema:
    def test_payload_gin_index(self):
        indexes = {i.name: i for i in SensorReadingRow.__table__.indexes}

        payload_index = indexes["idx_sensor_readings_payload"]
        assert [c.name for c in payload_index.columns] == ["payload"]
        assert payload_index.dialect_options["postgresql"]["using"] == "gin"

    def test_migration_indexes_present(self):
        names = {i.name for i in SensorReadingRow.__table__.indexes}
        assert {
            "idx_sensor_readings_type",
            "idx_sensor_readings_name",
            "idx_sensor_readings_timestamp",
            "idx_sensor_readings_created_at",
            "idx_sensor_readings_type_name",
            "idx_sensor_readings_payload",
        } <= names
