import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sensor_ingest.core.broker import BrokerUnavailable
from sensor_ingest.core.publisher import Confirmation, PublishRejected
from sensor_ingest.simulator import DEFAULT_METERS, Simulator, publish_batches, simulate


class TestSimulator:
    def test_batch_cycles_meters(self):
        batch = Simulator(seed=1).batch(8)

        assert [r.name for r in batch] == [m["name"] for m in DEFAULT_METERS] * 2

    def test_payload_shapes(self):
        sim = Simulator(seed=7)
        by_type = {r.type: r.payload for r in sim.batch(4)}

        assert set(by_type["energy"]) == {"energy"}
        assert set(by_type["air_quality"]) == {"co2", "pm25", "humidity"}
        assert isinstance(by_type["motion"]["motion_detected"], bool)

    def test_values_stay_in_range(self):
        sim = Simulator(seed=3)
        for _ in range(200):
            aq = sim.air_quality("aq1")
            assert 400 <= aq.co2 <= 2000
            assert 0 <= aq.pm25 <= 150
            assert 20 <= aq.humidity <= 80
            assert 0.0 <= sim.energy("m1").energy <= 50.0

    def test_seed_is_reproducible(self):
        a = [r.to_dict() for r in Simulator(seed=42).batch(5, meters=[{"type": "air_quality", "name": "aq1"}])]
        b = [r.to_dict() for r in Simulator(seed=42).batch(5, meters=[{"type": "air_quality", "name": "aq1"}])]
        assert a == b

    def test_unknown_meter_type(self):
        with pytest.raises(ValueError):
            Simulator().get_reading({"type": "thermostat", "name": "t1"})


class TestPublishBatches:
    def test_counts_sent_and_rejected(self):
        publisher = MagicMock()
        publisher.publish = AsyncMock(side_effect=[Confirmation.ACK, PublishRejected("nack"), Confirmation.ACK])

        result = asyncio.run(publish_batches(publisher, Simulator(seed=1), "meter.data", batches=3, size=5))

        assert result.sent == 2
        assert result.rejected == 1
        assert result.readings == 10
        assert result.outcomes == [Confirmation.ACK, Confirmation.ACK]
        assert publisher.publish.await_args.args[0] == "meter.data"

    def test_transport_error_propagates(self):
        publisher = MagicMock()
        publisher.publish = AsyncMock(side_effect=ConnectionResetError("gone"))

        with pytest.raises(ConnectionResetError):
            asyncio.run(publish_batches(publisher, Simulator(), "meter.data", batches=1, size=1))


class TestSimulate:
    def test_publisher_closed_when_publishing_fails(self):
        connection = MagicMock(close=AsyncMock())
        publisher = MagicMock(close=AsyncMock())
        publisher.publish = AsyncMock(side_effect=BrokerUnavailable("connection reset"))

        with patch("sensor_ingest.simulator.connect", AsyncMock(return_value=connection)), \
                patch("sensor_ingest.simulator.Publisher.create", AsyncMock(return_value=publisher)):
            with pytest.raises(BrokerUnavailable):
                asyncio.run(simulate(batches=1, size=1, interval_ms=0))

        publisher.close.assert_awaited_once()
        connection.close.assert_awaited_once()
