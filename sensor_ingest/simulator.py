"""Meter Simulator - generates realistic sensor readings and publishes them in batches"""
import asyncio
import math
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

from sensor_ingest.core.broker import connect
from sensor_ingest.core.config import Config
from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.models import AirQualityPayload, EnergyPayload, MotionPayload, RawReading
from sensor_ingest.core.publisher import Publisher, PublishRejected

logger = get_logger("simulator", labels={"component": "simulator"})

DEFAULT_METERS = [
    {"type": "energy", "name": "m1"},
    {"type": "energy", "name": "m2"},
    {"type": "air_quality", "name": "aq1"},
    {"type": "motion", "name": "pir1"},
]


class Simulator:
    def __init__(self, seed: Optional[int] = None):
        self.states = {}
        self.start_time = time.time()
        self.random = random.Random(seed)

    def _walk(self, key: str, min_v: float, max_v: float, noise: float = 1.0) -> float:
        """Mean-reverting random walk clamped to [min_v, max_v]."""
        if key not in self.states:
            base = (min_v + max_v) / 2
            self.states[key] = {"base": base, "current": base}
        s = self.states[key]
        step = self.random.gauss(0, noise * (max_v - min_v) * 0.01)
        reversion = (s["base"] - s["current"]) * 0.05
        value = max(min_v, min(max_v, s["current"] + step + reversion))
        s["current"] = value
        return value

    def energy(self, name: str) -> EnergyPayload:
        # load follows a slow daily-ish cycle
        elapsed = time.time() - self.start_time
        load_factor = 0.3 + 0.7 * (math.sin(elapsed / 300) + 1) / 2
        value = self._walk(f"energy_{name}", 0.0, 50.0) * load_factor
        return EnergyPayload(energy=round(value, 3))

    def air_quality(self, name: str) -> AirQualityPayload:
        return AirQualityPayload(
            co2=int(self._walk(f"co2_{name}", 400, 2000)),
            pm25=int(self._walk(f"pm25_{name}", 0, 150)),
            humidity=int(self._walk(f"humidity_{name}", 20, 80)),
        )

    def motion(self, name: str) -> MotionPayload:
        return MotionPayload(motion_detected=self.random.random() < 0.2)

    def get_reading(self, meter: dict) -> RawReading:
        generators = {"energy": self.energy, "air_quality": self.air_quality, "motion": self.motion}
        generator = generators.get(meter["type"])
        if generator is None:
            raise ValueError(f"unknown meter type: {meter['type']}")
        return RawReading(type=meter["type"], name=meter["name"], payload=asdict(generator(meter["name"])))

    def batch(self, size: int, meters: list[dict] = None) -> list[RawReading]:
        meters = meters or DEFAULT_METERS
        return [self.get_reading(meters[i % len(meters)]) for i in range(size)]


@dataclass
class SimulationResult:
    sent: int = 0
    rejected: int = 0
    readings: int = 0
    outcomes: list = field(default_factory=list)


async def publish_batches(
    publisher: Publisher,
    simulator: Simulator,
    routing_key: str,
    batches: int,
    size: int,
    interval_ms: int = 0,
) -> SimulationResult:
    result = SimulationResult()
    for n in range(batches):
        readings = simulator.batch(size)
        try:
            outcome = await publisher.publish(routing_key, readings)
        except PublishRejected as e:
            result.rejected += 1
            logger.warning(f"Batch {n + 1} rejected: {e}")
        else:
            result.sent += 1
            result.readings += len(readings)
            result.outcomes.append(outcome)
            if result.sent % 20 == 0:
                logger.info(f"Sent {result.sent} batches ({result.readings} readings)")
        if interval_ms and n < batches - 1:
            await asyncio.sleep(interval_ms / 1000.0)
    return result


async def simulate(batches: int, size: int, interval_ms: int, routing_key: Optional[str] = None) -> SimulationResult:
    routing_key = routing_key or Config.ROUTING_KEY
    logger.info(
        "Meter simulator starting",
        extra={"labels": {"exchange": Config.EXCHANGE_NAME, "routing_key": routing_key, "batches": batches, "size": size}},
    )
    connection = await connect(
        Config.AMQP_URL, attempts=Config.RETRY_ATTEMPTS, retry_delay=Config.RETRY_DELAY_MS / 1000
    )
    publisher = None
    try:
        publisher = await Publisher.create(
            connection, Config.EXCHANGE_NAME, publisher_confirms=Config.PUBLISHER_CONFIRMS
        )
        result = await publish_batches(publisher, Simulator(), routing_key, batches, size, interval_ms)
    finally:
        if publisher is not None:
            await publisher.close()
        await connection.close()
    logger.info(f"Simulation done: {result.sent} sent, {result.rejected} rejected")
    return result
