"""
Sensor Reading Publisher

Publishes reading batches onto the topic exchange and interprets
the broker's publisher confirmation.
"""

from enum import Enum
from typing import Optional

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractRobustConnection
from aio_pika.exceptions import AMQPError, DeliveryError
from pamqp.commands import Basic

from sensor_ingest.core.broker import BrokerUnavailable, declare_exchange, open_channel
from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.metrics import metrics
from sensor_ingest.core.models import RawReading, encode_batch

logger = get_logger("core.publisher", labels={"component": "publisher"})


class Confirmation(Enum):
    ACK = "ack"
    NACK = "nack"
    NOT_REQUESTED = "not_requested"


class PublishRejected(Exception):
    """The broker negatively acknowledged a published batch."""


def classify_confirmation(frame) -> Confirmation:
    """Map the frame returned by a publish to a confirmation outcome."""
    if frame is None:
        return Confirmation.NOT_REQUESTED
    if isinstance(frame, Basic.Ack):
        return Confirmation.ACK
    return Confirmation.NACK


class Publisher:
    """
    Confirm-aware publisher with its own channel.

    Example:
        publisher = await Publisher.create(connection, "meter-data-exchange")
        await publisher.publish("meter.data", readings)
    """

    def __init__(self, channel: AbstractChannel, exchange: AbstractExchange):
        self.channel = channel
        self.exchange = exchange

    @classmethod
    async def create(
        cls,
        connection: AbstractRobustConnection,
        exchange_name: str,
        publisher_confirms: bool = True,
    ) -> "Publisher":
        channel = await open_channel(connection, publisher_confirms=publisher_confirms)
        exchange = await declare_exchange(channel, exchange_name)
        return cls(channel, exchange)

    @property
    def exchange_name(self) -> str:
        return self.exchange.name

    async def publish(self, routing_key: str, readings: list[RawReading]) -> Confirmation:
        """
        Publish readings and wait for the broker's confirmation.

        Returns ACK or NOT_REQUESTED (both count as success).
        Raises PublishRejected on a nack, BrokerUnavailable on transport failure.
        """
        message = aio_pika.Message(
            body=encode_batch(readings),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        try:
            frame = await self.exchange.publish(message, routing_key=routing_key)
            outcome = classify_confirmation(frame)
        except DeliveryError as e:
            frame = e.frame
            outcome = Confirmation.NACK
        except AMQPError as e:
            metrics.publishes.labels(outcome="error").inc()
            logger.error(f"Failed to publish sensor data: {e}", extra={"labels": {"routing_key": routing_key}})
            raise BrokerUnavailable(f"publish to {self.exchange_name!r} failed: {e}") from e

        metrics.publishes.labels(outcome=outcome.value).inc()
        labels = {"exchange": self.exchange_name, "routing_key": routing_key, "count": len(readings)}

        if outcome is Confirmation.NACK:
            logger.error("Sensor data was not acknowledged by RabbitMQ", extra={"labels": labels})
            raise PublishRejected(f"broker rejected batch of {len(readings)} readings ({_frame_name(frame)})")

        if outcome is Confirmation.NOT_REQUESTED:
            logger.debug("Sensor data sent (no confirmation requested)", extra={"labels": labels})
        else:
            logger.debug("Sensor data sent and confirmed", extra={"labels": labels})
        return outcome

    async def close(self) -> None:
        if not self.channel.is_closed:
            await self.channel.close()


def _frame_name(frame: Optional[object]) -> str:
    return type(frame).__name__ if frame is not None else "no frame"
