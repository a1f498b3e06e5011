"""
Consumption Loop Base

Polls one queue with a bounded wait and hands every decoded delivery
to a BatchHandler:
- Deliveries that fail to decode are rejected without requeue
- Everything that decodes is acked once the handler returns or raises
- Ack/reject failures are logged and the loop keeps polling
- A stop request is honoured between deliveries
"""

import asyncio
from enum import Enum

from aio_pika.abc import AbstractIncomingMessage, AbstractQueue

from sensor_ingest.core.logging import get_logger
from sensor_ingest.core.metrics import metrics
from sensor_ingest.core.models import DeserializationError, decode_batch
from sensor_ingest.handlers import BatchHandler

logger = get_logger("worker.base", labels={"component": "worker-base"})


class LoopState(Enum):
    STARTING = "starting"
    POLLING = "polling"
    HANDLING = "handling"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ConsumptionLoop:
    """
    One consumer on one queue, one delivery in flight at a time.

    The loop owns only its consumer registration; the channel and
    queue come from topology setup and the connection may be shared
    with a publisher.

    Example:
        loop = ConsumptionLoop(topology.queue, SensorBatchHandler(store, stats))
        await loop.run()
    """

    def __init__(
        self,
        queue: AbstractQueue,
        handler: BatchHandler,
        consumer_tag: str = "data-processor",
        poll_timeout: float = 1.0,
    ):
        self.queue = queue
        self.handler = handler
        self.consumer_tag = consumer_tag
        self.poll_timeout = poll_timeout
        self.state = LoopState.STOPPED
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._shutdown_event = asyncio.Event()
        self._consuming = False

    async def start(self) -> None:
        self.state = LoopState.STARTING
        await self.queue.consume(self._on_message, consumer_tag=self.consumer_tag)
        self._consuming = True
        self.state = LoopState.POLLING
        logger.info(
            f"Consuming from {self.queue.name} (tag: {self.consumer_tag})",
            extra={"labels": {"queue": self.queue.name, "consumer_tag": self.consumer_tag}},
        )

    async def _on_message(self, message: AbstractIncomingMessage) -> None:
        await self._inbox.put(message)

    async def poll_once(self) -> bool:
        """Wait up to poll_timeout for one delivery and handle it. False if none arrived."""
        self.state = LoopState.POLLING
        try:
            message = await asyncio.wait_for(self._inbox.get(), timeout=self.poll_timeout)
        except asyncio.TimeoutError:
            return False

        self.state = LoopState.HANDLING
        try:
            await self._handle_delivery(message)
        finally:
            self.state = LoopState.POLLING
        return True

    async def _handle_delivery(self, message: AbstractIncomingMessage) -> None:
        try:
            readings = decode_batch(message.body)
        except DeserializationError as e:
            logger.error(f"Failed to deserialize sensor data: {e}", extra={"labels": {"queue": self.queue.name}})
            await self._settle(message, ack=False)
            return

        logger.debug(f"Received {len(readings)} sensor readings")
        try:
            report = await self.handler.handle(readings)
            if report.has_failures():
                logger.warning(
                    f"{report.failed} of {report.total} readings failed to persist; acknowledging anyway",
                    extra={"labels": {"failed": report.failed, "total": report.total}},
                )
        except Exception as e:
            logger.error(f"Failed to process sensor data: {e}", exc_info=True)
        await self._settle(message, ack=True)

    async def _settle(self, message: AbstractIncomingMessage, ack: bool) -> None:
        outcome = "acked" if ack else "rejected"
        try:
            if ack:
                await message.ack()
            else:
                await message.reject(requeue=False)
        except Exception as e:
            metrics.deliveries.labels(outcome="settle_failed").inc()
            logger.error(f"Failed to {'acknowledge' if ack else 'reject'} message: {e}")
            return
        metrics.deliveries.labels(outcome=outcome).inc()

    async def run(self) -> None:
        """Poll until request_stop() is called."""
        if not self._consuming:
            await self.start()
        try:
            while not self._shutdown_event.is_set():
                await self.poll_once()
        finally:
            await self.stop()

    def request_stop(self) -> None:
        self._shutdown_event.set()

    @property
    def stopping(self) -> bool:
        return self._shutdown_event.is_set()

    async def stop(self) -> None:
        if self.state == LoopState.STOPPED:
            return
        self.state = LoopState.STOPPING

        if self._consuming:
            try:
                await self.queue.cancel(self.consumer_tag)
            except Exception as e:
                logger.warning(f"Failed to cancel consumer {self.consumer_tag}: {e}")
            self._consuming = False

        # Hand back anything prefetched but never handled
        while not self._inbox.empty():
            message = self._inbox.get_nowait()
            try:
                await message.nack(requeue=True)
            except Exception as e:
                logger.warning(f"Failed to requeue unhandled message: {e}")

        self.state = LoopState.STOPPED
        logger.info("Consumer stopped", extra={"labels": {"consumer_tag": self.consumer_tag}})
