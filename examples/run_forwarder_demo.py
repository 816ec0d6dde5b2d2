"""
Demo script for the BatchingEngine and its drivers.

Shows size-triggered and timer-triggered cycles, whole-slice retry on a
flaky destination, drop notifications and a page-style teardown flush.
No network: a local sender stands in for the ingestion API.
"""

import asyncio
import random

from loguru import logger

from telemetry_forwarder.coordinator import (
    BatchingEngine,
    DeliveryRequest,
    PageLifecycleDriver,
    ProcessDriver,
    QueueEvent,
    QueueEventType,
    QueueOptions,
    ShutdownRegistry,
)


class FlakySender:
    """Succeeds, except /ingest/event fails about half the time."""

    def __init__(self, seed: int = 7):
        self._rng = random.Random(seed)
        self.delivered = 0

    async def __call__(self, request: DeliveryRequest) -> None:
        await asyncio.sleep(0.01)  # simulate I/O latency
        if request.destination == "/ingest/event" and self._rng.random() < 0.5:
            request.fail("503 Service Unavailable")
            return
        self.delivered += len(request.items)
        request.succeed()


async def on_event(event: QueueEvent):
    if event.type is QueueEventType.ITEM_DROPPED:
        logger.warning(f"🗑️  dropped {event.item.destination} after {event.item.retry_count} retries")
    elif event.type is QueueEventType.CYCLE_FAILED:
        logger.info(f"🔁 cycle failed, {event.count} records accounted: {event.reason}")


async def process_demo():
    sender = FlakySender()
    engine = BatchingEngine(
        sender,
        QueueOptions(flush_interval_ms=100, max_batch_size=50, max_retries=2),
        engine_id="demo",
    )
    engine.events.subscribe(on_event)
    driver = ProcessDriver(engine, registry=ShutdownRegistry())

    logger.info("🚀 Submitting 120 records across two destinations")
    for i in range(120):
        dest = "/ingest/event" if i % 4 == 0 else "/ingest/app"
        driver.submit(dest, {"seq": i})

    logger.info(f"Buffered: {engine.size} | cycle in flight: {engine.in_flight}")
    await asyncio.sleep(0.3)  # let the timer run a few cycles

    await driver.shutdown()
    logger.info(f"✅ Process demo complete: delivered={sender.delivered} pending={engine.size}")


def page_demo():
    def beacon(destination, payloads):
        logger.info(f"📡 beacon {destination}: {len(payloads)} records")

    engine = BatchingEngine(FlakySender(), engine_id="page")
    driver = PageLifecycleDriver(engine, beacon)
    for i in range(5):
        engine.submit("/ingest/app" if i % 2 else "/ingest/event", {"seq": i})

    sends = driver.handle_visibility_change("hidden")
    logger.info(f"✅ Page teardown: {sends} one-way sends, buffer={engine.size}")


if __name__ == "__main__":
    asyncio.run(process_demo())
    page_demo()
