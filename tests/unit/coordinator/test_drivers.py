"""
Unit tests for the process and page-lifecycle drivers.
"""

import asyncio
import signal
import sys

import pytest

from telemetry_forwarder.coordinator import (
    BatchingEngine,
    PageLifecycleDriver,
    ProcessDriver,
    QueueOptions,
)


def test_driver_start_without_loop(sender, registry):
    driver = ProcessDriver(BatchingEngine(sender), registry=registry)
    assert driver.start() is False
    assert not driver.running

    driver.submit("/a", 1)  # buffered, timer still pending
    assert driver.engine.size == 1


@pytest.mark.asyncio
async def test_timer_flushes_partial_batch(sender, registry):
    engine = BatchingEngine(sender, QueueOptions(flush_interval_ms=20, max_batch_size=50))
    driver = ProcessDriver(engine, registry=registry)

    for i in range(60):
        driver.submit("/a", i)
    assert driver.running
    assert engine.size == 10  # first 50 left on the size threshold

    await asyncio.sleep(0.15)

    assert engine.size == 0
    assert [i.payload for i in sender.delivered] == list(range(60))
    driver.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent(sender, registry):
    driver = ProcessDriver(BatchingEngine(sender), registry=registry)
    assert driver.start()
    timer = driver._timer
    assert driver.start()
    assert driver._timer is timer
    driver.stop()
    assert not driver.running


@pytest.mark.asyncio
async def test_stop_keeps_buffer(sender, registry):
    engine = BatchingEngine(sender, QueueOptions(flush_interval_ms=20))
    driver = ProcessDriver(engine, registry=registry)
    driver.submit("/a", 1)
    driver.stop()

    await asyncio.sleep(0.06)

    assert engine.size == 1
    assert sender.requests == []


@pytest.mark.asyncio
async def test_process_driver_joins_registry(sender, registry):
    driver = ProcessDriver(BatchingEngine(sender), registry=registry)
    assert driver in registry
    assert driver.registry is registry

    driver.submit("/a", 1)
    await driver.shutdown()

    assert driver not in registry
    assert not driver.running
    assert len(sender.delivered) == 1


@pytest.mark.asyncio
async def test_registry_broadcast_drains_driver(sender, registry):
    engine = BatchingEngine(sender)
    driver = ProcessDriver(engine, registry=registry)
    driver.submit("/a", 1)
    driver.submit("/b", 2)

    await registry.broadcast()

    assert engine.size == 0
    assert len(sender.delivered) == 2
    driver.stop()


def test_teardown_uses_one_beacon_per_destination(sender, beacon):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, beacon)
    for i, dest in enumerate(["/a", "/b", "/a", "/b", "/a"]):
        engine.submit(dest, i)

    calls = driver.handle_visibility_change("hidden")

    assert calls == 2
    assert beacon.calls == [("/a", [0, 2, 4]), ("/b", [1, 3])]
    assert engine.size == 0
    assert sender.requests == []


def test_visible_state_is_ignored(sender, beacon):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, beacon)
    engine.submit("/a", 1)

    assert driver.handle_visibility_change("visible") == 0
    assert beacon.calls == []
    assert engine.size == 1


def test_before_unload_flushes(sender, beacon):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, beacon)
    engine.submit("/a", 1)

    assert driver.handle_before_unload() == 1
    assert beacon.calls == [("/a", [1])]
    assert driver.handle_before_unload() == 0


def test_beacon_disabled_keeps_buffer(sender, beacon):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, beacon, use_beacon=False)
    engine.submit("/a", 1)

    assert driver.handle_before_unload() == 0
    assert beacon.calls == []
    assert engine.size == 1


def test_missing_beacon_disables_teardown(sender):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, None)
    engine.submit("/a", 1)

    assert not driver.use_beacon
    assert driver.flush_sync() == 0
    assert engine.size == 1


def test_beacon_errors_still_clear_buffer(sender):
    seen = []

    def flaky_beacon(destination, payloads):
        seen.append(destination)
        if destination == "/a":
            raise OSError("socket closed")

    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, flaky_beacon)
    engine.submit("/a", 1)
    engine.submit("/b", 2)

    assert driver.flush_sync() == 2
    assert seen == ["/a", "/b"]
    assert engine.size == 0


def test_retry_count_not_touched_by_teardown(sender, beacon):
    engine = BatchingEngine(sender, QueueOptions(max_retries=0))
    driver = PageLifecycleDriver(engine, beacon)
    engine.submit("/a", {"m": 1})

    driver.flush_sync()

    assert beacon.calls == [("/a", [{"m": 1}])]


@pytest.mark.asyncio
async def test_stop_detaches_hooks_until_restart(sender, beacon):
    engine = BatchingEngine(sender)
    driver = PageLifecycleDriver(engine, beacon)
    driver.start()
    driver.stop()
    engine.submit("/a", 1)

    assert driver.handle_before_unload() == 0
    assert engine.size == 1

    driver.start()
    assert driver.handle_before_unload() == 1
    assert engine.size == 0
    driver.stop()


@pytest.mark.skipif(not hasattr(signal, "SIGTERM") or sys.platform.startswith("win"), reason="POSIX signals only")
@pytest.mark.asyncio
async def test_process_driver_wires_signals_on_start(sender, registry):
    driver = ProcessDriver(BatchingEngine(sender), registry=registry)
    assert registry.installed_signals == ()

    driver.start()
    try:
        assert set(registry.installed_signals) == {signal.SIGINT, signal.SIGTERM}
    finally:
        driver.stop()
        registry.uninstall()


@pytest.mark.asyncio
async def test_process_driver_leaves_signals_to_host(sender, registry):
    driver = ProcessDriver(BatchingEngine(sender), registry=registry, handle_signals=False)

    driver.start()
    driver.stop()

    assert registry.installed_signals == ()
