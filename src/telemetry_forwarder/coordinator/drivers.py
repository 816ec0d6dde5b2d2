"""
Environment drivers over a BatchingEngine.

ProcessDriver   - periodic flush timer + shutdown registry, for long-running
                  processes.
PageLifecycleDriver - the same timer plus synchronous teardown hooks for hosts
                  that can disappear at any moment (pages, embedded
                  interpreters, runtimes about to be frozen).
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from loguru import logger

from .engine import BatchingEngine
from .policy import group_by_destination
from .shutdown import ShutdownRegistry, default_registry
from .types import BeaconSender
from ..metrics.registry import BEACON_SENDS_TOTAL


class LifecycleDriver:
    """Owns the flush timer of one engine."""

    def __init__(self, engine: BatchingEngine, *, flush_interval_ms: Optional[int] = None):
        self._engine = engine
        interval_ms = flush_interval_ms or engine.options.flush_interval_ms
        if interval_ms <= 0:
            raise ValueError("flush_interval_ms must be > 0")
        self._interval = interval_ms / 1000.0
        self._timer: Optional[asyncio.Task] = None

    @property
    def engine(self) -> BatchingEngine:
        return self._engine

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> bool:
        """Start the flush timer in the running loop.

        Idempotent. Returns False when there is no running loop yet; callers
        can retry later (submit paths do).
        """
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        # A plain task: it never keeps the interpreter alive and is cancelled
        # with its loop.
        self._timer = loop.create_task(self._tick(), name=f"tfwd-timer:{self._engine.engine_id}")
        logger.debug(f"[{self._engine.engine_id}] flush timer started ({self._interval:g}s)")
        return True

    def stop(self) -> None:
        """Cancel the timer. Buffered records are kept."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def submit(self, destination: str, payload: Any) -> None:
        self.start()
        self._engine.submit(destination, payload)

    async def drain(self) -> None:
        await self._engine.drain()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self._engine.trigger_cycle()
            except Exception as exc:
                logger.error(f"[{self._engine.engine_id}] flush timer error: {exc}")


class ProcessDriver(LifecycleDriver):
    """Driver for long-running processes; joins a shutdown registry.

    When the timer starts inside a running loop the registry also wires
    SIGINT/SIGTERM and its exit check, so a terminated process drains first.
    Pass ``handle_signals=False`` when the host owns signal handling.
    """

    def __init__(
        self,
        engine: BatchingEngine,
        *,
        registry: Optional[ShutdownRegistry] = None,
        flush_interval_ms: Optional[int] = None,
        handle_signals: bool = True,
    ):
        super().__init__(engine, flush_interval_ms=flush_interval_ms)
        self._registry = registry if registry is not None else default_registry()
        self._registry.add(self)
        self._handle_signals = handle_signals

    @property
    def registry(self) -> ShutdownRegistry:
        return self._registry

    def start(self) -> bool:
        was_running = self.running
        if not super().start():
            return False
        if self._handle_signals and not was_running:
            self._registry.install()
        return True

    async def shutdown(self) -> None:
        """Drain, stop the timer and leave the registry."""
        await self._engine.drain_until_empty()
        self.stop()
        self._registry.remove(self)


class PageLifecycleDriver(LifecycleDriver):
    """Driver for hosts that may be destroyed without warning.

    The host calls handle_visibility_change() / handle_before_unload(). Both
    hand the whole buffer to the one-way beacon, one call per destination,
    and clear it. There is no retry after this point.
    """

    def __init__(
        self,
        engine: BatchingEngine,
        beacon: Optional[BeaconSender],
        *,
        use_beacon: bool = True,
        flush_interval_ms: Optional[int] = None,
    ):
        super().__init__(engine, flush_interval_ms=flush_interval_ms)
        self._beacon = beacon
        self._use_beacon = use_beacon and beacon is not None
        self._attached = True

    @property
    def use_beacon(self) -> bool:
        return self._use_beacon

    def handle_visibility_change(self, state: str) -> int:
        if state == "hidden":
            return self.flush_sync()
        return 0

    def handle_before_unload(self) -> int:
        return self.flush_sync()

    def flush_sync(self) -> int:
        """Best-effort synchronous flush. Returns the number of beacon calls."""
        if not self._attached or not self._use_beacon or not self._engine.size:
            return 0
        assert self._beacon is not None

        groups = group_by_destination(self._engine.take_all())
        for destination, items in groups.items():
            try:
                self._beacon(destination, [item.payload for item in items])
                BEACON_SENDS_TOTAL.labels(destination=destination, outcome="sent").inc()
            except Exception as exc:
                BEACON_SENDS_TOTAL.labels(destination=destination, outcome="error").inc()
                logger.error(f"Error sending beacon to {destination}: {exc}")
        logger.debug(f"[{self._engine.engine_id}] teardown flush: {len(groups)} beacon(s)")
        return len(groups)

    def start(self) -> bool:
        self._attached = True
        return super().start()

    def stop(self) -> None:
        """Cancel the timer and detach the teardown hooks."""
        super().stop()
        self._attached = False
