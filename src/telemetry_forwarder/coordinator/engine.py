from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from time import monotonic
from typing import Any, Optional, Sequence

from loguru import logger

from .buffer import RecordBuffer
from .delivery import DEFAULT_DELIVERY_TIMEOUT, DeliveryCoordinator
from .events import EventBus, QueueEvent, QueueEventType
from .policy import apply_retry_policy, group_by_destination, items_to_retry
from .types import BatchSender, FailureScope, GroupResult, QueueItem
from ..metrics.registry import (
    CYCLE_LATENCY_MS,
    CYCLES_TOTAL,
    ITEMS_DELIVERED_TOTAL,
    ITEMS_DROPPED_TOTAL,
    ITEMS_REQUEUED_TOTAL,
    ITEMS_SUBMITTED_TOTAL,
)


@dataclass(frozen=True)
class QueueOptions:
    """Batching and retry knobs shared by every driver."""

    flush_interval_ms: int = 1000
    max_retries: int = 3
    max_batch_size: int = 50  # also the size threshold that forces a cycle
    delivery_timeout_s: float = DEFAULT_DELIVERY_TIMEOUT
    failure_scope: FailureScope = "slice"

    def __post_init__(self) -> None:
        if self.flush_interval_ms <= 0:
            raise ValueError("flush_interval_ms must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.max_batch_size <= 0:
            raise ValueError("max_batch_size must be > 0")
        if self.delivery_timeout_s <= 0:
            raise ValueError("delivery_timeout_s must be > 0")
        if self.failure_scope not in ("slice", "group"):
            raise ValueError("failure_scope must be 'slice' or 'group'")


class BatchingEngine:
    """
    Buffer + batching cycle + retry/drop accounting.

    One engine serves both the process and the page-lifecycle drivers; the
    environment-specific parts (timer, teardown hooks) live in the drivers.

    Usage:

        engine = BatchingEngine(sender, QueueOptions(max_batch_size=100))
        engine.submit("/ingest/app", {"message": "hi"})
        await engine.drain()
    """

    def __init__(
        self,
        sender: BatchSender,
        options: Optional[QueueOptions] = None,
        *,
        engine_id: str = "default",
        events: Optional[EventBus] = None,
        coordinator: Optional[DeliveryCoordinator] = None,
    ):
        self._opts = options or QueueOptions()
        self._engine_id = engine_id
        self._buffer = RecordBuffer(engine_id)
        self._events = events or EventBus()
        self._coordinator = coordinator or DeliveryCoordinator(
            sender, timeout=self._opts.delivery_timeout_s
        )
        self._cycle: Optional[asyncio.Task] = None

    # --------------- introspection

    @property
    def engine_id(self) -> str:
        return self._engine_id

    @property
    def options(self) -> QueueOptions:
        return self._opts

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def coordinator(self) -> DeliveryCoordinator:
        return self._coordinator

    @property
    def size(self) -> int:
        return len(self._buffer)

    @property
    def in_flight(self) -> bool:
        return self._cycle is not None

    def pending(self) -> list[QueueItem]:
        """Snapshot of buffered items (excludes the in-flight slice)."""
        return self._buffer.snapshot()

    # --------------- submission

    def submit(self, destination: str, payload: Any) -> None:
        """Buffer a record. Never blocks and never reports delivery problems."""
        if not isinstance(destination, str) or not destination:
            raise ValueError("destination must be a non-empty string")

        size = self._buffer.append(QueueItem(destination=destination, payload=payload))
        ITEMS_SUBMITTED_TOTAL.labels(destination=destination).inc()

        if size >= self._opts.max_batch_size:
            self.trigger_cycle()

    def take_all(self) -> list[QueueItem]:
        """Empty the buffer without delivering. Used by teardown flushes."""
        return self._buffer.take_all()

    # --------------- cycles

    def trigger_cycle(self) -> bool:
        """Start a cycle unless one is running or there is nothing to send.

        Returns True if a cycle was started.
        """
        if self._cycle is not None or not self._buffer:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Records stay buffered until a driver runs inside a loop.
            logger.debug(f"[{self._engine_id}] no running event loop; cycle deferred")
            return False

        batch = self._buffer.take(self._opts.max_batch_size)
        self._cycle = loop.create_task(self._run_cycle(batch), name=f"tfwd-cycle:{self._engine_id}")
        return True

    async def drain(self) -> None:
        """Wait for the in-flight cycle, then force and wait for one more.

        A single two-phase wait: after it returns the buffer is empty or every
        remaining item went through a completed cycle. Use drain_until_empty()
        to keep going across retry rounds.
        """
        cycle = self._cycle
        if cycle is not None:
            await asyncio.shield(cycle)

        if self._buffer:
            self.trigger_cycle()
            cycle = self._cycle
            if cycle is not None:
                await asyncio.shield(cycle)

    async def drain_until_empty(self, max_rounds: Optional[int] = None) -> int:
        """Call drain() until the buffer is empty or ``max_rounds`` is reached.

        The default bound covers every pending batch going through all of its
        retries. Returns the number of rounds run.
        """
        if max_rounds is None:
            batches = max(1, math.ceil(self.size / self._opts.max_batch_size))
            max_rounds = batches * (self._opts.max_retries + 1) + 1

        rounds = 0
        while rounds < max_rounds and (self._buffer or self._cycle is not None):
            await self.drain()
            rounds += 1
        if self._buffer:
            logger.warning(
                f"[{self._engine_id}] drain stopped after {rounds} rounds with "
                f"{len(self._buffer)} records pending"
            )
        return rounds

    async def _run_cycle(self, batch: list[QueueItem]) -> None:
        t0 = monotonic()
        outcome = "ok"
        try:
            results = await self._dispatch(batch)
            failed = [r for r in results if not r.ok]
            if not failed:
                self._count_delivered(results)
                await self._events.publish(
                    QueueEvent(self._engine_id, QueueEventType.CYCLE_COMPLETED, count=len(batch))
                )
                return

            outcome = "failed"
            for r in failed:
                logger.warning(
                    f"[{self._engine_id}] delivery to {r.destination} failed "
                    f"({len(r.items)} records): {r.error}"
                )
            await self._account_failure(batch, results, failed)
        finally:
            self._cycle = None
            CYCLES_TOTAL.labels(engine=self._engine_id, outcome=outcome).inc()
            CYCLE_LATENCY_MS.labels(engine=self._engine_id).observe((monotonic() - t0) * 1000.0)

    async def _dispatch(self, batch: Sequence[QueueItem]) -> list[GroupResult]:
        groups = group_by_destination(batch)
        logger.debug(
            f"[{self._engine_id}] cycle: {len(batch)} records in {len(groups)} groups"
        )
        try:
            return list(
                await asyncio.gather(
                    *(self._coordinator.deliver(dest, items) for dest, items in groups.items())
                )
            )
        except Exception as exc:
            logger.exception(f"[{self._engine_id}] dispatch error: {exc}")
            return [GroupResult(dest, tuple(items), exc) for dest, items in groups.items()]

    async def _account_failure(
        self,
        batch: list[QueueItem],
        results: list[GroupResult],
        failed: list[GroupResult],
    ) -> None:
        if self._opts.failure_scope == "group":
            self._count_delivered(r for r in results if r.ok)

        retry = items_to_retry(batch, results, self._opts.failure_scope)
        decision = apply_retry_policy(retry, self._opts.max_retries)

        self._buffer.extend(decision.requeue)
        for item in decision.requeue:
            ITEMS_REQUEUED_TOTAL.labels(destination=item.destination).inc()

        reason = "; ".join(str(r.error) for r in failed)
        await self._events.publish(
            QueueEvent(self._engine_id, QueueEventType.CYCLE_FAILED, count=len(retry), reason=reason)
        )
        for item in decision.dropped:
            ITEMS_DROPPED_TOTAL.labels(destination=item.destination).inc()
            await self._events.publish(
                QueueEvent(self._engine_id, QueueEventType.ITEM_DROPPED, item=item, reason=reason)
            )

    @staticmethod
    def _count_delivered(results) -> None:
        for r in results:
            ITEMS_DELIVERED_TOTAL.labels(destination=r.destination).inc(len(r.items))
