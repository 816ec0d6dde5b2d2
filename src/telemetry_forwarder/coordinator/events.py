"""
Queue notifications for the batching engine.

Provides in-process pub/sub for engine lifecycle signals. The one signal the
engine is required to emit is ITEM_DROPPED, fired exactly once per record
that exhausted its retry budget; hosts typically log it when debug is on.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

from loguru import logger

from .types import QueueItem


class QueueEventType(str, Enum):
    """Kinds of engine notifications."""

    ITEM_DROPPED = "item_dropped"
    CYCLE_COMPLETED = "cycle_completed"
    CYCLE_FAILED = "cycle_failed"


@dataclass(frozen=True)
class QueueEvent:
    """Immutable engine notification.

    Attributes:
        engine_id: Identifies the emitting engine
        type: What happened
        item: The affected record (ITEM_DROPPED only)
        count: Number of records involved in the cycle
        reason: Optional context (e.g., the delivery error message)
    """

    engine_id: str
    type: QueueEventType
    item: QueueItem | None = None
    count: int = 0
    reason: str | None = None


class QueueEventSubscriber(Protocol):
    """Subscribers must be async callables accepting QueueEvent.

    Exceptions are caught and logged so a broken subscriber never fails a cycle.
    """

    async def __call__(self, event: QueueEvent) -> None: ...


class EventBus:
    """Routes engine notifications to async subscribers by event type.

    A subscriber listens to every type unless it names the ones it wants.
    A failing subscriber is logged and skipped; the cycle that published the
    event carries on.

    Example:
        bus = EventBus()

        async def on_drop(event: QueueEvent):
            logger.warning(f"dropped {event.item}")

        bus.subscribe(on_drop, types={QueueEventType.ITEM_DROPPED})
    """

    def __init__(self) -> None:
        # callback -> accepted types (None means all)
        self._routes: dict[QueueEventSubscriber, frozenset[QueueEventType] | None] = {}
        self._published: dict[QueueEventType, int] = {t: 0 for t in QueueEventType}

    def subscribe(
        self,
        callback: QueueEventSubscriber,
        types: Iterable[QueueEventType] | None = None,
    ) -> None:
        """Route events to ``callback``; re-subscribing replaces its type filter."""
        self._routes[callback] = frozenset(types) if types is not None else None

    def unsubscribe(self, callback: QueueEventSubscriber) -> None:
        self._routes.pop(callback, None)

    def subscribers_for(self, event_type: QueueEventType) -> list[QueueEventSubscriber]:
        return [cb for cb, accepted in self._routes.items() if accepted is None or event_type in accepted]

    async def publish(self, event: QueueEvent) -> int:
        """Deliver ``event`` in subscription order. Returns how many subscribers ran cleanly."""
        self._published[event.type] += 1
        targets = self.subscribers_for(event.type)
        if not targets:
            return 0

        logger.debug(f"[{event.engine_id}] {event.type.value}: {_describe(event)} -> {len(targets)} subscriber(s)")

        delivered = 0
        for callback in targets:
            # a subscriber may unsubscribe itself or others mid-publish
            if callback not in self._routes:
                continue
            try:
                await callback(event)
                delivered += 1
            except Exception as exc:
                logger.warning(f"[{event.engine_id}] {event.type.value} subscriber failed: {type(exc).__name__}: {exc}")
        return delivered

    def published(self, event_type: QueueEventType) -> int:
        """Number of events of ``event_type`` published so far."""
        return self._published[event_type]

    @property
    def subscriber_count(self) -> int:
        return len(self._routes)


def _describe(event: QueueEvent) -> str:
    if event.item is not None:
        return f"{event.item.destination} after {event.item.retry_count} retries"
    return f"{event.count} records"
