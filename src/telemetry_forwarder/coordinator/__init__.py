"""Batching/retry queue engine

Core submit→buffer→cycle→deliver pipeline with:
- RecordBuffer (ordered pending records)
- BatchingEngine (single in-flight cycle, per-destination fan-out, drain)
- DeliveryCoordinator (future-per-dispatch reply correlation with timeout)
- Retry/drop policy (pure accounting, slice or group failure scope)
- EventBus notifications (item dropped, cycle outcome)
- ProcessDriver / PageLifecycleDriver
- ShutdownRegistry for process-exit drains
"""

from .types import (
    QueueItem,
    GroupResult,
    FailureScope,
    BatchSender,
    BeaconSender,
    Drainable,
    DeliveryError,
    DeliveryTimeout,
)
from .buffer import RecordBuffer
from .events import EventBus, QueueEvent, QueueEventType
from .policy import RetryOutcome, apply_retry_policy, group_by_destination, items_to_retry
from .delivery import DeliveryCoordinator, DeliveryRequest, DEFAULT_DELIVERY_TIMEOUT
from .engine import BatchingEngine, QueueOptions
from .shutdown import ShutdownRegistry, default_registry
from .drivers import LifecycleDriver, ProcessDriver, PageLifecycleDriver

__all__ = [
    # types
    "QueueItem",
    "GroupResult",
    "FailureScope",
    "BatchSender",
    "BeaconSender",
    "Drainable",
    "DeliveryError",
    "DeliveryTimeout",
    # policies
    "RetryOutcome",
    "apply_retry_policy",
    "group_by_destination",
    "items_to_retry",
    # runtime
    "RecordBuffer",
    "EventBus",
    "QueueEvent",
    "QueueEventType",
    "DeliveryCoordinator",
    "DeliveryRequest",
    "DEFAULT_DELIVERY_TIMEOUT",
    "BatchingEngine",
    "QueueOptions",
    # lifecycle
    "LifecycleDriver",
    "ProcessDriver",
    "PageLifecycleDriver",
    "ShutdownRegistry",
    "default_registry",
]
