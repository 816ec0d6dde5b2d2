"""
telemetry_forwarder

Client-side batching/retry engine that buffers telemetry records and hands
them to a pluggable transport, with drivers for long-running processes and
hosts that can be torn down at any moment.
"""

from .coordinator import (
    BatchingEngine,
    QueueOptions,
    QueueItem,
    DeliveryRequest,
    ProcessDriver,
    PageLifecycleDriver,
    ShutdownRegistry,
)

__version__ = "1.0.0"
__all__ = [
    "BatchingEngine",
    "QueueOptions",
    "QueueItem",
    "DeliveryRequest",
    "ProcessDriver",
    "PageLifecycleDriver",
    "ShutdownRegistry",
]
