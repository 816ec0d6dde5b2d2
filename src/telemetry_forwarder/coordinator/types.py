"""
Core types shared by the batching engine, delivery coordinator and drivers.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal, Protocol, Sequence

if TYPE_CHECKING:
    from .delivery import DeliveryRequest

FailureScope = Literal["slice", "group"]


@dataclass(frozen=True)
class QueueItem:
    """One pending record.

    Attributes:
        destination: Logical sink the record is routed to (one ingestion route)
        payload: Opaque structured data, never mutated by the engine
        enqueued_at: Wall-clock submission time, diagnostics only
        retry_count: Number of failed cycles this record has been part of
    """

    destination: str
    payload: Any
    enqueued_at: float = field(default_factory=time.time)
    retry_count: int = 0

    def retried(self) -> "QueueItem":
        """Copy with the retry counter bumped by one."""
        return replace(self, retry_count=self.retry_count + 1)


@dataclass(frozen=True)
class GroupResult:
    """Outcome of dispatching one destination group."""

    destination: str
    items: tuple[QueueItem, ...]
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DeliveryError(Exception):
    """A destination group could not be delivered."""

    def __init__(self, destination: str, message: str = "delivery failed"):
        super().__init__(f"{destination}: {message}")
        self.destination = destination


class DeliveryTimeout(DeliveryError):
    """No success/failure signal arrived for a group within the timeout."""

    def __init__(self, destination: str, timeout: float):
        super().__init__(destination, f"no reply within {timeout:g}s")
        self.timeout = timeout


class BatchSender(Protocol):
    """Asynchronous delivery capability.

    Receives a DeliveryRequest and replies through ``request.succeed()`` or
    ``request.fail(error)``, either before returning or later on. Raising is
    treated as a failure signal.
    """

    async def __call__(self, request: "DeliveryRequest") -> None: ...


class BeaconSender(Protocol):
    """Synchronous one-way transmission used at host teardown.

    No success/failure feedback is expected; the return value is ignored.
    """

    def __call__(self, destination: str, payloads: Sequence[Any]) -> Any: ...


class Drainable(Protocol):
    """Anything the shutdown registry can flush."""

    async def drain(self) -> None: ...
