"""
Request/reply correlation between the batching engine and an external sender.

Each dispatch gets its own future. The sender is notified in a separate task
and replies through the request it was handed, or out-of-band through
``acknowledge``/``reject`` keyed by destination. The pending entry is retired
whatever the outcome, so nothing accumulates across calls.
"""

from __future__ import annotations

import asyncio
from typing import Any, Sequence

from loguru import logger

from .types import BatchSender, DeliveryError, DeliveryTimeout, GroupResult, QueueItem

DEFAULT_DELIVERY_TIMEOUT = 10.0


class DeliveryRequest:
    """One destination group handed to the sender.

    Exactly one of succeed()/fail() takes effect; later calls are ignored.
    """

    __slots__ = ("destination", "items", "_future")

    def __init__(
        self,
        destination: str,
        items: Sequence[QueueItem],
        future: "asyncio.Future[None]",
    ):
        self.destination = destination
        self.items = tuple(items)
        self._future = future

    def __repr__(self) -> str:
        return f"DeliveryRequest(destination={self.destination!r}, items={len(self.items)}, done={self.done})"

    @property
    def payloads(self) -> list[Any]:
        return [item.payload for item in self.items]

    @property
    def done(self) -> bool:
        return self._future.done()

    def succeed(self) -> bool:
        """Signal delivery. Returns False if the request was already resolved."""
        if self._future.done():
            return False
        self._future.set_result(None)
        return True

    def fail(self, error: BaseException | str | None = None) -> bool:
        """Signal failure. Returns False if the request was already resolved."""
        if self._future.done():
            return False
        if not isinstance(error, BaseException):
            error = DeliveryError(self.destination, error or "delivery failed")
        self._future.set_exception(error)
        return True


class DeliveryCoordinator:
    """Hands groups to a BatchSender and awaits the correlated reply."""

    def __init__(
        self,
        sender: BatchSender,
        *,
        timeout: float = DEFAULT_DELIVERY_TIMEOUT,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self._sender = sender
        self._timeout = timeout
        self._pending: dict[str, list[DeliveryRequest]] = {}
        self._notifiers: set[asyncio.Task] = set()

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def pending_count(self) -> int:
        """Requests still awaiting a reply."""
        return sum(len(reqs) for reqs in self._pending.values())

    async def deliver(self, destination: str, items: Sequence[QueueItem]) -> GroupResult:
        """Dispatch one group and wait for its outcome.

        Never raises for delivery problems; the failure is carried in the
        returned GroupResult.
        """
        loop = asyncio.get_running_loop()
        request = DeliveryRequest(destination, items, loop.create_future())

        # Register before notifying so an immediate reply always finds it.
        self._pending.setdefault(destination, []).append(request)
        notifier = loop.create_task(self._notify(request), name=f"tfwd-deliver:{destination}")
        self._notifiers.add(notifier)
        notifier.add_done_callback(self._notifiers.discard)

        try:
            await asyncio.wait_for(request._future, timeout=self._timeout)
            return GroupResult(destination, request.items)
        except Exception as exc:
            # wait_for cancels the future when it gives up; a sender-signalled
            # TimeoutError leaves it resolved instead.
            if not request._future.cancelled():
                return GroupResult(destination, request.items, exc)
            logger.debug(f"Delivery to {destination} timed out after {self._timeout:g}s")
            if not notifier.done():
                notifier.cancel()
            return GroupResult(destination, request.items, DeliveryTimeout(destination, self._timeout))
        finally:
            self._retire(request)

    def acknowledge(self, destination: str) -> bool:
        """Resolve the oldest pending request for ``destination`` as delivered."""
        request = self._oldest_pending(destination)
        return request.succeed() if request is not None else False

    def reject(self, destination: str, error: BaseException | str | None = None) -> bool:
        """Resolve the oldest pending request for ``destination`` as failed."""
        request = self._oldest_pending(destination)
        return request.fail(error) if request is not None else False

    async def _notify(self, request: DeliveryRequest) -> None:
        try:
            await self._sender(request)
        except Exception as exc:
            request.fail(exc)

    def _oldest_pending(self, destination: str) -> DeliveryRequest | None:
        for request in self._pending.get(destination, ()):
            if not request.done:
                return request
        return None

    def _retire(self, request: DeliveryRequest) -> None:
        reqs = self._pending.get(request.destination)
        if not reqs:
            return
        try:
            reqs.remove(request)
        except ValueError:
            pass
        if not reqs:
            del self._pending[request.destination]
