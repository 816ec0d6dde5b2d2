from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence

import httpx
from loguru import logger

from telemetry_forwarder.coordinator import DeliveryRequest

from .errors import RetryableTransportError, TransportError, map_http_error
from .models import BATCH_ROUTE, SINGLE_ITEM_ROUTES
from .utils import calculate_retry_delay


def _headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "Accept": "text/plain, application/json",
    }


def _bodies(destination: str, payloads: Sequence[Any]) -> list[Any]:
    """Request bodies for one destination group.

    Single-item routes take one request per payload; the batch route takes
    one request wrapping all of them.
    """
    if destination in SINGLE_ITEM_ROUTES:
        return list(payloads)
    if destination == BATCH_ROUTE:
        return [{"items": list(payloads)}]
    raise TransportError(f"Unknown destination {destination!r}", destination=destination)


class HttpTransport:
    """
    Async HTTP sender for the batching engine.

    Posts each group to its ingestion route and replies on the request:
    succeed() when every post returned 2xx, fail(error) otherwise. Retrying
    of the group is left to the engine; single requests that hit a transient
    error (429, 5xx, network) are re-sent up to ``retries`` times first.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 5.0,
        retries: int = 3,
        retry_base_delay_ms: int = 500,
        retry_max_delay_ms: int = 5000,
        client: Optional[httpx.AsyncClient] = None,
        debug: bool = False,
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            headers=_headers(api_key),
            timeout=timeout,
        )
        self._owns_client = client is None
        self._retries = retries
        self._base_delay_ms = retry_base_delay_ms
        self._max_delay_ms = retry_max_delay_ms
        self._debug = debug

    async def __call__(self, request: DeliveryRequest) -> None:
        try:
            bodies = _bodies(request.destination, request.payloads)
            await asyncio.gather(*(self._post(request.destination, body) for body in bodies))
        except TransportError as exc:
            if self._debug:
                logger.warning(f"Failed to send data to {request.destination}: {exc}")
            request.fail(exc)
            return
        request.succeed()

    async def _post(self, path: str, body: Any) -> None:
        attempt = 0
        while True:
            try:
                resp = await self._client.post(path, json=body)
                resp.raise_for_status()
                return
            except httpx.HTTPError as e:
                err = map_http_error(e, path)
                if not isinstance(err, RetryableTransportError) or attempt >= self._retries:
                    raise err from e

            delay = calculate_retry_delay(attempt, self._base_delay_ms, self._max_delay_ms)
            attempt += 1
            if self._debug:
                logger.debug(f"Retrying {path} in {delay:.2f}s (attempt {attempt + 1}/{self._retries + 1}): {err}")
            await asyncio.sleep(delay)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class HttpBeacon:
    """
    Synchronous one-way sender for teardown flushes.

    Uses a short timeout and swallows every transport error: the host may
    already be going away and nobody is left to retry.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 1.0,
        client: Optional[httpx.Client] = None,
    ):
        self._client = client or httpx.Client(
            base_url=base_url,
            headers=_headers(api_key),
            timeout=timeout,
        )
        self._owns_client = client is None

    def __call__(self, destination: str, payloads: Sequence[Any]) -> int:
        """Fire the group at its route. Returns the number of requests attempted."""
        bodies = _bodies(destination, payloads)
        for body in bodies:
            try:
                self._client.post(destination, json=body)
            except httpx.HTTPError as exc:
                logger.debug(f"Beacon to {destination} failed (ignored): {exc}")
        return len(bodies)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
