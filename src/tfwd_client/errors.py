"""
Custom exceptions for the telemetry forwarder client.

Delivery problems never reach submit() callers; these types travel through
DeliveryRequest.fail() into the engine's retry accounting, or are raised
synchronously for caller misuse.
"""

from telemetry_forwarder.coordinator import DeliveryError, DeliveryTimeout


class ForwarderError(Exception):
    """Base error for the forwarder client."""

    pass


class ConfigurationError(ForwarderError, ValueError):
    """Invalid or missing client configuration."""

    pass


class TransportError(ForwarderError):
    """An ingestion request failed."""

    def __init__(self, message: str, *, destination: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.destination = destination
        self.status_code = status_code


class RetryableTransportError(TransportError):
    """Temporary failure (network, timeout, 429, 5xx)."""

    pass


def map_http_error(e: Exception, destination: str | None = None) -> TransportError:
    import httpx

    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        msg = f"HTTP {status} from {e.request.url}"
        if status == 429 or status >= 500:
            return RetryableTransportError(msg, destination=destination, status_code=status)
        return TransportError(msg, destination=destination, status_code=status)
    if isinstance(e, (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)):
        return RetryableTransportError(str(e) or type(e).__name__, destination=destination)
    return TransportError(str(e) or type(e).__name__, destination=destination)


__all__ = [
    "ForwarderError",
    "ConfigurationError",
    "TransportError",
    "RetryableTransportError",
    "DeliveryError",
    "DeliveryTimeout",
    "map_http_error",
]
