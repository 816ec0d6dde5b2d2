"""
Telemetry Forwarder Client Library

Structured logs and named events, batched and delivered by the
telemetry_forwarder engine.

Usage:
    from tfwd_client import ForwarderClient, PageClient

    # Long-running process
    async with ForwarderClient(api_key="...", project_id="...") as client:
        client.app.info("started", fields={"port": 8080})
        client.event.send("signup", channel_name="users")

    # Host with hidden/unload lifecycle events
    client = PageClient(api_key="...", project_id="...")
    on_unload(client.handle_before_unload)
"""

from .client import AppLogger, BaseClient, EventSender, ForwarderClient, PageClient
from .config import ForwarderSettings, get_settings, load_settings
from .errors import ConfigurationError, ForwarderError, RetryableTransportError, TransportError
from .logging_bridge import ForwarderLogHandler, install_logging_bridge, remove_logging_bridge
from .models import APP_ROUTE, BATCH_ROUTE, EVENT_ROUTE, AppLogPayload, EventPayload
from .transport import HttpBeacon, HttpTransport

__version__ = "1.0.0"
__all__ = [
    "ForwarderClient",
    "PageClient",
    "BaseClient",
    "AppLogger",
    "EventSender",
    "ForwarderSettings",
    "get_settings",
    "load_settings",
    "ForwarderError",
    "ConfigurationError",
    "TransportError",
    "RetryableTransportError",
    "ForwarderLogHandler",
    "install_logging_bridge",
    "remove_logging_bridge",
    "AppLogPayload",
    "EventPayload",
    "APP_ROUTE",
    "EVENT_ROUTE",
    "BATCH_ROUTE",
    "HttpTransport",
    "HttpBeacon",
]
