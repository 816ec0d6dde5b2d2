from __future__ import annotations

import itertools
import socket
import traceback
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from telemetry_forwarder.coordinator import (
    BatchSender,
    BatchingEngine,
    BeaconSender,
    LifecycleDriver,
    PageLifecycleDriver,
    ProcessDriver,
    QueueEvent,
    QueueEventType,
    ShutdownRegistry,
)

from .config import ForwarderSettings, load_settings
from .models import APP_ROUTE, EVENT_ROUTE, AppLogPayload, EventPayload, LogLevel
from .transport import HttpBeacon, HttpTransport

# Distinguishes metric label series of clients sharing a service name.
_instance_ids = itertools.count(1)


class AppLogger:
    """Builds structured log payloads and submits them to the app route."""

    def __init__(self, client: "BaseClient", host: Optional[str] = None):
        self._client = client
        self._host = host

    def log(
        self,
        message: str,
        *,
        level: LogLevel = "info",
        fields: Optional[dict[str, Any]] = None,
        caller: Optional[str] = None,
        function: Optional[str] = None,
        host: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        cfg = self._client.settings
        payload = AppLogPayload(
            project_id=cfg.project_id,
            level=level,
            message=message,
            fields=fields or {},
            caller=caller,
            function=function,
            service_name=cfg.service_name,
            version=cfg.version,
            environment=cfg.environment,
            host=host or self._host,
            **({"timestamp": timestamp} if timestamp is not None else {}),
        )
        self._client.submit(APP_ROUTE, payload.model_dump(mode="json"))

    def debug(self, message: str, **kwargs) -> None:
        self.log(message, level="debug", **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.log(message, level="info", **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.log(message, level="warning", **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.log(message, level="error", **kwargs)

    def fatal(self, message: str, **kwargs) -> None:
        self.log(message, level="fatal", **kwargs)

    def trace(self, message: str, **kwargs) -> None:
        self.log(message, level="trace", **kwargs)

    def exception(self, message: str, exc: BaseException, **kwargs) -> None:
        """Log at error level with the exception type and stack trace in fields."""
        fields = dict(kwargs.pop("fields", None) or {})
        fields["exception_type"] = type(exc).__name__
        fields["stacktrace"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self.log(message, level="error", fields=fields, **kwargs)


class EventSender:
    """Builds named-event payloads and submits them to the event route."""

    def __init__(self, client: "BaseClient"):
        self._client = client

    def send(
        self,
        name: str,
        *,
        channel_id: Optional[str] = None,
        channel_name: Optional[str] = None,
        tags: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Queue an event. Raises ValueError when no channel is given."""
        if not channel_id and not channel_name:
            raise ValueError("Either channel_id or channel_name must be provided")
        payload = EventPayload(
            project_id=self._client.settings.project_id,
            name=name,
            channel=channel_name,
            channel_id=channel_id,
            tags=tags or [],
            metadata=metadata or {},
            **({"timestamp": timestamp} if timestamp is not None else {}),
        )
        self._client.submit(EVENT_ROUTE, payload.model_dump(mode="json"))


class BaseClient:
    """
    Shared client plumbing: settings, engine, payload builders.

    Environment-specific subclasses only pick the driver and the hostname.
    """

    def __init__(
        self,
        settings: Optional[ForwarderSettings] = None,
        *,
        sender: Optional[BatchSender] = None,
        **overrides,
    ):
        self.settings = settings or load_settings(**overrides)
        cfg = self.settings

        self._transport: Optional[HttpTransport] = None
        if sender is None:
            self._transport = HttpTransport(
                cfg.base_url,
                cfg.api_key,
                timeout=cfg.request_timeout_s,
                retries=cfg.request_retries,
                retry_base_delay_ms=cfg.retry_base_delay_ms,
                retry_max_delay_ms=cfg.retry_max_delay_ms,
                debug=cfg.debug,
            )
            sender = self._transport

        engine_id = f"{cfg.service_name}-{next(_instance_ids)}"
        self.engine = BatchingEngine(sender, cfg.queue_options(), engine_id=engine_id)
        self.engine.events.subscribe(self._on_queue_event, types={QueueEventType.ITEM_DROPPED})
        self.driver: LifecycleDriver = self._make_driver()

        self.app = AppLogger(self, host=self._hostname())
        self.event = EventSender(self)

    # --------------- context management

    async def __aenter__(self):
        self.driver.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.shutdown()

    # --------------- public API

    def submit(self, destination: str, payload: Any) -> None:
        """Queue a payload for a destination. Never blocks."""
        self.driver.submit(destination, payload)

    async def flush(self) -> None:
        """Wait for pending records to go through a delivery cycle."""
        await self.engine.drain()

    async def shutdown(self) -> None:
        """Flush pending records, stop the timer and release the transport."""
        await self.engine.drain_until_empty()
        self.driver.stop()
        await self._close()

    def stop(self) -> None:
        self.driver.stop()

    # --------------- internals

    async def _close(self) -> None:
        if self._transport is not None:
            await self._transport.aclose()

    def _make_driver(self) -> LifecycleDriver:
        raise NotImplementedError

    def _hostname(self) -> str:
        return "unknown"

    async def _on_queue_event(self, event: QueueEvent) -> None:
        if self.settings.debug:
            logger.warning(f"Dropped log item after max retries: {event.item}")


class ForwarderClient(BaseClient):
    """Client for long-running processes.

    Joins a shutdown registry. Once the client runs inside an event loop the
    registry wires SIGINT/SIGTERM to drain it before exit, unless
    ``handle_signals`` is off.
    """

    def __init__(
        self,
        settings: Optional[ForwarderSettings] = None,
        *,
        sender: Optional[BatchSender] = None,
        registry: Optional[ShutdownRegistry] = None,
        **overrides,
    ):
        self._registry = registry
        super().__init__(settings, sender=sender, **overrides)

    def _make_driver(self) -> ProcessDriver:
        return ProcessDriver(
            self.engine, registry=self._registry, handle_signals=self.settings.handle_signals
        )

    def _hostname(self) -> str:
        return socket.gethostname()

    async def shutdown(self) -> None:
        assert isinstance(self.driver, ProcessDriver)
        await self.driver.shutdown()
        await self._close()


class PageClient(BaseClient):
    """Client for hosts that signal hidden/unload transitions.

    The host wires its lifecycle events to handle_visibility_change() and
    handle_before_unload().
    """

    def __init__(
        self,
        settings: Optional[ForwarderSettings] = None,
        *,
        sender: Optional[BatchSender] = None,
        beacon: Optional[BeaconSender] = None,
        host: Optional[str] = None,
        **overrides,
    ):
        self._beacon_arg = beacon
        self._host = host
        self._beacon: Optional[HttpBeacon] = None
        super().__init__(settings, sender=sender, **overrides)

    def _make_driver(self) -> PageLifecycleDriver:
        cfg = self.settings
        beacon = self._beacon_arg
        if beacon is None and cfg.use_beacon:
            self._beacon = HttpBeacon(cfg.base_url, cfg.api_key, timeout=cfg.beacon_timeout_s)
            beacon = self._beacon
        return PageLifecycleDriver(self.engine, beacon, use_beacon=cfg.use_beacon)

    def _hostname(self) -> str:
        return self._host or "unknown"

    def handle_visibility_change(self, state: str) -> int:
        assert isinstance(self.driver, PageLifecycleDriver)
        return self.driver.handle_visibility_change(state)

    def handle_before_unload(self) -> int:
        assert isinstance(self.driver, PageLifecycleDriver)
        return self.driver.handle_before_unload()

    async def _close(self) -> None:
        await super()._close()
        if self._beacon is not None:
            self._beacon.close()
