"""
Pydantic payload models for the ingestion routes.

Models are dumped to plain JSON-ready dicts before they reach the engine;
the engine treats payloads as opaque.
"""

from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_serializer, model_validator

# Ingestion routes, relative to ForwarderSettings.base_url. These are the
# engine's destinations.
APP_ROUTE = "/ingest/app"
EVENT_ROUTE = "/ingest/event"
BATCH_ROUTE = "/ingest/batch"

SINGLE_ITEM_ROUTES = frozenset({APP_ROUTE, EVENT_ROUTE})
ROUTES = frozenset({APP_ROUTE, EVENT_ROUTE, BATCH_ROUTE})

LogLevel = Literal["debug", "info", "warning", "error", "fatal", "trace"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AppLogPayload(BaseModel):
    """Structured application log entry."""

    project_id: str
    level: LogLevel = "info"
    message: str
    fields: dict[str, Any] = Field(default_factory=dict)
    caller: Optional[str] = None
    function: Optional[str] = None
    service_name: Optional[str] = None
    version: Optional[str] = None
    environment: Optional[str] = None
    host: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @field_serializer("timestamp")
    def _iso(self, ts: datetime) -> str:
        return ts.isoformat()


class EventPayload(BaseModel):
    """Named event on a channel; needs a channel name or a channel id."""

    project_id: str
    name: str
    channel: Optional[str] = None
    channel_id: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    @model_validator(mode="after")
    def _needs_channel(self):
        if not self.channel and not self.channel_id:
            raise ValueError("Either channel_id or channel_name must be provided")
        return self

    @field_serializer("timestamp")
    def _iso(self, ts: datetime) -> str:
        return ts.isoformat()
