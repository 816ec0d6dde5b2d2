"""
Pytest configuration and fixtures for telemetry-forwarder.

Provides cross-platform event loop configuration and shared fakes.
"""

import asyncio
import sys

import pytest

from telemetry_forwarder.coordinator import DeliveryRequest, ShutdownRegistry

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class RecordingSender:
    """BatchSender that records every request and replies on it.

    Destinations listed in ``fail`` are rejected; everything else succeeds.
    """

    def __init__(self, fail=()):
        self.fail = set(fail)
        self.requests: list[tuple[str, list]] = []

    async def __call__(self, request: DeliveryRequest) -> None:
        self.requests.append((request.destination, list(request.items)))
        await asyncio.sleep(0)  # simulate I/O
        if request.destination in self.fail:
            request.fail(RuntimeError(f"{request.destination} unavailable"))
        else:
            request.succeed()

    @property
    def delivered(self) -> list:
        return [i for d, items in self.requests if d not in self.fail for i in items]


class RecordingBeacon:
    """BeaconSender that records each one-way call."""

    def __init__(self):
        self.calls: list[tuple[str, list]] = []

    def __call__(self, destination, payloads):
        self.calls.append((destination, list(payloads)))


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def beacon():
    return RecordingBeacon()


@pytest.fixture
def registry():
    """Isolated shutdown registry per test."""
    reg = ShutdownRegistry()
    yield reg
    reg.uninstall()


@pytest.fixture
def settings_env(monkeypatch):
    """Minimal valid TFWD_* environment."""
    for key in ("TFWD_API_URL", "TFWD_DEBUG", "TFWD_MAX_BATCH_SIZE", "TFWD_MAX_RETRIES", "TFWD_REQUEST_RETRIES", "TFWD_HANDLE_SIGNALS"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TFWD_API_KEY", "test-key")
    monkeypatch.setenv("TFWD_PROJECT_ID", "proj-1")
    return monkeypatch
