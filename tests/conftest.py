# tests/conftest.py
"""Shared test fixtures and helpers.

Virtual time:
    Every timer-driven component takes a Scheduler. Tests use
    ManualScheduler over a MockClock and call scheduler.advance(ms) to fire
    timers, then `await scheduler.drain()` to let spawned deliveries finish.

Recording sinks:
    The transport and sink fixtures capture what the pipeline sends so
    tests assert on batches and events instead of mocking internals. Set
    transport.fail = True to make deliveries fail.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from typing import Any

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from storepulse.clock import ManualScheduler, MockClock
from storepulse.config import TrackerSettings
from storepulse.errors import DeliveryError
from storepulse.identity import IdentityManager
from storepulse.storage import MemoryBackend, Storage

START_MS = 1_700_000_000_000


# =============================================================================
# Recording collaborators
# =============================================================================


class RecordingTransport:
    """Transport that records payloads and fails on demand.

    Attributes:
        payloads: Every payload passed to send(), including failed ones
        fail: When True, send() raises DeliveryError
    """

    def __init__(self, *, fail: bool = False) -> None:
        self.payloads: list[dict[str, Any]] = []
        self.fail = fail
        self.closed = False

    async def send(self, payload: dict[str, Any]) -> None:
        self.payloads.append(payload)
        if self.fail:
            raise DeliveryError("HTTP 503: Service Unavailable", status_code=503)

    async def aclose(self) -> None:
        self.closed = True

    @property
    def sent_types(self) -> list[list[str]]:
        """Event types per batch."""
        return [[event["type"] for event in payload["events"]] for payload in self.payloads]


class RecordingSink:
    """TrackCallback that records (event_type, properties) pairs."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event_type: str, properties: dict[str, Any]) -> None:
        self.events.append((event_type, properties))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [props for kind, props in self.events if kind == event_type]

    @property
    def types(self) -> list[str]:
        return [kind for kind, _ in self.events]


class FailingBackend(MemoryBackend):
    """Backend whose every operation raises OSError."""

    def read(self, key: str) -> str | None:
        raise OSError("storage disabled")

    def write(self, key: str, value: str) -> None:
        raise OSError("quota exceeded")

    def delete(self, key: str) -> None:
        raise OSError("storage disabled")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> MockClock:
    return MockClock(start_ms=START_MS)


@pytest.fixture
def scheduler(clock: MockClock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def storage() -> Storage:
    return Storage()


@pytest.fixture
def identity(storage: Storage, clock: MockClock) -> IdentityManager:
    return IdentityManager(storage, clock, session_timeout_ms=30 * 60 * 1000)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_storage() -> Storage:
    """Storage whose device and session scopes both refuse every operation."""
    return Storage(session=FailingBackend(), device=FailingBackend())


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Undo configure_logging so later tests keep pytest's handlers."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def tracker_settings() -> TrackerSettings:
    return TrackerSettings(
        api_endpoint="https://ingest.example.com/v1/events",
        project_id="shop-42",
    )


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
