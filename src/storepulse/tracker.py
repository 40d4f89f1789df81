# src/storepulse/tracker.py
"""Tracker facade wiring the telemetry pipeline together.

    module/host event -> Tracker.track() -> ConsentGate -> EventQueue -> transport
                                                                 \\-> FailedDeliveryStore

Tracker is also the sink attached to AdapterCore, so every module event
takes the same consent-gated path. Network, unload and visibility page
events are wired to the queue here.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext, PageEventKind, VisibilityChangeEvent
from storepulse.adapter.protocols import AdapterModule
from storepulse.clock import Scheduler
from storepulse.commerce.pages import detect_page_type
from storepulse.config import TrackerSettings
from storepulse.consent import ConsentGate
from storepulse.delivery.queue import EventQueue
from storepulse.events import Event
from storepulse.identity import IdentityManager, generate_uuid
from storepulse.logging import bind_tracker_context, clear_tracker_context

logger = structlog.get_logger(__name__)


class Tracker:
    """Public entry point of a storepulse instance.

    Build with storepulse.factory.create_tracker() rather than directly.

    Example:
        tracker = create_tracker(settings)
        await tracker.start(PageContext(url="https://shop.example.com/"))
        tracker.track("newsletter_signup", {"source": "footer"})
        tracker.dispatch(PageEventKind.BEFORE_UNLOAD)
        await tracker.shutdown()
    """

    def __init__(
        self,
        settings: TrackerSettings,
        *,
        scheduler: Scheduler,
        identity: IdentityManager,
        consent: ConsentGate,
        queue: EventQueue,
        core: AdapterCore,
        modules: Sequence[AdapterModule] = (),
    ) -> None:
        self._settings = settings
        self._scheduler = scheduler
        self._identity = identity
        self._consent = consent
        self._queue = queue
        self._core = core
        self._modules = list(modules)
        self._started = False
        self._closed = False

    @property
    def settings(self) -> TrackerSettings:
        return self._settings

    @property
    def core(self) -> AdapterCore:
        return self._core

    @property
    def queue(self) -> EventQueue:
        return self._queue

    @property
    def consent(self) -> ConsentGate:
        return self._consent

    @property
    def identity(self) -> IdentityManager:
        return self._identity

    # =========================================================================
    # Tracking
    # =========================================================================

    def track(self, event_type: str, properties: dict[str, Any] | None = None) -> None:
        """Record an event. It is delivered once consent allows."""
        if self._closed:
            logger.warning("Event tracked after shutdown, dropped", event_type=event_type)
            return
        # Retried events keep the session they were tracked in
        props = {
            **(properties or {}),
            "event_id": generate_uuid(),
            "page_url": self._core.page.url,
            "session_id": self._identity.get_session_id(),
            "device_id": self._identity.get_device_id(),
        }
        event = Event(type=event_type, properties=props, timestamp=self._scheduler.clock.now_ms())
        self._consent.wait_for_consent(lambda: self._queue.enqueue(event))

    def _track_page_view(self, page: PageContext) -> None:
        attribution = self._core.attribution.detect(page.url, page.referrer)
        self.track(
            "page_view",
            {
                "page_type": detect_page_type(page.url),
                "page_title": page.title,
                "referrer": page.referrer,
                "attribution": attribution,
            },
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, page: PageContext | None = None) -> None:
        """Emit the initial page_view, retry stored failures and initialize modules.

        Must run on the event loop that will drive the tracker. A second
        call is a no-op.
        """
        if self._started:
            return
        self._started = True
        bind_tracker_context(project_id=self._settings.project_id, device_id=self._identity.get_device_id())

        if page is not None:
            self._core.navigate(page)
        self._core.attach_sink(self.track)
        self._track_page_view(self._core.page)
        self._queue.retry_failed_events()

        self._core.init(self._modules)
        # Subscribed after modules so their unload handlers run before the final flush
        self._core.subscribe(PageEventKind.NAVIGATE, self._track_page_view)
        self._core.subscribe(PageEventKind.ONLINE, lambda _: self.set_online(True))
        self._core.subscribe(PageEventKind.OFFLINE, lambda _: self.set_online(False))
        self._core.subscribe(PageEventKind.BEFORE_UNLOAD, lambda _: self._flush_soon("before_unload"))
        self._core.subscribe(PageEventKind.VISIBILITY_CHANGE, self._on_visibility_change)

        logger.info(
            "Tracker started",
            version=self._settings.version,
            modules=self._core.registry.names,
        )

    def _on_visibility_change(self, change: VisibilityChangeEvent) -> None:
        if change.hidden:
            self._flush_soon("page_hidden")

    def _flush_soon(self, reason: str) -> None:
        logger.debug("Forcing flush", reason=reason, buffered=self._queue.queue_size)
        self._scheduler.spawn(self._queue.force_flush())

    def dispatch(self, kind: PageEventKind | str, payload: Any = None) -> int:
        """Forward a host page event to the adapter."""
        return self._core.dispatch(kind, payload)

    def navigate(self, page: PageContext) -> None:
        self._core.navigate(page)

    def set_online(self, online: bool) -> None:
        self._queue.set_online(online)

    def set_consent(self, granted: bool = True) -> None:
        self._consent.set_consent(granted)

    def revoke_consent(self) -> None:
        self._consent.revoke_consent()

    async def shutdown(self) -> None:
        """Stop modules, deliver what is buffered and release network resources."""
        if self._closed:
            return
        self._closed = True
        self._core.close()
        await self._queue.aclose()
        source = self._core.cart.source
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Tracker shut down", **self._queue.health_metrics)
        clear_tracker_context()

    def info(self) -> dict[str, Any]:
        """Snapshot of identity, queue and consent state."""
        return {
            "device_id": self._identity.get_device_id(),
            "session_id": self._identity.peek_session_id(),
            "version": self._settings.version,
            "queue_size": self._queue.queue_size,
            "consent": str(self._consent.status),
            "consent_pending": self._consent.pending_count,
            "modules": self._core.registry.names,
            "delivery": self._queue.health_metrics,
        }
