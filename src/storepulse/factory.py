# src/storepulse/factory.py
"""Factory functions for building a Tracker from settings.

This module is the glue between TrackerSettings and the runtime objects:
1. Validates that settings can deliver events
2. Builds storage, identity, consent gate and event queue
3. Discovers and instantiates the enabled modules via pluggy hooks
4. Returns a Tracker ready for start()

Usage:
    from storepulse.config import load_settings
    from storepulse.factory import create_tracker

    tracker = create_tracker(load_settings(Path("storepulse.yaml")))
    await tracker.start(page)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import PageContext
from storepulse.adapter.registry import build_modules
from storepulse.clock import AsyncioScheduler, Scheduler
from storepulse.commerce.sources import CartSnapshotSource, HttpCartSource
from storepulse.config import TrackerSettings
from storepulse.consent import ConsentGate
from storepulse.delivery.failed_store import FailedDeliveryStore
from storepulse.delivery.protocols import TransportProtocol
from storepulse.delivery.queue import EventQueue
from storepulse.delivery.transport import HttpTransport
from storepulse.errors import TrackerConfigError
from storepulse.identity import IdentityManager
from storepulse.storage import JsonFileBackend, Storage
from storepulse.tracker import Tracker

logger = structlog.get_logger(__name__)


def create_storage(settings: TrackerSettings) -> Storage:
    """Session scope in memory; device scope on disk when storage_path is set."""
    if settings.storage_path is None:
        return Storage()
    return Storage(device=JsonFileBackend(settings.storage_path))


def create_consent_gate(settings: TrackerSettings, storage: Storage, scheduler: Scheduler) -> ConsentGate:
    return ConsentGate(
        storage,
        scheduler,
        enabled=settings.enable_consent_check,
        poll_interval_ms=settings.consent_poll_interval_ms,
        default_timeout_ms=settings.consent_timeout_ms,
        validity_days=settings.consent_validity_days,
    )


def create_tracker(
    settings: TrackerSettings,
    *,
    scheduler: Scheduler | None = None,
    storage: Storage | None = None,
    transport: TransportProtocol | None = None,
    cart_source: CartSnapshotSource | None = None,
    page: PageContext | None = None,
    module_plugins: Iterable[Any] = (),
    online: bool = True,
) -> Tracker:
    """Create a Tracker from settings.

    Args:
        settings: Validated tracker settings
        scheduler: Scheduler to run timers on (default: asyncio)
        storage: Storage to use (default: built from settings)
        transport: Batch transport (default: HttpTransport to api_endpoint)
        cart_source: Cart snapshot source (default: HttpCartSource when
            storefront_url is set, otherwise none)
        page: Initial page context
        module_plugins: Extra plugin objects providing ``storepulse_get_modules``
        online: Initial network state

    Returns:
        Tracker instance, not yet started.

    Raises:
        TrackerConfigError: If api_endpoint or project_id is missing.
        ModuleRegistrationError: If an enabled module is unknown or a plugin is invalid.
    """
    if not settings.api_endpoint:
        raise TrackerConfigError("api_endpoint", "An ingestion endpoint is required to deliver events")
    if not settings.project_id:
        raise TrackerConfigError("project_id", "A project id is required to deliver events")

    scheduler = scheduler if scheduler is not None else AsyncioScheduler()
    storage = storage if storage is not None else create_storage(settings)
    if transport is None:
        transport = HttpTransport(settings.api_endpoint, timeout=settings.request_timeout_seconds)
    if cart_source is None and settings.storefront_url:
        cart_source = HttpCartSource(settings.storefront_url, timeout=settings.request_timeout_seconds)

    identity = IdentityManager(storage, scheduler.clock, session_timeout_ms=settings.session_timeout_ms)
    consent = create_consent_gate(settings, storage, scheduler)
    queue = EventQueue(
        transport,
        FailedDeliveryStore(storage, cap=settings.failed_events_cap),
        scheduler,
        identity,
        project_id=settings.project_id,
        version=settings.version,
        batch_size=settings.batch_size,
        batch_timeout_ms=settings.batch_timeout_ms,
        online=online,
    )
    core = AdapterCore(
        scheduler=scheduler,
        storage=storage,
        settings=settings,
        page=page,
        cart_source=cart_source,
    )
    modules = build_modules(settings.modules, module_plugins=module_plugins)

    logger.debug(
        "Tracker created",
        endpoint=settings.api_endpoint,
        project_id=settings.project_id,
        consent_check=settings.enable_consent_check,
        modules=[m.name for m in modules],
    )
    return Tracker(
        settings,
        scheduler=scheduler,
        identity=identity,
        consent=consent,
        queue=queue,
        core=core,
        modules=modules,
    )
