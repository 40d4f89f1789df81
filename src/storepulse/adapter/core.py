# src/storepulse/adapter/core.py
"""AdapterCore: the hub instrumentation modules plug into.

Responsibilities:
- Owns the ModuleRegistry and initializes each module exactly once
- Funnels every module event through track() to the attached sink
- Runs the page-event bus (subscribe/dispatch) fed by the host
- Exposes shared services (scheduler, storage, cart, checkout, ...) so
  modules never reach for globals

Failure isolation:
    A module whose init() raises is logged and skipped. A page-event
    handler that raises is logged; later handlers still run. A sink that
    raises is logged. Nothing here propagates to the host.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import replace
from typing import Any

import structlog

from storepulse.adapter.page import PageContext, PageEventKind, VisibilityChangeEvent
from storepulse.adapter.protocols import AdapterModule
from storepulse.adapter.registry import ModuleRegistry
from storepulse.clock import Clock, Scheduler
from storepulse.commerce.attribution import AttributionStore
from storepulse.commerce.cart import CartReconciler
from storepulse.commerce.checkout import CheckoutFunnel
from storepulse.commerce.interceptor import ApiResponseRouter
from storepulse.commerce.sources import CartSnapshotSource
from storepulse.config import TrackerSettings
from storepulse.events import TrackCallback
from storepulse.storage import Storage

logger = structlog.get_logger(__name__)

PageEventHandler = Callable[[Any], None]


class AdapterCore:
    """Module host and page-event bus.

    Example:
        core = AdapterCore(scheduler=scheduler, storage=storage, settings=settings)
        core.attach_sink(tracker.track)
        core.init([ScrollDepthModule(), TimeOnPageModule()])
        core.dispatch(PageEventKind.SCROLL, ScrollEvent(scroll_y=900, page_height=2000, viewport_height=800))
    """

    def __init__(
        self,
        *,
        scheduler: Scheduler,
        storage: Storage,
        settings: TrackerSettings,
        page: PageContext | None = None,
        sink: TrackCallback | None = None,
        registry: ModuleRegistry | None = None,
        cart_source: CartSnapshotSource | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._storage = storage
        self._settings = settings
        self._page = page if page is not None else PageContext(url=settings.storefront_url or "")
        self._sink = sink
        self._registry = registry if registry is not None else ModuleRegistry()
        self._handlers: defaultdict[PageEventKind, list[PageEventHandler]] = defaultdict(list)
        self._initialized = False
        self._failed_modules: list[str] = []
        self._start_time = scheduler.clock.now_ms()

        self.attribution = AttributionStore(storage, scheduler.clock)
        self.cart = CartReconciler(
            self.track,
            storage,
            epsilon=settings.cart_epsilon,
            price_divisor=settings.price_divisor,
            source=cart_source,
        )
        self.checkout = CheckoutFunnel(
            self.track,
            storage,
            scheduler.clock,
            cart=self.cart,
            attribution=self.attribution,
        )
        self.router = ApiResponseRouter(
            self.track,
            self.cart,
            self.checkout,
            scheduler,
            price_divisor=settings.price_divisor,
        )

    # =========================================================================
    # Services
    # =========================================================================

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def clock(self) -> Clock:
        return self._scheduler.clock

    @property
    def storage(self) -> Storage:
        return self._storage

    @property
    def settings(self) -> TrackerSettings:
        return self._settings

    @property
    def page(self) -> PageContext:
        return self._page

    @property
    def registry(self) -> ModuleRegistry:
        return self._registry

    @property
    def start_time(self) -> int:
        return self._start_time

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def failed_modules(self) -> list[str]:
        """Modules whose init() raised."""
        return list(self._failed_modules)

    # =========================================================================
    # Modules
    # =========================================================================

    def register(self, module: AdapterModule) -> None:
        self._registry.register(module)

    def init(self, modules: Iterable[AdapterModule] | None = None) -> list[str]:
        """Register the given modules and initialize every registered module once.

        A second call is a no-op.

        Returns:
            Names of modules initialized successfully by this call.
        """
        if self._initialized:
            logger.debug("Adapter already initialized")
            return []

        for module in modules or ():
            self._registry.register(module)

        ready: list[str] = []
        for module in self._registry:
            try:
                module.init(self)
            except Exception as e:
                # One broken module must not block the rest
                self._failed_modules.append(module.name)
                logger.error(
                    "Module initialization failed",
                    module=module.name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            ready.append(module.name)

        self._initialized = True
        logger.info("Adapter initialized", modules=ready, failed=self._failed_modules)
        return ready

    def close(self) -> None:
        """Stop module timers and pending cart refreshes. Modules without close() are skipped."""
        for module in self._registry:
            close = getattr(module, "close", None)
            if close is None:
                continue
            try:
                close()
            except Exception as e:
                logger.error("Module close failed", module=module.name, error=str(e), error_type=type(e).__name__)
        self.router.close()
        self._handlers.clear()

    # =========================================================================
    # Event funnel
    # =========================================================================

    def attach_sink(self, sink: TrackCallback | None) -> None:
        self._sink = sink

    def track(self, event_type: str, properties: dict[str, Any] | None = None) -> None:
        """Submit a module event to the sink, or log it when none is attached."""
        props = dict(properties or {})
        if self._sink is None:
            logger.debug("Event tracked without sink", event_type=event_type, properties=props)
            return
        try:
            self._sink(event_type, props)
        except Exception as e:
            logger.error("Event sink failed", event_type=event_type, error=str(e), error_type=type(e).__name__)

    # =========================================================================
    # Page-event bus
    # =========================================================================

    def subscribe(self, kind: PageEventKind, handler: PageEventHandler) -> Callable[[], None]:
        """Register a handler for a page-event kind.

        Returns:
            Callable that removes the handler.
        """
        handlers = self._handlers[kind]
        handlers.append(handler)

        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def dispatch(self, kind: PageEventKind | str, payload: Any = None) -> int:
        """Deliver a page event to every handler, in subscription order.

        Returns:
            Number of handlers that ran without raising.
        """
        try:
            event_kind = PageEventKind(kind)
        except ValueError:
            logger.warning("Unknown page event kind, ignored", kind=str(kind))
            return 0
        if event_kind == PageEventKind.VISIBILITY_CHANGE and isinstance(payload, VisibilityChangeEvent):
            self._page = replace(self._page, visible=not payload.hidden)

        succeeded = 0
        for handler in list(self._handlers.get(event_kind, ())):
            try:
                handler(payload)
            except Exception as e:
                logger.error(
                    "Page event handler failed",
                    kind=str(event_kind),
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            succeeded += 1
        return succeeded

    def navigate(self, page: PageContext) -> None:
        """Switch to a new page and notify NAVIGATE subscribers."""
        self._page = page
        self.dispatch(PageEventKind.NAVIGATE, page)

    def update_page(self, page: PageContext) -> None:
        """Replace facts about the current page (new form fields, step markers)."""
        self._page = page
        self.dispatch(PageEventKind.FORM_CHANGE, page)
