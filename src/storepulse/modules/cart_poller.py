# src/storepulse/modules/cart_poller.py
"""Cart snapshot polling and platform cart-event refreshes."""

from __future__ import annotations

from typing import ClassVar

import structlog

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import CartPlatformEvent, PageEventKind
from storepulse.clock import TimerHandle

logger = structlog.get_logger(__name__)

ACTIVE_POLL_MS = 20_000
IDLE_POLL_MS = 60_000
PLATFORM_EVENT_DELAY_MS = 300


class CartPollerModule:
    """Keeps the cart reconciler fed from the snapshot source.

    - One refresh at init (reported as change_type "initial" on a fresh session)
    - Polling every 20s while the page is visible, every 60s otherwise
    - A refresh 300ms after each storefront cart event
    """

    name: ClassVar[str] = "cart_poller"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None
        self._timer: TimerHandle | None = None

    def init(self, core: AdapterCore) -> None:
        self._core = core
        if core.cart.source is None:
            logger.debug("No cart snapshot source, polling disabled")
        core.subscribe(PageEventKind.CART_EVENT, self._on_cart_event)
        core.scheduler.spawn(core.cart.refresh("page_load"))
        self._arm()

    @property
    def interval_ms(self) -> int:
        assert self._core is not None
        return ACTIVE_POLL_MS if self._core.page.visible else IDLE_POLL_MS

    def _arm(self) -> None:
        assert self._core is not None
        self._timer = self._core.scheduler.call_later(self.interval_ms, self._on_tick)

    def _on_tick(self) -> None:
        assert self._core is not None
        self._core.scheduler.spawn(self._core.cart.refresh("polling"))
        self._arm()

    def _on_cart_event(self, event: CartPlatformEvent) -> None:
        assert self._core is not None
        logger.debug("Storefront cart event", event_name=event.name)
        self._core.router.schedule_refresh("platform_event", PLATFORM_EVENT_DELAY_MS)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
