# src/storepulse/commerce/interceptor.py
"""Routing of observed storefront API responses.

The host adapter hands every successful storefront API response it sees
(fetch/XHR on a page, a proxy, a webhook relay) to ApiResponseRouter.route().
Cart mutations emit an action event and schedule a cart refresh so the
reconciler produces the resulting cart_update; full cart bodies are
reconciled directly.
"""

from __future__ import annotations

import math
from typing import Any
from urllib.parse import urlsplit

import structlog

from storepulse.clock import Scheduler, TimerHandle
from storepulse.commerce.cart import CartReconciler
from storepulse.commerce.checkout import CheckoutFunnel
from storepulse.events import TrackCallback

logger = structlog.get_logger(__name__)

CART_REFRESH_DELAY_MS = 500


class ApiResponseRouter:
    """Classifies storefront API responses into commerce events.

    Example:
        router = ApiResponseRouter(core.track, reconciler, funnel, scheduler)
        router.route("/cart/add.js", {"product_id": 7, "price": 2500})
    """

    def __init__(
        self,
        track: TrackCallback,
        cart: CartReconciler,
        funnel: CheckoutFunnel | None,
        scheduler: Scheduler,
        *,
        price_divisor: int = 100,
        refresh_delay_ms: int = CART_REFRESH_DELAY_MS,
    ) -> None:
        self._track = track
        self._cart = cart
        self._funnel = funnel
        self._scheduler = scheduler
        self._price_divisor = price_divisor
        self._refresh_delay_ms = refresh_delay_ms
        self._pending_refreshes: list[TimerHandle] = []
        self._closed = False

    @property
    def pending_refreshes(self) -> int:
        return len(self._pending_refreshes)

    def schedule_refresh(self, trigger: str, delay_ms: int | None = None) -> None:
        """Refresh the cart from its snapshot source after a short delay."""
        if self._closed:
            logger.debug("Router closed, cart refresh skipped", trigger=trigger)
            return
        delay = self._refresh_delay_ms if delay_ms is None else delay_ms
        handle: TimerHandle | None = None

        def fire() -> None:
            if handle in self._pending_refreshes:
                self._pending_refreshes.remove(handle)
            self._scheduler.spawn(self._cart.refresh(trigger))

        handle = self._scheduler.call_later(delay, fire)
        self._pending_refreshes.append(handle)

    def close(self) -> None:
        """Cancel pending refreshes; later schedule_refresh() calls are ignored."""
        self._closed = True
        for handle in self._pending_refreshes:
            handle.cancel()
        self._pending_refreshes.clear()

    def route(self, url: str, data: Any = None, *, content_type: str | None = None) -> str | None:
        """Handle one API response.

        Args:
            url: Request URL (absolute or path)
            data: Decoded JSON body, if any
            content_type: Response Content-Type, used for checkout responses

        Returns:
            Name of the route taken, or None if the URL is not tracked.
        """
        path = urlsplit(url).path
        body = data if isinstance(data, dict) else {}

        if "/cart/add" in path:
            self._on_cart_add(body, url)
            return "cart_add"
        if "/cart/update" in path or "/cart/change" in path:
            self._track("cart_update_action", {"updates": body.get("updates", body), "api_endpoint": url})
            self.schedule_refresh("cart_update")
            return "cart_update"
        if "/cart/clear" in path:
            self._track("cart_clear", {"api_endpoint": url})
            self.schedule_refresh("cart_clear")
            return "cart_clear"
        if path.endswith("/cart.js") or path.endswith("/cart"):
            self._cart.reconcile(body, url)
            return "cart"
        if "/products/" in path and path.endswith(".js"):
            self._on_product_data(body, url)
            return "product"
        if ("/checkout" in path or "/orders" in path) and content_type and "application/json" in content_type:
            self._track("checkout_data", {"checkout_data": data, "api_endpoint": url})
            if "/checkout" in path and self._funnel is not None:
                self._funnel.observe_checkout()
            return "checkout"
        return None

    def _price(self, value: Any) -> float | None:
        if isinstance(value, bool) or not isinstance(value, int | float):
            return None
        try:
            price = value / self._price_divisor
        except OverflowError:
            return None
        return price if math.isfinite(price) else None

    def _on_cart_add(self, data: dict[str, Any], url: str) -> None:
        self._track(
            "cart_add",
            {
                "product_id": data.get("product_id"),
                "variant_id": data.get("variant_id") or data.get("id"),
                "quantity": data.get("quantity") or 1,
                "price": self._price(data.get("price")),
                "title": data.get("title") or data.get("product_title"),
                "vendor": data.get("vendor"),
                "product_type": data.get("product_type"),
                "api_endpoint": url,
            },
        )
        self.schedule_refresh("cart_add")

    def _on_product_data(self, data: dict[str, Any], url: str) -> None:
        variants = data.get("variants")
        images = data.get("images")
        self._track(
            "product_data_loaded",
            {
                "product_id": data.get("id"),
                "product_handle": data.get("handle"),
                "product_title": data.get("title"),
                "product_type": data.get("product_type"),
                "vendor": data.get("vendor"),
                "price_min": self._price(data.get("price_min")),
                "price_max": self._price(data.get("price_max")),
                "available": data.get("available"),
                "variants_count": len(variants) if isinstance(variants, list) else 0,
                "images_count": len(images) if isinstance(images, list) else 0,
                "tags": data.get("tags") or [],
                "api_endpoint": url,
            },
        )
