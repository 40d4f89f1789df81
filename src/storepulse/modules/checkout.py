# src/storepulse/modules/checkout.py
"""Checkout funnel observation from page facts."""

from __future__ import annotations

from typing import ClassVar

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import ClickEvent, PageContext, PageEventKind
from storepulse.commerce.pages import detect_checkout_step, is_checkout_button, is_checkout_url, is_confirmation_url


class CheckoutObserver:
    """Drives CheckoutFunnel from navigation, page updates and clicks.

    - Confirmation page: completes the funnel
    - Checkout page: enters checkout (or keeps the active session) and
      records the detected step
    - Checkout button click: emits checkout_button_clicked
    - On init: reports recovery of a recently abandoned checkout
    """

    name: ClassVar[str] = "checkout"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None

    def init(self, core: AdapterCore) -> None:
        self._core = core
        core.subscribe(PageEventKind.NAVIGATE, self._on_page)
        core.subscribe(PageEventKind.FORM_CHANGE, self._on_form_change)
        core.subscribe(PageEventKind.CLICK, self._on_click)
        self._on_page(core.page)
        core.checkout.check_recovery(core.page.url, on_checkout_page=is_checkout_url(core.page.url))

    def _detect_step(self, page: PageContext) -> str:
        return detect_checkout_step(page.url, page.step_markers, page.field_names)

    def _on_page(self, page: PageContext) -> None:
        assert self._core is not None
        if is_confirmation_url(page.url):
            self._core.checkout.complete()
        elif is_checkout_url(page.url):
            self._core.checkout.observe_checkout(step=self._detect_step(page))

    def _on_form_change(self, page: PageContext) -> None:
        assert self._core is not None
        if is_checkout_url(page.url):
            self._core.checkout.observe_step(self._detect_step(page))

    def _on_click(self, click: ClickEvent) -> None:
        assert self._core is not None
        if not is_checkout_button(click.text, click.classes, click.element_id, click.href):
            return
        cart = self._core.cart.state
        self._core.track(
            "checkout_button_clicked",
            {
                "button_text": click.text.strip(),
                "button_location": {"x": click.client_x, "y": click.client_y},
                "cart_value": cart.total_value if cart else 0,
                "cart_items": cart.item_count if cart else 0,
                "attribution": self._core.attribution.current(),
            },
        )
