# src/storepulse/modules/interactions.py
"""Click, form-submit and page-visibility instrumentation."""

from __future__ import annotations

from typing import Any, ClassVar

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import ClickEvent, PageEventKind, SubmitEvent, VisibilityChangeEvent
from storepulse.storage import Scope

INTERACTION_HISTORY_KEY = "interaction_history"
INTERACTION_HISTORY_CAP = 200
CLICK_THROTTLE_MS = 500


def classify_click(click: ClickEvent) -> str:
    tag = click.tag.lower()
    if tag == "a" and "/products/" in click.href:
        return "product_link"
    if tag in ("button", "input") and click.name == "add":
        return "add_to_cart_button"
    if (tag == "a" and "/cart" in click.href) or (tag == "button" and "data-cart" in click.data_attributes):
        return "cart_link"
    if tag == "a" and "/checkout" in click.href:
        return "checkout_link"
    return "generic"


def classify_form(submit: SubmitEvent) -> str:
    if "/cart/add" in submit.action:
        return "add_to_cart"
    if "/contact" in submit.action:
        return "contact"
    if submit.has_email_field:
        return "newsletter"
    return "generic"


class InteractionsModule:
    """Emits click_event, form_submit and page_visibility_change.

    Clicks are throttled: a click within CLICK_THROTTLE_MS of the last
    tracked one is ignored. Tracked clicks are appended to a capped
    interaction history in SESSION storage.
    """

    name: ClassVar[str] = "interactions"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None
        self._last_click_ms: int | None = None

    def init(self, core: AdapterCore) -> None:
        self._core = core
        core.subscribe(PageEventKind.CLICK, self._on_click)
        core.subscribe(PageEventKind.SUBMIT, self._on_submit)
        core.subscribe(PageEventKind.VISIBILITY_CHANGE, self._on_visibility_change)

    def history(self) -> list[dict[str, Any]]:
        assert self._core is not None
        stored = self._core.storage.get(INTERACTION_HISTORY_KEY, Scope.SESSION, [])
        return stored if isinstance(stored, list) else []

    def _on_click(self, click: ClickEvent) -> None:
        assert self._core is not None
        now = self._core.clock.now_ms()
        if self._last_click_ms is not None and now - self._last_click_ms < CLICK_THROTTLE_MS:
            return
        self._last_click_ms = now

        data = {
            "click_type": classify_click(click),
            "element_tag": click.tag.upper(),
            "element_class": click.classes,
            "element_id": click.element_id,
            "element_text": click.text[:100],
            "href": click.href,
            "position_x": click.client_x,
            "position_y": click.client_y,
        }
        self._core.track("click_event", data)

        history = [*self.history(), {"type": "click", "timestamp": now, "page": self._core.page.url, **data}]
        self._core.storage.set(INTERACTION_HISTORY_KEY, history[-INTERACTION_HISTORY_CAP:], Scope.SESSION)

    def _on_submit(self, submit: SubmitEvent) -> None:
        assert self._core is not None
        self._core.track(
            "form_submit",
            {
                "form_type": classify_form(submit),
                "form_action": submit.action,
                "form_method": submit.method,
                "fields_count": submit.field_count,
            },
        )

    def _on_visibility_change(self, change: VisibilityChangeEvent) -> None:
        assert self._core is not None
        self._core.track(
            "page_visibility_change",
            {
                "is_visible": not change.hidden,
                "time_on_page": self._core.clock.now_ms() - self._core.start_time,
            },
        )
