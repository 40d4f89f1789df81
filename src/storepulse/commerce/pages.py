# src/storepulse/commerce/pages.py
"""Page and checkout-step classification.

Pure functions over URLs and the facts a host adapter can extract from a
page (step markers such as data-step attributes, visible form field names).
Keyword tables are module-level so adapters can pass their own.
"""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

UNKNOWN_STEP = "unknown"

CHECKOUT_STEPS: tuple[str, ...] = ("contact", "shipping", "payment", "review")

# Field name -> step it implies, checked in this order
STEP_FIELD_HINTS: tuple[tuple[str, str], ...] = (
    ("email", "contact"),
    ("country", "shipping"),
    ("address1", "shipping"),
    ("number", "payment"),
)

CHECKOUT_BUTTON_KEYWORDS: tuple[str, ...] = ("checkout", "finalizar", "comprar", "buy now", "purchase")


def _path(url: str) -> str:
    return urlsplit(url).path or "/"


def detect_checkout_step(
    url: str,
    markers: Iterable[str] = (),
    field_names: Iterable[str] = (),
    *,
    steps: tuple[str, ...] = CHECKOUT_STEPS,
    field_hints: tuple[tuple[str, str], ...] = STEP_FIELD_HINTS,
) -> str:
    """Detect the current checkout step.

    Strategies, first match wins:
    1. Explicit step markers present on the page
    2. Form fields that only appear on one step
    3. Step name appearing in the URL

    Returns:
        Step name, or "unknown".
    """
    marker_set = {marker.lower() for marker in markers}
    for step in steps:
        if step in marker_set:
            return step

    names = {name.lower() for name in field_names}
    for field_name, step in field_hints:
        if field_name in names:
            return step

    lowered = url.lower()
    for step in steps:
        if step in lowered:
            return step
    return UNKNOWN_STEP


def is_checkout_url(url: str) -> bool:
    return "/checkout" in _path(url)


def is_confirmation_url(url: str) -> bool:
    path = _path(url)
    return "/thank_you" in path or "/orders/" in path


def is_checkout_button(text: str = "", classes: str = "", element_id: str = "", href: str = "") -> bool:
    """Whether a clicked element leads to checkout."""
    haystacks = (text.lower(), classes.lower(), element_id.lower())
    if any(keyword in haystack for keyword in CHECKOUT_BUTTON_KEYWORDS for haystack in haystacks):
        return True
    return "/checkout" in href


def detect_page_type(url: str) -> str:
    """Classify a storefront URL.

    Returns one of: product, collection, cart, checkout, thank_you, home, other.
    """
    path = _path(url)
    if "/products/" in path:
        return "product"
    if "/collections/" in path:
        return "collection"
    if is_confirmation_url(url):
        return "thank_you"
    if "/checkout" in path:
        return "checkout"
    if "/cart" in path:
        return "cart"
    if path == "/":
        return "home"
    return "other"
