# tests/unit/commerce/test_pages.py
"""Tests for page type and checkout step classification."""

import pytest

from storepulse.commerce.pages import (
    detect_checkout_step,
    detect_page_type,
    is_checkout_button,
    is_checkout_url,
    is_confirmation_url,
)


class TestDetectPageType:
    """URL path classification."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://shop.example.com/", "home"),
            ("https://shop.example.com", "home"),
            ("https://shop.example.com/products/mug", "product"),
            ("https://shop.example.com/collections/all", "collection"),
            ("https://shop.example.com/cart", "cart"),
            ("https://shop.example.com/checkouts/abc", "checkout"),
            ("https://shop.example.com/checkouts/abc/thank_you", "thank_you"),
            ("https://shop.example.com/pages/about", "other"),
            ("https://shop.example.com/?q=/products/x", "home"),
        ],
    )
    def test_classification(self, url: str, expected: str) -> None:
        assert detect_page_type(url) == expected

    def test_checkout_and_confirmation_urls(self) -> None:
        assert is_checkout_url("https://shop.example.com/checkouts/abc?step=contact")
        assert not is_checkout_url("https://shop.example.com/cart")
        assert is_confirmation_url("https://shop.example.com/orders/1001")
        assert is_confirmation_url("https://shop.example.com/checkouts/abc/thank_you")
        assert not is_confirmation_url("https://shop.example.com/checkouts/abc")


class TestDetectCheckoutStep:
    """Markers, then field hints, then the URL."""

    def test_marker_wins(self) -> None:
        step = detect_checkout_step("https://shop.example.com/checkouts/a?step=payment", markers=["Shipping"], field_names=["email"])
        assert step == "shipping"

    def test_field_hint(self) -> None:
        assert detect_checkout_step("https://shop.example.com/checkouts/a", field_names=["address1", "city"]) == "shipping"
        assert detect_checkout_step("https://shop.example.com/checkouts/a", field_names=["number"]) == "payment"

    def test_url_fallback(self) -> None:
        assert detect_checkout_step("https://shop.example.com/checkouts/a?step=payment") == "payment"

    def test_unknown(self) -> None:
        assert detect_checkout_step("https://shop.example.com/checkouts/a") == "unknown"

    def test_custom_step_table(self) -> None:
        step = detect_checkout_step(
            "https://shop.example.com/checkouts/a",
            markers=["delivery"],
            steps=("information", "delivery"),
            field_hints=(),
        )
        assert step == "delivery"


class TestIsCheckoutButton:
    """Keyword and href matching."""

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"text": "Checkout"},
            {"text": "Buy now"},
            {"classes": "btn cart__checkout"},
            {"element_id": "finalizar-compra"},
            {"href": "/checkout"},
        ],
    )
    def test_matches(self, kwargs: dict[str, str]) -> None:
        assert is_checkout_button(**kwargs)

    def test_unrelated_button(self) -> None:
        assert not is_checkout_button(text="Add to cart", classes="btn", href="/cart/add")
