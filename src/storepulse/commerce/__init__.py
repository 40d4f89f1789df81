# src/storepulse/commerce/__init__.py
"""Commerce state: cart reconciliation, checkout funnel and attribution.

Components:
- cart: CartState normalization and CartReconciler
- checkout: CheckoutFunnel state machine and form completion
- interceptor: ApiResponseRouter for observed storefront API responses
- pages: URL and checkout-step classification
- attribution: campaign/influencer context pinned to the session
- sources: CartSnapshotSource protocol and HttpCartSource
"""

from storepulse.commerce.attribution import AttributionStore, parse_attribution
from storepulse.commerce.cart import CartReconciler, CartState, ChangeType, LineItem, classify_change, has_changed
from storepulse.commerce.checkout import (
    CheckoutFunnel,
    CheckoutSession,
    CheckoutState,
    CheckoutTrigger,
    FormField,
    form_completion,
)
from storepulse.commerce.interceptor import ApiResponseRouter
from storepulse.commerce.pages import detect_checkout_step, detect_page_type
from storepulse.commerce.sources import CartSnapshotSource, HttpCartSource

__all__ = [
    "ApiResponseRouter",
    "AttributionStore",
    "CartReconciler",
    "CartSnapshotSource",
    "CartState",
    "ChangeType",
    "CheckoutFunnel",
    "CheckoutSession",
    "CheckoutState",
    "CheckoutTrigger",
    "FormField",
    "HttpCartSource",
    "LineItem",
    "classify_change",
    "detect_checkout_step",
    "detect_page_type",
    "form_completion",
    "has_changed",
    "parse_attribution",
]
