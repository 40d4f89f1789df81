# src/storepulse/commerce/cart.py
"""Cart state normalization and change reconciliation.

Raw snapshots from the storefront (the /cart.js shape: item_count,
total_price in minor units, items[], ...) are normalized into CartState.
Missing or malformed fields become zero/empty instead of failing the diff.

The reconciler holds exactly one CartState. reconcile() is synchronous, so
its read-compare-write is a single step no concurrent trigger can split.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from storepulse.commerce.sources import CartSnapshotSource
from storepulse.events import TrackCallback
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

LAST_CART_STATE_KEY = "last_cart_state"


class ChangeType(StrEnum):
    """Classification of a cart change."""

    INITIAL = "initial"
    ADD = "add"
    REMOVE = "remove"
    UPDATE = "update"
    UNKNOWN = "unknown"


def _number(value: Any, default: float = 0.0) -> float:
    """Finite float from a snapshot field; anything else becomes default."""
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    return number if math.isfinite(number) else default


def _count(value: Any) -> int:
    return int(_number(value))


@dataclass(frozen=True, slots=True)
class LineItem:
    """One cart line, prices in currency units."""

    product_id: Any = None
    variant_id: Any = None
    quantity: int = 0
    price: float = 0.0
    line_price: float = 0.0
    title: str | None = None
    vendor: str | None = None
    product_type: str | None = None
    handle: str | None = None
    sku: str | None = None
    grams: int | None = None
    properties: Any = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, price_divisor: int) -> LineItem:
        return cls(
            product_id=raw.get("product_id"),
            variant_id=raw.get("variant_id", raw.get("id")),
            quantity=_count(raw.get("quantity")),
            price=_number(raw.get("price")) / price_divisor,
            line_price=_number(raw.get("line_price")) / price_divisor,
            title=raw.get("title"),
            vendor=raw.get("vendor"),
            product_type=raw.get("product_type"),
            handle=raw.get("handle"),
            sku=raw.get("sku"),
            grams=raw.get("grams"),
            properties=raw.get("properties"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "price": self.price,
            "line_price": self.line_price,
            "title": self.title,
            "vendor": self.vendor,
            "product_type": self.product_type,
            "handle": self.handle,
            "sku": self.sku,
            "grams": self.grams,
            "properties": self.properties,
        }


@dataclass(frozen=True, slots=True)
class CartState:
    """Normalized cart snapshot.

    Attributes:
        item_count: Total quantity in the cart
        total_value: Cart total in currency units
        currency: ISO currency code
        cart_token: Storefront cart token, if any
        line_items: Normalized lines
        total_discount: Discount total in currency units
        discounts: Cart-level discount applications, as reported
        note: Cart note
        attributes: Cart attributes
    """

    item_count: int = 0
    total_value: float = 0.0
    currency: str = "USD"
    cart_token: str | None = None
    line_items: tuple[LineItem, ...] = ()
    total_discount: float = 0.0
    discounts: tuple[Any, ...] = ()
    note: str | None = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, raw: Mapping[str, Any] | None, *, price_divisor: int = 100) -> CartState:
        """Normalize a raw storefront cart snapshot. Never raises."""
        if not isinstance(raw, Mapping):
            return cls()
        items = raw.get("items")
        attributes = raw.get("attributes")
        discounts = raw.get("cart_level_discount_applications")
        currency = raw.get("currency")
        return cls(
            item_count=_count(raw.get("item_count")),
            total_value=_number(raw.get("total_price")) / price_divisor,
            currency=currency if isinstance(currency, str) and currency else "USD",
            cart_token=raw.get("token"),
            line_items=tuple(
                LineItem.from_raw(item, price_divisor=price_divisor)
                for item in (items if isinstance(items, list) else [])
                if isinstance(item, Mapping)
            ),
            total_discount=_number(raw.get("total_discount")) / price_divisor,
            discounts=tuple(discounts) if isinstance(discounts, list) else (),
            note=raw.get("note"),
            attributes=dict(attributes) if isinstance(attributes, Mapping) else {},
        )

    def to_dict(self) -> dict[str, Any]:
        """Stored representation (prices already in currency units)."""
        return {
            "item_count": self.item_count,
            "total_value": self.total_value,
            "currency": self.currency,
            "cart_token": self.cart_token,
            "line_items": [item.to_dict() for item in self.line_items],
            "total_discount": self.total_discount,
            "discounts": list(self.discounts),
            "note": self.note,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Any) -> CartState:
        """Rebuild a stored state.

        Raises:
            ValueError: If data is not a stored cart state.
        """
        if not isinstance(data, Mapping) or "item_count" not in data or "total_value" not in data:
            raise ValueError("Stored cart state must be an object with item_count and total_value")
        items = data.get("line_items") or []
        return cls(
            item_count=_count(data["item_count"]),
            total_value=_number(data["total_value"]),
            currency=data.get("currency") or "USD",
            cart_token=data.get("cart_token"),
            line_items=tuple(LineItem(**item) for item in items if isinstance(item, Mapping)),
            total_discount=_number(data.get("total_discount")),
            discounts=tuple(data.get("discounts") or ()),
            note=data.get("note"),
            attributes=dict(data.get("attributes") or {}),
        )


def has_changed(previous: CartState | None, current: CartState, *, epsilon: float = 0.01) -> bool:
    """Whether current differs materially from previous."""
    if previous is None:
        return True
    return current.item_count != previous.item_count or abs(current.total_value - previous.total_value) > epsilon


def classify_change(previous: CartState | None, current: CartState, *, epsilon: float = 0.01) -> ChangeType:
    """Classify the change between two states by item count, then total."""
    if previous is None:
        return ChangeType.INITIAL
    if current.item_count > previous.item_count:
        return ChangeType.ADD
    if current.item_count < previous.item_count:
        return ChangeType.REMOVE
    if abs(current.total_value - previous.total_value) > epsilon:
        return ChangeType.UPDATE
    return ChangeType.UNKNOWN


class CartReconciler:
    """Diffs successive cart snapshots into semantic cart_update events.

    Example:
        reconciler = CartReconciler(core.track, storage, source=HttpCartSource("https://shop.example.com"))
        reconciler.reconcile({"item_count": 2, "total_price": 5000}, "polling")
        await reconciler.refresh("cart_add")
    """

    def __init__(
        self,
        track: TrackCallback,
        storage: Storage,
        *,
        epsilon: float = 0.01,
        price_divisor: int = 100,
        source: CartSnapshotSource | None = None,
    ) -> None:
        self._track = track
        self._storage = storage
        self._epsilon = epsilon
        self._price_divisor = price_divisor
        self._source = source
        self._state = self._restore()

    def _restore(self) -> CartState | None:
        raw = self._storage.get(LAST_CART_STATE_KEY, Scope.SESSION)
        if raw is None:
            return None
        try:
            return CartState.from_dict(raw)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid stored cart state, ignoring", error=str(e))
            return None

    @property
    def state(self) -> CartState | None:
        """The last reconciled cart state, or None before the first snapshot."""
        return self._state

    @property
    def source(self) -> CartSnapshotSource | None:
        return self._source

    def reconcile(self, snapshot: CartState | Mapping[str, Any] | None, source: str) -> bool:
        """Compare a snapshot against the held state and emit on change.

        Args:
            snapshot: Raw storefront snapshot or an already normalized CartState
            source: What triggered this reconciliation (e.g. "polling")

        Returns:
            True if a cart_update event was emitted.
        """
        current = (
            snapshot
            if isinstance(snapshot, CartState)
            else CartState.from_snapshot(snapshot, price_divisor=self._price_divisor)
        )
        previous = self._state
        if not has_changed(previous, current, epsilon=self._epsilon):
            return False

        change_type = classify_change(previous, current, epsilon=self._epsilon)
        # State is replaced before emitting so a re-entrant reconcile sees it
        self._state = current
        self._storage.set(LAST_CART_STATE_KEY, current.to_dict(), Scope.SESSION)

        self._track(
            "cart_update",
            {
                "cart_items": current.item_count,
                "cart_value": current.total_value,
                "cart_currency": current.currency,
                "cart_token": current.cart_token,
                "previous_items": previous.item_count if previous else 0,
                "previous_value": previous.total_value if previous else 0,
                "change_type": str(change_type),
                "change_trigger": source,
                "items_detail": [item.to_dict() for item in current.line_items],
                "total_discount": current.total_discount,
                "discounts": list(current.discounts),
                "cart_note": current.note,
                "cart_attributes": dict(current.attributes),
            },
        )
        logger.debug(
            "Cart changed",
            change_type=str(change_type),
            trigger=source,
            items=current.item_count,
            value=current.total_value,
        )
        return True

    async def refresh(self, source: str) -> bool:
        """Fetch a fresh snapshot from the snapshot source and reconcile it.

        Returns:
            True if a cart_update event was emitted. False when no source is
            configured or the fetch failed (logged).
        """
        if self._source is None:
            logger.debug("No cart snapshot source configured", trigger=source)
            return False
        snapshot = await self._source.fetch_cart()
        if snapshot is None:
            return False
        return self.reconcile(snapshot, source)
