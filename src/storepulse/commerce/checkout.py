# src/storepulse/commerce/checkout.py
"""Checkout funnel state machine.

States and transitions are an explicit table, so the abandonment latch can
be tested without timers:

    not_in_checkout --enter--> in_checkout
    in_checkout --step--> in_checkout
    in_checkout --abandon--> abandoned          (one-shot latch)
    in_checkout | abandoned | not_in_checkout --complete--> completed
    abandoned | completed --enter--> in_checkout (new checkout id)

Completion discards the Checkout Session; nothing can abandon afterwards.
Abandonment persists a record in DEVICE storage so a later visit within
the recovery window can report a recovery opportunity.
"""

from __future__ import annotations

import math
import random
import string
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any

import structlog

from storepulse.clock import Clock
from storepulse.commerce.attribution import AttributionStore
from storepulse.commerce.cart import CartReconciler
from storepulse.commerce.pages import UNKNOWN_STEP
from storepulse.events import TrackCallback
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

CHECKOUT_SESSION_KEY = "checkout_session"
ABANDONMENT_RECORD_KEY = "checkout_abandonment"
RECOVERY_WINDOW_MS = 24 * 60 * 60 * 1000


class CheckoutState(StrEnum):
    NOT_IN_CHECKOUT = "not_in_checkout"
    IN_CHECKOUT = "in_checkout"
    ABANDONED = "abandoned"
    COMPLETED = "completed"


class CheckoutTrigger(StrEnum):
    ENTER = "enter"
    STEP = "step"
    ABANDON = "abandon"
    COMPLETE = "complete"


TRANSITIONS: dict[tuple[CheckoutState, CheckoutTrigger], CheckoutState] = {
    (CheckoutState.NOT_IN_CHECKOUT, CheckoutTrigger.ENTER): CheckoutState.IN_CHECKOUT,
    (CheckoutState.NOT_IN_CHECKOUT, CheckoutTrigger.COMPLETE): CheckoutState.COMPLETED,
    (CheckoutState.IN_CHECKOUT, CheckoutTrigger.ENTER): CheckoutState.IN_CHECKOUT,
    (CheckoutState.IN_CHECKOUT, CheckoutTrigger.STEP): CheckoutState.IN_CHECKOUT,
    (CheckoutState.IN_CHECKOUT, CheckoutTrigger.ABANDON): CheckoutState.ABANDONED,
    (CheckoutState.IN_CHECKOUT, CheckoutTrigger.COMPLETE): CheckoutState.COMPLETED,
    (CheckoutState.ABANDONED, CheckoutTrigger.ENTER): CheckoutState.IN_CHECKOUT,
    (CheckoutState.ABANDONED, CheckoutTrigger.STEP): CheckoutState.ABANDONED,
    (CheckoutState.ABANDONED, CheckoutTrigger.COMPLETE): CheckoutState.COMPLETED,
    (CheckoutState.COMPLETED, CheckoutTrigger.ENTER): CheckoutState.IN_CHECKOUT,
}


def can_transition(state: CheckoutState, trigger: CheckoutTrigger) -> bool:
    return (state, trigger) in TRANSITIONS


def transition(state: CheckoutState, trigger: CheckoutTrigger) -> CheckoutState:
    """Return the state reached from state by trigger.

    Raises:
        ValueError: If the table has no such transition.
    """
    try:
        return TRANSITIONS[(state, trigger)]
    except KeyError:
        raise ValueError(f"No checkout transition from {state} on {trigger}") from None


def generate_checkout_id(now_ms: int) -> str:
    """checkout_<ms>_<9 base-36 chars>. Not security-grade."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"checkout_{now_ms}_{suffix}"


@dataclass(frozen=True, slots=True)
class FormField:
    """A visible-or-hidden form field as observed on the checkout page."""

    name: str
    value: str | None = None
    hidden: bool = False

    @property
    def is_filled(self) -> bool:
        return bool(self.value and self.value.strip())


def form_completion(fields: Iterable[FormField]) -> int:
    """Percentage of non-hidden fields holding a non-blank value (0 with no fields)."""
    visible = [f for f in fields if not f.hidden]
    if not visible:
        return 0
    filled = sum(1 for f in visible if f.is_filled)
    # Half-up, not banker's rounding
    return math.floor(filled * 100 / len(visible) + 0.5)


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    """Progress of one checkout attempt.

    Attributes:
        checkout_id: Identifier shared by all funnel events of this attempt
        start_time: When the checkout was entered (ms)
        step_started_at: When the current step was entered (ms)
        current_step: Detected step name, or "unknown"
        steps_completed: Steps left behind, in order, without repeats
        abandonment_tracked: One-shot latch set by the first abandonment
        state: Funnel state
    """

    checkout_id: str
    start_time: int
    step_started_at: int
    current_step: str = UNKNOWN_STEP
    steps_completed: tuple[str, ...] = ()
    abandonment_tracked: bool = False
    state: CheckoutState = CheckoutState.IN_CHECKOUT

    def to_dict(self) -> dict[str, Any]:
        return {
            "checkout_id": self.checkout_id,
            "start_time": self.start_time,
            "step_started_at": self.step_started_at,
            "current_step": self.current_step,
            "steps_completed": list(self.steps_completed),
            "abandonment_tracked": self.abandonment_tracked,
            "state": str(self.state),
        }

    @classmethod
    def from_dict(cls, data: Any) -> CheckoutSession:
        """Rebuild a stored session.

        Raises:
            ValueError: If data is not a stored checkout session.
        """
        if not isinstance(data, Mapping):
            raise ValueError("Checkout session must be an object")
        try:
            return cls(
                checkout_id=str(data["checkout_id"]),
                start_time=int(data["start_time"]),
                step_started_at=int(data.get("step_started_at", data["start_time"])),
                current_step=str(data.get("current_step") or UNKNOWN_STEP),
                steps_completed=tuple(data.get("steps_completed") or ()),
                abandonment_tracked=bool(data.get("abandonment_tracked", False)),
                state=CheckoutState(data.get("state", CheckoutState.IN_CHECKOUT)),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid checkout session: {e}") from e


class CheckoutFunnel:
    """Tracks checkout entry, step progress, abandonment and completion.

    Example:
        funnel = CheckoutFunnel(core.track, storage, clock, cart=reconciler)
        funnel.observe_checkout(step="contact")
        funnel.observe_step("shipping")
        funnel.abandon("page_unload", [FormField("email", "a@b.c")])
    """

    def __init__(
        self,
        track: TrackCallback,
        storage: Storage,
        clock: Clock,
        *,
        cart: CartReconciler | None = None,
        attribution: AttributionStore | None = None,
        id_factory: Callable[[int], str] = generate_checkout_id,
        recovery_window_ms: int = RECOVERY_WINDOW_MS,
    ) -> None:
        self._track = track
        self._storage = storage
        self._clock = clock
        self._cart = cart
        self._attribution = attribution
        self._id_factory = id_factory
        self._recovery_window_ms = recovery_window_ms
        self._session = self._restore()
        self._state = self._session.state if self._session else CheckoutState.NOT_IN_CHECKOUT

    def _restore(self) -> CheckoutSession | None:
        raw = self._storage.get(CHECKOUT_SESSION_KEY, Scope.SESSION)
        if raw is None:
            return None
        try:
            return CheckoutSession.from_dict(raw)
        except ValueError as e:
            logger.warning("Invalid stored checkout session, ignoring", error=str(e))
            return None

    def _save(self, session: CheckoutSession) -> None:
        self._session = session
        self._state = session.state
        self._storage.set(CHECKOUT_SESSION_KEY, session.to_dict(), Scope.SESSION)

    # =========================================================================
    # Read-only views
    # =========================================================================

    @property
    def state(self) -> CheckoutState:
        return self._state

    @property
    def session(self) -> CheckoutSession | None:
        return self._session

    @property
    def in_checkout(self) -> bool:
        return self._state == CheckoutState.IN_CHECKOUT

    def _cart_value(self) -> float:
        state = self._cart.state if self._cart else None
        return state.total_value if state else 0

    def _cart_items(self) -> int:
        state = self._cart.state if self._cart else None
        return state.item_count if state else 0

    def _attribution_context(self) -> dict[str, Any] | None:
        return self._attribution.current() if self._attribution else None

    # =========================================================================
    # Transitions
    # =========================================================================

    def observe_checkout(self, checkout_id: str | None = None, step: str | None = None) -> CheckoutSession:
        """Record a checkout page or checkout API observation.

        Creates a session when none is active, keeps the active one when the
        id matches (or no id is given), and replaces it when a different id
        shows up.
        """
        current = self._session
        if current is not None and self._state != CheckoutState.COMPLETED and checkout_id in (None, current.checkout_id):
            if step is not None:
                self.observe_step(step)
            assert self._session is not None
            return self._session

        if current is not None:
            logger.debug("Checkout replaced", previous_checkout_id=current.checkout_id, checkout_id=checkout_id)

        now = self._clock.now_ms()
        session = CheckoutSession(
            checkout_id=checkout_id or self._id_factory(now),
            start_time=now,
            step_started_at=now,
            current_step=step or UNKNOWN_STEP,
            state=transition(self._state, CheckoutTrigger.ENTER),
        )
        self._save(session)

        cart = self._cart.state if self._cart else None
        self._track(
            "checkout_started",
            {
                "checkout_id": session.checkout_id,
                "cart_value": self._cart_value(),
                "cart_items": self._cart_items(),
                "cart_details": [item.to_dict() for item in cart.line_items] if cart else [],
                "attribution": self._attribution_context(),
                "initial_step": session.current_step,
            },
        )
        return session

    def observe_step(self, step: str) -> bool:
        """Record the step currently shown. Returns True on a step change."""
        session = self._session
        if session is None or not can_transition(self._state, CheckoutTrigger.STEP):
            return False
        if step == UNKNOWN_STEP or step == session.current_step:
            return False

        now = self._clock.now_ms()
        previous = session.current_step
        completed = session.steps_completed
        if previous != UNKNOWN_STEP:
            self._track(
                "checkout_step_completed",
                {
                    "checkout_id": session.checkout_id,
                    "step": previous,
                    "next_step": step,
                    "time_on_step": now - session.step_started_at,
                },
            )
            if previous not in completed:
                completed = (*completed, previous)

        self._track(
            "checkout_step_started",
            {
                "checkout_id": session.checkout_id,
                "step": step,
                "previous_step": previous,
                "total_time_in_checkout": now - session.start_time,
            },
        )
        self._save(replace(session, current_step=step, step_started_at=now, steps_completed=completed))
        return True

    def abandon(self, reason: str, form_fields: Iterable[FormField] = ()) -> bool:
        """Fire the abandonment transition once per checkout session.

        Returns:
            True if this call emitted checkout_abandonment; later calls are no-ops.
        """
        session = self._session
        if session is None or session.abandonment_tracked or not can_transition(self._state, CheckoutTrigger.ABANDON):
            return False

        now = self._clock.now_ms()
        completion = form_completion(form_fields)
        attribution = self._attribution_context()
        self._save(
            replace(
                session,
                abandonment_tracked=True,
                state=transition(self._state, CheckoutTrigger.ABANDON),
            )
        )

        self._track(
            "checkout_abandonment",
            {
                "checkout_id": session.checkout_id,
                "abandonment_reason": reason,
                "abandonment_step": session.current_step,
                "time_in_checkout": now - session.start_time,
                "time_on_current_step": now - session.step_started_at,
                "steps_completed": list(session.steps_completed),
                "form_completion": completion,
                "cart_value": self._cart_value(),
                "cart_items": self._cart_items(),
                "attribution": attribution,
            },
        )
        self._storage.set(
            ABANDONMENT_RECORD_KEY,
            {
                "checkout_id": session.checkout_id,
                "abandonment_time": now,
                "step": session.current_step,
                "cart_value": self._cart_value(),
                "form_completion": completion,
                "attribution": attribution,
            },
            Scope.DEVICE,
        )
        logger.info("Checkout abandoned", checkout_id=session.checkout_id, reason=reason, step=session.current_step)
        return True

    def complete(self, order: Mapping[str, Any] | None = None) -> bool:
        """Record a completed purchase and discard the checkout session."""
        if not can_transition(self._state, CheckoutTrigger.COMPLETE):
            return False

        now = self._clock.now_ms()
        session = self._session
        self._track(
            "purchase_completed",
            {
                **dict(order or {}),
                "checkout_id": session.checkout_id if session else None,
                "total_checkout_time": now - session.start_time if session else None,
                "steps_completed": list(session.steps_completed) if session else [],
                "attribution": self._attribution_context(),
            },
        )
        self._state = transition(self._state, CheckoutTrigger.COMPLETE)
        self._session = None
        self._storage.remove(CHECKOUT_SESSION_KEY, Scope.SESSION)
        return True

    # =========================================================================
    # Recovery
    # =========================================================================

    def check_recovery(self, page_url: str, *, on_checkout_page: bool) -> bool:
        """Report a return visit after a recent abandonment.

        Returns:
            True if a recovery opportunity was emitted.
        """
        record = self._storage.get(ABANDONMENT_RECORD_KEY, Scope.DEVICE)
        if not isinstance(record, dict):
            return False

        try:
            elapsed = self._clock.now_ms() - int(record["abandonment_time"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Invalid abandonment record, discarding")
            self._storage.remove(ABANDONMENT_RECORD_KEY, Scope.DEVICE)
            return False

        if elapsed >= self._recovery_window_ms:
            self._storage.remove(ABANDONMENT_RECORD_KEY, Scope.DEVICE)
            return False

        self._track(
            "checkout_recovery_opportunity",
            {
                "original_checkout_id": record.get("checkout_id"),
                "time_since_abandonment": elapsed,
                "abandoned_step": record.get("step"),
                "abandoned_cart_value": record.get("cart_value"),
                "recovery_page": page_url,
            },
        )
        if on_checkout_page:
            self._track(
                "checkout_recovery_attempt",
                {
                    "original_checkout_id": record.get("checkout_id"),
                    "time_since_abandonment": elapsed,
                },
            )
            self._storage.remove(ABANDONMENT_RECORD_KEY, Scope.DEVICE)
        return True
