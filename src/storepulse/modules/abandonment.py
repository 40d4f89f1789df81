# src/storepulse/modules/abandonment.py
"""Checkout abandonment triggers.

Three triggers feed CheckoutFunnel.abandon(), which fires at most once per
checkout session:
- page unload while in checkout
- exit intent: the pointer leaves the viewport through the top edge
- inactivity: no qualifying UI activity for inactivity_timeout_ms

The inactivity timer is cancelled and re-armed on every activity event.
"""

from __future__ import annotations

from typing import Any, ClassVar

import structlog

from storepulse.adapter.core import AdapterCore
from storepulse.adapter.page import ACTIVITY_KINDS, PageEventKind, PointerLeaveEvent
from storepulse.clock import TimerHandle

logger = structlog.get_logger(__name__)


class AbandonmentMonitor:
    name: ClassVar[str] = "abandonment"

    def __init__(self) -> None:
        self._core: AdapterCore | None = None
        self._inactivity_timer: TimerHandle | None = None

    def init(self, core: AdapterCore) -> None:
        self._core = core
        core.subscribe(PageEventKind.BEFORE_UNLOAD, self._on_before_unload)
        core.subscribe(PageEventKind.POINTER_LEAVE, self._on_pointer_leave)
        for kind in ACTIVITY_KINDS:
            core.subscribe(kind, self._on_activity)
        core.subscribe(PageEventKind.NAVIGATE, self._on_activity)
        self._rearm()

    @property
    def inactivity_armed(self) -> bool:
        return self._inactivity_timer is not None

    def _abandon(self, reason: str) -> bool:
        assert self._core is not None
        return self._core.checkout.abandon(reason, self._core.page.form_fields)

    def _on_before_unload(self, _payload: Any) -> None:
        self._abandon("page_unload")

    def _on_pointer_leave(self, event: PointerLeaveEvent) -> None:
        if event.client_y <= 0:
            self._abandon("exit_intent")

    def _on_activity(self, _payload: Any) -> None:
        self._rearm()

    def _rearm(self) -> None:
        assert self._core is not None
        if self._inactivity_timer is not None:
            self._inactivity_timer.cancel()
        self._inactivity_timer = self._core.scheduler.call_later(
            self._core.settings.inactivity_timeout_ms, self._on_inactive
        )

    def _on_inactive(self) -> None:
        self._inactivity_timer = None
        if self._abandon("inactivity"):
            logger.debug("Checkout abandoned after inactivity")

    def close(self) -> None:
        if self._inactivity_timer is not None:
            self._inactivity_timer.cancel()
            self._inactivity_timer = None
