# src/storepulse/consent.py
"""Consent gate conditioning all outbound delivery.

Consent is a persisted DEVICE record (status + grant date) that is valid
for consent_validity_days. The gate is level-triggered: any number of
waiters can queue up while consent is missing, and a single grant releases
all of them in registration order.

Waiter lifecycle:
    registered -> released   (consent granted before the deadline)
    registered -> dropped    (deadline passed; warning logged)

A dropped waiter never runs, even if consent is granted later. Polling
runs only while waiters are pending and stops on grant or when the last
waiter expires.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import structlog

from storepulse.clock import Scheduler, TimerHandle
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

CONSENT_STATUS_KEY = "consent_status"
CONSENT_DATE_KEY = "consent_date"

_MS_PER_DAY = 24 * 60 * 60 * 1000


class ConsentStatus(StrEnum):
    """Derived consent state. UNKNOWN is never stored."""

    GRANTED = "granted"
    DENIED = "denied"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class _Waiter:
    action: Callable[[], None]
    deadline_ms: int


class ConsentGate:
    """Gate that runs actions only once valid consent exists.

    Example:
        gate = ConsentGate(storage, scheduler)
        gate.wait_for_consent(lambda: queue.enqueue(event), timeout_ms=10_000)
        gate.set_consent(True)  # runs the pending action now
    """

    def __init__(
        self,
        storage: Storage,
        scheduler: Scheduler,
        *,
        enabled: bool = True,
        poll_interval_ms: int = 500,
        default_timeout_ms: int = 10_000,
        validity_days: int = 365,
    ) -> None:
        self._storage = storage
        self._scheduler = scheduler
        self._enabled = enabled
        self._poll_interval_ms = poll_interval_ms
        self._default_timeout_ms = default_timeout_ms
        self._validity_ms = validity_days * _MS_PER_DAY
        self._pending: list[_Waiter] = []
        self._poll_handle: TimerHandle | None = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def status(self) -> ConsentStatus:
        """Derived state of the stored consent record."""
        stored = self._storage.get(CONSENT_STATUS_KEY, Scope.DEVICE)
        if stored == ConsentStatus.DENIED:
            return ConsentStatus.DENIED
        if stored == ConsentStatus.GRANTED and self._record_is_fresh():
            return ConsentStatus.GRANTED
        return ConsentStatus.UNKNOWN

    def _record_is_fresh(self) -> bool:
        raw_date = self._storage.get(CONSENT_DATE_KEY, Scope.DEVICE)
        try:
            granted_at = int(raw_date)
        except (TypeError, ValueError):
            return False
        return granted_at > self._scheduler.clock.now_ms() - self._validity_ms

    def check_consent(self) -> bool:
        """Whether delivery is currently allowed. Pure read."""
        if not self._enabled:
            return True
        return self.status == ConsentStatus.GRANTED

    def wait_for_consent(self, action: Callable[[], None], timeout_ms: int | None = None) -> None:
        """Run action now if consent holds, otherwise when it is granted.

        Args:
            action: Zero-argument callable to run once consent is granted
            timeout_ms: Deadline after which the action is dropped. Defaults
                to the gate's default timeout.
        """
        if self.check_consent():
            self._run(action)
            return

        timeout = self._default_timeout_ms if timeout_ms is None else timeout_ms
        self._pending.append(_Waiter(action=action, deadline_ms=self._scheduler.clock.now_ms() + timeout))
        if self._poll_handle is None:
            self._poll_handle = self._scheduler.call_later(self._poll_interval_ms, self._poll)

    def set_consent(self, granted: bool = True) -> None:
        """Persist a consent decision; a grant releases pending waiters."""
        status = ConsentStatus.GRANTED if granted else ConsentStatus.DENIED
        self._storage.set(CONSENT_STATUS_KEY, str(status), Scope.DEVICE)
        self._storage.set(CONSENT_DATE_KEY, self._scheduler.clock.now_ms(), Scope.DEVICE)
        logger.info("Consent recorded", status=str(status))

        if granted:
            self._release_pending()

    def revoke_consent(self) -> None:
        """Remove the consent record. Delivery stops until consent is given again."""
        self._storage.remove(CONSENT_STATUS_KEY, Scope.DEVICE)
        self._storage.remove(CONSENT_DATE_KEY, Scope.DEVICE)
        logger.info("Consent revoked")

    def _poll(self) -> None:
        self._poll_handle = None
        if self.check_consent():
            self._release_pending()
            return

        self._expire_waiters()
        if self._pending:
            self._poll_handle = self._scheduler.call_later(self._poll_interval_ms, self._poll)

    def _expire_waiters(self) -> None:
        now = self._scheduler.clock.now_ms()
        alive = [waiter for waiter in self._pending if now <= waiter.deadline_ms]
        expired = len(self._pending) - len(alive)
        if expired:
            logger.warning("Consent timeout reached, actions dropped", dropped=expired, still_pending=len(alive))
        self._pending = alive

    def _release_pending(self) -> None:
        if self._poll_handle is not None:
            self._poll_handle.cancel()
            self._poll_handle = None

        self._expire_waiters()
        released, self._pending = self._pending, []
        for waiter in released:
            self._run(waiter.action)

    def _run(self, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception as e:
            # One failing waiter must not block the rest
            logger.error("Consent action failed", error=str(e), error_type=type(e).__name__)
