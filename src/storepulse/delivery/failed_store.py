# src/storepulse/delivery/failed_store.py
"""Capped, persisted store of events whose delivery failed.

Events land here when a batch is rejected and leave when
EventQueue.retry_failed_events() moves them back into the buffer.

Key design decisions:
- Stored in DEVICE scope so pending work survives reloads
- Capped at `cap` events with oldest-first eviction
- In-memory copy stays authoritative if storage refuses writes, so a
  broken disk degrades to "retry within this process only"
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

import structlog

from storepulse.events import Event
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

FAILED_EVENTS_KEY = "failed_events"


class FailedDeliveryStore:
    """Bounded FIFO of undelivered events.

    Attributes:
        dropped_count: Events evicted because the cap was reached.

    Example:
        store = FailedDeliveryStore(storage, cap=100)
        store.extend(batch)
        events = store.load()
        store.clear()
    """

    def __init__(self, storage: Storage, *, cap: int = 100) -> None:
        if cap < 1:
            raise ValueError(f"cap must be >= 1, got {cap}")
        self._storage = storage
        self._cap = cap
        self._entries: list[dict[str, Any]] | None = None
        self._dropped_count = 0

    @property
    def cap(self) -> int:
        return self._cap

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    def _read_entries(self) -> list[dict[str, Any]]:
        if self._entries is None:
            raw = self._storage.get(FAILED_EVENTS_KEY, Scope.DEVICE, [])
            if not isinstance(raw, list):
                logger.warning("Failed-delivery store is corrupt, discarding", stored_type=type(raw).__name__)
                raw = []
            self._entries = raw[-self._cap :]
        return self._entries

    def extend(self, events: Iterable[Event]) -> None:
        """Append events, evicting the oldest beyond the cap."""
        combined = [*self._read_entries(), *(event.to_dict() for event in events)]
        overflow = len(combined) - self._cap
        if overflow > 0:
            combined = combined[overflow:]
            self._dropped_count += overflow
            logger.warning(
                "Failed-delivery store full, oldest events dropped",
                dropped=overflow,
                dropped_total=self._dropped_count,
                cap=self._cap,
            )
        self._entries = combined
        self._storage.set(FAILED_EVENTS_KEY, combined, Scope.DEVICE)

    def load(self) -> list[Event]:
        """Return stored events in original order. Malformed entries are skipped."""
        events: list[Event] = []
        for entry in self._read_entries():
            try:
                events.append(Event.from_dict(entry))
            except ValueError as e:
                logger.warning("Skipping malformed failed event", error=str(e))
        return events

    def clear(self) -> None:
        self._entries = []
        self._storage.remove(FAILED_EVENTS_KEY, Scope.DEVICE)

    def __len__(self) -> int:
        return len(self._read_entries())
