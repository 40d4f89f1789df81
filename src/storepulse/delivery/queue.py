# src/storepulse/delivery/queue.py
"""EventQueue: buffering, batching and delivery of tracked events.

Flushing policy:
- A full buffer (len >= batch_size) flushes immediately.
- Otherwise a single debounce timer fires after batch_timeout_ms. The timer
  is armed at most once between flushes; later enqueues do not push it back.
- Every flush cancels the pending timer. If events remain after a batch is
  taken, the timer is re-armed for the rest.

Taking a batch out of the buffer is synchronous, so a flush can never drain
the buffer halfway through an enqueue. The network send is the only
suspension point.

Failure handling:
    A rejected batch moves to the FailedDeliveryStore with a warning and is
    not retried inline. retry_failed_events() (startup, reconnect) puts the
    stored events back at the head of the buffer in original order.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from typing import Any

import structlog

from storepulse.clock import Scheduler, TimerHandle
from storepulse.delivery.failed_store import FailedDeliveryStore
from storepulse.delivery.protocols import TransportProtocol
from storepulse.errors import DeliveryError
from storepulse.events import Event
from storepulse.identity import IdentityManager

logger = structlog.get_logger(__name__)


class EventQueue:
    """Buffered, batched, at-least-once event delivery.

    Example:
        queue = EventQueue(
            transport,
            FailedDeliveryStore(storage),
            scheduler,
            identity,
            project_id="shop-42",
            version="2.0.0",
        )
        queue.enqueue(Event(type="page_view", properties={}, timestamp=clock.now_ms()))
        await queue.aclose()
    """

    def __init__(
        self,
        transport: TransportProtocol | None,
        failed_store: FailedDeliveryStore,
        scheduler: Scheduler,
        identity: IdentityManager,
        *,
        project_id: str,
        version: str,
        batch_size: int = 10,
        batch_timeout_ms: int = 3000,
        online: bool = True,
    ) -> None:
        """Initialize the queue.

        Args:
            transport: Batch transport, or None when no endpoint is configured
                (events then stay buffered)
            failed_store: Where rejected batches go
            scheduler: Timer and background-task scheduler
            identity: Source of device/session metadata for each batch
            project_id: Sent with every batch
            version: Tracker version sent with every batch
            batch_size: Maximum events per batch
            batch_timeout_ms: Debounce delay for partial batches
            online: Initial network state
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._transport = transport
        self._failed_store = failed_store
        self._scheduler = scheduler
        self._identity = identity
        self._project_id = project_id
        self._version = version
        self._batch_size = batch_size
        self._batch_timeout_ms = batch_timeout_ms
        self._online = online

        self._buffer: deque[Event] = deque()
        self._flush_timer: TimerHandle | None = None
        self._missing_transport_warned = False

        # Health counters
        self._events_delivered = 0
        self._batches_delivered = 0
        self._batches_failed = 0

    # =========================================================================
    # Buffering
    # =========================================================================

    @property
    def queue_size(self) -> int:
        return len(self._buffer)

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def flush_pending(self) -> bool:
        """Whether a debounce timer is armed."""
        return self._flush_timer is not None

    def enqueue(self, event: Event) -> None:
        """Append an event and flush or arm the debounce timer."""
        self._buffer.append(event)
        if len(self._buffer) >= self._batch_size:
            self._start_flush()
        elif self._flush_timer is None:
            self._flush_timer = self._scheduler.call_later(self._batch_timeout_ms, self._on_flush_timer)

    def clear(self) -> None:
        """Discard buffered events and cancel the debounce timer."""
        self._cancel_timer()
        dropped = len(self._buffer)
        self._buffer.clear()
        if dropped:
            logger.info("Event queue cleared", dropped=dropped)

    def _cancel_timer(self) -> None:
        if self._flush_timer is not None:
            self._flush_timer.cancel()
            self._flush_timer = None

    def _on_flush_timer(self) -> None:
        self._flush_timer = None
        self._start_flush()

    # =========================================================================
    # Flushing
    # =========================================================================

    def _take_batch(self) -> list[Event] | None:
        """Remove up to batch_size events from the head of the buffer.

        Returns None when nothing can be sent right now (empty buffer,
        offline, or no transport); events stay buffered in that case.
        """
        self._cancel_timer()
        if not self._buffer:
            return None
        if not self._online:
            logger.debug("Offline, delivery deferred", buffered=len(self._buffer))
            return None
        if self._transport is None:
            if not self._missing_transport_warned:
                logger.warning("No delivery endpoint configured, events stay buffered", buffered=len(self._buffer))
                self._missing_transport_warned = True
            return None

        count = min(self._batch_size, len(self._buffer))
        batch = [self._buffer.popleft() for _ in range(count)]
        if self._buffer:
            self._flush_timer = self._scheduler.call_later(self._batch_timeout_ms, self._on_flush_timer)
        return batch

    def _start_flush(self) -> None:
        batch = self._take_batch()
        if batch:
            self._scheduler.spawn(self._deliver(batch))

    async def flush(self) -> bool:
        """Send one batch now.

        Returns:
            True if a batch was delivered, False if nothing was sent or the
            batch failed (its events are then in the failed-delivery store).
        """
        batch = self._take_batch()
        if not batch:
            return False
        return await self._deliver(batch)

    async def force_flush(self) -> bool:
        """Cancel the debounce timer and flush immediately (page hide, unload)."""
        self._cancel_timer()
        return await self.flush()

    async def flush_all(self) -> int:
        """Flush until the buffer is empty or a batch fails.

        Returns:
            Number of events delivered.
        """
        delivered = 0
        while self._buffer:
            size = min(self._batch_size, len(self._buffer))
            if not await self.flush():
                break
            delivered += size
        return delivered

    def _build_payload(self, batch: list[Event]) -> dict[str, Any]:
        return {
            "project_id": self._project_id,
            "events": [event.to_dict() for event in batch],
            "version": self._version,
            "timestamp": self._scheduler.clock.now_ms(),
            "device_id": self._identity.get_device_id(),
            "session_id": self._identity.peek_session_id(),
        }

    async def _deliver(self, batch: list[Event]) -> bool:
        assert self._transport is not None
        payload = self._build_payload(batch)
        try:
            await self._transport.send(payload)
        except DeliveryError as e:
            self._record_failure(batch, str(e), status_code=e.status_code)
            return False
        except Exception as e:
            # Transport bugs must not lose the batch
            self._record_failure(batch, f"{type(e).__name__}: {e}", status_code=None)
            return False

        self._events_delivered += len(batch)
        self._batches_delivered += 1
        logger.debug("Batch sent", event_count=len(batch), buffered=len(self._buffer))
        return True

    def _record_failure(self, batch: Iterable[Event], error: str, *, status_code: int | None) -> None:
        events = list(batch)
        self._batches_failed += 1
        self._failed_store.extend(events)
        logger.warning(
            "Failed to send events, moved to failed-delivery store",
            event_count=len(events),
            error=error,
            status_code=status_code,
            stored=len(self._failed_store),
        )

    # =========================================================================
    # Retry and network state
    # =========================================================================

    def retry_failed_events(self) -> int:
        """Requeue persisted failed events ahead of newer ones and flush.

        Returns:
            Number of events requeued (0 when offline or the store is empty).
        """
        if not self._online:
            return 0
        failed = self._failed_store.load()
        if not failed:
            return 0

        logger.info("Retrying failed events", event_count=len(failed))
        self._buffer.extendleft(reversed(failed))
        self._failed_store.clear()
        self._start_flush()
        return len(failed)

    def set_online(self, online: bool) -> None:
        """Record a network transition. Going online retries and flushes."""
        if online == self._online:
            return
        self._online = online
        logger.info("Network state changed", online=online)
        if online:
            if self.retry_failed_events() == 0 and self._buffer:
                self._start_flush()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def drain(self) -> None:
        """Wait for in-flight deliveries spawned by this queue's scheduler."""
        await self._scheduler.drain()

    async def aclose(self) -> None:
        """Deliver what can be delivered, persist the rest, then close the transport.

        Events that cannot be sent now (offline, no transport, or after a
        failed batch) go to the failed-delivery store so the next start
        retries them.
        """
        self._cancel_timer()
        await self._scheduler.drain()
        await self.flush_all()
        self._cancel_timer()
        if self._buffer:
            remaining = list(self._buffer)
            self._buffer.clear()
            self._failed_store.extend(remaining)
            logger.info(
                "Undelivered events persisted for retry",
                event_count=len(remaining),
                online=self._online,
                stored=len(self._failed_store),
            )
        if self._transport is not None:
            await self._transport.aclose()

    @property
    def health_metrics(self) -> dict[str, Any]:
        """Delivery counters for status reporting."""
        return {
            "online": self._online,
            "buffered": len(self._buffer),
            "events_delivered": self._events_delivered,
            "batches_delivered": self._batches_delivered,
            "batches_failed": self._batches_failed,
            "failed_store_depth": len(self._failed_store),
            "failed_store_dropped": self._failed_store.dropped_count,
        }
