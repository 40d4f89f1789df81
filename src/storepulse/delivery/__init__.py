# src/storepulse/delivery/__init__.py
"""Batched event delivery.

Components:
- queue: EventQueue buffering, batching, debounced flushing and retry
- failed_store: FailedDeliveryStore, the capped persisted retry area
- transport: HttpTransport posting batches with httpx
- protocols: TransportProtocol for alternative transports

Batch lifecycle:
    buffered -> inflight -> delivered
                         -> failed -> persisted -> requeued -> inflight

Delivery is at-least-once: a batch whose response is lost is sent again
on the next retry, so the endpoint must tolerate duplicates.
"""

from storepulse.delivery.failed_store import FailedDeliveryStore
from storepulse.delivery.protocols import TransportProtocol
from storepulse.delivery.queue import EventQueue
from storepulse.delivery.transport import HttpTransport

__all__ = [
    "EventQueue",
    "FailedDeliveryStore",
    "HttpTransport",
    "TransportProtocol",
]
