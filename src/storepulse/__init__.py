"""
storepulse: storefront telemetry collection with consent-gated, batched delivery.

Observes page, cart and checkout activity on a storefront and ships it as
structured events to a remote ingestion endpoint, surviving reloads and
intermittent connectivity.
"""

__version__ = "0.1.0"
