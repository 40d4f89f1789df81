# src/storepulse/delivery/protocols.py
"""Protocol definitions for batch transports."""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class TransportProtocol(Protocol):
    """Ships one batch body to the ingestion endpoint.

    Error handling:
        - send() raises DeliveryError when the endpoint did not accept the
          batch (network error, timeout, non-2xx). The event queue turns
          that into a failed-delivery store write.
        - aclose() MUST be idempotent.
    """

    async def send(self, payload: dict[str, Any]) -> None:
        """Deliver a batch body.

        Args:
            payload: JSON-ready body {project_id, events, version, timestamp, ...}

        Raises:
            DeliveryError: If the batch was not accepted.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
