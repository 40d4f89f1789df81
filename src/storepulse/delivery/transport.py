# src/storepulse/delivery/transport.py
"""HTTP transport for event batches.

One POST per batch with a JSON body. Any 2xx response is success; network
errors, timeouts and every other status are failures reported as
DeliveryError.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from storepulse.errors import DeliveryError

logger = structlog.get_logger(__name__)


class HttpTransport:
    """POSTs batch bodies to the ingestion endpoint with httpx.

    Example:
        transport = HttpTransport("https://ingest.example.com/v1/events")
        await transport.send({"project_id": "shop-42", "events": [...], ...})
        await transport.aclose()
    """

    def __init__(
        self,
        endpoint: str,
        *,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            endpoint: Absolute URL receiving batches
            timeout: Per-request timeout in seconds
            headers: Extra headers for every request
            client: Pre-built client (tests, shared pools). Not closed by aclose().
        """
        self._endpoint = endpoint
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._headers = {"Content-Type": "application/json", **(headers or {})}
        self._closed = False

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def send(self, payload: dict[str, Any]) -> None:
        """POST one batch body.

        Raises:
            DeliveryError: On transport failure or non-2xx status.
        """
        try:
            response = await self._client.post(self._endpoint, json=payload, headers=self._headers)
        except httpx.HTTPError as e:
            raise DeliveryError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        logger.debug(
            "Batch delivered",
            endpoint=self._endpoint,
            status_code=response.status_code,
            event_count=len(payload.get("events", ())),
        )

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._owns_client:
            await self._client.aclose()
