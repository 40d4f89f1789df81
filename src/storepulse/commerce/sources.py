# src/storepulse/commerce/sources.py
"""Commerce snapshot sources.

A snapshot source is the narrow seam between the storefront platform and
the reconciler: it returns the raw cart object (arbitrary shape) or None.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

logger = structlog.get_logger(__name__)


@runtime_checkable
class CartSnapshotSource(Protocol):
    """Delivers raw cart snapshots on demand.

    fetch_cart() MUST NOT raise for expected failures (network, bad JSON);
    it returns None instead.
    """

    async def fetch_cart(self) -> dict[str, Any] | None: ...


class HttpCartSource:
    """Fetches {storefront_url}/cart.js with httpx.

    Example:
        source = HttpCartSource("https://shop.example.com")
        snapshot = await source.fetch_cart()
    """

    def __init__(
        self,
        storefront_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = storefront_url.rstrip("/") + "/cart.js"
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        return self._url

    async def fetch_cart(self) -> dict[str, Any] | None:
        try:
            response = await self._client.get(self._url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.debug("Cart fetch failed", url=self._url, error=str(e))
            return None
        if not response.is_success:
            logger.debug("Cart fetch rejected", url=self._url, status_code=response.status_code)
            return None
        try:
            data = response.json()
        except ValueError as e:
            logger.warning("Cart response is not JSON", url=self._url, error=str(e))
            return None
        if not isinstance(data, dict):
            logger.warning("Cart response is not an object", url=self._url, payload_type=type(data).__name__)
            return None
        return data

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
