# src/storepulse/commerce/attribution.py
"""Campaign and influencer attribution.

Attribution is parsed from the landing URL (query string and fragment) and
the referrer, then pinned in SESSION storage so later events in the session
(checkout, abandonment) carry the context that brought the visitor in.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import parse_qs, urlsplit

import structlog

from storepulse.clock import Clock
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

ATTRIBUTION_KEY = "attribution"

# Output field -> accepted query parameters, first present wins
ATTRIBUTION_PARAMS: dict[str, tuple[str, ...]] = {
    "influencer_id": ("inf_id", "influencer", "inf"),
    "campaign_id": ("camp_id", "campaign", "cmp"),
    "promo_code": ("promo", "codigo", "discount"),
    "utm_source": ("utm_source",),
    "utm_medium": ("utm_medium",),
    "utm_campaign": ("utm_campaign",),
    "utm_content": ("utm_content",),
    "utm_term": ("utm_term",),
    "ref": ("ref",),
    "affiliate_id": ("aff_id", "affiliate"),
}

# Referrer host fragment -> social source name
SOCIAL_REFERRERS: tuple[tuple[str, str], ...] = (
    ("instagram.com", "instagram"),
    ("tiktok.com", "tiktok"),
    ("youtube.com", "youtube"),
    ("youtu.be", "youtube"),
    ("facebook.com", "facebook"),
    ("twitter.com", "twitter"),
    ("x.com", "twitter"),
    ("linkedin.com", "linkedin"),
    ("pinterest.com", "pinterest"),
    ("snapchat.com", "snapchat"),
)


def detect_social_source(referrer: str | None) -> str | None:
    if not referrer:
        return None
    host = (urlsplit(referrer).hostname or "").lower()
    for fragment, source in SOCIAL_REFERRERS:
        if host == fragment or host.endswith("." + fragment):
            return source
    return None


def parse_attribution(url: str, referrer: str | None = None) -> dict[str, Any] | None:
    """Extract attribution parameters from a landing URL and referrer.

    Query parameters win over fragment parameters.

    Returns:
        Attribution fields (None for absent ones), or None if nothing was found.
    """
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    fragment = parse_qs(parts.fragment)

    def first(names: tuple[str, ...]) -> str | None:
        for params in (query, fragment):
            for name in names:
                values = params.get(name)
                if values and values[0]:
                    return values[0]
        return None

    found = {field: first(names) for field, names in ATTRIBUTION_PARAMS.items()}
    social_source = detect_social_source(referrer)
    if social_source is None and not any(found.values()):
        return None
    return {**found, "social_source": social_source, "referrer": referrer or None}


class AttributionStore:
    """Session-pinned attribution context.

    Example:
        attribution = AttributionStore(storage, clock)
        attribution.detect("https://shop.example.com/?inf_id=ana", referrer=None)
        attribution.current()["influencer_id"]  # "ana"
    """

    def __init__(self, storage: Storage, clock: Clock) -> None:
        self._storage = storage
        self._clock = clock

    def detect(self, url: str, referrer: str | None = None) -> dict[str, Any] | None:
        """Parse attribution from a page; a new match replaces the stored one.

        Returns:
            The attribution in effect after this page (new or previously stored).
        """
        found = parse_attribution(url, referrer)
        if found is None:
            return self.current()
        record = {**found, "detected_at": self._clock.now_ms(), "landing_page": url}
        self._storage.set(ATTRIBUTION_KEY, record, Scope.SESSION)
        logger.debug("Attribution detected", influencer_id=record["influencer_id"], social_source=record["social_source"])
        return record

    def current(self) -> dict[str, Any] | None:
        stored = self._storage.get(ATTRIBUTION_KEY, Scope.SESSION)
        return stored if isinstance(stored, dict) else None
