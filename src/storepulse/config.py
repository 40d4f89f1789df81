# src/storepulse/config.py
"""
Configuration schema and loading for the storepulse tracker.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction; the tracker only
ever reads them.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_MODULES: tuple[str, ...] = (
    "interactions",
    "scroll",
    "time",
    "cart_poller",
    "checkout",
    "abandonment",
)


class TrackerSettings(BaseModel):
    """Top-level tracker settings.

    Example YAML:
        api_endpoint: https://ingest.example.com/v1/events
        project_id: shop-42
        batch_size: 20
        batch_timeout_ms: 5000
        storage_path: ~/.storepulse/device.json
        storefront_url: https://shop.example.com
    """

    model_config = {"frozen": True, "extra": "forbid"}

    # Delivery
    api_endpoint: str = Field(default="", description="Ingestion endpoint receiving batched events")
    project_id: str = Field(default="", description="Project identifier sent with every batch")
    version: str = Field(default="2.0.0", description="Tracker version sent with every batch")
    batch_size: int = Field(default=10, gt=0, description="Maximum events per batch; a full buffer flushes immediately")
    batch_timeout_ms: int = Field(default=3000, gt=0, description="Delay before a partial batch is flushed")
    request_timeout_seconds: float = Field(default=10.0, gt=0, description="HTTP timeout for one delivery attempt")
    failed_events_cap: int = Field(default=100, gt=0, description="Maximum events kept in the failed-delivery store")

    # Identity
    session_timeout_ms: int = Field(default=30 * 60 * 1000, gt=0, description="Idle gap after which a new session starts")

    # Consent
    enable_consent_check: bool = Field(default=True, description="Require a consent record before delivery")
    consent_poll_interval_ms: int = Field(default=500, gt=0, description="How often pending waiters re-check consent")
    consent_timeout_ms: int = Field(default=10_000, gt=0, description="How long an event waits for consent before being dropped")
    consent_validity_days: int = Field(default=365, gt=0, description="Age after which a consent record expires")

    # Commerce
    cart_epsilon: float = Field(default=0.01, ge=0, description="Cart totals closer than this are considered equal")
    price_divisor: int = Field(default=100, gt=0, description="Divides raw snapshot prices (minor units) into currency units")
    inactivity_timeout_ms: int = Field(default=5 * 60 * 1000, gt=0, description="Checkout idle time that counts as abandonment")
    storefront_url: str | None = Field(default=None, description="Storefront base URL for cart polling")

    # Runtime
    storage_path: Path | None = Field(default=None, description="JSON file for device-scoped storage; in-memory if unset")
    modules: tuple[str, ...] = Field(default=DEFAULT_MODULES, description="Instrumentation modules to enable")

    @field_validator("api_endpoint")
    @classmethod
    def validate_endpoint_scheme(cls, v: str) -> str:
        """Endpoint, when set, must be an http(s) URL."""
        if v and not v.startswith(("http://", "https://")):
            raise ValueError(f"api_endpoint must be an http(s) URL, got {v!r}")
        return v

    @field_validator("storage_path")
    @classmethod
    def expand_storage_path(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def is_deliverable(self) -> bool:
        """Whether events can be delivered (endpoint and project configured)."""
        return bool(self.api_endpoint and self.project_id)


def load_settings(config_path: Path) -> TrackerSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (STOREPULSE_*) - highest priority
    2. Config file
    3. Defaults from the Pydantic schema - lowest priority

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated TrackerSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="STOREPULSE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config: dict[str, Any] = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    return TrackerSettings(**raw_config)
