# src/storepulse/events.py
"""Tracked event definition.

An Event is the unit that flows through the consent gate, the event queue
and the failed-delivery store. Identity is positional: two events with the
same content are still two events, and nothing deduplicates them.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

# Callback used by components that emit events without owning the queue.
# Signature: track(event_type, properties)
TrackCallback = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True, slots=True)
class Event:
    """A single tracked event.

    Attributes:
        type: Event name (e.g. "page_view", "cart_update")
        properties: Event payload; copied into a read-only mapping
        timestamp: Milliseconds since the epoch when the event was tracked
    """

    type: str
    properties: Mapping[str, Any]
    timestamp: int

    def __post_init__(self) -> None:
        if not self.type:
            raise ValueError("Event type must be a non-empty string")
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation used on the wire and in storage."""
        return {
            "type": self.type,
            "properties": dict(self.properties),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        """Rebuild an event from its stored representation.

        Raises:
            ValueError: If data does not have the stored event shape.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"Stored event must be an object, got {type(data).__name__}")
        event_type = data.get("type")
        timestamp = data.get("timestamp")
        properties = data.get("properties", {})
        if not isinstance(event_type, str) or not event_type:
            raise ValueError(f"Stored event has invalid type: {event_type!r}")
        if isinstance(timestamp, bool) or not isinstance(timestamp, int):
            raise ValueError(f"Stored event has invalid timestamp: {timestamp!r}")
        if not isinstance(properties, Mapping):
            raise ValueError("Stored event properties must be an object")
        return cls(type=event_type, properties=properties, timestamp=timestamp)
