# src/storepulse/identity.py
"""Device identity and rolling session management.

- Device id: UUID4 created once and persisted in DEVICE storage forever.
- Session id: UUID4 kept in SESSION storage with a sliding idle window.
  Each access refreshes last_activity; an access after an idle gap of
  session_timeout_ms or more starts a new session.

Neither call ever raises. If storage is unavailable the manager keeps
working from memory for the lifetime of the process.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import Any

import structlog

from storepulse.clock import Clock
from storepulse.storage import Scope, Storage

logger = structlog.get_logger(__name__)

DEVICE_ID_KEY = "device_id"
SESSION_KEY = "session"


def generate_uuid() -> str:
    """Version-4 UUID string. Uniqueness is analytics-grade, not security-grade."""
    return str(uuid.uuid4())


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Persisted session state.

    Attributes:
        session_id: Session identifier
        start_time: When the session was created (ms)
        last_activity: Last time the session was accessed (ms)
    """

    session_id: str
    start_time: int
    last_activity: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "start_time": self.start_time,
            "last_activity": self.last_activity,
        }

    @classmethod
    def from_dict(cls, data: Any) -> SessionRecord:
        """Parse a stored record.

        Raises:
            ValueError: If the stored value is not a valid session record.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Session record must be an object, got {type(data).__name__}")
        try:
            session_id = data["session_id"]
            start_time = data["start_time"]
            last_activity = data["last_activity"]
        except KeyError as e:
            raise ValueError(f"Session record missing field {e}") from e
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Session record has no session_id")
        if not isinstance(start_time, int) or not isinstance(last_activity, int):
            raise ValueError("Session record timestamps must be integers")
        return cls(session_id=session_id, start_time=start_time, last_activity=last_activity)


class IdentityManager:
    """Produces the durable device id and the rolling session id.

    Example:
        identity = IdentityManager(storage, clock, session_timeout_ms=30 * 60 * 1000)
        identity.get_device_id()   # same value on every call and reload
        identity.get_session_id()  # renewed while activity continues
    """

    def __init__(
        self,
        storage: Storage,
        clock: Clock,
        *,
        session_timeout_ms: int,
        id_factory: Callable[[], str] = generate_uuid,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._session_timeout_ms = session_timeout_ms
        self._id_factory = id_factory
        # Used only while storage refuses writes
        self._volatile_device_id: str | None = None

    def get_device_id(self) -> str:
        """Return the persisted device id, creating it on first use."""
        stored = self._storage.get(DEVICE_ID_KEY, Scope.DEVICE)
        if isinstance(stored, str) and stored:
            return stored

        if self._volatile_device_id is None:
            self._volatile_device_id = self._id_factory()
            logger.debug("Device id created", device_id=self._volatile_device_id)
        self._storage.set(DEVICE_ID_KEY, self._volatile_device_id, Scope.DEVICE)
        return self._volatile_device_id

    def get_session_id(self) -> str:
        """Return the current session id, renewing or replacing the session."""
        now = self._clock.now_ms()
        record = self.get_session_info()

        if record is not None and now - record.last_activity < self._session_timeout_ms:
            renewed = replace(record, last_activity=now)
            self._storage.set(SESSION_KEY, renewed.to_dict(), Scope.SESSION)
            return renewed.session_id

        fresh = SessionRecord(session_id=self._id_factory(), start_time=now, last_activity=now)
        if record is not None:
            logger.debug(
                "Session expired",
                previous_session_id=record.session_id,
                idle_ms=now - record.last_activity,
            )
        self._storage.set(SESSION_KEY, fresh.to_dict(), Scope.SESSION)
        return fresh.session_id

    def peek_session_id(self) -> str:
        """Return the stored session id without refreshing last_activity.

        Background work (batch delivery, retries) reads the session this
        way so it never extends a session on its own. A session is created
        only when none is stored.
        """
        record = self.get_session_info()
        if record is not None:
            return record.session_id
        return self.get_session_id()

    def get_session_info(self) -> SessionRecord | None:
        """Return the stored session record without touching it, or None."""
        raw = self._storage.get(SESSION_KEY, Scope.SESSION)
        if raw is None:
            return None
        try:
            return SessionRecord.from_dict(raw)
        except ValueError as e:
            logger.warning("Invalid session record, starting a new session", error=str(e))
            return None

    def invalidate_session(self) -> None:
        """Drop the current session; the next access starts a new one."""
        self._storage.remove(SESSION_KEY, Scope.SESSION)
