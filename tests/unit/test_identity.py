# tests/unit/test_identity.py
"""Tests for device identity and the rolling session window."""

import uuid

from storepulse.clock import MockClock
from storepulse.identity import DEVICE_ID_KEY, SESSION_KEY, IdentityManager, SessionRecord, generate_uuid
from storepulse.storage import Scope, Storage

TIMEOUT_MS = 30 * 60 * 1000


class TestDeviceId:
    """Device id is created once and then stable."""

    def test_is_uuid4(self, identity: IdentityManager) -> None:
        assert uuid.UUID(identity.get_device_id()).version == 4

    def test_stable_across_calls(self, identity: IdentityManager) -> None:
        assert identity.get_device_id() == identity.get_device_id()

    def test_stable_across_managers(self, storage: Storage, clock: MockClock) -> None:
        first = IdentityManager(storage, clock, session_timeout_ms=TIMEOUT_MS).get_device_id()
        second = IdentityManager(storage, clock, session_timeout_ms=TIMEOUT_MS).get_device_id()

        assert first == second
        assert storage.get(DEVICE_ID_KEY, Scope.DEVICE) == first

    def test_stable_when_storage_fails(self, failing_storage: Storage, clock: MockClock) -> None:
        identity = IdentityManager(failing_storage, clock, session_timeout_ms=TIMEOUT_MS)
        assert identity.get_device_id() == identity.get_device_id()


class TestSession:
    """Sliding idle window."""

    def test_renewed_just_before_timeout(self, identity: IdentityManager, clock: MockClock) -> None:
        first = identity.get_session_id()
        clock.advance(TIMEOUT_MS - 1)

        assert identity.get_session_id() == first

    def test_replaced_after_timeout(self, identity: IdentityManager, clock: MockClock) -> None:
        first = identity.get_session_id()
        clock.advance(TIMEOUT_MS + 1)

        assert identity.get_session_id() != first

    def test_replaced_at_exact_timeout(self, identity: IdentityManager, clock: MockClock) -> None:
        first = identity.get_session_id()
        clock.advance(TIMEOUT_MS)

        assert identity.get_session_id() != first

    def test_activity_slides_window(self, identity: IdentityManager, clock: MockClock) -> None:
        first = identity.get_session_id()
        for _ in range(4):
            clock.advance(TIMEOUT_MS - 1)
            assert identity.get_session_id() == first

    def test_access_updates_last_activity(self, identity: IdentityManager, clock: MockClock) -> None:
        identity.get_session_id()
        start = clock.now_ms()
        clock.advance(5_000)
        identity.get_session_id()

        info = identity.get_session_info()
        assert info is not None
        assert info.start_time == start
        assert info.last_activity == start + 5_000

    def test_peek_does_not_extend_session(self, identity: IdentityManager, clock: MockClock) -> None:
        first = identity.get_session_id()
        start = clock.now_ms()

        for _ in range(3):
            clock.advance(TIMEOUT_MS // 2)
            assert identity.peek_session_id() == first

        info = identity.get_session_info()
        assert info is not None
        assert info.last_activity == start
        assert identity.get_session_id() != first

    def test_peek_starts_session_when_none_stored(self, identity: IdentityManager) -> None:
        peeked = identity.peek_session_id()

        assert identity.get_session_id() == peeked

    def test_invalid_record_starts_new_session(self, identity: IdentityManager, storage: Storage) -> None:
        storage.set(SESSION_KEY, {"session_id": "", "start_time": "x"}, Scope.SESSION)

        assert identity.get_session_info() is None
        assert identity.get_session_id()

    def test_invalidate_session(self, identity: IdentityManager) -> None:
        first = identity.get_session_id()
        identity.invalidate_session()

        assert identity.get_session_id() != first

    def test_works_without_storage(self, failing_storage: Storage, clock: MockClock) -> None:
        identity = IdentityManager(failing_storage, clock, session_timeout_ms=TIMEOUT_MS)
        assert identity.get_session_id()

    def test_custom_id_factory(self, storage: Storage, clock: MockClock) -> None:
        ids = iter(["s1", "s2"])
        identity = IdentityManager(storage, clock, session_timeout_ms=TIMEOUT_MS, id_factory=lambda: next(ids))

        assert identity.get_session_id() == "s1"


class TestSessionRecord:
    """Stored record parsing."""

    def test_round_trip(self) -> None:
        record = SessionRecord(session_id="s", start_time=1, last_activity=2)
        assert SessionRecord.from_dict(record.to_dict()) == record

    def test_generate_uuid_unique(self) -> None:
        assert generate_uuid() != generate_uuid()
