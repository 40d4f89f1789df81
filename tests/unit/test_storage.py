# tests/unit/test_storage.py
"""Tests for two-scope storage and its failure isolation."""

import json
from pathlib import Path

from storepulse.storage import JsonFileBackend, MemoryBackend, Scope, Storage


class TestStorage:
    """JSON encoding and scope separation."""

    def test_round_trips_json_values(self, storage: Storage) -> None:
        storage.set("cart", {"items": 2, "tags": ["a"]}, Scope.SESSION)
        assert storage.get("cart", Scope.SESSION) == {"items": 2, "tags": ["a"]}

    def test_scopes_are_separate(self, storage: Storage) -> None:
        storage.set("key", "session-value", Scope.SESSION)

        assert storage.get("key", Scope.DEVICE) is None
        assert storage.get("key", Scope.DEVICE, "fallback") == "fallback"

    def test_reader_gets_private_copy(self, storage: Storage) -> None:
        value = {"items": [1]}
        storage.set("k", value, Scope.DEVICE)
        value["items"].append(2)

        read = storage.get("k", Scope.DEVICE)
        read["items"].append(3)

        assert storage.get("k", Scope.DEVICE) == {"items": [1]}

    def test_remove(self, storage: Storage) -> None:
        storage.set("k", 1, Scope.DEVICE)
        assert storage.remove("k", Scope.DEVICE)
        assert storage.get("k", Scope.DEVICE) is None

    def test_unserializable_value_rejected(self, storage: Storage) -> None:
        assert storage.set("k", object(), Scope.SESSION) is False
        assert storage.get("k", Scope.SESSION) is None

    def test_corrupt_value_reads_as_default(self) -> None:
        backend = MemoryBackend()
        backend.write("k", "{not json")
        storage = Storage(device=backend)

        assert storage.get("k", Scope.DEVICE, 0) == 0


class TestStorageFailures:
    """Backend errors never reach callers."""

    def test_failing_backend_degrades(self, failing_storage: Storage) -> None:
        assert failing_storage.set("k", 1, Scope.DEVICE) is False
        assert failing_storage.get("k", Scope.DEVICE, "default") == "default"
        assert failing_storage.remove("k", Scope.DEVICE) is False


class TestJsonFileBackend:
    """Device storage persisted to disk."""

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "device.json"
        Storage(device=JsonFileBackend(path)).set("device_id", "abc", Scope.DEVICE)

        reopened = Storage(device=JsonFileBackend(path))

        assert reopened.get("device_id", Scope.DEVICE) == "abc"
        assert json.loads(path.read_text(encoding="utf-8")) == {"device_id": '"abc"'}

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "device.json"
        JsonFileBackend(path).write("k", "1")
        assert path.exists()

    def test_delete_missing_key_is_noop(self, tmp_path: Path) -> None:
        path = tmp_path / "device.json"
        JsonFileBackend(path).delete("missing")
        assert not path.exists()

    def test_non_object_file_degrades(self, tmp_path: Path) -> None:
        path = tmp_path / "device.json"
        path.write_text("[1, 2]", encoding="utf-8")
        storage = Storage(device=JsonFileBackend(path))

        assert storage.get("k", Scope.DEVICE, "default") == "default"
