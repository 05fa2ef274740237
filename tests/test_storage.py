"""
test_storage.py - Unit tests for FileStorage, the TTL cache and the HolderStore
"""

import pytest

from tributary import DataIntegrityError, ResourceError, sanitize_key
from .fake_client import make_holders


class TestDocuments:

    def test_write_then_read(self, storage):
        storage.write_json("runs/a.json", {'x': [1, 2]})
        assert storage.read_json("runs/a.json") == {'x': [1, 2]}

    def test_overwrite_replaces_whole_document(self, storage):
        storage.write_json("a.json", {'old': True, 'keep': 1})
        storage.write_json("a.json", {'new': True})
        assert storage.read_json("a.json") == {'new': True}

    def test_no_temporary_files_left(self, storage):
        storage.write_json("a.json", [1])
        assert [p.name for p in storage.base_dir.iterdir()] == ["a.json"]

    def test_missing_document(self, storage):
        with pytest.raises(ResourceError) as exc_info:
            storage.read_json("absent.json")
        assert exc_info.value.details['error'] == 'ENOENT'

    def test_corrupt_document(self, storage):
        storage.base_dir.mkdir(parents=True)
        (storage.base_dir / "bad.json").write_text("{not json")
        with pytest.raises(DataIntegrityError):
            storage.read_json("bad.json")

    def test_unserializable_value(self, storage):
        with pytest.raises(ResourceError, match="Failed to write"):
            storage.write_json("a.json", {'x': object()})

    def test_path_cannot_escape_base_dir(self, storage):
        with pytest.raises(ResourceError, match="escapes"):
            storage.write_json("../outside.json", {})

    def test_exists_and_delete(self, storage):
        storage.write_json("a.json", {})
        assert storage.exists("a.json")
        storage.delete("a.json")
        assert not storage.exists("a.json")
        storage.delete("a.json")

    def test_list_sorted_and_skips_hidden(self, storage):
        storage.write_json("b.json", {})
        storage.write_json("a.json", {})
        (storage.base_dir / ".hidden").write_text("")
        storage.write_json("sub/c.json", {})
        assert storage.list() == ["a.json", "b.json"]
        assert storage.list("sub") == ["c.json"]
        assert storage.list("missing") == []


class TestCache:

    def test_read_within_ttl(self, storage):
        storage.write_cache("k", [1, 2], ttl_seconds=10)
        assert storage.read_cache("k") == [1, 2]

    def test_miss(self, storage):
        assert storage.read_cache("nothing") is None

    def test_expired_entry_is_evicted_on_read(self, storage, clock):
        storage.write_cache("k", "v", ttl_seconds=10)
        clock.advance(10)
        assert storage.read_cache("k") is None
        assert storage.list("cache") == []

    def test_entry_window(self, storage, clock):
        entry = storage.write_cache("k", "v", ttl_seconds=30)
        assert entry.created_at == clock.now
        assert (entry.expires_at - entry.created_at).total_seconds() == 30

    def test_key_is_sanitized(self, storage):
        storage.write_cache("wallets_a|b c", 1, ttl_seconds=10)
        assert storage.list("cache") == ["wallets_a_b_c.json"]
        assert storage.read_cache("wallets_a|b c") == 1

    def test_non_positive_ttl(self, storage):
        with pytest.raises(ValueError):
            storage.write_cache("k", 1, ttl_seconds=0)

    def test_clear_cache(self, storage):
        storage.write_cache("a", 1, ttl_seconds=10)
        storage.write_cache("b", 2, ttl_seconds=10)
        storage.write_json("other.json", {})
        assert storage.clear_cache() == 2
        assert storage.read_cache("a") is None
        assert storage.exists("other.json")

    def test_sanitize_key(self):
        assert sanitize_key("wallets_Abc-1_0_unlimited_x|y") == "wallets_Abc-1_0_unlimited_x_y"


class TestHolderStore:

    def test_put_then_get(self, store):
        holders = make_holders(("A", 2), ("B", 1))
        store.put("wallets_x", holders, ttl_seconds=60)
        assert store.get("wallets_x") == holders

    def test_miss(self, store):
        assert store.get("wallets_none") is None

    def test_expiry(self, store, clock):
        store.put("k", make_holders(("A", 1)), ttl_seconds=5)
        clock.advance(6)
        assert store.get("k") is None

    def test_malformed_snapshot(self, store, storage):
        storage.write_cache("k", [{'address': "A"}], ttl_seconds=60)
        with pytest.raises(DataIntegrityError, match="Malformed holder snapshot"):
            store.get("k")
