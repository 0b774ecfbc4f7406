"""Tests for the file system persistence provider."""

import json
from unittest.mock import patch

import pytest

from productcache.cache.entry import CacheEntry
from productcache.cache.errors import CachePersistenceError
from productcache.cache.persistence import FileSystemPersistenceProvider


@pytest.fixture
def provider(tmp_path):
    """Provider rooted in a temporary directory."""
    return FileSystemPersistenceProvider(tmp_path / "cache")


def make_entry(key="scene-1", fingerprint="fp-1", touched=100.0):
    return CacheEntry(
        key=key,
        metadata_fingerprint=fingerprint,
        file_path=f"/data/{key}.bin",
        size_bytes=42,
        last_touched_at=touched,
    )


class TestRecords:
    """Test get, put and remove."""

    def test_put_then_get(self, provider):
        """Test that a stored entry reads back equal."""
        entry = make_entry()
        provider.put(entry.key, entry)

        assert provider.get("scene-1") == entry

    def test_get_missing_key(self, provider):
        """Test that an unknown key reads as None."""
        assert provider.get("unknown") is None

    def test_put_is_idempotent(self, provider):
        """Test that repeated puts keep one record with the latest values."""
        provider.put("scene-1", make_entry(fingerprint="fp-1"))
        provider.put("scene-1", make_entry(fingerprint="fp-2"))

        assert provider.get("scene-1").metadata_fingerprint == "fp-2"
        assert len(list(provider.index_dir.glob("*.json"))) == 1

    def test_remove(self, provider):
        """Test that remove drops the record."""
        provider.put("scene-1", make_entry())

        provider.remove("scene-1")

        assert provider.get("scene-1") is None

    def test_remove_deletes_lock_file(self, provider):
        """Test that removed keys leave no lock file behind."""
        provider.put("scene-1", make_entry())
        provider.put("scene-2", make_entry(key="scene-2"))

        provider.remove("scene-1")

        lock_files = list(provider.lock_dir.glob("*.lock"))
        assert provider._lock_path("scene-1") not in lock_files
        assert provider.get("scene-2") is not None

        provider.put("scene-1", make_entry())
        assert provider.get("scene-1") is not None

    def test_remove_missing_key_is_noop(self, provider):
        """Test that removing an unknown key is not an error."""
        provider.remove("unknown")
        provider.remove("unknown")

    def test_record_format(self, provider):
        """Test the durable record contents."""
        provider.put("scene-1", make_entry())

        record_path = next(provider.index_dir.glob("*.json"))
        data = json.loads(record_path.read_text())

        assert data["key"] == "scene-1"
        assert data["metadata_fingerprint"] == "fp-1"
        assert data["file_path"] == "/data/scene-1.bin"
        assert data["size_bytes"] == 42
        assert data["last_touched_at"] == 100.0
        assert data["schema_version"] == "1.0"

    def test_keys_with_path_characters(self, provider):
        """Test that keys are not used as file names directly."""
        key = "https://catalog/resource?id=../../etc"
        provider.put(key, make_entry(key=key))

        assert provider.get(key).key == key
        assert all(p.parent == provider.index_dir for p in provider.index_dir.iterdir())

    def test_provider_does_not_touch_product_file(self, provider, tmp_path):
        """Test that remove leaves the product file alone."""
        product = tmp_path / "product.bin"
        product.write_bytes(b"data")
        entry = CacheEntry("scene-1", "fp-1", str(product))

        provider.put("scene-1", entry)
        provider.remove("scene-1")

        assert product.exists()


class TestLoadAll:
    """Test index reconstruction."""

    def test_load_all_empty(self, provider):
        """Test that a fresh directory loads nothing."""
        assert provider.load_all() == {}

    def test_load_all_orders_by_last_touched(self, provider):
        """Test that records load oldest first."""
        provider.put("b", make_entry(key="b", touched=200.0))
        provider.put("a", make_entry(key="a", touched=100.0))
        provider.put("c", make_entry(key="c", touched=300.0))

        assert list(provider.load_all()) == ["a", "b", "c"]

    def test_corrupted_record_skipped(self, provider):
        """Test that unreadable JSON is ignored."""
        provider.put("good", make_entry(key="good"))
        (provider.index_dir / "broken.json").write_text("{not json")

        assert list(provider.load_all()) == ["good"]

    def test_record_missing_fields_skipped(self, provider):
        """Test that records without required fields are ignored."""
        provider.put("good", make_entry(key="good"))
        (provider.index_dir / "partial.json").write_text(json.dumps({"key": "partial"}))

        assert list(provider.load_all()) == ["good"]

    def test_set_persistence_path(self, provider, tmp_path):
        """Test that switching directories switches the record set."""
        provider.put("scene-1", make_entry())

        provider.set_persistence_path(tmp_path / "other")
        assert provider.load_all() == {}

        provider.set_persistence_path(tmp_path / "cache")
        assert list(provider.load_all()) == ["scene-1"]


class TestFailures:
    """Test that storage failures surface as CachePersistenceError."""

    def test_write_failure(self, provider):
        """Test that an OS error while writing is raised."""
        with patch("productcache.cache.persistence.os.replace", side_effect=OSError("EIO")):
            with pytest.raises(CachePersistenceError, match="Cannot write"):
                provider.put("scene-1", make_entry())

        assert provider.get("scene-1") is None
        assert list(provider.index_dir.glob("*.tmp")) == []

    def test_unwritable_directory(self, tmp_path):
        """Test that a directory that cannot be created is raised."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        provider = FileSystemPersistenceProvider(blocker / "cache")

        with pytest.raises(CachePersistenceError):
            provider.put("scene-1", make_entry())
