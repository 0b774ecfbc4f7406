"""Unit tests for cache validation module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from productcache.cache.entry import CacheEntry
from productcache.cache.validation import (
    ValidationPolicy,
    compute_fingerprint,
    delete_file_quietly,
    is_current,
)


@pytest.fixture
def cached_entry(tmp_path):
    """Entry with its product file on disk."""
    path = tmp_path / "product.bin"
    path.write_bytes(b"product")
    return CacheEntry("scene-1", "fp-1", str(path))


class TestFingerprint:
    """Test metadata fingerprints."""

    def test_stable_across_key_order(self):
        """Test that key order does not change the fingerprint."""
        a = compute_fingerprint({"title": "Scene", "modified": "2024-01-01"})
        b = compute_fingerprint({"modified": "2024-01-01", "title": "Scene"})

        assert a == b

    def test_changes_with_metadata(self):
        """Test that different metadata gives different fingerprints."""
        a = compute_fingerprint({"modified": "2024-01-01"})
        b = compute_fingerprint({"modified": "2024-01-02"})

        assert a != b

    def test_known_digest(self):
        """Test the fingerprint is a plain digest of canonical JSON."""
        import hashlib

        expected = hashlib.sha256(b'{"a":1,"b":[1,2]}').hexdigest()
        assert compute_fingerprint({"b": [1, 2], "a": 1}) == expected

    def test_md5(self):
        """Test md5 fingerprints."""
        assert len(compute_fingerprint({"a": 1}, algorithm="md5")) == 32

    def test_unsupported_algorithm(self):
        """Test that unknown algorithms are rejected."""
        with pytest.raises(ValueError, match="Unsupported algorithm"):
            compute_fingerprint({"a": 1}, algorithm="crc32")

    def test_non_json_values(self):
        """Test that non-JSON values are rendered deterministically."""
        value = {"path": Path("/data/x")}
        assert compute_fingerprint(value) == compute_fingerprint(value)


class TestValidationPolicy:
    """Test validation and its purge side effect."""

    def test_is_current(self, cached_entry):
        """Test the pure fingerprint comparison."""
        assert is_current(cached_entry, "fp-1") is True
        assert is_current(cached_entry, "fp-2") is False

    def test_valid_entry_untouched(self, cached_entry):
        """Test that a matching entry is kept."""
        purge = MagicMock()
        policy = ValidationPolicy(purge=purge)

        assert policy.validate(cached_entry, "fp-1") is True
        purge.assert_not_called()
        assert Path(cached_entry.file_path).exists()

    def test_stale_entry_purged(self, cached_entry):
        """Test that a mismatch deletes the file and purges the entry."""
        purge = MagicMock()
        policy = ValidationPolicy(purge=purge)

        assert policy.validate(cached_entry, "fp-2") is False
        purge.assert_called_once_with(cached_entry)
        assert not Path(cached_entry.file_path).exists()

    def test_delete_failure_not_raised(self, cached_entry):
        """Test that a failed delete still purges and returns False."""
        purge = MagicMock()
        delete_file = MagicMock(return_value=False)
        policy = ValidationPolicy(purge=purge, delete_file=delete_file)

        assert policy.validate(cached_entry, "fp-2") is False
        delete_file.assert_called_once_with(cached_entry.file_path)
        purge.assert_called_once_with(cached_entry)

    def test_none_arguments_rejected(self, cached_entry):
        """Test that validation needs both an entry and a fingerprint."""
        policy = ValidationPolicy(purge=MagicMock())

        with pytest.raises(ValueError):
            policy.validate(None, "fp-1")
        with pytest.raises(ValueError):
            policy.validate(cached_entry, None)


class TestDeleteFileQuietly:
    """Test best-effort deletion."""

    def test_deletes_file(self, tmp_path):
        path = tmp_path / "f.bin"
        path.write_bytes(b"x")

        assert delete_file_quietly(path) is True
        assert not path.exists()

    def test_missing_file(self, tmp_path):
        assert delete_file_quietly(tmp_path / "missing.bin") is True

    def test_failure_returns_false(self, tmp_path):
        """Test that a directory in place of a file is reported, not raised."""
        directory = tmp_path / "dir"
        directory.mkdir()

        assert delete_file_quietly(directory) is False
        assert directory.exists()
