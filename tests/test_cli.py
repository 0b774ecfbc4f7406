"""Tests for CLI commands.

These tests verify:
- Inspection commands (info, list)
- Maintenance commands (evict, remove, reconcile, clear)
- Error handling and user feedback
"""

from pathlib import Path

import pytest
from click.testing import CliRunner

from productcache.cache import CacheConfig, CacheEntry, CacheManager
from productcache.cli.main import cli

MB = 1024 * 1024


@pytest.fixture
def cache_dir(tmp_path):
    """Cache directory holding two entries."""
    directory = tmp_path / "cache"
    manager = CacheManager(CacheConfig(cache_dir=directory))
    for key, size in (("scene-1", 3 * MB), ("scene-2", 5 * MB)):
        path = directory / f"{key}.bin"
        path.write_bytes(b"payload")
        manager.put(CacheEntry(key, "fp-1", str(path), size_bytes=size))
    return directory


def run(cache_dir, *args, **kwargs):
    runner = CliRunner()
    return runner.invoke(cli, ["--cache-dir", str(cache_dir), *args], **kwargs)


class TestInspection:
    """Test info and list."""

    def test_info(self, cache_dir):
        """Test that info shows entry count and size."""
        result = run(cache_dir, "info")

        assert result.exit_code == 0
        assert "Entries" in result.output
        assert "8.0 MB" in result.output

    def test_list(self, cache_dir):
        """Test that list shows every key."""
        result = run(cache_dir, "list")

        assert result.exit_code == 0
        assert "scene-1" in result.output
        assert "scene-2" in result.output
        assert "present" in result.output

    def test_list_limit(self, cache_dir):
        """Test that --limit truncates the listing."""
        result = run(cache_dir, "list", "-n", "1")

        assert result.exit_code == 0
        assert "and 1 more" in result.output

    def test_list_empty(self, tmp_path):
        """Test listing an empty cache."""
        result = run(tmp_path, "list")

        assert result.exit_code == 0
        assert "No cached entries found" in result.output

    def test_missing_cache_dir(self, tmp_path):
        """Test that a nonexistent directory is an error."""
        result = run(tmp_path / "missing", "info")

        assert result.exit_code != 0
        assert "Cache directory not found" in result.output


class TestMaintenance:
    """Test evict, remove, reconcile and clear."""

    def test_evict_within_quota(self, cache_dir):
        """Test that evict does nothing under quota."""
        result = run(cache_dir, "evict")

        assert result.exit_code == 0
        assert "nothing evicted" in result.output

    def test_evict_with_lower_quota(self, cache_dir):
        """Test that a lower quota evicts the oldest entry."""
        result = run(cache_dir, "evict", "--max-size-mb", "7")

        assert result.exit_code == 0
        assert "Evicted 1 entries" in result.output
        assert "scene-1" in result.output
        assert not (cache_dir / "scene-1.bin").exists()

    def test_remove(self, cache_dir):
        """Test removing a single entry."""
        result = run(cache_dir, "remove", "scene-1")

        assert result.exit_code == 0
        assert "Removed entry 'scene-1'" in result.output
        assert not (cache_dir / "scene-1.bin").exists()

    def test_remove_unknown(self, cache_dir):
        """Test removing an unknown key fails."""
        result = run(cache_dir, "remove", "unknown")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_reconcile(self, cache_dir):
        """Test that reconcile drops entries with deleted files."""
        (cache_dir / "scene-2.bin").unlink()

        result = run(cache_dir, "reconcile")

        assert result.exit_code == 0
        assert "Dropped 1 entries" in result.output

    def test_clear_with_confirmation(self, cache_dir):
        """Test clear after answering yes."""
        result = run(cache_dir, "clear", input="y\n")

        assert result.exit_code == 0
        assert "Removed 2 entries" in result.output
        manager = CacheManager(CacheConfig(cache_dir=cache_dir))
        assert manager.list_entries() == []

    def test_clear_cancelled(self, cache_dir):
        """Test that declining the prompt keeps entries."""
        result = run(cache_dir, "clear", input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert Path(cache_dir / "scene-1.bin").exists()


class TestConfigure:
    """Test saved settings."""

    def test_configure_saves_settings(self, cache_dir):
        """Test that configure writes config.json in the cache directory."""
        result = run(cache_dir, "configure", "--max-size-mb", "7", "--eviction-fraction", "0.1")

        assert result.exit_code == 0
        assert "Saved settings" in result.output
        saved = CacheConfig.load(cache_dir / "config.json")
        assert saved.max_dir_size_mb == 7
        assert saved.eviction_fraction == 0.1

    def test_saved_quota_used_by_later_commands(self, cache_dir):
        """Test that commands pick up the saved quota."""
        run(cache_dir, "configure", "--max-size-mb", "7")

        result = run(cache_dir, "evict")

        assert result.exit_code == 0
        assert "Evicted 1 entries" in result.output
        assert not (cache_dir / "scene-1.bin").exists()

    def test_configure_rejects_invalid_fraction(self, cache_dir):
        """Test that an out-of-range fraction is an error."""
        result = run(cache_dir, "configure", "--eviction-fraction", "1.5")

        assert result.exit_code == 1
        assert not (cache_dir / "config.json").exists()
