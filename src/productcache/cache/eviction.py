"""Quota enforcement for the cache directory."""

import logging
from typing import Callable, Iterable, List

from productcache.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


class EvictionMonitor:
    """Keeps the total size of cached files under a byte quota.

    The monitor owns the aggregate size counter. Callers report every entry
    added to or removed from the index, and run() a pass after each change.
    When the quota is exceeded, least-recently-touched entries are removed
    until usage drops to quota * (1 - eviction_fraction).
    """

    def __init__(self, max_dir_size_bytes: int, eviction_fraction: float = 0.25):
        self.max_dir_size_bytes = max_dir_size_bytes
        self.eviction_fraction = eviction_fraction
        self._total_size_bytes = 0

    @property
    def max_dir_size_bytes(self) -> int:
        return self._max_dir_size_bytes

    @max_dir_size_bytes.setter
    def max_dir_size_bytes(self, value: int) -> None:
        if value is None or value <= 0:
            raise ValueError(f"max_dir_size_bytes must be positive, got {value}")
        self._max_dir_size_bytes = int(value)

    @property
    def eviction_fraction(self) -> float:
        return self._eviction_fraction

    @eviction_fraction.setter
    def eviction_fraction(self, value: float) -> None:
        if value is None or not 0 <= value < 1:
            raise ValueError(f"eviction_fraction must be in [0, 1), got {value}")
        self._eviction_fraction = float(value)

    @property
    def target_size_bytes(self) -> int:
        """Size an eviction pass brings the cache down to."""
        return int(self._max_dir_size_bytes * (1 - self._eviction_fraction))

    @property
    def total_size_bytes(self) -> int:
        return self._total_size_bytes

    def entry_added(self, entry: CacheEntry) -> None:
        self._total_size_bytes += entry.size_bytes or 0

    def entry_removed(self, entry: CacheEntry) -> None:
        self._total_size_bytes = max(0, self._total_size_bytes - (entry.size_bytes or 0))

    def reset(self, entries: Iterable[CacheEntry]) -> None:
        """Recompute the counter from scratch."""
        self._total_size_bytes = sum(entry.size_bytes or 0 for entry in entries)

    def run(
        self,
        entries: Iterable[CacheEntry],
        remove: Callable[[CacheEntry], None],
        is_pinned: Callable[[str], bool] = lambda key: False,
    ) -> List[CacheEntry]:
        """Run one eviction pass.

        Args:
            entries: Indexed entries, in index (insertion) order
            remove: Removes an entry's file and record; must report the
                removal back through entry_removed()
            is_pinned: True for keys whose file a caller is reading

        Returns:
            Entries evicted by this pass, oldest first
        """
        if self._total_size_bytes <= self._max_dir_size_bytes:
            return []

        target = self.target_size_bytes
        logger.info(
            f"Cache size {self._total_size_bytes} bytes exceeds quota "
            f"{self._max_dir_size_bytes} bytes, evicting down to {target} bytes"
        )

        # sorted() is stable, so equal timestamps keep index order
        candidates = sorted(entries, key=lambda entry: entry.last_touched_at)
        evicted = []
        for entry in candidates:
            if self._total_size_bytes <= target:
                break
            if is_pinned(entry.key):
                logger.debug(f"Skipping eviction of {entry.key}, entry is in use")
                continue
            remove(entry)
            evicted.append(entry)

        if self._total_size_bytes > target:
            logger.warning(
                f"Eviction pass stopped at {self._total_size_bytes} bytes, "
                f"above target {target} bytes"
            )
        else:
            logger.info(
                f"Evicted {len(evicted)} entries, cache size now "
                f"{self._total_size_bytes} bytes"
            )
        return evicted
