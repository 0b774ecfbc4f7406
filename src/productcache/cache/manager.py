"""Cache manager for locally cached product files."""

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Set, Union

from productcache.cache.config import BYTES_IN_MEGABYTE, CacheConfig
from productcache.cache.entry import CacheEntry
from productcache.cache.errors import CacheError, CachePermissionError
from productcache.cache.eviction import EvictionMonitor
from productcache.cache.pending import PendingRegistry
from productcache.cache.persistence import FileSystemPersistenceProvider
from productcache.cache.ports import EntryListener, FetchFn, PersistenceProvider
from productcache.cache.validation import ValidationPolicy, delete_file_quietly

logger = logging.getLogger(__name__)


class CacheManager:
    """Manages a directory of cached product files.

    Entries are keyed by a stable resource identifier and validated on read
    against the fingerprint of the latest resource metadata. Keys being
    fetched are tracked as pending so concurrent callers do not duplicate a
    download, and total size is held under a quota by evicting the
    least-recently-touched entries.

    Thread-safe: the index, pending set, pin counts and size counter share
    one re-entrant lock. Entry records are written through a persistence
    provider, so the index survives restarts.

    Examples:
        >>> manager = CacheManager(CacheConfig(cache_dir="/tmp/products"))
        >>> entry = manager.get_or_fetch(key, fingerprint, download)
        >>> with manager.open_valid(key, fingerprint) as path:
        ...     data = path.read_bytes()
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        persistence: Optional[PersistenceProvider] = None,
        listeners: Optional[List[EntryListener]] = None,
    ):
        """Initialize cache manager.

        Args:
            config: Cache configuration (defaults if None)
            persistence: Entry record store (file system store in cache_dir if None)
            listeners: Observers notified when entries are added or removed

        Raises:
            CachePermissionError: If the cache directory cannot be created
            CachePersistenceError: If persisted entries cannot be loaded
        """
        self.config = config or CacheConfig()
        self.cache_dir = self.config.cache_dir

        self._lock = threading.RLock()
        self._index: Dict[str, CacheEntry] = {}
        self._pins: Dict[str, int] = {}
        # Product files held open by open_valid, and those to delete on release
        self._open_files: Dict[str, int] = {}
        self._deferred_deletes: Set[str] = set()
        self._listeners: List[EntryListener] = list(listeners or [])
        self._pending = PendingRegistry(lock=self._lock)
        self._eviction = EvictionMonitor(
            self.config.max_dir_size_bytes, self.config.eviction_fraction
        )
        self._validation = ValidationPolicy(purge=self._purge, delete_file=self._delete_file)
        self._stats = {
            "cache_hits": 0,
            "cache_misses": 0,
            "stale_purges": 0,
            "missing_purges": 0,
            "evictions": 0,
            "delete_failures": 0,
        }

        self._create_cache_dir(self.cache_dir)
        self.persistence = persistence or FileSystemPersistenceProvider(
            self.cache_dir, lock_timeout=self.config.lock_timeout
        )
        self._load_index()

    @staticmethod
    def _create_cache_dir(cache_dir: Path) -> None:
        try:
            cache_dir.mkdir(parents=True, exist_ok=True)
        except PermissionError as e:
            raise CachePermissionError(
                f"Cannot create cache directory at {cache_dir}: {e}"
            ) from e
        except OSError as e:
            logger.warning(f"Error creating cache directory: {e}")
            raise CacheError(f"Cannot access cache directory at {cache_dir}: {e}") from e

    def _load_index(self) -> None:
        """Rebuild the in-memory index from persisted records.

        A pending key that already has a record in the loaded index is no
        longer pending: its marker is discarded so the key is never both.
        """
        entries = self.persistence.load_all()
        with self._lock:
            self._index = dict(entries)
            self._eviction.reset(self._index.values())
            for key in self._pending.keys():
                if key in self._index:
                    self._pending.discard(key)
                    logger.info(
                        f"Cleared pending marker for {key}, "
                        f"already cached in {self.cache_dir}"
                    )
        logger.debug(f"Loaded {len(entries)} cache entries from {self.cache_dir}")

    # ==================== Internal bookkeeping ====================

    def _notify(self, event: str, entry: CacheEntry) -> None:
        for listener in self._listeners:
            try:
                getattr(listener, event)(replace(entry))
            except Exception as e:
                logger.warning(f"Cache listener {listener!r} failed on {event}: {e}")

    def _delete_file(self, file_path: Union[str, Path]) -> bool:
        """Delete a product file, or defer it while a reader holds it open."""
        path = str(Path(file_path))
        with self._lock:
            if self._open_files.get(path, 0) > 0:
                self._deferred_deletes.add(path)
                logger.debug(f"Deferring delete of {path} until it is released")
                return True
            deleted = delete_file_quietly(path)
            if not deleted:
                self._stats["delete_failures"] += 1
            return deleted

    def _purge(self, entry: CacheEntry) -> None:
        """Drop an entry from the index and the persistence store.

        The product file is left alone; callers delete it first when needed.
        """
        with self._lock:
            current = self._index.get(entry.key)
            if current is not None:
                del self._index[entry.key]
                self._eviction.entry_removed(current)
            self.persistence.remove(entry.key)
        if current is not None:
            self._notify("entry_removed", current)

    def _remove_entry(self, entry: CacheEntry) -> None:
        """Delete an entry's file (best effort) and drop its record."""
        self._delete_file(entry.file_path)
        self._purge(entry)

    def _is_pinned(self, key: str) -> bool:
        return self._pins.get(key, 0) > 0

    def _run_eviction(self) -> List[CacheEntry]:
        with self._lock:
            evicted = self._eviction.run(
                list(self._index.values()), self._remove_entry, self._is_pinned
            )
            self._stats["evictions"] += len(evicted)
        return evicted

    def _lookup_valid(self, key: str, latest_fingerprint: str) -> Optional[CacheEntry]:
        """Return the indexed entry if it is current and its file exists.

        Stale entries and entries without a product file are purged.
        """
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                logger.debug(f"No product found in cache for key = {key}")
                return None

            if not self._validation.validate(entry, latest_fingerprint):
                self._stats["stale_purges"] += 1
                logger.debug(
                    f"Entry found in cache was out-of-date, will need to be "
                    f"re-cached. Entry key: {key}"
                )
                return None

            if not entry.has_product:
                self._purge(entry)
                self._stats["missing_purges"] += 1
                logger.debug(
                    f"Entry found in the cache, but no product found in cache "
                    f"directory for key = {key}"
                )
                return None

            return entry

    # ==================== Pending entries ====================

    def is_pending(self, key: str) -> bool:
        """Check if a fetch for key is in progress.

        Args:
            key: Cache key

        Returns:
            True if the key was admitted and not yet put or removed
        """
        return self._pending.is_pending(key)

    def add_pending_cache_entry(self, key: str, latest_fingerprint: str) -> bool:
        """Mark key as being fetched, unless it is pending or cached and valid.

        The check and the insert happen in one critical section, so among
        concurrent callers for the same key exactly one is admitted.

        Args:
            key: Cache key
            latest_fingerprint: Fingerprint of the latest resource metadata

        Returns:
            True if the key was admitted; False if the call was a no-op

        Raises:
            ValueError: If key or latest_fingerprint is empty
        """
        if not key:
            raise ValueError("Must specify non-empty key")
        if not latest_fingerprint:
            raise ValueError("Must specify latest metadata fingerprint")

        return self._pending.admit(
            key, lambda k: self._lookup_valid(k, latest_fingerprint) is not None
        )

    def remove_pending_cache_entry(self, key: str) -> bool:
        """Clear the pending marker for key, e.g. when a fetch is abandoned.

        Returns:
            True if the key was pending
        """
        return self._pending.discard(key)

    # ==================== Cache operations ====================

    def put(self, entry: CacheEntry) -> CacheEntry:
        """Add a completed product to the cache.

        Called once the downloader has finished writing the product file.
        Replaces any previous entry for the key, clears its pending marker
        and runs an eviction pass.

        Args:
            entry: Completed entry; size_bytes is read from the file if None

        Returns:
            Copy of the cached entry

        Raises:
            ValueError: If the key is empty or the product file does not exist
            CachePersistenceError: If the entry record cannot be written
        """
        if entry is None or not entry.key:
            raise ValueError("Must specify entry with non-empty key")

        product_path = Path(entry.file_path)
        if not product_path.is_file():
            raise ValueError(f"Product file for {entry.key} does not exist: {product_path}")

        entry = replace(entry)
        if entry.size_bytes is None or entry.size_bytes < 0:
            entry.size_bytes = product_path.stat().st_size

        with self._lock:
            previous = self._index.get(entry.key)
            if previous is not None:
                entry.last_touched_at = max(
                    entry.last_touched_at, previous.last_touched_at
                )
            entry.touch()

            # Persist first so a failed write leaves the index untouched
            self.persistence.put(entry.key, entry)

            if previous is not None:
                del self._index[entry.key]
                self._eviction.entry_removed(previous)
                if Path(previous.file_path) != product_path:
                    self._delete_file(previous.file_path)

            # The path holds a new product now, so a deferred delete no longer applies
            self._deferred_deletes.discard(str(product_path))
            self._index[entry.key] = entry
            self._eviction.entry_added(entry)
            self._pending.discard(entry.key)
            logger.debug(f"Cached {entry.key} ({entry.size_bytes} bytes)")

            self._notify("entry_added", entry)
            self._run_eviction()

            return replace(entry)

    def get_valid(self, key: str, latest_fingerprint: str) -> Optional[CacheEntry]:
        """Get a cached entry if it matches the latest metadata.

        A stale entry, or one whose product file has disappeared, is purged
        and reported as a miss. A hit refreshes last_touched_at.

        Args:
            key: Cache key
            latest_fingerprint: Fingerprint of the latest resource metadata

        Returns:
            Copy of the cached entry, or None on a miss

        Raises:
            ValueError: If key or latest_fingerprint is empty
            CachePersistenceError: If the entry record cannot be updated
        """
        if not key:
            raise ValueError("Must specify non-empty key")
        if not latest_fingerprint:
            raise ValueError("Must specify latest metadata fingerprint")

        with self._lock:
            entry = self._lookup_valid(key, latest_fingerprint)
            if entry is None:
                self._stats["cache_misses"] += 1
                return None

            entry.touch()
            # Keep index order equal to touch order
            self._index[key] = self._index.pop(key)
            self.persistence.put(key, entry)
            self._stats["cache_hits"] += 1
            return replace(entry)

    def contains_valid(self, key: Optional[str], latest_fingerprint: str) -> bool:
        """Check whether a valid entry is cached, without touching it.

        Uses the same validation as get_valid, including the purge of stale
        or missing entries. A None key returns False.

        Args:
            key: Cache key
            latest_fingerprint: Fingerprint of the latest resource metadata

        Returns:
            True if a valid entry is cached

        Raises:
            ValueError: If latest_fingerprint is empty
        """
        if not key:
            return False
        if not latest_fingerprint:
            raise ValueError("Must specify latest metadata fingerprint")
        return self._lookup_valid(key, latest_fingerprint) is not None

    @contextmanager
    def open_valid(
        self, key: str, latest_fingerprint: str
    ) -> Iterator[Optional[Path]]:
        """Pin a valid entry while its product file is in use.

        Eviction skips pinned entries. If the entry is purged as stale or
        replaced by a put while pinned, its record is dropped at once but the
        file is only deleted when the last reader exits.

        Args:
            key: Cache key
            latest_fingerprint: Fingerprint of the latest resource metadata

        Yields:
            Path to the product file, or None on a miss
        """
        with self._lock:
            entry = self.get_valid(key, latest_fingerprint)
            if entry is not None:
                path = str(Path(entry.file_path))
                self._pins[key] = self._pins.get(key, 0) + 1
                self._open_files[path] = self._open_files.get(path, 0) + 1

        if entry is None:
            yield None
            return

        try:
            yield Path(path)
        finally:
            with self._lock:
                self._pins[key] -= 1
                if self._pins[key] <= 0:
                    del self._pins[key]
                self._open_files[path] -= 1
                if self._open_files[path] <= 0:
                    del self._open_files[path]
                    if path in self._deferred_deletes:
                        self._deferred_deletes.discard(path)
                        self._delete_file(path)

    def get_or_fetch(
        self,
        key: str,
        latest_fingerprint: str,
        fetch_fn: Optional[FetchFn] = None,
    ) -> Optional[CacheEntry]:
        """Get a valid entry, fetching the product on a miss.

        On a miss the key is admitted as pending and fetch_fn is called to
        download the product; its result is put into the cache. If another
        caller is already fetching the key, the current cache state is
        returned instead of starting a second download.

        Args:
            key: Cache key
            latest_fingerprint: Fingerprint of the latest resource metadata
            fetch_fn: Downloader; returns the completed CacheEntry

        Returns:
            Cached entry, or None if not cached and no fetch was started

        Raises:
            ValueError: If the arguments are empty or fetch_fn returns an
                entry for a different key
            CachePersistenceError: If the entry record cannot be written
        """
        entry = self.get_valid(key, latest_fingerprint)
        if entry is not None or fetch_fn is None:
            return entry

        if not self.add_pending_cache_entry(key, latest_fingerprint):
            logger.debug(f"Not fetching {key}, fetch already pending or entry cached")
            return self.get_valid(key, latest_fingerprint)

        try:
            fetched = fetch_fn()
            if fetched.key != key:
                raise ValueError(
                    f"Fetched entry key {fetched.key!r} does not match {key!r}"
                )
            return self.put(fetched)
        except Exception:
            self.remove_pending_cache_entry(key)
            raise

    def remove(self, key: str) -> bool:
        """Remove an entry from the cache entirely.

        Args:
            key: Cache key

        Returns:
            True if an entry was removed
        """
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                return False
            self._remove_entry(entry)
            return True

    def clear_all(self) -> None:
        """Remove every entry and its product file."""
        with self._lock:
            for entry in list(self._index.values()):
                self._remove_entry(entry)

    def reconcile(self) -> int:
        """Drop entries whose product file has been deleted externally.

        Returns:
            Number of entries dropped
        """
        with self._lock:
            missing = [entry for entry in self._index.values() if not entry.has_product]
            for entry in missing:
                self._purge(entry)
            self._stats["missing_purges"] += len(missing)
        if missing:
            logger.info(f"Dropped {len(missing)} cache entries with missing products")
        return len(missing)

    def evict(self) -> List[CacheEntry]:
        """Run an eviction pass now.

        Returns:
            Entries evicted
        """
        return [replace(entry) for entry in self._run_eviction()]

    def list_entries(self) -> List[CacheEntry]:
        """Copies of all entries, least recently touched first."""
        with self._lock:
            entries = [replace(entry) for entry in self._index.values()]
        return sorted(entries, key=lambda entry: entry.last_touched_at)

    def add_listener(self, listener: EntryListener) -> None:
        """Register an observer of entry additions and removals."""
        with self._lock:
            self._listeners.append(listener)

    # ==================== Configuration ====================

    def set_cache_directory(self, cache_dir: Optional[Union[str, Path]]) -> None:
        """Switch to a different cache directory.

        The persistence store is re-pointed and the index reloaded from the
        new location. Pending keys are kept, except those the new directory
        already holds a record for. Empty paths are ignored.

        Args:
            cache_dir: New cache directory

        Raises:
            CachePermissionError: If the directory cannot be created
        """
        if cache_dir is None or str(cache_dir).strip() == "":
            logger.debug(f"Invalid product cache directory, keeping: {self.cache_dir}")
            return

        new_dir = Path(cache_dir).expanduser()
        with self._lock:
            self._create_cache_dir(new_dir)
            self.persistence.set_persistence_path(new_dir)
            self.cache_dir = new_dir
            self.config.cache_dir = new_dir
            self._load_index()
        logger.info(f"Set product cache directory to: {new_dir}")

    def get_cache_dir_max_size_mb(self) -> int:
        """Quota in megabytes."""
        return self._eviction.max_dir_size_bytes // BYTES_IN_MEGABYTE

    def set_cache_dir_max_size_mb(self, max_size_mb: int) -> None:
        """Change the quota. Applies from the next eviction pass.

        Raises:
            ValueError: If max_size_mb is not positive
        """
        logger.debug(f"Setting max size for cache directory: {max_size_mb} MB")
        with self._lock:
            self._eviction.max_dir_size_bytes = max_size_mb * BYTES_IN_MEGABYTE
            self.config.max_dir_size_mb = max_size_mb

    @property
    def eviction_fraction(self) -> float:
        return self._eviction.eviction_fraction

    @eviction_fraction.setter
    def eviction_fraction(self, value: float) -> None:
        with self._lock:
            self._eviction.eviction_fraction = value
            self.config.eviction_fraction = value

    # ==================== Statistics ====================

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Statistics dict
        """
        with self._lock:
            stats = dict(self._stats)
            stats["cache_dir"] = str(self.cache_dir)
            stats["total_items"] = len(self._index)
            stats["pending_items"] = len(self._pending)
            stats["total_size_bytes"] = self._eviction.total_size_bytes
            stats["max_dir_size_bytes"] = self._eviction.max_dir_size_bytes
            stats["eviction_fraction"] = self._eviction.eviction_fraction

        total_requests = stats["cache_hits"] + stats["cache_misses"]
        stats["cache_hit_rate"] = (
            stats["cache_hits"] / total_requests if total_requests > 0 else 0.0
        )
        return stats
