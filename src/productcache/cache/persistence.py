"""File system persistence for cache entry records."""

import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

from filelock import FileLock, Timeout

from productcache.cache.entry import CacheEntry
from productcache.cache.errors import CachePersistenceError

logger = logging.getLogger(__name__)

INDEX_DIRNAME = ".index"
LOCK_DIRNAME = ".locks"


class FileSystemPersistenceProvider:
    """Stores one JSON record per cache key.

    Layout under the persistence directory:
    - .index/{sha256(key)}.json: the entry record
    - .locks/{sha256(key)}.lock: per-key lock for cross-process writers

    Only records are managed here. The product files they point at are
    created by the downloader and deleted by the cache manager.
    """

    def __init__(self, directory: Union[str, Path], lock_timeout: float = 30):
        """Initialize the provider.

        Args:
            directory: Directory that will hold the index and lock folders
            lock_timeout: Seconds to wait for a per-key lock
        """
        self.lock_timeout = lock_timeout
        self.set_persistence_path(directory)

    def set_persistence_path(self, path: Union[str, Path]) -> None:
        """Point the provider at a different directory.

        Args:
            path: New persistence directory
        """
        self.directory = Path(path).expanduser()
        self.index_dir = self.directory / INDEX_DIRNAME
        self.lock_dir = self.directory / LOCK_DIRNAME
        logger.debug(f"Persistence path set to {self.directory}")

    @staticmethod
    def _digest(key: str) -> str:
        return hashlib.sha256(key.encode("utf-8")).hexdigest()

    def _record_path(self, key: str) -> Path:
        return self.index_dir / f"{self._digest(key)}.json"

    def _lock_path(self, key: str) -> Path:
        return self.lock_dir / f"{self._digest(key)}.lock"

    def _lock(self, key: str) -> FileLock:
        return FileLock(self._lock_path(key), timeout=self.lock_timeout)

    def _ensure_dirs(self) -> None:
        try:
            self.index_dir.mkdir(parents=True, exist_ok=True)
            self.lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create persistence directory {self.directory}: {e}")
            raise CachePersistenceError(
                f"Cannot create persistence directory {self.directory}: {e}"
            ) from e

    @staticmethod
    def _read_record(record_path: Path) -> Optional[CacheEntry]:
        """Read a record file, returning None when it is corrupted.

        Raises:
            OSError: If the file cannot be read
        """
        with open(record_path, "r") as f:
            try:
                data = json.load(f)
                return CacheEntry.from_dict(data)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Ignoring corrupted cache record {record_path}: {e}")
                return None

    def get(self, key: str) -> Optional[CacheEntry]:
        """Get the stored entry for a key.

        Args:
            key: Cache key

        Returns:
            CacheEntry, or None if there is no (readable) record

        Raises:
            CachePersistenceError: If the record exists but cannot be read
        """
        record_path = self._record_path(key)
        if not record_path.exists():
            return None

        try:
            entry = self._read_record(record_path)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Error reading cache record for {key}: {e}")
            raise CachePersistenceError(f"Cannot read cache record for {key}: {e}") from e

        if entry is not None and entry.key != key:
            logger.warning(f"Cache record {record_path} belongs to {entry.key}, not {key}")
            return None
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Write the record for a key atomically.

        Args:
            key: Cache key
            entry: Entry to persist

        Raises:
            CachePersistenceError: If the record cannot be written
        """
        self._ensure_dirs()
        record_path = self._record_path(key)
        temp_path = record_path.with_suffix(f".json.{os.getpid()}.tmp")

        try:
            with self._lock(key):
                with open(temp_path, "w") as f:
                    json.dump(entry.to_dict(), f, indent=2)
                os.replace(temp_path, record_path)
        except Timeout as e:
            raise CachePersistenceError(
                f"Timeout acquiring record lock for {key} after {self.lock_timeout} seconds"
            ) from e
        except OSError as e:
            logger.error(f"Error writing cache record for {key}: {e}")
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"Failed to clean up temp record: {cleanup_error}")
            raise CachePersistenceError(f"Cannot write cache record for {key}: {e}") from e

    def remove(self, key: str) -> None:
        """Remove the record for a key. Missing records are ignored.

        The key's lock file is deleted once the record is gone, so the lock
        folder only holds files for keys that are still cached.

        Args:
            key: Cache key

        Raises:
            CachePersistenceError: If an existing record cannot be removed
        """
        record_path = self._record_path(key)
        if not record_path.exists():
            return

        self._ensure_dirs()
        try:
            with self._lock(key):
                record_path.unlink(missing_ok=True)
        except Timeout as e:
            raise CachePersistenceError(
                f"Timeout acquiring record lock for {key} after {self.lock_timeout} seconds"
            ) from e
        except OSError as e:
            logger.error(f"Error removing cache record for {key}: {e}")
            raise CachePersistenceError(f"Cannot remove cache record for {key}: {e}") from e

        try:
            self._lock_path(key).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to remove lock file for {key}: {e}")

    def load_all(self) -> Dict[str, CacheEntry]:
        """Load every record in the index directory.

        Returns:
            Dict mapping cache keys to entries, oldest touch first

        Raises:
            CachePersistenceError: If the index directory cannot be listed
        """
        if not self.index_dir.exists():
            return {}

        entries = []
        try:
            for record_path in self.index_dir.glob("*.json"):
                try:
                    entry = self._read_record(record_path)
                except FileNotFoundError:
                    # Removed by another process while listing
                    continue
                if entry is not None:
                    entries.append(entry)
        except OSError as e:
            logger.error(f"Error loading cache index from {self.index_dir}: {e}")
            raise CachePersistenceError(
                f"Cannot load cache index from {self.index_dir}: {e}"
            ) from e

        entries.sort(key=lambda entry: entry.last_touched_at)
        return {entry.key: entry for entry in entries}
