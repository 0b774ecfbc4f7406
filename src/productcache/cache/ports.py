"""Collaborator interfaces used by the cache manager."""

from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Union

from productcache.cache.entry import CacheEntry


class PersistenceProvider(Protocol):
    """Durable key to entry storage. Pure storage, no policy."""

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry for key, or None."""
        ...

    def put(self, key: str, entry: CacheEntry) -> None:
        """Store entry under key, replacing any previous record."""
        ...

    def remove(self, key: str) -> None:
        """Drop the record for key. Missing keys are ignored."""
        ...

    def load_all(self) -> Dict[str, CacheEntry]:
        """Return every stored entry keyed by cache key."""
        ...

    def set_persistence_path(self, path: Union[str, Path]) -> None:
        """Point the store at a different directory."""
        ...


class EntryListener(Protocol):
    """Observer of index changes, e.g. a replication layer."""

    def entry_added(self, entry: CacheEntry) -> None:
        ...

    def entry_removed(self, entry: CacheEntry) -> None:
        ...


# Downloader collaborator: called on a cache miss once the key is admitted,
# returns the completed entry (file already on disk).
FetchFn = Callable[[], CacheEntry]
