"""Tracking of cache keys whose products are being fetched."""

import logging
import threading
from typing import Callable, List, Optional, Set

logger = logging.getLogger(__name__)


class PendingRegistry:
    """Set of keys with a fetch in flight.

    Admission is an atomic insert-if-absent, so two callers racing on the
    same key admit exactly one fetch. The lock can be shared with the owner
    so that admission and index updates happen in one critical section.
    """

    def __init__(self, lock: Optional[threading.RLock] = None):
        """Initialize an empty registry.

        Args:
            lock: Lock guarding the pending set (a new RLock if None)
        """
        self._lock = lock if lock is not None else threading.RLock()
        self._pending: Set[str] = set()

    def is_pending(self, key: str) -> bool:
        """Return True if a fetch for key was admitted and not yet finished."""
        with self._lock:
            return key in self._pending

    def admit(self, key: str, is_cached: Callable[[str], bool]) -> bool:
        """Mark key as pending unless it is already pending or cached.

        Args:
            key: Cache key
            is_cached: Predicate run under the lock; True means the key is
                already cached and valid

        Returns:
            True if the key was admitted, False if the call was a no-op
        """
        with self._lock:
            if key in self._pending:
                logger.debug(f"Cache entry with key = {key} is already pending")
                return False
            if is_cached(key):
                logger.debug(f"Cache entry with key = {key} is already in cache")
                return False
            self._pending.add(key)
            logger.debug(f"Added pending cache entry with key = {key}")
            return True

    def discard(self, key: str) -> bool:
        """Clear the pending marker for key.

        Returns:
            True if the key was pending, False otherwise
        """
        with self._lock:
            if key in self._pending:
                self._pending.remove(key)
                logger.debug(f"Removed pending cache entry with key = {key}")
                return True
        logger.debug(f"Did not find pending cache entry with key = {key}")
        return False

    def keys(self) -> List[str]:
        """Snapshot of the pending keys."""
        with self._lock:
            return sorted(self._pending)

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
