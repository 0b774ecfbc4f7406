"""Local disk cache for downloaded product files.

This module caches large resource files keyed by a stable resource
identifier, validates them against the latest metadata fingerprint on read,
and keeps total size under a quota.

Key components:
- CacheManager: Main cache interface
- CacheConfig: Configuration management
- CacheEntry: Cached product record
- FileSystemPersistenceProvider: Durable entry records
- PendingRegistry: Deduplication of in-flight fetches
- ValidationPolicy: Fingerprint validation with lazy purge
- EvictionMonitor: Quota enforcement
"""

from productcache.cache.config import CacheConfig
from productcache.cache.entry import CacheEntry
from productcache.cache.errors import (
    CacheError,
    CachePermissionError,
    CachePersistenceError,
)
from productcache.cache.eviction import EvictionMonitor
from productcache.cache.manager import CacheManager
from productcache.cache.pending import PendingRegistry
from productcache.cache.persistence import FileSystemPersistenceProvider
from productcache.cache.validation import ValidationPolicy, compute_fingerprint

__all__ = [
    "CacheManager",
    "CacheConfig",
    "CacheEntry",
    "CacheError",
    "CachePermissionError",
    "CachePersistenceError",
    "EvictionMonitor",
    "FileSystemPersistenceProvider",
    "PendingRegistry",
    "ValidationPolicy",
    "compute_fingerprint",
]
