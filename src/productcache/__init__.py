"""productcache: Local disk cache for downloaded product files."""

__version__ = "0.1.0"

from productcache.cache import CacheConfig, CacheEntry, CacheManager, compute_fingerprint

__all__ = ["CacheManager", "CacheConfig", "CacheEntry", "compute_fingerprint", "__version__"]
