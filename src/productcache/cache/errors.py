"""Exceptions raised by the product cache."""


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CachePersistenceError(CacheError):
    """Raised when the durable entry store cannot be read or written."""

    pass


class CachePermissionError(CacheError):
    """Raised when cache directory permissions are insufficient."""

    pass
