"""Freshness validation of cache entries against upstream metadata."""

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Callable, Mapping, Union

from productcache.cache.entry import CacheEntry

logger = logging.getLogger(__name__)


def compute_fingerprint(metadata: Mapping[str, Any], algorithm: str = "sha256") -> str:
    """Compute a stable fingerprint for resource metadata.

    The metadata is serialized as canonical JSON (sorted keys, no
    whitespace) so the result is the same across processes and runs.
    Values that are not JSON types are rendered with str().

    Args:
        metadata: Metadata mapping
        algorithm: Hash algorithm ('md5', 'sha256')

    Returns:
        Hex digest of the canonical metadata

    Raises:
        ValueError: If algorithm not supported
    """
    if algorithm not in ("md5", "sha256"):
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    if algorithm == "md5":
        hasher = hashlib.md5()
    else:
        hasher = hashlib.sha256()

    canonical = json.dumps(metadata, sort_keys=True, separators=(",", ":"), default=str)
    hasher.update(canonical.encode("utf-8"))
    return hasher.hexdigest()


def is_current(entry: CacheEntry, latest_fingerprint: str) -> bool:
    """Check whether an entry was cached against the latest metadata.

    Args:
        entry: Cached entry
        latest_fingerprint: Fingerprint of the latest known metadata

    Returns:
        True if the fingerprints are equal
    """
    return entry.metadata_fingerprint == latest_fingerprint


def delete_file_quietly(file_path: Union[str, Path]) -> bool:
    """Delete a file, logging instead of raising on failure.

    Args:
        file_path: File to delete

    Returns:
        True if the file no longer exists
    """
    path = Path(file_path)
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"File was not removed from cache directory. File Path: {path}: {e}")
        return False
    return True


class ValidationPolicy:
    """Decides whether a cached entry still matches its resource metadata.

    validate() is not a pure query: a stale entry is purged on the spot
    (file deleted, purge callback invoked), so stale data is swept lazily by
    reads instead of by a background thread.
    """

    def __init__(
        self,
        purge: Callable[[CacheEntry], None],
        delete_file: Callable[[Union[str, Path]], bool] = delete_file_quietly,
    ):
        """Initialize the policy.

        Args:
            purge: Called with a stale entry to drop it from the index
            delete_file: Best-effort file deletion
        """
        self._purge = purge
        self._delete_file = delete_file

    def validate(self, entry: CacheEntry, latest_fingerprint: str) -> bool:
        """Validate an entry, purging it on mismatch.

        Args:
            entry: Cached entry
            latest_fingerprint: Fingerprint of the latest known metadata

        Returns:
            True if the entry is current

        Raises:
            ValueError: If entry or latest_fingerprint is None
        """
        if entry is None or latest_fingerprint is None:
            raise ValueError(
                "Neither the cached entry nor the latest metadata fingerprint can be None"
            )

        if is_current(entry, latest_fingerprint):
            return True

        logger.debug(
            f"Entry {entry.key} is out of date "
            f"(cached {entry.metadata_fingerprint}, latest {latest_fingerprint})"
        )
        self._delete_file(entry.file_path)
        self._purge(entry)
        return False
