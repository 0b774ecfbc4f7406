"""Cache entry record."""

import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

SCHEMA_VERSION = "1.0"


@dataclass
class CacheEntry:
    """A cached product file and the metadata it was cached against.

    Attributes:
        key: Stable resource identifier, unique per product
        metadata_fingerprint: Digest of the resource metadata at cache time
        file_path: Location of the cached bytes
        size_bytes: Size of the cached file, used for quota accounting.
            Filled from the file itself when the cache admits the entry.
        last_touched_at: Epoch seconds of the last write or read; drives
            eviction ordering
    """

    key: str
    metadata_fingerprint: str
    file_path: str
    size_bytes: Optional[int] = None
    last_touched_at: float = field(default_factory=time.time)

    def __post_init__(self):
        self.file_path = str(self.file_path)

    @property
    def has_product(self) -> bool:
        """Whether the backing file is actually present on disk."""
        return Path(self.file_path).is_file()

    def touch(self) -> None:
        """Refresh last_touched_at without ever moving it backwards."""
        self.last_touched_at = max(time.time(), self.last_touched_at)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the durable record format."""
        data = asdict(self)
        data["schema_version"] = SCHEMA_VERSION
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """Build an entry from a durable record.

        Raises:
            KeyError: If a required field is missing
        """
        return cls(
            key=data["key"],
            metadata_fingerprint=data["metadata_fingerprint"],
            file_path=data["file_path"],
            size_bytes=data.get("size_bytes"),
            last_touched_at=float(data["last_touched_at"]),
        )
