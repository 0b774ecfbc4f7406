"""Cache configuration management."""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

BYTES_IN_MEGABYTE = 1024 * 1024
DEFAULT_CACHE_DIR = Path.home() / ".productcache"
DEFAULT_MAX_DIR_SIZE_MB = 10240  # 10 GB
DEFAULT_EVICTION_FRACTION = 0.25
CONFIG_FILENAME = "config.json"


@dataclass
class CacheConfig:
    """Configuration for the product cache.

    Attributes:
        cache_dir: Directory holding cached product files and the entry index
        max_dir_size_mb: Quota for all cached files combined, in megabytes
        eviction_fraction: Share of the quota freed below the limit by an
            eviction pass, so a pass does not re-trigger on the next small write
        lock_timeout: Seconds to wait for a per-entry file lock
    """

    cache_dir: Path = DEFAULT_CACHE_DIR
    max_dir_size_mb: int = DEFAULT_MAX_DIR_SIZE_MB
    eviction_fraction: float = DEFAULT_EVICTION_FRACTION
    lock_timeout: int = 30

    def __post_init__(self):
        """Normalize cache_dir and check numeric limits."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

        if self.max_dir_size_mb <= 0:
            raise ValueError(
                f"max_dir_size_mb must be positive, got {self.max_dir_size_mb}"
            )
        if not 0 <= self.eviction_fraction < 1:
            raise ValueError(
                f"eviction_fraction must be in [0, 1), got {self.eviction_fraction}"
            )

    @property
    def max_dir_size_bytes(self) -> int:
        """Quota in bytes."""
        return self.max_dir_size_mb * BYTES_IN_MEGABYTE

    @property
    def config_path(self) -> Path:
        """Settings file kept alongside the cache."""
        return self.cache_dir / CONFIG_FILENAME

    @classmethod
    def for_directory(cls, cache_dir: Union[str, Path]) -> "CacheConfig":
        """Settings for a cache directory.

        Uses the directory's saved config file when there is one, otherwise
        the environment (see from_env). cache_dir always wins over any
        directory recorded in either source.

        Args:
            cache_dir: Cache directory

        Returns:
            CacheConfig instance
        """
        cache_dir = Path(cache_dir).expanduser()
        config_path = cache_dir / CONFIG_FILENAME
        config = cls.load(config_path) if config_path.exists() else cls.from_env()
        config.cache_dir = cache_dir
        return config

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file. If None, uses the file in the
                default cache directory.

        Returns:
            CacheConfig instance (defaults if the file does not exist)

        Raises:
            ValueError: If the file holds out-of-range settings
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / CONFIG_FILENAME

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file. If None, uses config_path.
        """
        if config_path is None:
            config_path = self.config_path

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = asdict(self)
        data["cache_dir"] = str(self.cache_dir)

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            PRODUCTCACHE_DIR: Cache directory path
            PRODUCTCACHE_MAX_DIR_SIZE_MB: Quota in megabytes
            PRODUCTCACHE_EVICTION_FRACTION: Fraction freed by an eviction pass
            PRODUCTCACHE_LOCK_TIMEOUT: Entry lock timeout in seconds

        Returns:
            CacheConfig instance
        """
        kwargs = {}

        if os.getenv("PRODUCTCACHE_DIR"):
            kwargs["cache_dir"] = Path(os.getenv("PRODUCTCACHE_DIR"))

        if os.getenv("PRODUCTCACHE_MAX_DIR_SIZE_MB"):
            kwargs["max_dir_size_mb"] = int(os.getenv("PRODUCTCACHE_MAX_DIR_SIZE_MB"))

        if os.getenv("PRODUCTCACHE_EVICTION_FRACTION"):
            kwargs["eviction_fraction"] = float(
                os.getenv("PRODUCTCACHE_EVICTION_FRACTION")
            )

        if os.getenv("PRODUCTCACHE_LOCK_TIMEOUT"):
            kwargs["lock_timeout"] = int(os.getenv("PRODUCTCACHE_LOCK_TIMEOUT"))

        return cls(**kwargs)
