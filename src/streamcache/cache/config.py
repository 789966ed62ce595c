"""Cache configuration management."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_CACHE_DIR = Path.home() / ".streamcache"


@dataclass
class CacheConfig:
    """Configuration for the local cache.

    Attributes:
        enabled: Whether caching is enabled
        cache_dir: Root directory for cache storage. Each account gets its
            own namespace folder below ``cache_dir/cache/``.
        default_ttl: Seconds after which a cached resource is reported stale
            (None = never)
        checksum_algorithm: Algorithm for resource checksums ('md5', 'sha256')
        lock_timeout: Seconds to wait for a resource file lock
    """

    enabled: bool = True
    cache_dir: Path = DEFAULT_CACHE_DIR
    default_ttl: Optional[int] = 1800  # 30 minutes
    checksum_algorithm: str = "sha256"
    lock_timeout: float = 30.0

    def __post_init__(self):
        """Ensure cache_dir is an expanded Path object."""
        if self.cache_dir is None:
            self.cache_dir = DEFAULT_CACHE_DIR
        self.cache_dir = Path(self.cache_dir).expanduser()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file. If None, uses default location.

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        if config_path is None:
            config_path = DEFAULT_CACHE_DIR / "config.json"

        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = json.load(f)

        if "cache_dir" in data:
            data["cache_dir"] = Path(data["cache_dir"])

        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file. If None, uses cache_dir/config.json.
        """
        if config_path is None:
            config_path = self.cache_dir / "config.json"

        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "enabled": self.enabled,
            "cache_dir": str(self.cache_dir),
            "default_ttl": self.default_ttl,
            "checksum_algorithm": self.checksum_algorithm,
            "lock_timeout": self.lock_timeout,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            STREAMCACHE_CACHE_ENABLED: Enable caching (true/false)
            STREAMCACHE_CACHE_DIR: Cache directory path
            STREAMCACHE_CACHE_TTL: Default TTL in seconds
            STREAMCACHE_LOCK_TIMEOUT: Lock timeout in seconds

        Returns:
            CacheConfig instance
        """
        config = cls()

        if os.getenv("STREAMCACHE_CACHE_ENABLED"):
            config.enabled = os.getenv("STREAMCACHE_CACHE_ENABLED", "").lower() == "true"

        if os.getenv("STREAMCACHE_CACHE_DIR"):
            config.cache_dir = Path(os.getenv("STREAMCACHE_CACHE_DIR")).expanduser()

        if os.getenv("STREAMCACHE_CACHE_TTL"):
            config.default_ttl = int(os.getenv("STREAMCACHE_CACHE_TTL"))

        if os.getenv("STREAMCACHE_LOCK_TIMEOUT"):
            config.lock_timeout = float(os.getenv("STREAMCACHE_LOCK_TIMEOUT"))

        return config


# Global cache configuration instance
_global_config: Optional[CacheConfig] = None


def get_global_config() -> CacheConfig:
    """Get global cache configuration.

    Environment variables take precedence over the config file.

    Returns:
        Global CacheConfig instance
    """
    global _global_config
    if _global_config is None:
        if os.getenv("STREAMCACHE_CACHE_DIR"):
            _global_config = CacheConfig.from_env()
        else:
            try:
                _global_config = CacheConfig.load()
            except (OSError, ValueError, TypeError):
                _global_config = CacheConfig.from_env()
    return _global_config


def set_global_config(config: Optional[CacheConfig]) -> None:
    """Set global cache configuration.

    Args:
        config: CacheConfig instance to use globally, or None to reset
    """
    global _global_config
    _global_config = config
