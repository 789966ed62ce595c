"""Cache metadata management."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class CacheMetadata:
    """Manages cache metadata for one namespace.

    The metadata file (.cache_meta.json) tracks:
    - Namespace information and the active cache scope
    - Per-resource status (record count, checksum, size, last sync)
    - Cache statistics (hits, misses, writes, deletes)
    """

    def __init__(self, cache_dir: Path, namespace: str):
        """Initialize cache metadata manager.

        Args:
            cache_dir: Directory where cache metadata is stored
            namespace: Cache namespace this metadata belongs to
        """
        self.cache_dir = Path(cache_dir)
        self.namespace = namespace
        self.meta_path = self.cache_dir / ".cache_meta.json"
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self) -> None:
        """Load metadata from file or create new."""
        if self.meta_path.exists():
            try:
                with open(self.meta_path, "r") as f:
                    self._data = json.load(f)
            except (json.JSONDecodeError, FileNotFoundError):
                # Corrupted metadata, start fresh
                self._initialize_new()
        else:
            self._initialize_new()

    def _initialize_new(self) -> None:
        """Initialize new metadata structure."""
        self._data = {
            "schema_version": "1.0",
            "namespace": self.namespace,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "scope": None,
            "resources": {},
            "stats": {
                "cache_hits": 0,
                "cache_misses": 0,
                "writes": 0,
                "deletes": 0,
            },
        }

    def save(self) -> None:
        """Save metadata to file."""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with open(self.meta_path, "w") as f:
            json.dump(self._data, f, indent=2)

    def get_resource(self, resource: str) -> Optional[Dict[str, Any]]:
        """Get metadata for a cached resource.

        Args:
            resource: Resource name (e.g., 'events')

        Returns:
            Resource metadata dict or None if never written
        """
        return self._data["resources"].get(resource)

    def set_resource(
        self,
        resource: str,
        record_count: int,
        checksum: str,
        size_bytes: int,
    ) -> None:
        """Record a write of a cached resource.

        Args:
            resource: Resource name
            record_count: Number of records now stored
            checksum: Checksum of the resource file
            size_bytes: Size of the resource file
        """
        now = datetime.now(timezone.utc).isoformat()

        entry = self._data["resources"].get(resource, {"created_at": now})
        entry.update(
            {
                "record_count": record_count,
                "checksum": checksum,
                "size_bytes": size_bytes,
                "last_synced": now,
            }
        )
        self._data["resources"][resource] = entry
        self._data["stats"]["writes"] += 1
        self.save()

    def set_scope(self, scope: Optional[Dict[str, Any]]) -> None:
        """Record the active cache scope."""
        self._data["scope"] = scope
        self.save()

    def get_scope(self) -> Optional[Dict[str, Any]]:
        """Get the recorded cache scope."""
        return self._data.get("scope")

    def record_cache_hit(self) -> None:
        """Record a cache hit in statistics."""
        self._data["stats"]["cache_hits"] += 1
        self.save()

    def record_cache_miss(self) -> None:
        """Record a cache miss in statistics."""
        self._data["stats"]["cache_misses"] += 1
        self.save()

    def record_delete(self) -> None:
        """Record a record deletion in statistics."""
        self._data["stats"]["deletes"] += 1
        self.save()

    def remove_resource(self, resource: str) -> None:
        """Remove resource from cache metadata.

        Args:
            resource: Resource name to remove
        """
        if resource in self._data["resources"]:
            del self._data["resources"][resource]
            self.save()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Statistics dict with cache metrics
        """
        stats = self._data["stats"].copy()
        resources = self._data["resources"].values()
        stats["total_records"] = sum(r.get("record_count", 0) for r in resources)
        stats["total_size_bytes"] = sum(r.get("size_bytes", 0) for r in resources)
        return stats

    def get_all_resources(self) -> Dict[str, Dict[str, Any]]:
        """Get metadata of all cached resources.

        Returns:
            Dict mapping resource names to metadata
        """
        return self._data["resources"].copy()
