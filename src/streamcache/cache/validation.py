"""Cache validation utilities for TTL and checksums."""

import hashlib
from datetime import datetime, timezone
from typing import Optional


def _elapsed_seconds(last_synced: str) -> float:
    last_synced_dt = datetime.fromisoformat(last_synced)

    # Handle timezone-naive datetimes
    if last_synced_dt.tzinfo is None:
        last_synced_dt = last_synced_dt.replace(tzinfo=timezone.utc)

    return (datetime.now(timezone.utc) - last_synced_dt).total_seconds()


def is_ttl_valid(last_synced: Optional[str], ttl_seconds: Optional[int]) -> bool:
    """Check if a cached resource is still fresh based on TTL.

    Args:
        last_synced: ISO format timestamp of the last write, None if never
        ttl_seconds: Time-to-live in seconds, None for no expiry

    Returns:
        True if still fresh, False if expired or never synced
    """
    if last_synced is None:
        return False

    if ttl_seconds is None:
        # None means never expire
        return True

    return _elapsed_seconds(last_synced) < ttl_seconds


def get_ttl_remaining(
    last_synced: Optional[str], ttl_seconds: Optional[int]
) -> Optional[int]:
    """Get remaining seconds until TTL expires.

    Args:
        last_synced: ISO format timestamp of the last write
        ttl_seconds: Time-to-live in seconds

    Returns:
        Seconds remaining (0 if never synced), or None if never expires
    """
    if ttl_seconds is None:
        return None
    if last_synced is None:
        return 0

    remaining = ttl_seconds - _elapsed_seconds(last_synced)
    return max(0, int(remaining))


def compute_checksum_from_bytes(data: bytes, algorithm: str = "sha256") -> str:
    """Compute checksum from bytes.

    Args:
        data: Bytes to hash
        algorithm: Hash algorithm ('md5', 'sha256')

    Returns:
        Hex digest of checksum

    Raises:
        ValueError: If algorithm not supported
    """
    if algorithm not in ("md5", "sha256"):
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    if algorithm == "md5":
        hasher = hashlib.md5()
    else:
        hasher = hashlib.sha256()

    hasher.update(data)
    return hasher.hexdigest()
