"""Unit tests for cache validation module."""

import hashlib
from datetime import datetime, timedelta, timezone

import pytest

from streamcache.cache.validation import (
    compute_checksum_from_bytes,
    get_ttl_remaining,
    is_ttl_valid,
)


class TestTTLValidation:
    """Test TTL validation functions."""

    def test_ttl_valid_within_window(self):
        """Test that cache is fresh within TTL window."""
        last_synced = datetime.now(timezone.utc).isoformat()
        assert is_ttl_valid(last_synced, 1800) is True

    def test_ttl_expired_after_window(self):
        """Test that cache expires after TTL window."""
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        assert is_ttl_valid(past.isoformat(), 1800) is False

    def test_ttl_none_never_expires(self):
        """Test that TTL=None means never expire."""
        ancient_past = datetime.now(timezone.utc) - timedelta(days=365)
        assert is_ttl_valid(ancient_past.isoformat(), None) is True

    def test_never_synced(self):
        """Test that a resource never written is not fresh."""
        assert is_ttl_valid(None, 1800) is False
        assert is_ttl_valid(None, None) is False

    def test_naive_timestamp_treated_as_utc(self):
        """Test timezone-naive timestamps."""
        naive = datetime.now(timezone.utc).replace(tzinfo=None).isoformat()
        assert is_ttl_valid(naive, 1800) is True

    def test_ttl_remaining_within_window(self):
        """Test TTL remaining calculation."""
        last_synced = datetime.now(timezone.utc).isoformat()
        remaining = get_ttl_remaining(last_synced, 1800)

        assert 1790 <= remaining <= 1800

    def test_ttl_remaining_expired(self):
        """Test that remaining time never goes negative."""
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        assert get_ttl_remaining(past.isoformat(), 1800) == 0

    def test_ttl_remaining_no_expiry(self):
        last_synced = datetime.now(timezone.utc).isoformat()
        assert get_ttl_remaining(last_synced, None) is None

    def test_ttl_remaining_never_synced(self):
        assert get_ttl_remaining(None, 1800) == 0


class TestChecksums:
    """Test checksum computation."""

    def test_sha256_default(self):
        data = b"events"
        assert compute_checksum_from_bytes(data) == hashlib.sha256(data).hexdigest()

    def test_md5(self):
        data = b"events"
        assert compute_checksum_from_bytes(data, "md5") == hashlib.md5(data).hexdigest()

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError, match="Unsupported algorithm"):
            compute_checksum_from_bytes(b"x", "crc32")
