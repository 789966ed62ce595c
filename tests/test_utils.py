"""Tests for URL helpers and cache namespace derivation."""

import pytest

from streamcache.utils import (
    build_registration_url,
    build_url_endpoint,
    derive_namespace,
    is_absent_id,
    sanitize_path_segment,
)

ENDPOINT = "https://alice.example.io/"


class TestUrls:
    """Test endpoint and registration URL construction."""

    def test_url_endpoint(self):
        """Test account endpoint URL."""
        assert build_url_endpoint("alice", "example.io") == ENDPOINT

    def test_registration_url(self):
        """Test registration URL."""
        assert build_registration_url("example.io") == "https://reg.example.io/access"


class TestIsAbsentId:
    """Test identifier absence checks."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_absent(self, value):
        assert is_absent_id(value) is True

    def test_present(self):
        assert is_absent_id("diary") is False


class TestSanitizePathSegment:
    """Test path segment sanitization."""

    def test_safe_characters_kept(self):
        """Test that allowed characters pass through."""
        assert sanitize_path_segment("alice-01_test.io") == "alice-01_test.io"

    def test_separators_replaced(self):
        """Test that path separators and spaces are replaced."""
        assert sanitize_path_segment("a/b\\c d") == "a_b_c_d"

    def test_dot_segments_neutralized(self):
        """Test that '.' and '..' cannot walk the tree."""
        assert sanitize_path_segment(".") == "_"
        assert sanitize_path_segment("..") == "__"

    def test_empty(self):
        assert sanitize_path_segment("") == "_"


class TestDeriveNamespace:
    """Test cache namespace derivation."""

    def test_deterministic(self):
        """Test that identical inputs give identical namespaces."""
        first = derive_namespace(ENDPOINT, "token-1", "alice", "example.io")
        second = derive_namespace(ENDPOINT, "token-1", "alice", "example.io")
        assert first == second

    def test_token_changes_namespace(self):
        """Test that a different token gives a different namespace."""
        first = derive_namespace(ENDPOINT, "token-1", "alice", "example.io")
        second = derive_namespace(ENDPOINT, "token-2", "alice", "example.io")
        assert first != second

    def test_token_not_in_namespace(self):
        """Test that the raw token never appears in the folder name."""
        name = derive_namespace(ENDPOINT, "s3cr3t-token", "alice", "example.io")
        assert "s3cr3t-token" not in name

    def test_readable_suffix(self):
        """Test that username and domain are appended after the digest."""
        name = derive_namespace(ENDPOINT, "tok", "alice", "example.io")
        digest, rest = name.split("_", 1)
        assert len(digest) == 64
        assert rest == "alice_example.io"

    def test_path_safe(self):
        """Test that hostile usernames cannot escape the cache folder."""
        name = derive_namespace(ENDPOINT, "tok", "../../etc", "example.io")
        assert "/" not in name
        assert "\\" not in name

    def test_md5_algorithm(self):
        """Test the shorter md5 digest."""
        name = derive_namespace(ENDPOINT, "tok", "alice", "example.io", algorithm="md5")
        assert len(name.split("_", 1)[0]) == 32

    def test_unsupported_algorithm(self):
        """Test that unknown algorithms are rejected."""
        with pytest.raises(ValueError, match="Unsupported algorithm"):
            derive_namespace(ENDPOINT, "tok", "alice", "example.io", algorithm="sha1")
