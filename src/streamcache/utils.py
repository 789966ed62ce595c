"""Utility functions for streamcache."""

import hashlib
import re
from typing import Any, Optional

from typing_extensions import TypedDict

# Resource names shared by the API client and the cache store
EVENTS_RESOURCE = "events"
STREAMS_RESOURCE = "streams"

CACHE_FOLDER = "cache"

# Characters allowed verbatim in a cache folder name
_UNSAFE_SEGMENT_CHARS = re.compile(r"[^A-Za-z0-9._-]")


# TypedDicts for records exchanged with the API and the cache
class StreamRecord(TypedDict, total=False):
    """Wire shape of a stream."""

    id: str
    name: str
    parentId: Optional[str]
    trashed: bool
    clientData: dict[str, Any]
    created: float
    modified: float


class EventRecord(TypedDict, total=False):
    """Wire shape of an event."""

    id: str
    streamId: str
    time: float
    type: str
    tags: list[str]
    content: Any
    trashed: bool
    created: float
    modified: float


class CachedResource(TypedDict):
    """Top-level structure of a cached resource file (e.g. events.json)."""

    resource: str
    last_synced: Optional[str]  # ISO 8601 timestamp of the last write
    records: dict[str, dict[str, Any]]  # Map of record id -> record


def is_absent_id(value: Optional[str]) -> bool:
    """Check whether an identifier is missing.

    Both None and the empty string count as absent.

    Examples:
        >>> is_absent_id(None)
        True
        >>> is_absent_id("")
        True
        >>> is_absent_id("diary")
        False
    """
    return value is None or value == ""


def build_url_endpoint(username: str, domain: str) -> str:
    """Build the API endpoint URL for an account.

    Examples:
        >>> build_url_endpoint('alice', 'example.io')
        'https://alice.example.io/'
    """
    return f"https://{username}.{domain}/"


def build_registration_url(domain: str) -> str:
    """Build the registration/access URL for a domain.

    Examples:
        >>> build_registration_url('example.io')
        'https://reg.example.io/access'
    """
    return f"https://reg.{domain}/access"


def sanitize_path_segment(value: str) -> str:
    """Make a string safe to use as a single path component.

    Examples:
        >>> sanitize_path_segment('alice')
        'alice'
        >>> sanitize_path_segment('a/b c')
        'a_b_c'
        >>> sanitize_path_segment('..')
        '__'
    """
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", value)
    # A segment made only of dots would walk up the tree
    if cleaned.strip(".") == "":
        cleaned = "_" * len(cleaned) if cleaned else "_"
    return cleaned


def derive_namespace(
    endpoint_url: str,
    token: str,
    username: str,
    domain: str,
    algorithm: str = "sha256",
) -> str:
    """Derive the cache namespace (folder name) for an account.

    The name is a digest of ``endpoint_url + "/" + token`` followed by the
    username and domain for debuggability. The token itself never appears
    in the result.

    Args:
        endpoint_url: API endpoint of the account
        token: Access token
        username: Account username
        domain: Service domain
        algorithm: Digest algorithm ('sha256' or 'md5')

    Returns:
        Deterministic string safe to use as a path segment

    Examples:
        >>> name = derive_namespace('https://alice.example.io/', 'tok', 'alice', 'example.io')
        >>> name.endswith('_alice_example.io')
        True
    """
    if algorithm not in ("md5", "sha256"):
        raise ValueError(f"Unsupported algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    hasher.update(f"{endpoint_url}/{token}".encode("utf-8"))
    digest = hasher.hexdigest()
    return "_".join(
        [digest, sanitize_path_segment(username), sanitize_path_segment(domain)]
    )
