"""Shared fixtures: an in-memory API client and an isolated cache root."""

import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from streamcache.api import ApiClient, ApiResponse
from streamcache.cache.config import CacheConfig, set_global_config
from streamcache.errors import RemoteError


class FakeApiClient(ApiClient):
    """ApiClient answering from canned payloads.

    Responses are registered per (method, resource). A registered value can
    be a payload dict, an exception to raise, or a callable receiving
    (scope, payload) and returning a payload dict.
    """

    def __init__(self, server_time: Optional[float] = None):
        self.server_time = server_time
        self.responses: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Tuple[str, str, Any, Any]] = []
        self.gate: Optional[threading.Event] = None
        self.closed = False

    def respond(self, method: str, resource: str, outcome: Any) -> None:
        self.responses[(method, resource)] = outcome

    def request(self, method, resource, scope=None, payload=None):
        self.calls.append((method, resource, scope, payload))
        if self.gate is not None:
            self.gate.wait(5)

        outcome = self.responses.get((method, resource))
        if outcome is None:
            raise RemoteError(f"No response for {method} {resource}", status_code=404)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            outcome = outcome(scope, payload)
        return ApiResponse(outcome, server_time=self.server_time)

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_global_config(tmp_path):
    """Point the global cache config at a temporary directory."""
    set_global_config(CacheConfig(cache_dir=tmp_path / "default-cache"))
    yield
    set_global_config(None)


@pytest.fixture
def fake_api():
    """Create in-memory API client."""
    return FakeApiClient(server_time=1_000_000.0)


@pytest.fixture
def cache_root(tmp_path):
    """Root cache directory for connections under test."""
    return tmp_path / "cache-root"
