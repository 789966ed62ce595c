"""Tests for the HTTP API client."""

from unittest.mock import MagicMock

import pytest
import requests

from streamcache.api import HttpApiClient
from streamcache.errors import RemoteError
from streamcache.scope import ScopeFilter

ENDPOINT = "https://alice.example.io/"


def make_response(status_code=200, body=None, invalid_json=False):
    response = MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def session():
    """Mock requests session."""
    mock_session = MagicMock(spec=requests.Session)
    mock_session.headers = {}
    return mock_session


@pytest.fixture
def client(session):
    return HttpApiClient(ENDPOINT, "my-token", timeout=5.0, session=session)


class TestHttpApiClient:
    """Test request construction and response mapping."""

    def test_authorization_header(self, client, session):
        assert session.headers["Authorization"] == "my-token"

    def test_get_with_scope(self, client, session):
        """Test URL, query parameters and server time extraction."""
        session.request.return_value = make_response(
            body={"events": [], "meta": {"serverTime": 1234.5}}
        )

        response = client.request("GET", "events", scope=ScopeFilter(limit=10))

        session.request.assert_called_once_with(
            "GET",
            "https://alice.example.io/events",
            params={"limit": 10},
            json=None,
            timeout=5.0,
        )
        assert response.payload == {"events": [], "meta": {"serverTime": 1234.5}}
        assert response.server_time == 1234.5

    def test_post_sends_json(self, client, session):
        session.request.return_value = make_response(body={"event": {"id": "e1"}})

        response = client.request("POST", "events", payload={"streamId": "a"})

        _, kwargs = session.request.call_args
        assert kwargs["json"] == {"streamId": "a"}
        assert kwargs["params"] is None
        assert response.server_time is None

    def test_resource_path(self, client, session):
        session.request.return_value = make_response(body={})

        client.request("DELETE", "/streams/abc")

        args, _ = session.request.call_args
        assert args[1] == "https://alice.example.io/streams/abc"

    def test_http_error(self, client, session):
        """Test that error statuses raise RemoteError with the API message."""
        session.request.return_value = make_response(
            status_code=403, body={"error": {"id": "forbidden", "message": "No access"}}
        )

        with pytest.raises(RemoteError, match="No access") as exc_info:
            client.request("GET", "events")

        assert exc_info.value.status_code == 403

    def test_timeout(self, client, session):
        """Test that timeouts become RemoteError with the cause chained."""
        session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(RemoteError, match="timed out") as exc_info:
            client.request("GET", "events")

        assert isinstance(exc_info.value.__cause__, requests.Timeout)
        assert exc_info.value.status_code is None

    def test_connection_error(self, client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(RemoteError, match="refused"):
            client.request("GET", "events")

    def test_invalid_json(self, client, session):
        session.request.return_value = make_response(status_code=502, invalid_json=True)

        with pytest.raises(RemoteError, match="invalid JSON") as exc_info:
            client.request("GET", "events")

        assert exc_info.value.status_code == 502

    def test_unexpected_body(self, client, session):
        session.request.return_value = make_response(body=["not", "a", "dict"])

        with pytest.raises(RemoteError, match="unexpected body"):
            client.request("GET", "events")

    def test_close(self, client, session):
        client.close()
        session.close.assert_called_once()
